"""请求上下文依赖。

职责:
1. 组装认证编排服务（令牌服务进程内单例）。
2. 解析 Bearer 访问令牌并确认会话仍然有效。
3. 提取客户端 IP 与 User-Agent，供会话与行为日志使用。
"""

from functools import lru_cache

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from cwa_api.core.config import get_settings
from cwa_api.core.security import TokenService
from cwa_api.db.session import get_db
from cwa_api.services.auth_flow import AuthContext, AuthService, ClientInfo
from cwa_api.utils.response import client_ip, user_agent

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_token_service() -> TokenService:
    """按当前配置构造令牌服务。"""
    return TokenService.from_settings(get_settings())


def get_auth_service(
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> AuthService:
    return AuthService(db, tokens=tokens, settings=get_settings())


def get_client_info(request: Request) -> ClientInfo:
    """提取客户端信息。"""
    return ClientInfo(ip_address=client_ip(request), user_agent=user_agent(request))


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    """提取原始访问令牌；未携带时返回 None，由业务层决定错误码。"""
    if credentials is None or not credentials.credentials:
        return None
    return credentials.credentials


def get_auth_context(
    token: str | None = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> AuthContext:
    """完成认证，返回当前用户与会话。"""
    authorization = f"Bearer {token}" if token else None
    return service.authenticate(authorization)
