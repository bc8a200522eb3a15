"""令牌签发与校验工具。

访问令牌与刷新令牌共用同一签名密钥，通过声明中的 token_type 区分用途，
校验时显式比对该字段，防止两类令牌互相冒用。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import StrEnum
import re
from typing import Any
from uuid import uuid4

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

from cwa_api.core.config import Settings, get_settings

TOKEN_TYPE_CLAIM = "token_type"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

_ACCESS_REQUIRED_CLAIMS = ("sub", "email", "role")
_REFRESH_REQUIRED_CLAIMS = ("sub",)


class TokenFailure(StrEnum):
    """令牌校验失败原因。"""

    EXPIRED = "expired"  # 令牌已过期。
    MALFORMED = "malformed"  # 签名不符、无法解析或声明结构不完整。
    WRONG_KIND = "wrong_kind"  # 令牌用途不符（例如用访问令牌换取新令牌）。


@dataclass(frozen=True)
class IssuedToken:
    """签发结果。"""

    token: str
    expires_at: datetime
    jti: str


@dataclass(frozen=True)
class TokenCheck:
    """令牌校验结果，claims 与 failure 二者必居其一。"""

    claims: dict[str, Any] | None = None
    failure: TokenFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.claims is not None

    @property
    def subject(self) -> str | None:
        if not self.claims:
            return None
        return self.claims.get("sub")


class TokenService:
    """签发与校验访问令牌、刷新令牌，除签名密钥外不持有任何状态。"""

    def __init__(
        self,
        *,
        secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(hours=24),
        refresh_ttl: timedelta = timedelta(days=7),
    ) -> None:
        if not secret:
            raise ValueError("token signing secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "TokenService":
        """按应用配置构造令牌服务。"""
        settings = settings or get_settings()
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.auth_jwt_algorithm,
            access_ttl=timedelta(seconds=settings.auth_access_token_ttl_seconds),
            refresh_ttl=timedelta(seconds=settings.auth_refresh_token_ttl_seconds),
        )

    def _encode(self, claims: dict[str, Any], ttl: timedelta) -> IssuedToken:
        now = datetime.now(timezone.utc)
        expires_at = now + ttl
        jti = str(uuid4())
        payload = {
            **claims,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": jti,
        }
        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return IssuedToken(token=token, expires_at=expires_at, jti=jti)

    def issue_access_token(self, user) -> IssuedToken:
        """签发访问令牌，声明仅包含用户 ID、邮箱与角色。"""
        return self._encode(
            {
                "sub": str(user.id),
                "email": user.email,
                "role": str(user.role),
                TOKEN_TYPE_CLAIM: ACCESS_TOKEN_TYPE,
            },
            self.access_ttl,
        )

    def issue_refresh_token(self, user, *, session_id) -> IssuedToken:
        """签发刷新令牌，sid 指向所属会话，用于识别被轮换掉的旧令牌。"""
        return self._encode(
            {
                "sub": str(user.id),
                "sid": str(session_id),
                TOKEN_TYPE_CLAIM: REFRESH_TOKEN_TYPE,
            },
            self.refresh_ttl,
        )

    def _decode(self, token: str) -> TokenCheck:
        try:
            claims = jwt.decode(
                token,
                key=self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "sub"]},
            )
        except ExpiredSignatureError:
            return TokenCheck(failure=TokenFailure.EXPIRED)
        except InvalidTokenError:
            return TokenCheck(failure=TokenFailure.MALFORMED)
        return TokenCheck(claims=claims)

    def _verify(self, token: str | None, *, expected_type: str, required: tuple[str, ...]) -> TokenCheck:
        if not isinstance(token, str) or not token.strip():
            return TokenCheck(failure=TokenFailure.MALFORMED)

        result = self._decode(token.strip())
        if not result.ok:
            return result

        claims = result.claims or {}
        token_type = claims.get(TOKEN_TYPE_CLAIM)
        if token_type is None:
            return TokenCheck(failure=TokenFailure.MALFORMED)
        if token_type != expected_type:
            return TokenCheck(failure=TokenFailure.WRONG_KIND)

        for key in required:
            value = claims.get(key)
            if not isinstance(value, str) or not value:
                return TokenCheck(failure=TokenFailure.MALFORMED)
        return result

    def verify_access_token(self, token: str | None) -> TokenCheck:
        """校验访问令牌。"""
        return self._verify(token, expected_type=ACCESS_TOKEN_TYPE, required=_ACCESS_REQUIRED_CLAIMS)

    def verify_refresh_token(self, token: str | None) -> TokenCheck:
        """校验刷新令牌，缺少刷新标记的令牌一律拒绝。"""
        return self._verify(token, expected_type=REFRESH_TOKEN_TYPE, required=_REFRESH_REQUIRED_CLAIMS)


def extract_bearer_token(authorization: str | None) -> str | None:
    """从 Authorization 头中提取 Bearer token，兼容重复头被逗号拼接的场景。"""
    if not authorization:
        return None
    tokens = re.findall(r"Bearer\s+([^,\s]+)", authorization, flags=re.IGNORECASE)
    for candidate in reversed(tokens):
        token = candidate.strip()
        if token:
            return token
    return None
