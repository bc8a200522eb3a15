"""认证编排服务。

登录、注册、刷新、登出、修改密码以及会话管理的唯一业务入口。
每个用例按固定顺序调用凭据存储、令牌服务、会话登记簿与行为日志：

1. 先校验凭据，再签发令牌；令牌签发后才建立会话。
2. 更新最近登录时间与写行为日志均为尽力而为，失败只记日志。
3. 刷新令牌被误用时，先提交会话终止，再向调用方返回错误。
4. 协作方抛出的任何非业务异常统一记录并映射为 ERR_SERVER。
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cwa_api.core.config import Settings, get_settings
from cwa_api.core.security import TokenFailure, TokenService, extract_bearer_token
from cwa_api.exceptions import AuthError, ErrorCode
from cwa_api.models.auth import UserSession
from cwa_api.models.base import as_utc, utc_now
from cwa_api.models.enums import ActivityAction, SessionStatus, UserRole, UserStatus
from cwa_api.models.user import User
from cwa_api.services.activity import ActivityLog
from cwa_api.services.authorization import ensure_access
from cwa_api.services.credentials import CredentialStore
from cwa_api.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    """发起请求的客户端信息。"""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class AuthResult:
    """登录/注册结果。"""

    user: dict[str, Any]
    token: str
    refresh_token: str
    expires_at: datetime
    session_id: UUID


@dataclass
class RefreshResult:
    """刷新结果。"""

    token: str
    refresh_token: str
    expires_at: datetime


@dataclass
class AuthContext:
    """已认证请求的身份上下文。"""

    user: User
    session_id: UUID
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> UUID:
        return self.user.id


def sanitize_user(user: User) -> dict[str, Any]:
    """输出给客户端的用户视图，不含口令哈希。"""
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "status": user.status,
        "last_login_at": user.last_login_at,
        "created_at": user.created_at,
    }


def serialize_session(session: UserSession, *, current_session_id: UUID | None = None) -> dict[str, Any]:
    """输出给客户端的会话视图，不含令牌原文。"""
    return {
        "id": session.id,
        "user_id": session.user_id,
        "ip_address": session.ip_address,
        "user_agent": session.user_agent,
        "status": session.status,
        "expires_at": as_utc(session.expires_at),
        "created_at": session.created_at,
        "current": current_session_id is not None and session.id == current_session_id,
    }


class AuthService:
    """认证与会话生命周期编排。"""

    def __init__(
        self,
        db: Session,
        *,
        tokens: TokenService,
        settings: Settings | None = None,
        credentials: CredentialStore | None = None,
        sessions: SessionRegistry | None = None,
        activity: ActivityLog | None = None,
    ) -> None:
        self.db = db
        self.tokens = tokens
        self.settings = settings or get_settings()
        self.credentials = credentials or CredentialStore(db)
        self.sessions = sessions or SessionRegistry(db)
        self.activity = activity or ActivityLog(db)
        self.session_ttl = timedelta(seconds=self.settings.auth_session_ttl_seconds)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """业务失败原样抛出，其余异常回滚后映射为 ERR_SERVER。"""
        try:
            yield
        except AuthError:
            raise
        except Exception as exc:
            self.db.rollback()
            logger.exception("%s failed with unexpected error", operation)
            raise AuthError(ErrorCode.SERVER) from exc

    def _best_effort(self, operation: str, func, *args) -> None:
        try:
            func(*args)
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning("%s failed, continuing", operation, exc_info=True)

    def _record(self, user_id: UUID, action: ActivityAction, client: ClientInfo | None, **details: Any) -> None:
        client = client or ClientInfo()
        self.activity.record(
            user_id=user_id,
            action=action,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            details={key: str(value) if isinstance(value, UUID) else value for key, value in details.items()} or None,
        )

    def _open_session(self, user: User, *, action: ActivityAction, client: ClientInfo | None) -> AuthResult:
        """签发令牌对并建立会话（登录与注册共用）。"""
        client = client or ClientInfo()
        user_id = user.id
        session_id = uuid4()

        access = self.tokens.issue_access_token(user)
        refresh = self.tokens.issue_refresh_token(user, session_id=session_id)

        self._best_effort("update_last_login", self.credentials.update_last_login, user_id)

        expires_at = utc_now() + self.session_ttl
        self.sessions.create(
            session_id=session_id,
            user_id=user_id,
            access_token=access.token,
            refresh_token=refresh.token,
            expires_at=expires_at,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        self._record(user_id, action, client, session_id=session_id)
        logger.info("%s succeeded user_id=%s session_id=%s", action, user_id, session_id)

        return AuthResult(
            user=sanitize_user(user),
            token=access.token,
            refresh_token=refresh.token,
            expires_at=expires_at,
            session_id=session_id,
        )

    def login(
        self,
        email: str | None,
        password: str | None,
        *,
        client: ClientInfo | None = None,
    ) -> AuthResult:
        """邮箱密码登录。"""
        if not email or not password:
            raise AuthError(ErrorCode.MISSING_CREDENTIALS)

        with self._guard("login"):
            user = self.credentials.verify_credentials(email, password)
            if user is None:
                # 不区分邮箱不存在与密码错误。
                logger.info("login rejected reason=invalid_credentials")
                raise AuthError(ErrorCode.INVALID_CREDENTIALS)
            if not user.is_active:
                logger.info("login rejected reason=account_inactive user_id=%s", user.id)
                raise AuthError(ErrorCode.ACCOUNT_INACTIVE)
            return self._open_session(user, action=ActivityAction.LOGIN, client=client)

    def register(
        self,
        email: str | None,
        password: str | None,
        name: str | None,
        *,
        client: ClientInfo | None = None,
    ) -> AuthResult:
        """注册普通用户并直接建立会话；注册时不接受角色参数。"""
        if not email or not password or not name or not name.strip():
            raise AuthError(ErrorCode.MISSING_FIELDS)

        with self._guard("register"):
            if self.credentials.find_by_email(email) is not None:
                raise AuthError(ErrorCode.USER_EXISTS)
            try:
                user = self.credentials.create_user(
                    email=email,
                    password=password,
                    name=name,
                    role=UserRole.USER,
                    status=UserStatus.ACTIVE,
                )
            except IntegrityError:
                # 并发注册同一邮箱时，后写入方在唯一约束处失败。
                self.db.rollback()
                logger.info("register lost uniqueness race")
                raise AuthError(ErrorCode.USER_EXISTS) from None
            return self._open_session(user, action=ActivityAction.REGISTER, client=client)

    def _terminate_reused_session(self, refresh_token: str, client: ClientInfo | None) -> None:
        """已被轮换掉的刷新令牌再次出现时，终止其所属会话。"""
        check = self.tokens.verify_refresh_token(refresh_token)
        if not check.ok:
            return
        try:
            session_id = UUID(str(check.claims.get("sid")))
        except ValueError:
            return

        session = self.sessions.get(session_id)
        if session is None or str(session.user_id) != check.subject:
            return
        owner_id = session.user_id
        if self.sessions.terminate_session(session_id):
            logger.warning("rotated refresh token reused, session terminated session_id=%s", session_id)
            self._record(owner_id, ActivityAction.TOKEN_REUSE, client, session_id=session_id)

    def refresh(self, refresh_token: str | None, *, client: ClientInfo | None = None) -> RefreshResult:
        """用刷新令牌换取新令牌对，旧刷新令牌随即失效。"""
        if not refresh_token:
            raise AuthError(ErrorCode.MISSING_TOKEN)

        with self._guard("refresh"):
            session = self.sessions.find_by_refresh_token(refresh_token)
            if session is None:
                self._terminate_reused_session(refresh_token, client)
                raise AuthError(ErrorCode.INVALID_TOKEN)
            if session.status != SessionStatus.ACTIVE:
                raise AuthError(ErrorCode.INVALID_TOKEN)

            session_id = session.id
            owner_id = session.user_id

            # 会话记录的过期时间优先于令牌自带的 exp。
            if as_utc(session.expires_at) <= utc_now():
                self.sessions.mark_expired(session_id)
                raise AuthError(ErrorCode.INVALID_TOKEN)

            check = self.tokens.verify_refresh_token(refresh_token)
            if (
                not check.ok
                or check.subject != str(owner_id)
                or check.claims.get("sid") != str(session_id)
            ):
                self.sessions.terminate_session(session_id)
                logger.warning(
                    "refresh rejected, session terminated session_id=%s reason=%s",
                    session_id,
                    check.failure or "claim_mismatch",
                )
                raise AuthError(ErrorCode.INVALID_TOKEN)

            user = self.credentials.get(owner_id)
            if user is None or not user.is_active:
                self.sessions.terminate_session(session_id)
                raise AuthError(ErrorCode.USER_INACTIVE)

            access = self.tokens.issue_access_token(user)
            rotated = self.tokens.issue_refresh_token(user, session_id=session_id)
            expires_at = utc_now() + self.session_ttl

            won = self.sessions.update(
                session_id,
                {
                    "access_token": access.token,
                    "refresh_token": rotated.token,
                    "expires_at": expires_at,
                },
                expected_refresh_token=refresh_token,
            )
            if not won:
                logger.warning("refresh lost rotation race session_id=%s", session_id)
                raise AuthError(ErrorCode.INVALID_TOKEN)

            self._record(owner_id, ActivityAction.TOKEN_REFRESH, client, session_id=session_id)
            return RefreshResult(token=access.token, refresh_token=rotated.token, expires_at=expires_at)

    def logout(self, access_token: str | None, *, client: ClientInfo | None = None) -> bool:
        """终止访问令牌所属会话；会话不存在也视为登出成功。"""
        if not access_token:
            raise AuthError(ErrorCode.MISSING_TOKEN)

        with self._guard("logout"):
            session = self.sessions.find_by_token(access_token)
            if session is None:
                return False
            session_id = session.id
            owner_id = session.user_id
            terminated = self.sessions.terminate_session(session_id)
            self._record(owner_id, ActivityAction.LOGOUT, client, session_id=session_id)
            return terminated

    def authenticate(self, authorization: str | None) -> AuthContext:
        """解析 Bearer 访问令牌并确认会话与用户仍然有效。"""
        token = extract_bearer_token(authorization)
        if token is None:
            raise AuthError(ErrorCode.UNAUTHORIZED)

        check = self.tokens.verify_access_token(token)
        if not check.ok:
            if check.failure == TokenFailure.EXPIRED:
                raise AuthError(ErrorCode.TOKEN_EXPIRED)
            raise AuthError(ErrorCode.INVALID_TOKEN)

        with self._guard("authenticate"):
            session = self.sessions.find_by_token(token)
            if session is None or session.status != SessionStatus.ACTIVE or str(session.user_id) != check.subject:
                raise AuthError(ErrorCode.INVALID_TOKEN)
            session_id = session.id
            if as_utc(session.expires_at) <= utc_now():
                self.sessions.mark_expired(session_id)
                raise AuthError(ErrorCode.INVALID_TOKEN)

            user = self.credentials.get(session.user_id)
            if user is None or not user.is_active:
                raise AuthError(ErrorCode.USER_INACTIVE)
            return AuthContext(user=user, session_id=session_id, claims=check.claims or {})

    def change_password(
        self,
        auth: AuthContext | None,
        current_password: str | None,
        new_password: str | None,
        *,
        client: ClientInfo | None = None,
    ) -> int:
        """修改密码，返回被终止的其他会话数量。"""
        if auth is None:
            raise AuthError(ErrorCode.UNAUTHORIZED)
        if not current_password or not new_password:
            raise AuthError(ErrorCode.MISSING_FIELDS)

        with self._guard("change_password"):
            user = self.credentials.get(auth.user_id)
            if user is None:
                raise AuthError(ErrorCode.USER_NOT_FOUND)
            user_id = user.id
            if self.credentials.verify_credentials(user.email, current_password) is None:
                raise AuthError(ErrorCode.INVALID_PASSWORD)

            self.credentials.update_password(user_id, new_password)

            terminated = 0
            if self.settings.auth_terminate_other_sessions_on_password_change:
                terminated = self.sessions.terminate_all_except(user_id, auth.session_id)
            self._record(user_id, ActivityAction.PASSWORD_CHANGE, client, terminated_sessions=terminated)
            return terminated

    def get_profile(self, auth: AuthContext) -> dict[str, Any]:
        with self._guard("get_profile"):
            return sanitize_user(auth.user)

    def list_sessions(self, auth: AuthContext, user_id: UUID) -> list[dict[str, Any]]:
        """列出用户的有效会话（设备管理）。"""
        ensure_access(auth.user, user_id)
        with self._guard("list_sessions"):
            return [
                serialize_session(session, current_session_id=auth.session_id)
                for session in self.sessions.find_active_by_user_id(user_id)
            ]

    def revoke_session(self, auth: AuthContext, session_id: UUID, *, client: ClientInfo | None = None) -> bool:
        """强制终止指定会话。"""
        with self._guard("revoke_session"):
            session = self.sessions.get(session_id)
            if session is None:
                raise AuthError(ErrorCode.SESSION_NOT_FOUND)
            owner_id = session.user_id
            ensure_access(auth.user, owner_id)

            terminated = self.sessions.terminate_session(session_id)
            if terminated:
                self._record(owner_id, ActivityAction.SESSION_REVOKE, client, session_id=session_id, actor_id=auth.user_id)
            return terminated

    def revoke_other_sessions(
        self,
        auth: AuthContext,
        user_id: UUID,
        *,
        keep_session_id: UUID | None = None,
        client: ClientInfo | None = None,
    ) -> int:
        """下线用户其他设备；本人操作且未指定保留会话时保留当前会话。"""
        ensure_access(auth.user, user_id)
        if keep_session_id is None and str(user_id) == str(auth.user_id):
            keep_session_id = auth.session_id

        with self._guard("revoke_other_sessions"):
            count = self.sessions.terminate_all_except(user_id, keep_session_id)
            self._record(
                user_id,
                ActivityAction.SESSION_REVOKE,
                client,
                kept_session_id=keep_session_id,
                terminated_sessions=count,
                actor_id=auth.user_id,
            )
            return count

    def revoke_all_sessions(self, auth: AuthContext, user_id: UUID, *, client: ClientInfo | None = None) -> int:
        ensure_access(auth.user, user_id)
        with self._guard("revoke_all_sessions"):
            count = self.sessions.terminate_all_user_sessions(user_id)
            self._record(user_id, ActivityAction.SESSION_REVOKE, client, terminated_sessions=count, actor_id=auth.user_id)
            return count

    def set_user_status(
        self,
        auth: AuthContext,
        user_id: UUID,
        status: str,
        *,
        client: ClientInfo | None = None,
    ) -> tuple[dict[str, Any], int]:
        """管理员变更账号状态；非 active 状态会级联终止该用户全部会话。"""
        ensure_access(auth.user, required_role=UserRole.ADMIN)
        try:
            new_status = UserStatus(status)
        except ValueError:
            raise AuthError(ErrorCode.VALIDATION, details={"field": "status"}) from None

        with self._guard("set_user_status"):
            user = self.credentials.get(user_id)
            if user is None:
                raise AuthError(ErrorCode.USER_NOT_FOUND)
            previous = user.status
            self.credentials.set_status(user_id, new_status)

            terminated = 0
            if new_status != UserStatus.ACTIVE:
                terminated = self.sessions.terminate_all_user_sessions(user_id)
            self._record(
                user_id,
                ActivityAction.STATUS_CHANGE,
                client,
                before=previous,
                after=str(new_status),
                terminated_sessions=terminated,
                actor_id=auth.user_id,
            )
            return sanitize_user(user), terminated

    def list_activities(
        self,
        auth: AuthContext,
        user_id: UUID,
        *,
        action: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[dict[str, Any]], int]:
        ensure_access(auth.user, user_id)
        with self._guard("list_activities"):
            items, total = self.activity.list_for_user(user_id, action=action, page=page, page_size=page_size)
            return [
                {
                    "id": item.id,
                    "user_id": item.user_id,
                    "action": item.action,
                    "ip_address": item.ip_address,
                    "user_agent": item.user_agent,
                    "details": item.details,
                    "created_at": item.created_at,
                }
                for item in items
            ], total

    def cleanup_expired_sessions(self, auth: AuthContext) -> int:
        """管理员手动触发过期会话清理。"""
        ensure_access(auth.user, required_role=UserRole.ADMIN)
        with self._guard("cleanup_expired_sessions"):
            count = self.sessions.cleanup_expired_sessions()
            logger.info("expired sessions swept count=%s", count)
            return count
