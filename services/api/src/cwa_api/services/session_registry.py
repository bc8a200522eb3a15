"""登录会话登记簿。

每台设备一次登录对应一行会话，是“刷新令牌是否仍可用”的唯一依据。
查询未命中返回 None 或空列表；写操作各自提交，存储异常原样抛给调用方。
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from cwa_api.models.auth import UserSession
from cwa_api.models.base import as_utc, utc_now
from cwa_api.models.enums import SessionStatus

# update 仅允许改写令牌与过期时间相关字段。
_ROTATABLE_FIELDS = frozenset({"access_token", "refresh_token", "expires_at", "ip_address", "user_agent"})


class SessionRegistry:
    """会话持久化与批量下线。"""

    def __init__(self, db: Session) -> None:
        self.db = db

    def create(
        self,
        *,
        user_id: UUID,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
        session_id: UUID | None = None,
    ) -> UUID:
        """新建有效会话；令牌唯一性由数据库约束兜底。"""
        if as_utc(expires_at) <= utc_now():
            raise ValueError("session expires_at must be in the future")

        session = UserSession(
            id=session_id or uuid4(),
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=expires_at,
            status=SessionStatus.ACTIVE,
            created_at=utc_now(),
        )
        new_id = session.id
        self.db.add(session)
        self.db.commit()
        return new_id

    def get(self, session_id: UUID) -> UserSession | None:
        return self.db.get(UserSession, session_id)

    def find_by_token(self, token: str) -> UserSession | None:
        """按访问令牌原串查找会话。"""
        return self.db.execute(select(UserSession).where(UserSession.access_token == token)).scalar_one_or_none()

    def find_by_refresh_token(self, token: str) -> UserSession | None:
        """按刷新令牌原串查找会话。"""
        return self.db.execute(select(UserSession).where(UserSession.refresh_token == token)).scalar_one_or_none()

    def find_active_by_user_id(self, user_id: UUID) -> list[UserSession]:
        """列出用户当前有效（未终止且未过期）的会话，最新在前。"""
        stmt = (
            select(UserSession)
            .where(UserSession.user_id == user_id)
            .where(UserSession.status == SessionStatus.ACTIVE)
            .where(UserSession.expires_at > utc_now())
            .order_by(UserSession.created_at.desc(), UserSession.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def update(
        self,
        session_id: UUID,
        fields: Mapping[str, Any],
        *,
        expected_refresh_token: str | None = None,
    ) -> bool:
        """原地改写令牌与过期时间。

        传入 expected_refresh_token 时按“比较并交换”执行：只有当前刷新令牌
        仍等于该值且会话有效时才写入，并发轮换中只有一方成功。
        """
        unknown = set(fields) - _ROTATABLE_FIELDS
        if unknown:
            raise ValueError(f"unsupported session fields: {sorted(unknown)}")

        stmt = (
            update(UserSession)
            .where(UserSession.id == session_id)
            .values(**fields, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if expected_refresh_token is not None:
            stmt = stmt.where(UserSession.refresh_token == expected_refresh_token).where(
                UserSession.status == SessionStatus.ACTIVE
            )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount == 1

    def _transition(self, *criteria, target: SessionStatus) -> int:
        # 只迁移 active 行，终态不会被改写。
        stmt = (
            update(UserSession)
            .where(UserSession.status == SessionStatus.ACTIVE, *criteria)
            .values(status=target, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount or 0

    def terminate_session(self, session_id: UUID) -> bool:
        """终止单个会话，重复调用不报错；返回本次是否发生状态变化。"""
        return self._transition(UserSession.id == session_id, target=SessionStatus.TERMINATED) == 1

    def mark_expired(self, session_id: UUID) -> bool:
        return self._transition(UserSession.id == session_id, target=SessionStatus.EXPIRED) == 1

    def terminate_all_except(self, user_id: UUID, except_session_id: UUID | None = None) -> int:
        """终止用户除指定会话外的全部有效会话，返回影响行数。"""
        criteria = [UserSession.user_id == user_id]
        if except_session_id is not None:
            criteria.append(UserSession.id != except_session_id)
        return self._transition(*criteria, target=SessionStatus.TERMINATED)

    def terminate_all_user_sessions(self, user_id: UUID) -> int:
        return self._transition(UserSession.user_id == user_id, target=SessionStatus.TERMINATED)

    def cleanup_expired_sessions(self, now: datetime | None = None) -> int:
        """将已过期但仍为 active 的会话标记为 expired，可重复并发执行。"""
        cutoff = now or utc_now()
        return self._transition(UserSession.expires_at <= cutoff, target=SessionStatus.EXPIRED)
