"""用户行为日志服务。"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cwa_api.models.activity import UserActivity
from cwa_api.models.base import utc_now

logger = logging.getLogger(__name__)


class ActivityLog:
    """只追加的安全行为记录。

    写入失败只记日志并回滚本次写入，不影响调用方的主流程。
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        *,
        user_id: UUID,
        action: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """写入一条行为记录，返回是否写入成功。"""
        try:
            self.db.add(
                UserActivity(
                    user_id=user_id,
                    action=str(action),
                    ip_address=ip_address,
                    user_agent=user_agent,
                    details=details,
                    created_at=utc_now(),
                )
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("activity write failed user_id=%s action=%s", user_id, action)
            return False
        return True

    def list_for_user(
        self,
        user_id: UUID,
        *,
        action: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[UserActivity], int]:
        """按时间倒序分页查询用户行为记录，返回 (当前页, 总数)。"""
        stmt = select(UserActivity).where(UserActivity.user_id == user_id)
        if action:
            stmt = stmt.where(UserActivity.action == action)

        total = self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        items = (
            self.db.execute(
                stmt.order_by(UserActivity.created_at.desc(), UserActivity.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            .scalars()
            .all()
        )
        return list(items), int(total)
