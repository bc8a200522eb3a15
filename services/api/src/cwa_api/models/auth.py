"""登录会话模型。"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cwa_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from cwa_api.models.enums import SessionStatus


class UserSession(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """一次登录（一台设备）对应一条会话记录。"""

    __tablename__ = "user_sessions"
    __table_args__ = (Index("ix_user_sessions_user_status", "user_id", "status"),)

    # 所属用户 ID（逻辑关联 users.id，不声明数据库外键）。
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # 当前访问令牌，按原串精确查找。
    access_token: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    # 当前刷新令牌，轮换时原地覆盖。
    refresh_token: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    # 客户端 IP。
    ip_address: Mapped[str | None] = mapped_column(String(64))
    # 客户端 User-Agent。
    user_agent: Mapped[str | None] = mapped_column(Text)
    # 会话过期时间，决定刷新令牌可用窗口。
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # 会话状态（active/terminated/expired）。
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=SessionStatus.ACTIVE)
