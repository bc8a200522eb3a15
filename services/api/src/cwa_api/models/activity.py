"""用户行为日志模型。"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from cwa_api.models.base import Base, UUIDPrimaryKeyMixin


class UserActivity(Base, UUIDPrimaryKeyMixin):
    """安全相关行为记录，只追加不修改。"""

    __tablename__ = "user_activities"

    # 行为所属用户 ID。
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # 行为标识，例如 login/logout/token_refresh。
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # 客户端 IP。
    ip_address: Mapped[str | None] = mapped_column(String(64))
    # 客户端 User-Agent。
    user_agent: Mapped[str | None] = mapped_column(Text)
    # 附加信息。
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON().with_variant(JSONB(), "postgresql"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
