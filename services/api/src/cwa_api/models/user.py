"""用户模型。"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from cwa_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from cwa_api.models.enums import UserRole, UserStatus


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """后台账号实体。"""

    __tablename__ = "users"

    # 登录邮箱，写入前统一小写，系统内全局唯一。
    email: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    # 展示名。
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # 口令哈希，不存明文，也不出现在任何响应中。
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    # 角色（admin/user）。
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=UserRole.USER)
    # 账号状态（active/inactive/suspended）。
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=UserStatus.ACTIVE)
    # 最近一次登录时间。
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
