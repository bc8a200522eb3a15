"""本地账号凭据存储。"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from cwa_api.core.passwords import hash_password, verify_password
from cwa_api.models.base import utc_now
from cwa_api.models.enums import UserRole, UserStatus
from cwa_api.models.user import User


# 邮箱不存在时仍执行一次完整哈希校验，使响应耗时与“密码错误”一致。
_DUMMY_PASSWORD_HASH: str | None = None


def normalize_email(email: str) -> str:
    """统一邮箱格式（去空白 + 小写）。"""
    return email.strip().lower()


def _dummy_hash() -> str:
    global _DUMMY_PASSWORD_HASH
    if _DUMMY_PASSWORD_HASH is None:
        _DUMMY_PASSWORD_HASH = hash_password(uuid4().hex)
    return _DUMMY_PASSWORD_HASH


class CredentialStore:
    """用户记录读写与口令校验，绝不向外暴露口令哈希。"""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, user_id: UUID) -> User | None:
        return self.db.get(User, user_id)

    def find_by_email(self, email: str) -> User | None:
        return self.db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()

    def create_user(
        self,
        *,
        email: str,
        password: str,
        name: str,
        role: str = UserRole.USER,
        status: str = UserStatus.ACTIVE,
    ) -> User:
        """创建用户；邮箱重复时由数据库唯一约束抛出 IntegrityError。"""
        user = User(
            id=uuid4(),
            email=normalize_email(email),
            name=name.strip(),
            password_hash=hash_password(password),
            role=role,
            status=status,
            last_login_at=None,
        )
        self.db.add(user)
        self.db.commit()
        return user

    def verify_credentials(self, email: str, password: str) -> User | None:
        """校验邮箱与口令，任一不匹配均返回 None。"""
        user = self.find_by_email(email)
        if user is None:
            verify_password(password, _dummy_hash())
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    def update_password(self, user_id: UUID, new_password: str) -> None:
        """重新哈希并保存口令，不影响已有会话。"""
        self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(password_hash=hash_password(new_password), updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def update_last_login(self, user_id: UUID) -> None:
        self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(last_login_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def set_status(self, user_id: UUID, status: str) -> None:
        self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(status=status, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
