"""ORM 模型导出集合。"""

from cwa_api.models.activity import UserActivity
from cwa_api.models.auth import UserSession
from cwa_api.models.user import User

__all__ = [
    "User",
    "UserActivity",
    "UserSession",
]
