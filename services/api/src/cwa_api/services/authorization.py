"""访问策略。

所有受保护操作统一调用 can_access 判定，避免在各路由里重复拼写
“是否本人 / 是否管理员”的判断导致规则不一致。
"""

from uuid import UUID

from cwa_api.exceptions import AuthError, ErrorCode
from cwa_api.models.enums import UserRole


def can_access(actor, resource_owner_id: UUID | None = None, required_role: str | None = None) -> bool:
    """判断 actor 能否访问资源。

    判定规则：
    1. 管理员可访问全部资源。
    2. 指定 required_role 时，actor 必须持有该角色。
    3. 指定 resource_owner_id 时，actor 必须是资源所有者。
    """
    if actor is None:
        return False
    if actor.role == UserRole.ADMIN:
        return True
    if required_role is not None and actor.role != required_role:
        return False
    if resource_owner_id is not None and str(actor.id) != str(resource_owner_id):
        return False
    return True


def ensure_access(actor, resource_owner_id: UUID | None = None, required_role: str | None = None) -> None:
    """不满足 can_access 时抛出 403。"""
    if not can_access(actor, resource_owner_id, required_role):
        raise AuthError(ErrorCode.FORBIDDEN)
