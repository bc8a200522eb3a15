"""领域枚举定义。"""

from enum import StrEnum


class UserRole(StrEnum):
    """用户角色。"""

    ADMIN = "admin"  # 平台管理员，可管理其他用户与会话。
    USER = "user"  # 普通用户，仅能管理自身资源。


class UserStatus(StrEnum):
    """用户状态。"""

    ACTIVE = "active"  # 正常可登录。
    INACTIVE = "inactive"  # 已停用。
    SUSPENDED = "suspended"  # 被管理员封禁。


class SessionStatus(StrEnum):
    """登录会话状态，只能由 active 单向流转，终态不可恢复。"""

    ACTIVE = "active"  # 会话有效，可刷新令牌。
    TERMINATED = "terminated"  # 主动登出或被强制下线。
    EXPIRED = "expired"  # 超过 expires_at 后被动过期。


class ActivityAction(StrEnum):
    """安全相关行为类型。"""

    LOGIN = "login"
    REGISTER = "register"
    LOGOUT = "logout"
    TOKEN_REFRESH = "token_refresh"
    PASSWORD_CHANGE = "password_change"
    SESSION_REVOKE = "session_revoke"  # 终止指定会话或批量下线其他设备。
    TOKEN_REUSE = "token_reuse"  # 已轮换的刷新令牌被再次使用。
    STATUS_CHANGE = "status_change"  # 管理员变更账号状态。
