"""服务层能力导出集合。"""

from cwa_api.services.activity import ActivityLog
from cwa_api.services.auth_flow import AuthContext, AuthResult, AuthService, ClientInfo, RefreshResult
from cwa_api.services.authorization import can_access, ensure_access
from cwa_api.services.credentials import CredentialStore, normalize_email
from cwa_api.services.session_registry import SessionRegistry

__all__ = [
    "ActivityLog",
    "AuthContext",
    "AuthResult",
    "AuthService",
    "ClientInfo",
    "CredentialStore",
    "RefreshResult",
    "SessionRegistry",
    "can_access",
    "ensure_access",
    "normalize_email",
]
