from .sessions import SessionRegistry, SessionInfo
from .tokens import TokenService
from .dependencies import get_current_principal, require_admin, get_services, bearer_scheme

__all__ = [
    "SessionRegistry",
    "SessionInfo",
    "TokenService",
    "get_current_principal",
    "require_admin",
    "get_services",
    "bearer_scheme",
]
