from .auth import router as auth_router
from .keys import router as keys_router
from .audit import router as audit_router
from .health import router as health_router

__all__ = ["auth_router", "keys_router", "audit_router", "health_router"]
