from .signing_key import (
    KeyAlgorithm, RetiredSecret, SigningKey, SigningKeyStatus, SigningKeyCreate, SigningKeyResponse,
)
from .audit import KeyEvent, KeyEventType, ValidationAttempt, RequestContext
from .user import (
    Principal,
    AdminValidationRequest, AdminValidationResponse, RateLimitedResponse,
)

__all__ = [
    "KeyAlgorithm", "RetiredSecret", "SigningKey", "SigningKeyStatus", "SigningKeyCreate", "SigningKeyResponse",
    "KeyEvent", "KeyEventType", "ValidationAttempt", "RequestContext",
    "Principal",
    "AdminValidationRequest", "AdminValidationResponse", "RateLimitedResponse",
]
