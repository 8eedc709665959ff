# keyguard/models/user.py
from pydantic import BaseModel, ConfigDict, Field


class Principal(BaseModel):
    """Аутентифицированный пользователь текущей сессии"""
    user_id: str
    jti: str
    kid: str
    token: str
    exp: float


class AdminValidationRequest(BaseModel):
    # Токен необязателен: личность берётся из сессии
    model_config = ConfigDict(extra="forbid")

    token: str | None = None


class AdminValidationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_admin: bool = Field(alias="isAdmin")
    user_id: str = Field(alias="userId")
    timestamp: int  # миллисекунды Unix epoch
    validation_id: str = Field(alias="validationId")


class RateLimitedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error: str
    retry_after: int = Field(alias="retryAfter")
