# keyguard/auth/dependencies.py
from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
import logging

from keyguard.config import SESSION_TOKEN_HEADER
from keyguard.errors import InternalError, TooManyRequests
from keyguard.models import Principal, RequestContext

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request):
    return request.app.state.services


def get_client_ip(request: Request) -> str:
    """Извлечь реальный IP клиента (X-Real-IP от nginx или client.host)."""
    return (
        request.headers.get("x-real-ip")
        or request.headers.get("x-forwarded-for", "").split(",")[0].strip()
        or (request.client.host if request.client else "unknown")
    )


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "unknown")


def request_context(request: Request, principal: Principal | None = None) -> RequestContext:
    return RequestContext(
        performed_by=principal.user_id if principal else None,
        client_ip=get_client_ip(request),
        user_agent=get_user_agent(request),
    )


async def authenticate(token: str, response: Response, services) -> Principal:
    """Проверка токена и выдача замены после ротации"""
    try:
        principal = await services.tokens.decode(token)
    except jwt.ExpiredSignatureError:
        logger.warning("Попытка использования истёкшего токена")
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        logger.warning("Попытка использования невалидного токена")
        raise HTTPException(status_code=401, detail="Invalid token")

    replacement = services.sessions.replacement_for(principal.jti)
    if replacement:
        response.headers[SESSION_TOKEN_HEADER] = replacement
    logger.debug(f"Авторизован пользователь: {principal.user_id}")
    return principal


async def get_current_principal(
    response: Response,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    services=Depends(get_services),
) -> Principal:
    """Получение текущего пользователя из токена сессии"""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return await authenticate(credentials.credentials, response, services)


async def require_admin(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    services=Depends(get_services),
) -> Principal:
    """Проверка прав администратора (результат кэшируется на ADMIN_GUARD_CACHE_TTL)"""
    validation = services.validation_cache.get(principal.user_id)
    if validation is None:
        try:
            validation = await services.admin_validator.validate(
                principal.user_id, get_client_ip(request), get_user_agent(request),
            )
        except TooManyRequests as e:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many validation attempts. Please try again later.",
                headers={"Retry-After": str(e.retry_after)},
            )
        except InternalError:
            raise HTTPException(status_code=500, detail="Internal server error")
        services.validation_cache.set(principal.user_id, validation)

    if not validation.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return principal
