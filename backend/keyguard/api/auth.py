# keyguard/api/auth.py
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError
import logging

from keyguard.auth.dependencies import (
    authenticate, bearer_scheme, get_client_ip, get_current_principal, get_services, get_user_agent,
)
from keyguard.config import SESSION_TOKEN_HEADER
from keyguard.errors import InternalError, TooManyRequests, Unauthenticated
from keyguard.models import AdminValidationRequest, AdminValidationResponse, Principal, RateLimitedResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post(
    "/validate-admin",
    response_model=AdminValidationResponse,
    responses={429: {"model": RateLimitedResponse}},
)
async def validate_admin(
    request: Request,
    response: Response,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    services=Depends(get_services),
):
    """Серверная проверка прав администратора"""
    raw = await request.body()
    try:
        body = AdminValidationRequest.model_validate_json(raw or b"{}")
    except ValidationError:
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    # Личность берётся из сессии; токен в теле допустим только как подписанный токен сессии
    token = credentials.credentials if credentials else body.token
    if not token:
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    principal = await authenticate(token, response, services)

    ip = get_client_ip(request)
    user_agent = get_user_agent(request)
    try:
        validation = await services.admin_validator.validate(principal.user_id, ip, user_agent)
    except Unauthenticated:
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    except TooManyRequests as e:
        logger.warning(f"Превышен лимит проверок прав: {principal.user_id} ({ip})")
        return JSONResponse(
            status_code=429,
            content=RateLimitedResponse(
                error="Too many validation attempts. Please try again later.",
                retry_after=e.retry_after,
            ).model_dump(by_alias=True),
            headers={"Retry-After": str(e.retry_after)},
        )
    except InternalError:
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return AdminValidationResponse(
        is_admin=validation.is_admin,
        user_id=validation.user_id,
        timestamp=int(validation.timestamp.timestamp() * 1000),
        validation_id=validation.validation_id,
    )


@router.post("/session/refresh")
async def refresh_session(
    response: Response,
    principal: Principal = Depends(get_current_principal),
    services=Depends(get_services),
):
    """Перевыпустить токен сессии текущим ключом"""
    token = await services.session_refresher.refresh_current_session(principal)
    if token is None:
        raise HTTPException(status_code=500, detail="Session refresh failed")
    response.headers[SESSION_TOKEN_HEADER] = token
    return {"access_token": token, "token_type": "bearer"}


@router.post("/logout")
async def logout(
    principal: Principal = Depends(get_current_principal),
    services=Depends(get_services),
):
    """Отзыв токена текущей сессии"""
    services.sessions.revoke(principal.jti, principal.exp)
    logger.info(f"Сессия {principal.user_id} завершена")
    return {"message": "Logged out"}
