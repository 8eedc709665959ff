# keyguard/api/keys.py
"""API управления ключами подписи (admin only)."""
from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
import logging

from keyguard.auth.dependencies import get_services, request_context, require_admin
from keyguard.config import AUDIT_QUERY_MAX_LIMIT, SESSION_TOKEN_HEADER
from keyguard.errors import ConcurrentKeyUpdate, DuplicateKeyId, UnknownKey
from keyguard.models import (
    KeyEvent, KeyEventType, Principal, SigningKeyCreate, SigningKeyResponse, SigningKeyStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/keys", tags=["keys"])


@router.get("/status", response_model=list[SigningKeyStatus])
async def check_rotation_status(
    current_user: Principal = Depends(require_admin),
    services=Depends(get_services),
):
    """Состояние ротации всех ключей"""
    return await services.key_store.check_rotation_status()


@router.get("", response_model=list[SigningKeyResponse])
async def list_keys(
    current_user: Principal = Depends(require_admin),
    services=Depends(get_services),
):
    """Список ключей (без материала)"""
    now = services.clock.now()
    return [SigningKeyResponse.from_key(k, now) for k in await services.key_store.list_keys()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_key(
    key_data: SigningKeyCreate,
    request: Request,
    current_user: Principal = Depends(require_admin),
    services=Depends(get_services),
):
    """Добавить ключ подписи"""
    try:
        key_id = await services.key_store.add_key(
            key_data.key_id,
            key_data.algorithm,
            timedelta(days=key_data.rotation_frequency_days),
            key_data.make_current,
            request_context(request, current_user),
        )
    except DuplicateKeyId as e:
        raise HTTPException(status_code=409, detail=f"Ключ {e.key_id} уже существует")
    except ConcurrentKeyUpdate:
        raise HTTPException(status_code=409, detail="Набор ключей изменён параллельно, повторите запрос")
    return {"key_id": key_id}


@router.post("/{key_id}/rotate")
async def rotate_key(
    key_id: str,
    request: Request,
    response: Response,
    current_user: Principal = Depends(require_admin),
    services=Depends(get_services),
):
    """Ротировать ключ: новый материал под тем же key_id"""
    try:
        await services.key_store.rotate_key(key_id, request_context(request, current_user), session=current_user)
    except UnknownKey:
        raise HTTPException(status_code=404, detail=f"Ключ {key_id} не найден")
    except ConcurrentKeyUpdate:
        raise HTTPException(status_code=409, detail="Набор ключей изменён параллельно, повторите запрос")

    replacement = services.sessions.replacement_for(current_user.jti)
    if replacement:
        response.headers[SESSION_TOKEN_HEADER] = replacement
    return {"success": True, "key_id": key_id}


@router.post("/{key_id}/make-current")
async def make_current(
    key_id: str,
    request: Request,
    current_user: Principal = Depends(require_admin),
    services=Depends(get_services),
):
    """Назначить ключ текущим"""
    try:
        await services.key_store.make_current(key_id, request_context(request, current_user))
    except UnknownKey:
        raise HTTPException(status_code=404, detail=f"Ключ {key_id} не найден")
    except ConcurrentKeyUpdate:
        raise HTTPException(status_code=409, detail="Набор ключей изменён параллельно, повторите запрос")
    return {"success": True, "key_id": key_id}


@router.get("/events", response_model=list[KeyEvent])
async def get_key_events(
    limit: int = Query(50, ge=1, le=AUDIT_QUERY_MAX_LIMIT),
    event_type: KeyEventType | None = Query(None),
    current_user: Principal = Depends(require_admin),
    services=Depends(get_services),
):
    """События ключей, новые первыми"""
    return await services.audit.query(limit, event_type)
