# keyguard/api/audit.py
from fastapi import APIRouter, Depends, Query
import logging

from keyguard.auth.dependencies import get_services, require_admin
from keyguard.config import AUDIT_QUERY_MAX_LIMIT
from keyguard.models import Principal, ValidationAttempt

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/attempts", response_model=list[ValidationAttempt])
async def get_attempts(
    limit: int = Query(50, ge=1, le=AUDIT_QUERY_MAX_LIMIT),
    user_id: str | None = Query(None),
    current_user: Principal = Depends(require_admin),
    services=Depends(get_services),
):
    """Попытки проверки прав (admin only)."""
    return await services.audit.recent_attempts(limit, user_id)


@router.get("/stats")
async def get_audit_stats(
    current_user: Principal = Depends(require_admin),
    services=Depends(get_services),
):
    """Статистика аудита (admin only)."""
    return await services.audit.get_stats()


@router.get("/system-log")
async def get_system_log(
    limit: int = Query(50, ge=1, le=AUDIT_QUERY_MAX_LIMIT),
    level: str | None = None,
    source: str | None = None,
    current_user: Principal = Depends(require_admin),
    services=Depends(get_services),
):
    """Системный лог: уведомления планировщика и сбои аудита."""
    return await services.system_logger.get_logs(limit=limit, level=level, source=source)
