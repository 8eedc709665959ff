# keyguard/api/health.py
from fastapi import APIRouter, Depends
import logging

from keyguard.auth.dependencies import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health_check(services=Depends(get_services)):
    """Проверка состояния API"""
    current = await services.key_store.current_key()
    return {
        "status": "ok" if current else "degraded",
        "timestamp": services.clock.now().isoformat(),
        "current_key": current.key_id if current else None,
        "scheduler": {
            "running": services.scheduler.running,
            "state": services.scheduler.state.value,
        },
        "active_sessions": len(services.sessions),
    }
