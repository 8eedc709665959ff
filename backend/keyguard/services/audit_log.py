# keyguard/services/audit_log.py
"""
Журнал аудита подсистемы ключей: события ключей и попытки проверки прав.
Только добавление. Ошибка записи не прерывает основное действие,
но попадает в системный лог и счётчик write_failures.
"""
import logging
import uuid

from keyguard.config import AUDIT_QUERY_MAX_LIMIT
from keyguard.models import KeyEvent, KeyEventType, RequestContext, ValidationAttempt
from keyguard.services.system_logger import SystemLogger
from keyguard.utils.clock import Clock

logger = logging.getLogger(__name__)


class AuditLog:
    def __init__(self, repo, clock: Clock, system_logger: SystemLogger):
        self.repo = repo
        self.clock = clock
        self.system_logger = system_logger
        self.write_failures = 0

    async def _write_failed(self, what: str, e: Exception) -> None:
        self.write_failures += 1
        logger.error(f"Ошибка записи аудита ({what}): {e}")
        await self.system_logger.error("audit", f"Ошибка записи аудита: {what}", str(e))

    async def record_key_event(
        self, event_type: KeyEventType, key_id: str, context: RequestContext | None = None,
    ) -> KeyEvent | None:
        """Записать событие ключа. Возвращает None, если запись не удалась."""
        context = context or RequestContext()
        event = KeyEvent(
            id=str(uuid.uuid4()),
            event_type=event_type,
            key_id=key_id,
            performed_by=context.performed_by,
            client_ip=context.client_ip,
            user_agent=context.user_agent,
            created_at=self.clock.now(),
        )
        try:
            await self.repo.insert_key_event(event)
        except Exception as e:
            await self._write_failed(f"{event_type.value} {key_id}", e)
            return None
        logger.debug(f"Audit: {event_type.value} — {key_id}")
        return event

    async def record_attempt(
        self,
        user_id: str,
        success: bool,
        ip_address: str | None = None,
        user_agent: str | None = None,
        validation_id: str | None = None,
    ) -> ValidationAttempt | None:
        attempt = ValidationAttempt(
            id=str(uuid.uuid4()),
            user_id=user_id,
            timestamp=self.clock.now(),
            success=success,
            ip_address=ip_address,
            user_agent=user_agent,
            validation_id=validation_id,
        )
        try:
            await self.repo.insert_attempt(attempt)
        except Exception as e:
            await self._write_failed(f"validation attempt {user_id}", e)
            return None
        logger.debug(f"Audit: validation attempt — {user_id} (success={success})")
        return attempt

    async def query(self, limit: int = 50, event_type: KeyEventType | str | None = None) -> list[KeyEvent]:
        """Одна страница событий ключей, новые первыми."""
        limit = max(1, min(limit, AUDIT_QUERY_MAX_LIMIT))
        if isinstance(event_type, KeyEventType):
            event_type = event_type.value
        return await self.repo.list_key_events(limit, event_type)

    async def recent_attempts(self, limit: int = 50, user_id: str | None = None) -> list[ValidationAttempt]:
        limit = max(1, min(limit, AUDIT_QUERY_MAX_LIMIT))
        return await self.repo.list_attempts(limit, user_id)

    async def get_stats(self) -> dict:
        stats = await self.repo.stats(self.clock.now())
        stats["write_failures"] = self.write_failures
        return stats
