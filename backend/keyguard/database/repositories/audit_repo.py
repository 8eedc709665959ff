# keyguard/database/repositories/audit_repo.py
"""
Репозиторий аудита: события ключей и попытки проверки прав через asyncpg.
Только INSERT и SELECT: записи никогда не изменяются и не удаляются.
"""
import logging
import uuid
from datetime import datetime, timedelta

import asyncpg

from keyguard.models import KeyEvent, ValidationAttempt

logger = logging.getLogger(__name__)


class AuditRepository:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def insert_key_event(self, event: KeyEvent) -> None:
        await self.pool.execute(
            "INSERT INTO key_events (id, event_type, key_id, performed_by, client_ip, user_agent, created_at) "
            "VALUES ($1, $2, $3, $4, $5, $6, $7)",
            uuid.UUID(event.id), event.event_type.value, event.key_id,
            event.performed_by, event.client_ip, event.user_agent, event.created_at,
        )

    async def list_key_events(self, limit: int, event_type: str | None = None) -> list[KeyEvent]:
        if event_type:
            rows = await self.pool.fetch(
                "SELECT * FROM key_events WHERE event_type = $1 ORDER BY created_at DESC LIMIT $2",
                event_type, limit,
            )
        else:
            rows = await self.pool.fetch(
                "SELECT * FROM key_events ORDER BY created_at DESC LIMIT $1", limit,
            )
        return [KeyEvent(**{**dict(r), "id": str(r["id"])}) for r in rows]

    async def insert_attempt(self, attempt: ValidationAttempt) -> None:
        await self.pool.execute(
            "INSERT INTO validation_attempts (id, user_id, timestamp, success, ip_address, user_agent, validation_id) "
            "VALUES ($1, $2, $3, $4, $5, $6, $7)",
            uuid.UUID(attempt.id), attempt.user_id, attempt.timestamp, attempt.success,
            attempt.ip_address, attempt.user_agent, attempt.validation_id,
        )

    async def window_timestamps(self, user_id: str, since: datetime) -> list[datetime]:
        """Время попыток пользователя после since, по возрастанию."""
        rows = await self.pool.fetch(
            "SELECT timestamp FROM validation_attempts "
            "WHERE user_id = $1 AND timestamp > $2 ORDER BY timestamp",
            user_id, since,
        )
        return [r["timestamp"] for r in rows]

    async def list_attempts(self, limit: int, user_id: str | None = None) -> list[ValidationAttempt]:
        if user_id:
            rows = await self.pool.fetch(
                "SELECT * FROM validation_attempts WHERE user_id = $1 ORDER BY timestamp DESC LIMIT $2",
                user_id, limit,
            )
        else:
            rows = await self.pool.fetch(
                "SELECT * FROM validation_attempts ORDER BY timestamp DESC LIMIT $1", limit,
            )
        return [ValidationAttempt(**{**dict(r), "id": str(r["id"])}) for r in rows]

    async def stats(self, now: datetime) -> dict:
        """Агрегированная статистика."""
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_ago = now - timedelta(days=7)
        async with self.pool.acquire() as conn:
            total_attempts = await conn.fetchval("SELECT COUNT(*) FROM validation_attempts")
            failed_today = await conn.fetchval(
                "SELECT COUNT(*) FROM validation_attempts WHERE NOT success AND timestamp >= $1", today_start,
            )
            unique_users_week = await conn.fetchval(
                "SELECT COUNT(DISTINCT user_id) FROM validation_attempts WHERE timestamp >= $1", week_ago,
            )
            key_events_total = await conn.fetchval("SELECT COUNT(*) FROM key_events")
        return {
            "total_attempts": total_attempts,
            "failed_today": failed_today,
            "unique_users_week": unique_users_week,
            "key_events_total": key_events_total,
        }
