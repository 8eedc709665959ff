# keyguard/services/system_logger.py
"""
Системный лог: события, на которые должен обратить внимание оператор
(просроченные ключи, сбои записи аудита, ошибки планировщика).
Хранение: PostgreSQL через asyncpg, либо кольцевой буфер в памяти.
"""
from collections import deque
import logging

import asyncpg

from keyguard.config import SYSTEM_LOG_MEMORY_SIZE
from keyguard.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)


class SystemLogger:
    def __init__(
        self,
        pool: asyncpg.Pool | None = None,
        memory_size: int = SYSTEM_LOG_MEMORY_SIZE,
        clock: Clock = system_clock,
    ):
        self.pool = pool
        self.clock = clock
        self.entries: deque[dict] = deque(maxlen=memory_size)

    async def log(self, level: str, source: str, message: str, details: str | None = None) -> None:
        """Записать событие в system_log."""
        timestamp = self.clock.now()
        try:
            if self.pool is None:
                self.entries.append({
                    "timestamp": timestamp,
                    "level": level,
                    "source": source,
                    "message": message,
                    "details": details,
                })
                return
            await self.pool.execute(
                "INSERT INTO system_log (timestamp, level, source, message, details) VALUES ($1, $2, $3, $4, $5)",
                timestamp, level, source, message, details,
            )
        except Exception as e:
            logger.error(f"Ошибка записи system_log: {e}")

    async def info(self, source: str, message: str, details: str | None = None) -> None:
        await self.log("info", source, message, details)

    async def warning(self, source: str, message: str, details: str | None = None) -> None:
        await self.log("warning", source, message, details)

    async def error(self, source: str, message: str, details: str | None = None) -> None:
        await self.log("error", source, message, details)

    async def get_logs(self, limit: int = 50, level: str | None = None, source: str | None = None) -> list[dict]:
        """Последние записи, новые первыми."""
        if self.pool is None:
            items = [
                e for e in reversed(self.entries)
                if (not level or e["level"] == level) and (not source or e["source"] == source)
            ]
            return items[:limit]

        conditions = []
        params = []
        if level:
            params.append(level)
            conditions.append(f"level = ${len(params)}")
        if source:
            params.append(source)
            conditions.append(f"source = ${len(params)}")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await self.pool.fetch(
            f"SELECT timestamp, level, source, message, details "
            f"FROM system_log {where} ORDER BY timestamp DESC LIMIT ${len(params) + 1}",
            *params, limit,
        )
        return [dict(r) for r in rows]
