# keyguard/utils/clock.py
"""Источник времени. Сервисы получают его явно, чтобы тесты управляли временем."""
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


system_clock = SystemClock()
