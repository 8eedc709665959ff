# keyguard/services/rate_limiter.py
"""
Скользящее окно попыток проверки прав на пользователя.
Считаются все записанные попытки (успешные и нет) за последние window_minutes,
включая отклонённые самим лимитом.
"""
import asyncio
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta

from keyguard.config import MAX_ATTEMPTS, WINDOW_MINUTES, RATE_LIMITER_FAIL_OPEN
from keyguard.utils.clock import Clock

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    limited: bool
    retry_after: int = 0  # секунд до момента, когда следующая попытка пройдёт


class RateLimiter:
    def __init__(self, attempts_repo, clock: Clock, fail_open: bool = RATE_LIMITER_FAIL_OPEN):
        self.repo = attempts_repo
        self.clock = clock
        self.fail_open = fail_open
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def guard(self, user_id: str):
        """
        Сериализует проверку лимита и запись попытки для одного пользователя.
        Два параллельных запроса на границе лимита не увидят оба «не ограничен».
        """
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._holders[user_id] = self._holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if self._holders[user_id] == 0:
                del self._holders[user_id]
                del self._locks[user_id]

    async def check(
        self, user_id: str, max_attempts: int = MAX_ATTEMPTS, window_minutes: int = WINDOW_MINUTES,
    ) -> RateLimitDecision:
        now = self.clock.now()
        window = timedelta(minutes=window_minutes)
        try:
            stamps = await self.repo.window_timestamps(user_id, now - window)
        except Exception as e:
            logger.error(f"Ошибка проверки rate limit для {user_id}: {e}")
            if self.fail_open:
                return RateLimitDecision(limited=False)
            return RateLimitDecision(limited=True, retry_after=int(window.total_seconds()))

        count = len(stamps)
        if count < max_attempts:
            return RateLimitDecision(limited=False)

        # Отказ тоже записывается в окно, поэтому из окна должны выйти
        # count - max_attempts + 2 самые ранние попытки
        index = count - max_attempts + 1
        retry_after = window.total_seconds()
        if index < count:
            retry_after = (stamps[index] + window - now).total_seconds()
        logger.warning(f"Rate limit: {user_id}: {count} попыток за {window_minutes} мин")
        return RateLimitDecision(limited=True, retry_after=max(1, math.ceil(retry_after)))

    async def is_rate_limited(
        self, user_id: str, max_attempts: int = MAX_ATTEMPTS, window_minutes: int = WINDOW_MINUTES,
    ) -> bool:
        return (await self.check(user_id, max_attempts, window_minutes)).limited
