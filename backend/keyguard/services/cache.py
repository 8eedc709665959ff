# keyguard/services/cache.py
import threading
import logging

from keyguard.config import ADMIN_GUARD_CACHE_TTL
from keyguard.utils.clock import Clock

logger = logging.getLogger(__name__)


class ValidationCache:
    """
    Кэш результатов проверки прав для админских эндпоинтов.
    Эндпоинт validate-admin кэш не использует: там каждый запрос является отдельным решением.
    """

    def __init__(self, clock: Clock, ttl: int = ADMIN_GUARD_CACHE_TTL):
        self.clock = clock
        self.ttl = ttl
        self._cache: dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str):
        """Получить результат из кэша, если он не устарел"""
        now = self.clock.now().timestamp()
        with self._lock:
            entry = self._cache.get(user_id)
            if entry is None:
                return None
            if now - entry["timestamp"] > self.ttl:
                logger.debug(f"Удаление устаревшей записи из кэша: {user_id}")
                del self._cache[user_id]
                return None
            return entry["validation"]

    def set(self, user_id: str, validation) -> None:
        with self._lock:
            self._cache[user_id] = {
                "validation": validation,
                "timestamp": self.clock.now().timestamp(),
            }
