# keyguard/auth/sessions.py
"""
In-memory реестр сессий: активные токены, выданные им замены
и отозванные jti. Thread-safe через Lock.
"""
import threading
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class SessionInfo:
    jti: str
    user_id: str
    kid: str
    key_generation: str  # отпечаток материала ключа, которым подписан токен
    exp: float
    replacement: str | None = None


class SessionRegistry:
    def __init__(self):
        self._sessions: dict[str, SessionInfo] = {}
        self._revoked: dict[str, float] = {}  # jti -> exp_timestamp
        self._lock = threading.Lock()

    def register(self, info: SessionInfo) -> None:
        with self._lock:
            self._sessions.setdefault(info.jti, info)

    def active(self) -> list[SessionInfo]:
        with self._lock:
            return list(self._sessions.values())

    def set_replacement(self, jti: str, token: str) -> None:
        with self._lock:
            info = self._sessions.get(jti)
            if info is not None:
                info.replacement = token

    def replacement_for(self, jti: str) -> str | None:
        with self._lock:
            info = self._sessions.get(jti)
            return info.replacement if info else None

    def revoke(self, jti: str, exp: float) -> None:
        """Отозвать токен. exp: Unix timestamp истечения."""
        with self._lock:
            self._revoked[jti] = exp
            self._sessions.pop(jti, None)
            logger.debug(f"Токен {jti[:8]}... отозван")

    def is_revoked(self, jti: str) -> bool:
        with self._lock:
            return jti in self._revoked

    def cleanup(self, now: float) -> int:
        """Удалить истёкшие сессии и отзывы. Возвращает количество удалённых."""
        with self._lock:
            expired = [jti for jti, info in self._sessions.items() if info.exp < now]
            for jti in expired:
                del self._sessions[jti]
            expired_revoked = [jti for jti, exp in self._revoked.items() if exp < now]
            for jti in expired_revoked:
                del self._revoked[jti]
        removed = len(expired) + len(expired_revoked)
        if removed:
            logger.info(f"Sessions cleanup: удалено {removed} истёкших записей")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
