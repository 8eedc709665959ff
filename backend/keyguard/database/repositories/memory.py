# keyguard/database/repositories/memory.py
"""
In-memory реализации репозиториев (KEYGUARD_STORAGE=memory и тесты).
Интерфейс совпадает с asyncpg-репозиториями.
"""
from datetime import datetime, timedelta

from keyguard.errors import ConcurrentKeyUpdate, DuplicateKeyId, UnknownKey
from keyguard.models import KeyEvent, RetiredSecret, SigningKey, ValidationAttempt


class InMemoryKeyRepository:
    def __init__(self):
        self.keys: dict[str, SigningKey] = {}
        self.version = 0

    def _bump_version(self, expected_version: int) -> int:
        if self.version != expected_version:
            raise ConcurrentKeyUpdate(f"Версия набора ключей изменилась (ожидалась {expected_version})")
        self.version += 1
        return self.version

    async def get_version(self) -> int:
        return self.version

    async def list_keys(self) -> list[SigningKey]:
        return sorted((k.model_copy() for k in self.keys.values()), key=lambda k: k.created_at)

    async def get_key(self, key_id: str) -> SigningKey | None:
        key = self.keys.get(key_id)
        return key.model_copy() if key else None

    async def insert_key(self, key: SigningKey, expected_version: int) -> int:
        if key.key_id in self.keys:
            raise DuplicateKeyId(key.key_id)
        new_version = self._bump_version(expected_version)
        if key.is_current:
            for other in self.keys.values():
                if other.is_current:
                    other.is_current = False
                    other.version += 1
        self.keys[key.key_id] = key.model_copy()
        return new_version

    async def set_current(self, key_id: str, expected_version: int) -> int:
        if key_id not in self.keys:
            raise UnknownKey(key_id)
        new_version = self._bump_version(expected_version)
        for other in self.keys.values():
            if other.key_id == key_id and not other.is_current:
                other.is_current = True
                other.version += 1
            elif other.key_id != key_id and other.is_current:
                other.is_current = False
                other.version += 1
        return new_version

    async def update_material(
        self,
        key_id: str,
        secret_enc: str,
        previous_secrets: list[RetiredSecret],
        rotated_at: datetime,
        expected_version: int,
    ) -> SigningKey:
        key = self.keys.get(key_id)
        if key is None:
            raise UnknownKey(key_id)
        self._bump_version(expected_version)
        key.previous_secrets = list(previous_secrets)
        key.secret_enc = secret_enc
        key.last_rotated_at = rotated_at
        key.version += 1
        return key.model_copy()


class InMemoryAuditRepository:
    def __init__(self):
        self.key_events: list[KeyEvent] = []
        self.attempts: list[ValidationAttempt] = []

    async def insert_key_event(self, event: KeyEvent) -> None:
        self.key_events.append(event.model_copy())

    async def list_key_events(self, limit: int, event_type: str | None = None) -> list[KeyEvent]:
        events = [e for e in self.key_events if not event_type or e.event_type == event_type]
        # sorted стабилен: при равном времени новее та запись, что добавлена позже
        events = sorted(reversed(events), key=lambda e: e.created_at, reverse=True)
        return [e.model_copy() for e in events[:limit]]

    async def insert_attempt(self, attempt: ValidationAttempt) -> None:
        self.attempts.append(attempt.model_copy())

    async def window_timestamps(self, user_id: str, since: datetime) -> list[datetime]:
        return sorted(a.timestamp for a in self.attempts if a.user_id == user_id and a.timestamp > since)

    async def list_attempts(self, limit: int, user_id: str | None = None) -> list[ValidationAttempt]:
        attempts = [a for a in self.attempts if not user_id or a.user_id == user_id]
        attempts = sorted(reversed(attempts), key=lambda a: a.timestamp, reverse=True)
        return [a.model_copy() for a in attempts[:limit]]

    async def stats(self, now: datetime) -> dict:
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_ago = now - timedelta(days=7)
        return {
            "total_attempts": len(self.attempts),
            "failed_today": sum(1 for a in self.attempts if not a.success and a.timestamp >= today_start),
            "unique_users_week": len({a.user_id for a in self.attempts if a.timestamp >= week_ago}),
            "key_events_total": len(self.key_events),
        }


class InMemoryRoleRepository:
    def __init__(self, roles: dict[str, str] | None = None):
        self.roles: dict[str, str] = dict(roles or {})

    async def get_role_privileged(self, user_id: str) -> str | None:
        return self.roles.get(user_id)

    async def is_admin_rpc(self, user_id: str, ip_address: str | None, user_agent: str | None) -> bool:
        return self.roles.get(user_id) == "admin"

    async def get_role(self, user_id: str) -> str | None:
        return self.roles.get(user_id)
