# keyguard/services/key_store.py
"""
Хранилище ключей подписи сессионных токенов.

Соглашение о ротации: материал ключа меняется на месте, key_id стабилен,
статус текущего ключа сохраняется. Новый key_id появляется только через add_key.
Ключи не удаляются: выведенные из использования продолжают проверять
ещё не истёкшие токены.

Все изменения набора ключей сериализуются одной блокировкой писателя
и дополнительно проходят compare-and-swap по версии в репозитории.
"""
import asyncio
import logging
from datetime import timedelta

from keyguard.config import (
    DEFAULT_KEY_ALGORITHM, DEFAULT_ROTATION_FREQUENCY_DAYS, INITIAL_KEY_PREFIX, TOKEN_EXPIRATION,
)
from keyguard.errors import DuplicateKeyId, UnknownKey
from keyguard.models import (
    KeyAlgorithm, KeyEventType, Principal, RequestContext, RetiredSecret, SigningKey, SigningKeyStatus,
)
from keyguard.services.audit_log import AuditLog
from keyguard.utils.clock import Clock
from keyguard.utils.crypto import KeyMaterial

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = KeyAlgorithm(DEFAULT_KEY_ALGORITHM)
DEFAULT_ROTATION_FREQUENCY = timedelta(days=DEFAULT_ROTATION_FREQUENCY_DAYS)


class KeyStore:
    def __init__(
        self,
        repo,
        material: KeyMaterial,
        audit: AuditLog,
        clock: Clock,
        session_refresher=None,
        token_expiration_minutes: int = TOKEN_EXPIRATION,
    ):
        self.repo = repo
        self.material = material
        self.audit = audit
        self.clock = clock
        self.session_refresher = session_refresher
        # Выведенный материал нужен, пока живы подписанные им токены
        self.retired_retention = timedelta(minutes=token_expiration_minutes)
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    #  Чтение
    # ------------------------------------------------------------------ #

    async def check_rotation_status(self) -> list[SigningKeyStatus]:
        """Состояние ротации всех ключей. Без побочных эффектов."""
        now = self.clock.now()
        return [key.status(now) for key in await self.repo.list_keys()]

    async def list_keys(self) -> list[SigningKey]:
        return await self.repo.list_keys()

    async def get_key(self, key_id: str) -> SigningKey | None:
        return await self.repo.get_key(key_id)

    async def current_key(self) -> SigningKey | None:
        for key in await self.repo.list_keys():
            if key.is_current:
                return key
        return None

    # ------------------------------------------------------------------ #
    #  Изменение
    # ------------------------------------------------------------------ #

    async def _insert_locked(
        self, key_id: str, algorithm: KeyAlgorithm, rotation_frequency: timedelta, make_current: bool,
    ) -> SigningKey:
        if await self.repo.get_key(key_id) is not None:
            raise DuplicateKeyId(key_id)
        now = self.clock.now()
        key = SigningKey(
            key_id=key_id,
            algorithm=algorithm,
            created_at=now,
            rotation_frequency=rotation_frequency,
            is_current=make_current,
            last_rotated_at=now,
            secret_enc=self.material.generate(algorithm),
        )
        version = await self.repo.get_version()
        await self.repo.insert_key(key, version)
        return key

    async def add_key(
        self,
        key_id: str,
        algorithm: KeyAlgorithm = DEFAULT_ALGORITHM,
        rotation_frequency: timedelta = DEFAULT_ROTATION_FREQUENCY,
        make_current: bool = False,
        context: RequestContext | None = None,
    ) -> str:
        """Добавить ключ. DuplicateKeyId, если key_id уже занят."""
        async with self._write_lock:
            key = await self._insert_locked(key_id, KeyAlgorithm(algorithm), rotation_frequency, make_current)

        logger.info(f"Добавлен ключ {key_id} ({key.algorithm.value}, текущий={make_current})")
        await self.audit.record_key_event(KeyEventType.CREATED, key_id, context)
        if make_current:
            await self.audit.record_key_event(KeyEventType.MADE_CURRENT, key_id, context)
            await self._refresh_all()
        return key_id

    async def rotate_key(
        self, key_id: str, context: RequestContext | None = None, session: Principal | None = None,
    ) -> SigningKey:
        """
        Выпустить новый материал для key_id. UnknownKey, если ключа нет.
        Событие rotated пишется только после подтверждённого обновления.
        """
        async with self._write_lock:
            existing = await self.repo.get_key(key_id)
            if existing is None:
                raise UnknownKey(key_id)
            now = self.clock.now()
            secret_enc = self.material.generate(existing.algorithm)
            previous = [RetiredSecret(secret_enc=existing.secret_enc, retired_at=now)] + [
                s for s in existing.previous_secrets if now - s.retired_at < self.retired_retention
            ]
            version = await self.repo.get_version()
            rotated = await self.repo.update_material(key_id, secret_enc, previous, now, version)

        logger.info(f"Ротирован ключ {key_id} (отпечаток {KeyMaterial.fingerprint(rotated.secret_enc)})")
        await self.audit.record_key_event(KeyEventType.ROTATED, key_id, context)

        if session is not None and self.session_refresher is not None:
            await self.session_refresher.refresh_current_session(session)
        if rotated.is_current:
            await self._refresh_all()
        return rotated

    async def make_current(self, key_id: str, context: RequestContext | None = None) -> SigningKey:
        """Назначить существующий ключ текущим."""
        async with self._write_lock:
            existing = await self.repo.get_key(key_id)
            if existing is None:
                raise UnknownKey(key_id)
            if existing.is_current:
                return existing
            version = await self.repo.get_version()
            await self.repo.set_current(key_id, version)
            key = await self.repo.get_key(key_id)

        logger.info(f"Ключ {key_id} назначен текущим")
        await self.audit.record_key_event(KeyEventType.MADE_CURRENT, key_id, context)
        await self._refresh_all()
        return key

    async def ensure_initial_key(self) -> str | None:
        """
        Гарантирует наличие текущего ключа. Возвращает key_id, если ключ был
        создан или назначен текущим, иначе None. Повторный вызов ничего не меняет.
        """
        promoted = None
        async with self._write_lock:
            keys = await self.repo.list_keys()
            if not keys:
                key_id = f"{INITIAL_KEY_PREFIX}-{self.clock.now():%Y%m%d}"
                await self._insert_locked(key_id, DEFAULT_ALGORITHM, DEFAULT_ROTATION_FREQUENCY, True)
                logger.info(f"Ключей нет — создан начальный ключ {key_id}")
                created = key_id
            elif not any(k.is_current for k in keys):
                promoted = max(keys, key=lambda k: k.created_at).key_id
                version = await self.repo.get_version()
                await self.repo.set_current(promoted, version)
                logger.warning(f"Текущий ключ отсутствовал — назначен {promoted}")
                created = None
            else:
                return None

        if created:
            await self.audit.record_key_event(KeyEventType.CREATED, created)
            await self.audit.record_key_event(KeyEventType.MADE_CURRENT, created)
            return created
        await self.audit.record_key_event(KeyEventType.MADE_CURRENT, promoted)
        await self._refresh_all()
        return promoted

    async def _refresh_all(self) -> None:
        if self.session_refresher is None:
            return
        await self.session_refresher.refresh_all()
