# keyguard/database/repositories/key_repo.py
"""
Репозиторий ключей подписи, операции через asyncpg.
Любое изменение набора ключей проходит compare-and-swap по версии
в signing_key_set внутри одной транзакции.
"""
import json
import logging
from datetime import datetime

import asyncpg

from keyguard.errors import ConcurrentKeyUpdate, DuplicateKeyId, UnknownKey
from keyguard.models import RetiredSecret, SigningKey

logger = logging.getLogger(__name__)

_FIELDS = (
    "key_id, algorithm, created_at, rotation_frequency, is_current, "
    "last_rotated_at, version, secret_enc, previous_secrets"
)


def _to_key(row) -> SigningKey:
    data = dict(row)
    data["previous_secrets"] = json.loads(data["previous_secrets"] or "[]")
    return SigningKey(**data)


def _dump_secrets(secrets: list[RetiredSecret]) -> str:
    return json.dumps([s.model_dump(mode="json") for s in secrets])


async def _bump_version(conn: asyncpg.Connection, expected_version: int) -> int:
    new_version = await conn.fetchval(
        "UPDATE signing_key_set SET version = version + 1 "
        "WHERE id = 1 AND version = $1 RETURNING version",
        expected_version,
    )
    if new_version is None:
        raise ConcurrentKeyUpdate(f"Версия набора ключей изменилась (ожидалась {expected_version})")
    return new_version


class KeyRepository:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_version(self) -> int:
        return await self.pool.fetchval("SELECT version FROM signing_key_set WHERE id = 1")

    async def list_keys(self) -> list[SigningKey]:
        """Все ключи, включая выведенные из использования."""
        rows = await self.pool.fetch(f"SELECT {_FIELDS} FROM signing_keys ORDER BY created_at")
        return [_to_key(r) for r in rows]

    async def get_key(self, key_id: str) -> SigningKey | None:
        row = await self.pool.fetchrow(f"SELECT {_FIELDS} FROM signing_keys WHERE key_id = $1", key_id)
        return _to_key(row) if row else None

    async def insert_key(self, key: SigningKey, expected_version: int) -> int:
        """Добавить ключ. Если key.is_current, снять флаг с прежнего текущего."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                new_version = await _bump_version(conn, expected_version)
                if key.is_current:
                    await conn.execute(
                        "UPDATE signing_keys SET is_current = false, version = version + 1 WHERE is_current"
                    )
                try:
                    await conn.execute(
                        f"INSERT INTO signing_keys ({_FIELDS}) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb)",
                        key.key_id, key.algorithm.value, key.created_at, key.rotation_frequency,
                        key.is_current, key.last_rotated_at, key.version, key.secret_enc,
                        _dump_secrets(key.previous_secrets),
                    )
                except asyncpg.UniqueViolationError:
                    raise DuplicateKeyId(key.key_id)
        logger.info(f"Добавлен ключ подписи: {key.key_id} ({key.algorithm.value}, current={key.is_current})")
        return new_version

    async def set_current(self, key_id: str, expected_version: int) -> int:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                new_version = await _bump_version(conn, expected_version)
                exists = await conn.fetchval("SELECT EXISTS(SELECT 1 FROM signing_keys WHERE key_id = $1)", key_id)
                if not exists:
                    raise UnknownKey(key_id)
                await conn.execute(
                    "UPDATE signing_keys SET is_current = false, version = version + 1 "
                    "WHERE is_current AND key_id <> $1",
                    key_id,
                )
                await conn.execute(
                    "UPDATE signing_keys SET is_current = true, version = version + 1 "
                    "WHERE key_id = $1 AND NOT is_current",
                    key_id,
                )
        logger.info(f"Текущий ключ подписи: {key_id}")
        return new_version

    async def update_material(
        self,
        key_id: str,
        secret_enc: str,
        previous_secrets: list[RetiredSecret],
        rotated_at: datetime,
        expected_version: int,
    ) -> SigningKey:
        """Заменить материал ключа на месте; key_id и is_current не меняются."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await _bump_version(conn, expected_version)
                row = await conn.fetchrow(
                    f"UPDATE signing_keys SET secret_enc = $2, previous_secrets = $3::jsonb, "
                    f"last_rotated_at = $4, version = version + 1 "
                    f"WHERE key_id = $1 RETURNING {_FIELDS}",
                    key_id, secret_enc, _dump_secrets(previous_secrets), rotated_at,
                )
                if row is None:
                    raise UnknownKey(key_id)
        logger.info(f"Ротирован ключ подписи: {key_id}")
        return _to_key(row)
