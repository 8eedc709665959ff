# keyguard/database/local_db.py
"""
Модуль для работы с БД подсистемы ключей через asyncpg.
Хранит ключи подписи, события ключей, попытки проверки прав и системный лог.
Таблица user_profiles и функция is_admin принадлежат основному приложению,
здесь они создаются только если отсутствуют (для локального стенда).
"""
import asyncpg
import logging
from keyguard.config import LOCAL_DB_DSN, DB_POOL_MIN_SIZE, DB_POOL_MAX_SIZE, DB_COMMAND_TIMEOUT

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


async def init_pool(dsn: str = LOCAL_DB_DSN) -> asyncpg.Pool:
    """Инициализация пула подключений asyncpg."""
    global _pool
    if _pool is not None:
        return _pool

    logger.info(f"Создание asyncpg пула: {dsn.split('@')[1] if '@' in dsn else dsn}")
    _pool = await asyncpg.create_pool(
        dsn,
        min_size=DB_POOL_MIN_SIZE,
        max_size=DB_POOL_MAX_SIZE,
        command_timeout=DB_COMMAND_TIMEOUT,
    )
    await _init_schema(_pool)
    logger.info("asyncpg пул и схема инициализированы")
    return _pool


async def close_pool():
    """Закрытие пула подключений."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("asyncpg пул закрыт")


async def _init_schema(pool: asyncpg.Pool):
    """Создание таблиц и индексов если не существуют."""
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS signing_keys (
                key_id             text        PRIMARY KEY,
                algorithm          text        NOT NULL,
                created_at         timestamptz NOT NULL DEFAULT now(),
                rotation_frequency interval    NOT NULL DEFAULT interval '30 days',
                is_current         boolean     NOT NULL DEFAULT false,
                last_rotated_at    timestamptz NOT NULL DEFAULT now(),
                version            integer     NOT NULL DEFAULT 1,
                secret_enc         text        NOT NULL,
                previous_secrets   jsonb       NOT NULL DEFAULT '[]'
            );
        """)
        await conn.execute("""
            ALTER TABLE signing_keys ADD COLUMN IF NOT EXISTS previous_secrets jsonb NOT NULL DEFAULT '[]';
        """)

        # Не больше одного текущего ключа на уровне БД
        await conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_signing_keys_single_current
                ON signing_keys (is_current) WHERE is_current;
        """)

        # Версия набора ключей для compare-and-swap
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS signing_key_set (
                id      smallint PRIMARY KEY DEFAULT 1 CHECK (id = 1),
                version bigint   NOT NULL DEFAULT 0
            );
            INSERT INTO signing_key_set (id, version) VALUES (1, 0) ON CONFLICT DO NOTHING;
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS key_events (
                id           uuid        PRIMARY KEY,
                event_type   text        NOT NULL,
                key_id       text        NOT NULL,
                performed_by text,
                client_ip    text,
                user_agent   text,
                created_at   timestamptz NOT NULL DEFAULT now()
            );
            CREATE INDEX IF NOT EXISTS idx_key_events_created ON key_events (created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_key_events_type ON key_events (event_type);
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS validation_attempts (
                id            uuid        PRIMARY KEY,
                user_id       text        NOT NULL,
                timestamp     timestamptz NOT NULL DEFAULT now(),
                success       boolean     NOT NULL,
                ip_address    text,
                user_agent    text,
                validation_id text
            );
            CREATE INDEX IF NOT EXISTS idx_validation_attempts_user_ts
                ON validation_attempts (user_id, timestamp DESC);
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS system_log (
                id        bigserial   PRIMARY KEY,
                timestamp timestamptz NOT NULL DEFAULT now(),
                level     text        NOT NULL,
                source    text        NOT NULL,
                message   text        NOT NULL,
                details   text
            );
            CREATE INDEX IF NOT EXISTS idx_system_log_timestamp ON system_log (timestamp DESC);
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS user_profiles (
                user_id text PRIMARY KEY,
                role    text NOT NULL DEFAULT 'customer'
            );
        """)

        # Функция есть в основном приложении; создаём только если её нет
        exists = await conn.fetchval(
            "SELECT EXISTS(SELECT 1 FROM pg_proc WHERE proname = 'is_admin')"
        )
        if not exists:
            await conn.execute("""
                CREATE FUNCTION is_admin(p_user_id text, p_ip_address text, p_user_agent text)
                RETURNS boolean LANGUAGE sql STABLE SECURITY DEFINER AS $$
                    SELECT EXISTS(
                        SELECT 1 FROM user_profiles WHERE user_id = p_user_id AND role = 'admin'
                    );
                $$;
            """)

        logger.info("Схема БД проверена/создана")
