# keyguard/database/repositories/role_repo.py
"""
Чтение ролей пользователей (user_profiles принадлежит основному приложению).
Три способа доступа соответствуют уровням проверки прав администратора.
"""
import logging

import asyncpg

logger = logging.getLogger(__name__)

SESSION_DB_ROLE = "authenticated"


class RoleRepository:
    def __init__(self, pool: asyncpg.Pool, session_role: str = SESSION_DB_ROLE):
        self.pool = pool
        self.session_role = session_role

    async def get_role_privileged(self, user_id: str) -> str | None:
        """Прямое чтение от имени владельца пула, в обход RLS."""
        return await self.pool.fetchval("SELECT role FROM user_profiles WHERE user_id = $1", user_id)

    async def is_admin_rpc(self, user_id: str, ip_address: str | None, user_agent: str | None) -> bool:
        """Вызов функции is_admin основного приложения (ведёт собственный аудит)."""
        return bool(await self.pool.fetchval("SELECT is_admin($1, $2, $3)", user_id, ip_address, user_agent))

    async def get_role(self, user_id: str) -> str | None:
        """Тот же запрос, что доступен обычной сессии: роль БД пользователя и RLS."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(f'SET LOCAL ROLE "{self.session_role}"')
                await conn.execute("SELECT set_config('request.jwt.claim.sub', $1, true)", user_id)
                return await conn.fetchval("SELECT role FROM user_profiles WHERE user_id = $1", user_id)
