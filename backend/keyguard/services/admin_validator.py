# keyguard/services/admin_validator.py
"""
Проверка роли администратора с эшелонированной защитой.

Порядок: rate limit -> уровни поиска роли по очереди, первый
определённый ответ побеждает -> ровно одна запись ValidationAttempt.
Уровни не объединяются и не голосуют.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

from keyguard.config import ADMIN_ROLE, MAX_ATTEMPTS, VALIDATION_TIER_TIMEOUT, WINDOW_MINUTES
from keyguard.errors import InternalError, TooManyRequests, Unauthenticated
from keyguard.services.audit_log import AuditLog
from keyguard.services.rate_limiter import RateLimiter
from keyguard.utils.clock import Clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierResult:
    """Ok(is_admin) или Err(reason)"""
    is_admin: bool | None = None
    error: str | None = None

    @classmethod
    def ok(cls, is_admin: bool) -> "TierResult":
        return cls(is_admin=is_admin)

    @classmethod
    def err(cls, reason: str) -> "TierResult":
        return cls(error=reason)

    @property
    def is_ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ValidationTier:
    name: str
    lookup: Callable[[str, str | None, str | None], Awaitable[bool]]


@dataclass
class AdminValidation:
    is_admin: bool
    user_id: str
    timestamp: datetime
    validation_id: str
    tier: str


class AdminValidator:
    def __init__(
        self,
        roles_repo,
        rate_limiter: RateLimiter,
        audit: AuditLog,
        clock: Clock,
        tier_timeout: float = VALIDATION_TIER_TIMEOUT,
        max_attempts: int = MAX_ATTEMPTS,
        window_minutes: int = WINDOW_MINUTES,
    ):
        self.roles = roles_repo
        self.rate_limiter = rate_limiter
        self.audit = audit
        self.clock = clock
        self.tier_timeout = tier_timeout
        self.max_attempts = max_attempts
        self.window_minutes = window_minutes
        self.tiers = [
            ValidationTier("privileged_lookup", self._privileged_lookup),
            ValidationTier("is_admin_rpc", self._is_admin_rpc),
            ValidationTier("direct_lookup", self._direct_lookup),
        ]

    async def _privileged_lookup(self, user_id: str, ip: str | None, user_agent: str | None) -> bool:
        return await self.roles.get_role_privileged(user_id) == ADMIN_ROLE

    async def _is_admin_rpc(self, user_id: str, ip: str | None, user_agent: str | None) -> bool:
        return bool(await self.roles.is_admin_rpc(user_id, ip, user_agent))

    async def _direct_lookup(self, user_id: str, ip: str | None, user_agent: str | None) -> bool:
        return await self.roles.get_role(user_id) == ADMIN_ROLE

    async def _run_tier(self, tier: ValidationTier, user_id: str, ip: str | None, user_agent: str | None) -> TierResult:
        try:
            is_admin = await asyncio.wait_for(tier.lookup(user_id, ip, user_agent), self.tier_timeout)
        except asyncio.TimeoutError:
            return TierResult.err(f"timeout after {self.tier_timeout}s")
        except Exception as e:
            return TierResult.err(f"{type(e).__name__}: {e}")
        return TierResult.ok(is_admin)

    async def validate(self, user_id: str | None, ip: str | None = None, user_agent: str | None = None) -> AdminValidation:
        """
        Ответ на вопрос «является ли user_id администратором».
        user_id берётся только из аутентифицированной сессии.
        """
        if not user_id:
            raise Unauthenticated("Нет активной сессии")

        async with self.rate_limiter.guard(user_id):
            decision = await self.rate_limiter.check(user_id, self.max_attempts, self.window_minutes)
            if decision.limited:
                await self.audit.record_attempt(user_id, False, ip, user_agent)
                raise TooManyRequests(decision.retry_after)

            validation_id = str(uuid.uuid4())
            for tier in self.tiers:
                result = await self._run_tier(tier, user_id, ip, user_agent)
                if result.is_ok:
                    break
                logger.warning(f"Уровень {tier.name} недоступен для {user_id}: {result.error}")
            else:
                await self.audit.record_attempt(user_id, False, ip, user_agent, validation_id)
                logger.error(f"Все уровни проверки прав недоступны для {user_id}")
                raise InternalError("Admin validation unavailable")

            await self.audit.record_attempt(user_id, True, ip, user_agent, validation_id)

        logger.info(f"Проверка прав {user_id}: admin={result.is_admin} (уровень {tier.name})")
        return AdminValidation(
            is_admin=result.is_admin,
            user_id=user_id,
            timestamp=self.clock.now(),
            validation_id=validation_id,
            tier=tier.name,
        )
