# keyguard/services/__init__.py
"""Сборка сервисов подсистемы поверх выбранного хранилища."""
from dataclasses import dataclass

from keyguard.auth.sessions import SessionRegistry
from keyguard.auth.tokens import TokenService
from keyguard.database.repositories import (
    AuditRepository, KeyRepository, RoleRepository,
    InMemoryAuditRepository, InMemoryKeyRepository, InMemoryRoleRepository,
)
from keyguard.utils.clock import Clock, system_clock
from keyguard.utils.crypto import KeyMaterial

from .system_logger import SystemLogger
from .cache import ValidationCache
from .audit_log import AuditLog
from .rate_limiter import RateLimiter, RateLimitDecision
from .key_store import KeyStore
from .session_refresher import SessionRefresher
from .admin_validator import AdminValidator, AdminValidation, TierResult, ValidationTier
from .rotation_scheduler import RotationScheduler, RotationPolicy, SchedulerState


@dataclass
class Services:
    clock: Clock
    system_logger: SystemLogger
    audit: AuditLog
    key_store: KeyStore
    sessions: SessionRegistry
    tokens: TokenService
    session_refresher: SessionRefresher
    rate_limiter: RateLimiter
    admin_validator: AdminValidator
    validation_cache: ValidationCache
    scheduler: RotationScheduler


def build_services(
    key_repo,
    audit_repo,
    roles_repo,
    material: KeyMaterial,
    clock: Clock = system_clock,
    system_logger: SystemLogger | None = None,
    **scheduler_options,
) -> Services:
    system_logger = system_logger or SystemLogger(clock=clock)
    audit = AuditLog(audit_repo, clock, system_logger)
    key_store = KeyStore(key_repo, material, audit, clock)
    sessions = SessionRegistry()
    tokens = TokenService(key_store, material, sessions, clock)
    refresher = SessionRefresher(tokens, sessions)
    key_store.session_refresher = refresher
    rate_limiter = RateLimiter(audit_repo, clock)
    return Services(
        clock=clock,
        system_logger=system_logger,
        audit=audit,
        key_store=key_store,
        sessions=sessions,
        tokens=tokens,
        session_refresher=refresher,
        rate_limiter=rate_limiter,
        admin_validator=AdminValidator(roles_repo, rate_limiter, audit, clock),
        validation_cache=ValidationCache(clock),
        scheduler=RotationScheduler(key_store, system_logger, sessions=sessions, **scheduler_options),
    )


def build_memory_services(roles: dict[str, str] | None = None, clock: Clock = system_clock, **scheduler_options) -> Services:
    return build_services(
        InMemoryKeyRepository(),
        InMemoryAuditRepository(),
        InMemoryRoleRepository(roles),
        KeyMaterial.ephemeral(),
        clock=clock,
        **scheduler_options,
    )


def build_postgres_services(pool, material: KeyMaterial, clock: Clock = system_clock, **scheduler_options) -> Services:
    return build_services(
        KeyRepository(pool),
        AuditRepository(pool),
        RoleRepository(pool),
        material,
        clock=clock,
        system_logger=SystemLogger(pool, clock=clock),
        **scheduler_options,
    )


__all__ = [
    "Services", "build_services", "build_memory_services", "build_postgres_services",
    "SystemLogger", "ValidationCache", "AuditLog", "RateLimiter", "RateLimitDecision", "KeyStore",
    "SessionRefresher", "AdminValidator", "AdminValidation", "TierResult", "ValidationTier",
    "RotationScheduler", "RotationPolicy", "SchedulerState",
]
