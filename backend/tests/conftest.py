"""
Общие фикстуры тестов Keyguard.
"""
from datetime import datetime, timedelta, timezone

import pytest

from keyguard.services import build_memory_services


class FakeClock:
    """Управляемые часы: время двигается только через advance()."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


ROLES = {
    "admin-1": "admin",
    "admin-2": "admin",
    "customer-1": "customer",
}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def services(clock):
    return build_memory_services(roles=ROLES, clock=clock)


@pytest.fixture
def key_store(services):
    return services.key_store


@pytest.fixture
def audit_repo(services):
    return services.audit.repo


@pytest.fixture
def roles_repo(services):
    return services.admin_validator.roles
