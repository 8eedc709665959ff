# keyguard/database/repositories/__init__.py
from .key_repo import KeyRepository
from .audit_repo import AuditRepository
from .role_repo import RoleRepository
from .memory import InMemoryKeyRepository, InMemoryAuditRepository, InMemoryRoleRepository

__all__ = [
    "KeyRepository", "AuditRepository", "RoleRepository",
    "InMemoryKeyRepository", "InMemoryAuditRepository", "InMemoryRoleRepository",
]
