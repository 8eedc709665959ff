# keyguard/models/audit.py
from pydantic import BaseModel
from datetime import datetime
from enum import Enum


class KeyEventType(str, Enum):
    CREATED = "created"
    ROTATED = "rotated"
    MADE_CURRENT = "made-current"


class RequestContext(BaseModel):
    """Метаданные клиента, сопровождающие операцию"""
    performed_by: str | None = None  # None: действие системы (планировщик)
    client_ip: str | None = None
    user_agent: str | None = None


class KeyEvent(BaseModel):
    id: str
    event_type: KeyEventType
    key_id: str
    performed_by: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    created_at: datetime


class ValidationAttempt(BaseModel):
    id: str
    user_id: str
    timestamp: datetime
    success: bool
    ip_address: str | None = None
    user_agent: str | None = None
    validation_id: str | None = None
