# keyguard/models/signing_key.py
from pydantic import BaseModel, Field
from datetime import datetime, timedelta
from enum import Enum
import math

DAY = timedelta(days=1)


class KeyAlgorithm(str, Enum):
    HS256 = "HS256"
    HS384 = "HS384"
    HS512 = "HS512"


class SigningKeyStatus(BaseModel):
    """Состояние ротации ключа (формат check_jwt_key_rotation)"""
    key_id: str
    needs_rotation: bool
    days_until_rotation: int


class RetiredSecret(BaseModel):
    """Материал ключа, выведенный ротацией"""
    secret_enc: str = Field(repr=False)
    retired_at: datetime


class SigningKey(BaseModel):
    """Модель ключа подписи сессионных токенов"""
    key_id: str
    algorithm: KeyAlgorithm = KeyAlgorithm.HS256
    created_at: datetime
    rotation_frequency: timedelta = timedelta(days=30)
    is_current: bool = False
    last_rotated_at: datetime
    version: int = 1
    secret_enc: str = Field(default="", repr=False)  # материал ключа, зашифрованный Fernet
    # Материал прошлых поколений, новые первыми: проверка ещё не истёкших токенов
    previous_secrets: list[RetiredSecret] = Field(default_factory=list, repr=False)

    def rotation_due_at(self) -> datetime:
        return self.last_rotated_at + self.rotation_frequency

    def needs_rotation(self, now: datetime) -> bool:
        # Ровно на границе ключ уже считается просроченным
        return now >= self.rotation_due_at()

    def days_until_rotation(self, now: datetime) -> int:
        return math.floor((self.rotation_due_at() - now) / DAY)

    def status(self, now: datetime) -> SigningKeyStatus:
        return SigningKeyStatus(
            key_id=self.key_id,
            needs_rotation=self.needs_rotation(now),
            days_until_rotation=self.days_until_rotation(now),
        )


class SigningKeyCreate(BaseModel):
    """Модель для добавления ключа"""
    key_id: str = Field(min_length=1, max_length=128, pattern=r"^[A-Za-z0-9._-]+$")
    algorithm: KeyAlgorithm = KeyAlgorithm.HS256
    rotation_frequency_days: int = Field(default=30, ge=1, le=3650)
    make_current: bool = False


class SigningKeyResponse(BaseModel):
    """Модель для ответа API (без материала ключа)"""
    key_id: str
    algorithm: KeyAlgorithm
    created_at: datetime
    rotation_frequency_days: float
    is_current: bool
    last_rotated_at: datetime
    needs_rotation: bool
    days_until_rotation: int

    @classmethod
    def from_key(cls, key: SigningKey, now: datetime) -> "SigningKeyResponse":
        return cls(
            key_id=key.key_id,
            algorithm=key.algorithm,
            created_at=key.created_at,
            rotation_frequency_days=key.rotation_frequency / DAY,
            is_current=key.is_current,
            last_rotated_at=key.last_rotated_at,
            needs_rotation=key.needs_rotation(now),
            days_until_rotation=key.days_until_rotation(now),
        )
