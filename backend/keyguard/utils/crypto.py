# keyguard/utils/crypto.py
"""Материал ключей подписи: генерация и хранение в зашифрованном (Fernet) виде."""
import hashlib
import logging
import secrets
from pathlib import Path

from cryptography.fernet import Fernet

from keyguard.config import ENCRYPTION_KEY_FILE
from keyguard.models import KeyAlgorithm

logger = logging.getLogger(__name__)

# Длина секрета HMAC не меньше длины выхода хэш-функции
SECRET_SIZES = {
    KeyAlgorithm.HS256: 32,
    KeyAlgorithm.HS384: 48,
    KeyAlgorithm.HS512: 64,
}


def load_fernet(key_file: Path = ENCRYPTION_KEY_FILE) -> Fernet:
    """Загрузка ключа шифрования из файла"""
    try:
        with open(key_file, "rb") as f:
            fernet = Fernet(f.read())
        logger.info("Ключ шифрования успешно загружен")
        return fernet
    except Exception as e:
        logger.error(f"Критическая ошибка: не удалось загрузить ключ шифрования: {e}")
        raise RuntimeError(f"Ошибка загрузки ключа шифрования: {e}") from e


class KeyMaterial:
    """Генерация секретов HMAC и их шифрование для хранения в БД"""

    def __init__(self, fernet: Fernet):
        self.fernet = fernet

    @classmethod
    def ephemeral(cls) -> "KeyMaterial":
        """Одноразовый ключ шифрования (in-memory режим и тесты)."""
        return cls(Fernet(Fernet.generate_key()))

    def generate(self, algorithm: KeyAlgorithm) -> str:
        secret = secrets.token_bytes(SECRET_SIZES[KeyAlgorithm(algorithm)])
        return self.fernet.encrypt(secret).decode()

    def reveal(self, secret_enc: str) -> bytes:
        return self.fernet.decrypt(secret_enc.encode())

    @staticmethod
    def fingerprint(secret_enc: str) -> str:
        """Короткий отпечаток зашифрованного материала (для логов, не секрет)."""
        return hashlib.sha256(secret_enc.encode()).hexdigest()[:12]
