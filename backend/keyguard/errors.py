# keyguard/errors.py
"""Ошибки подсистемы ключей подписи и проверки прав администратора."""


class KeyguardError(Exception):
    """Базовая ошибка подсистемы."""


class Unauthenticated(KeyguardError):
    """Нет действительной сессии."""


class TooManyRequests(KeyguardError):
    """Превышен лимит попыток проверки прав."""

    def __init__(self, retry_after: int):
        super().__init__(f"Too many validation attempts, retry after {retry_after}s")
        self.retry_after = retry_after


class DuplicateKeyId(KeyguardError):
    def __init__(self, key_id: str):
        super().__init__(f"Ключ {key_id} уже существует")
        self.key_id = key_id


class UnknownKey(KeyguardError):
    def __init__(self, key_id: str):
        super().__init__(f"Ключ {key_id} не найден")
        self.key_id = key_id


class ConcurrentKeyUpdate(KeyguardError):
    """Версия набора ключей изменилась между чтением и записью."""


class InternalError(KeyguardError):
    """Все уровни проверки недоступны или хранилище не отвечает."""
