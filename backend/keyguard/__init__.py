"""Жизненный цикл ключей подписи сессий и проверка прав администратора."""
__version__ = "1.0.0"
