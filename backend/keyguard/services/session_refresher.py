# keyguard/services/session_refresher.py
"""
Перевыпуск сессионных токенов после ротации, чтобы следующие запросы
шли с токеном, подписанным текущим ключом. Замена отдаётся клиенту
в заголовке X-Session-Token. Сбой перевыпуска не откатывает ротацию.
"""
import logging

from keyguard.auth.sessions import SessionRegistry
from keyguard.auth.tokens import TokenService
from keyguard.models import Principal
from keyguard.utils.crypto import KeyMaterial

logger = logging.getLogger(__name__)


class SessionRefresher:
    def __init__(self, tokens: TokenService, sessions: SessionRegistry):
        self.tokens = tokens
        self.sessions = sessions

    async def refresh_current_session(self, principal: Principal) -> str | None:
        """Перевыпустить токен вызывающего. None, если перевыпуск не удался."""
        try:
            token = await self.tokens.issue(principal.user_id)
        except Exception as e:
            logger.error(f"Не удалось обновить сессию {principal.user_id}: {e}")
            return None
        self.sessions.set_replacement(principal.jti, token)
        logger.info(f"Сессия {principal.user_id} перевыпущена")
        return token

    async def refresh_all(self) -> int:
        """Перевыпустить все активные сессии, подписанные не текущим материалом."""
        try:
            current = await self.tokens.key_store.current_key()
        except Exception as e:
            logger.error(f"Не удалось получить текущий ключ для обновления сессий: {e}")
            return 0
        if current is None:
            return 0
        generation = KeyMaterial.fingerprint(current.secret_enc)

        refreshed = 0
        for info in self.sessions.active():
            if info.replacement is not None:
                continue
            if info.kid == current.key_id and info.key_generation == generation:
                continue
            try:
                token = await self.tokens.issue(info.user_id)
            except Exception as e:
                logger.error(f"Не удалось обновить сессию {info.user_id}: {e}")
                continue
            self.sessions.set_replacement(info.jti, token)
            refreshed += 1
        if refreshed:
            logger.info(f"Перевыпущено сессий: {refreshed}")
        return refreshed
