# keyguard/auth/tokens.py
"""Выпуск и проверка сессионных JWT, подписанных ключами из KeyStore."""
import logging
import uuid
from datetime import timedelta

import jwt

from keyguard.config import TOKEN_EXPIRATION
from keyguard.errors import InternalError
from keyguard.models import Principal
from keyguard.auth.sessions import SessionInfo, SessionRegistry
from keyguard.utils.clock import Clock
from keyguard.utils.crypto import KeyMaterial

logger = logging.getLogger(__name__)


class TokenService:
    def __init__(
        self,
        key_store,
        material: KeyMaterial,
        sessions: SessionRegistry,
        clock: Clock,
        expiration_minutes: int = TOKEN_EXPIRATION,
    ):
        self.key_store = key_store
        self.material = material
        self.sessions = sessions
        self.clock = clock
        self.expiration = timedelta(minutes=expiration_minutes)

    async def issue(self, user_id: str) -> str:
        """Создание JWT токена, подписанного текущим ключом"""
        key = await self.key_store.current_key()
        if key is None:
            raise InternalError("Нет текущего ключа подписи")
        now = self.clock.now()
        jti = str(uuid.uuid4())
        exp = int((now + self.expiration).timestamp())
        token = jwt.encode(
            {"sub": user_id, "jti": jti, "iat": int(now.timestamp()), "exp": exp},
            self.material.reveal(key.secret_enc),
            algorithm=key.algorithm.value,
            headers={"kid": key.key_id},
        )
        self.sessions.register(SessionInfo(
            jti=jti, user_id=user_id, kid=key.key_id, key_generation=KeyMaterial.fingerprint(key.secret_enc), exp=exp,
        ))
        logger.debug(f"Выпущен токен для {user_id} (kid={key.key_id})")
        return token

    async def decode(self, token: str) -> Principal:
        """
        Декодирование JWT токена любым известным ключом (по kid).
        После ротации проверяется и выведенный материал ключа, новый первым.
        """
        kid = jwt.get_unverified_header(token).get("kid")
        if not kid:
            raise jwt.InvalidTokenError("Токен без kid")
        key = await self.key_store.get_key(kid)
        if key is None:
            raise jwt.InvalidTokenError(f"Неизвестный ключ {kid}")

        # exp сверяется с часами сервиса, а не с системным временем
        options = {"verify_exp": False, "verify_iat": False, "require": ["sub", "jti", "exp"]}
        algorithms = [key.algorithm.value]
        candidates = [key.secret_enc] + [s.secret_enc for s in key.previous_secrets]
        for secret_enc in candidates:
            try:
                payload = jwt.decode(token, self.material.reveal(secret_enc), algorithms=algorithms, options=options)
                break
            except jwt.InvalidSignatureError:
                continue
        else:
            raise jwt.InvalidSignatureError("Signature verification failed")
        generation = KeyMaterial.fingerprint(secret_enc)

        if payload["exp"] <= self.clock.now().timestamp():
            raise jwt.ExpiredSignatureError("Signature has expired")
        if self.sessions.is_revoked(payload["jti"]):
            raise jwt.InvalidTokenError("Токен отозван")

        self.sessions.register(SessionInfo(
            jti=payload["jti"], user_id=payload["sub"], kid=kid,
            key_generation=generation, exp=payload["exp"],
        ))
        return Principal(user_id=payload["sub"], jti=payload["jti"], kid=kid, token=token, exp=payload["exp"])
