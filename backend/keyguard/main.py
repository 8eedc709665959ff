# keyguard/main.py
"""FastAPI-приложение подсистемы ключей подписи и проверки прав администратора."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from keyguard.api import audit_router, auth_router, health_router, keys_router
from keyguard.config import ALLOWED_ORIGINS, LOG_LEVEL, SESSION_TOKEN_HEADER, STORAGE_PROVIDER
from keyguard.database import local_db
from keyguard.services import Services, build_memory_services, build_postgres_services
from keyguard.utils.crypto import load_fernet, KeyMaterial

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


async def _build_default_services() -> Services:
    if STORAGE_PROVIDER == "memory":
        logger.warning("Хранилище в памяти: ключи и аудит не переживут перезапуск")
        return build_memory_services()
    if STORAGE_PROVIDER == "postgres":
        pool = await local_db.init_pool()
        return build_postgres_services(pool, KeyMaterial(load_fernet()))
    raise ValueError(f"Unknown storage provider: {STORAGE_PROVIDER}")


def create_app(services: Services | None = None, start_scheduler: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services or await _build_default_services()
        if start_scheduler:
            app.state.services.scheduler.start()
        logger.info("Keyguard API запущен")
        try:
            yield
        finally:
            await app.state.services.scheduler.stop()
            await local_db.close_pool()
            logger.info("Keyguard API остановлен")

    app = FastAPI(title="Keyguard", version="1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[SESSION_TOKEN_HEADER, "Retry-After"],
    )
    app.include_router(auth_router)
    app.include_router(keys_router)
    app.include_router(audit_router)
    app.include_router(health_router)
    return app


app = create_app()
