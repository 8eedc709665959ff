# keyguard/services/rotation_scheduler.py
"""Планировщик проверки ротации ключей подписи."""
import asyncio
import logging
from enum import Enum

from keyguard.auth.sessions import SessionRegistry
from keyguard.config import KEY_ROTATION_CHECK_INTERVAL_MINUTES, ROTATION_POLICY, ROTATION_TICK_TIMEOUT
from keyguard.models import SigningKeyStatus
from keyguard.services.key_store import KeyStore
from keyguard.services.system_logger import SystemLogger

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    TICKING = "ticking"


class RotationPolicy(str, Enum):
    NOTIFY = "notify"  # только сообщить оператору
    AUTO = "auto"      # ротировать просроченные ключи без участия оператора


class RotationScheduler:
    def __init__(
        self,
        key_store: KeyStore,
        system_logger: SystemLogger,
        interval_minutes: int = KEY_ROTATION_CHECK_INTERVAL_MINUTES,
        policy: RotationPolicy | str = ROTATION_POLICY,
        tick_timeout: float = ROTATION_TICK_TIMEOUT,
        sessions: SessionRegistry | None = None,
    ):
        self.key_store = key_store
        self.sessions = sessions
        self.system_logger = system_logger
        self.interval = interval_minutes * 60
        self.policy = RotationPolicy(policy)
        self.tick_timeout = tick_timeout
        self.state = SchedulerState.IDLE
        self._task: asyncio.Task | None = None
        self._tick_lock = asyncio.Lock()
        # (key_id, дата последней ротации) уже обработанных просрочек
        self._handled: set[tuple[str, str]] = set()

    async def bootstrap(self) -> str | None:
        """Первый запуск: без текущего ключа система не работает."""
        key_id = await self.key_store.ensure_initial_key()
        if key_id:
            await self.system_logger.info("key_rotation", f"Начальный текущий ключ: {key_id}")
        return key_id

    async def tick(self) -> list[SigningKeyStatus]:
        """
        Одна проверка. Возвращает ключи, обработанные впервые в этой проверке.
        Ограничена по времени tick_timeout.
        """
        async with self._tick_lock:
            self.state = SchedulerState.TICKING
            try:
                return await asyncio.wait_for(self._tick(), self.tick_timeout)
            finally:
                self.state = SchedulerState.IDLE

    async def _tick(self) -> list[SigningKeyStatus]:
        if self.sessions is not None:
            self.sessions.cleanup(self.key_store.clock.now().timestamp())
        statuses = await self.key_store.check_rotation_status()
        overdue = [s for s in statuses if s.needs_rotation]
        if not overdue:
            self._handled.clear()
            logger.debug(f"[rotation] Проверено ключей: {len(statuses)}, ротация не требуется")
            return []

        keys = {k.key_id: k for k in await self.key_store.list_keys()}
        markers = {
            s.key_id: (s.key_id, keys[s.key_id].last_rotated_at.isoformat())
            for s in overdue if s.key_id in keys
        }
        # Отметки ротированных с тех пор ключей больше не нужны
        self._handled &= set(markers.values())

        handled = []
        for status in overdue:
            marker = markers.get(status.key_id)
            if marker is None:
                continue
            key = keys[status.key_id]
            if marker in self._handled:
                continue

            if self.policy == RotationPolicy.AUTO:
                try:
                    await self.key_store.rotate_key(key.key_id)
                except Exception as e:
                    logger.error(f"[rotation] Ошибка автоматической ротации {key.key_id}: {e}")
                    await self.system_logger.error("key_rotation", f"Ошибка ротации ключа {key.key_id}", str(e))
                    continue
                await self.system_logger.info("key_rotation", f"Ключ {key.key_id} ротирован автоматически")
            else:
                logger.warning(
                    f"[rotation] Ключ {key.key_id} требует ротации "
                    f"(просрочен на {-status.days_until_rotation} дн.)"
                )
                await self.system_logger.warning(
                    "key_rotation", f"Ключ {key.key_id} требует ротации",
                    f"days_until_rotation={status.days_until_rotation}",
                )
            self._handled.add(marker)
            handled.append(status)
        return handled

    async def _loop(self):
        try:
            await self.bootstrap()
        except Exception as e:
            logger.error(f"[rotation] Ошибка инициализации ключей: {e}")
            await self.system_logger.error("key_rotation", f"Ошибка инициализации ключей: {e}")
        while True:
            try:
                await self.tick()
            except asyncio.TimeoutError:
                logger.error(f"[rotation] Проверка не уложилась в {self.tick_timeout} с")
                await self.system_logger.error("key_rotation", "Проверка ротации прервана по таймауту")
            except Exception as e:
                logger.error(f"[rotation] Ошибка проверки ротации: {e}")
                await self.system_logger.error("key_rotation", f"Ошибка проверки ротации: {e}")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="key-rotation-scheduler")
            logger.info(f"Планировщик ротации запущен (интервал {self.interval // 60} мин, политика {self.policy.value})")
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.debug("Задача планировщика ротации отменена")
        except Exception as e:
            logger.error(f"Планировщик ротации завершился с ошибкой: {e}")
        self._task = None
        logger.info("Планировщик ротации остановлен")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
