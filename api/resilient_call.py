# api/resilient_call.py
import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp

from api.endpoint_pool import Endpoint, EndpointPool
from core.enums import SystemConstants
from core.exceptions import BotError, CallTimeoutError, TransportError
from core.logger import log_warning, SYSTEM_ACCOUNT

T = TypeVar("T")


def is_transport_error(error: BaseException) -> bool:
    """Ошибки, после которых имеет смысл сменить эндпоинт и повторить вызов."""
    if isinstance(error, (TransportError, aiohttp.ClientConnectionError, ConnectionError, asyncio.TimeoutError)):
        return True
    # Отказы узла уже классифицированы клиентом, маркеры только для сторонних исключений
    if isinstance(error, BotError):
        return False
    message = str(error).lower()
    return any(marker in message for marker in SystemConstants.TRANSPORT_ERROR_MARKERS)


class ResilientCaller:
    """
    Обёртка удалённого вызова: таймаут, ограниченные повторы, смена эндпоинта.

    Транспортные ошибки помечают текущий эндпоинт как сбойный и повторяются
    (всего не более max_retries попыток). Остальные ошибки пробрасываются сразу.
    """

    def __init__(self, pool: EndpointPool, timeout: float = 30.0, max_retries: int = 3, retry_delay: float = 2.0):
        self.pool = pool
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def call(self, action: Callable[[Endpoint], Awaitable[T]],
                   timeout: Optional[float] = None,
                   max_retries: Optional[int] = None,
                   retry_delay: Optional[float] = None,
                   account: str = SYSTEM_ACCOUNT,
                   description: str = "rpc") -> T:
        """
        Выполняет action(endpoint) на текущем эндпоинте пула.

        Args:
            action: Корутина-фабрика, получающая эндпоинт
            timeout: Дедлайн одной попытки
            max_retries: Всего попыток
            retry_delay: Пауза между попытками
            account: Метка кошелька для логов
            description: Название вызова для логов

        Returns:
            Результат action

        Raises:
            Последнюю транспортную ошибку после исчерпания попыток либо первую нетранспортную
        """
        timeout = self.timeout if timeout is None else timeout
        attempts = max(1, self.max_retries if max_retries is None else max_retries)
        delay = self.retry_delay if retry_delay is None else retry_delay

        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            endpoint = self.pool.current()
            try:
                result = await asyncio.wait_for(action(endpoint), timeout)
            except asyncio.TimeoutError as err:
                last_error = CallTimeoutError(f"timeout: {description} на {endpoint.address} ({timeout}с)")
                last_error.__cause__ = err
            except Exception as err:
                if not is_transport_error(err):
                    raise
                last_error = err
            else:
                await self.pool.mark_healthy(endpoint)
                return result

            await self.pool.mark_failed(endpoint, last_error)
            if attempt < attempts:
                log_warning(account,
                            f"{description}: попытка {attempt}/{attempts} не удалась ({last_error}), повтор через {delay}с",
                            "resilient_call")
                await asyncio.sleep(delay)

        raise last_error
