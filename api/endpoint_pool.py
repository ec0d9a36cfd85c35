# api/endpoint_pool.py
"""
Пул RPC эндпоинтов с переключением при сбоях.

Каждый эндпоинт хранит счётчик подряд идущих сбоев. Текущим всегда
выбирается эндпоинт без сбоев, если такой существует. Когда сбоят все,
счётчики всех эндпоинтов уменьшаются на единицу (мягкий сброс), и пул
снова получает кандидатов, не забывая полностью недавнюю нестабильность.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from core.concurrency_manager import locked
from core.events import EndpointFailedEvent, EndpointRecoveredEvent
from core.exceptions import NoHealthyEndpointError
from core.logger import log_error, log_info, log_warning, SYSTEM_ACCOUNT


@dataclass
class Endpoint:
    """Одна точка доступа к сети"""
    address: str
    consecutive_failures: int = 0
    last_error: Optional[str] = None

    @property
    def is_healthy(self) -> bool:
        return self.consecutive_failures == 0


class EndpointPool:
    """
    Упорядоченный набор эндпоинтов с указателем на текущий.

    Все изменения счётчиков и указателя выполняются под self._lock, поэтому
    одновременные сбои от разных кошельков не приводят к рассогласованию.
    """

    def __init__(self, addresses: Sequence[str], event_bus=None):
        if not addresses:
            raise ValueError("Пул эндпоинтов не может быть пустым")
        self._endpoints: List[Endpoint] = [Endpoint(address=address) for address in addresses]
        self._current_index = 0
        self._lock = asyncio.Lock()
        self.event_bus = event_bus

    @property
    def endpoints(self) -> List[Endpoint]:
        return list(self._endpoints)

    def current(self) -> Endpoint:
        return self._endpoints[self._current_index]

    def failure_counts(self) -> List[int]:
        return [endpoint.consecutive_failures for endpoint in self._endpoints]

    async def initialize(self, probe_health: Callable[[str], Awaitable[Any]], timeout: float = 10.0):
        """
        Проверяет все эндпоинты параллельно и выбирает первый здоровый.

        Args:
            probe_health: Проверка одного адреса (chain id и номер блока); исключение = нездоров
            timeout: Таймаут одной проверки

        Raises:
            NoHealthyEndpointError: ни один эндпоинт не прошёл проверку
        """
        results = await asyncio.gather(
            *(asyncio.wait_for(probe_health(endpoint.address), timeout) for endpoint in self._endpoints),
            return_exceptions=True
        )

        async with self._lock:
            healthy_indexes = []
            for index, (endpoint, result) in enumerate(zip(self._endpoints, results)):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, Exception):
                    endpoint.consecutive_failures += 1
                    endpoint.last_error = str(result) or type(result).__name__
                    log_warning(SYSTEM_ACCOUNT, f"Эндпоинт {endpoint.address} не прошёл проверку: {endpoint.last_error}",
                                "endpoint_pool")
                else:
                    healthy_indexes.append(index)
                    log_info(SYSTEM_ACCOUNT, f"Эндпоинт {endpoint.address} доступен (блок {result})", "endpoint_pool")

            if not healthy_indexes:
                log_error(SYSTEM_ACCOUNT, "Ни один RPC эндпоинт не доступен", "endpoint_pool")
                raise NoHealthyEndpointError(f"Нет доступных эндпоинтов из {len(self._endpoints)}")

            self._current_index = healthy_indexes[0]
            log_info(SYSTEM_ACCOUNT,
                     f"Пул готов: {len(healthy_indexes)}/{len(self._endpoints)} эндпоинтов, текущий {self.current().address}",
                     "endpoint_pool")

    @locked
    async def mark_failed(self, endpoint: Endpoint, error: Any) -> Endpoint:
        """
        Регистрирует сбой эндпоинта и при необходимости переключает текущий.

        Сообщение о сбое эндпоинта, который уже не текущий (другой кошелёк
        успел переключить пул), только увеличивает его счётчик.

        Returns:
            Endpoint: Текущий эндпоинт после обработки
        """
        endpoint.consecutive_failures += 1
        endpoint.last_error = str(error) or type(error).__name__

        switched_to = None
        if endpoint is self.current():
            previous_index = self._current_index
            self._advance(previous_index)
            if self._current_index != previous_index:
                switched_to = self.current().address
                log_warning(SYSTEM_ACCOUNT, f"Переключение RPC: {endpoint.address} -> {switched_to}", "endpoint_pool")

        log_warning(SYSTEM_ACCOUNT,
                    f"Сбой эндпоинта {endpoint.address} (подряд: {endpoint.consecutive_failures}): {endpoint.last_error}",
                    "endpoint_pool")
        await self._publish(EndpointFailedEvent(
            address=endpoint.address,
            consecutive_failures=endpoint.consecutive_failures,
            error=endpoint.last_error,
            switched_to=switched_to
        ))
        return self.current()

    @locked
    async def mark_healthy(self, endpoint: Endpoint):
        """Сбрасывает счётчик сбоев эндпоинта после успешного вызова"""
        recovered = endpoint.consecutive_failures > 0
        endpoint.consecutive_failures = 0
        endpoint.last_error = None

        # Текущий со сбоями не должен оставаться текущим, если есть здоровый
        if not self.current().is_healthy:
            for index, candidate in enumerate(self._endpoints):
                if candidate is endpoint:
                    self._current_index = index
                    break

        if recovered:
            log_info(SYSTEM_ACCOUNT, f"Эндпоинт {endpoint.address} снова отвечает", "endpoint_pool")
            await self._publish(EndpointRecoveredEvent(address=endpoint.address))

    def _advance(self, prior_index: int):
        """Переводит указатель на следующий по кругу эндпоинт без сбоев (вызывается под блокировкой)."""
        next_index = self._next_healthy_after(prior_index)
        if next_index is None:
            for endpoint in self._endpoints:
                endpoint.consecutive_failures = max(0, endpoint.consecutive_failures - 1)
            log_warning(SYSTEM_ACCOUNT, f"Все эндпоинты со сбоями, мягкий сброс счётчиков: {self.failure_counts()}",
                        "endpoint_pool")
            next_index = self._next_healthy_after(prior_index)

        if next_index is not None:
            self._current_index = next_index

    def _next_healthy_after(self, prior_index: int) -> Optional[int]:
        total = len(self._endpoints)
        for step in range(1, total + 1):
            index = (prior_index + step) % total
            if self._endpoints[index].is_healthy:
                return index
        return None

    async def _publish(self, event):
        if self.event_bus is not None:
            await self.event_bus.publish(event)
