import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, List, Callable, Awaitable
from datetime import datetime
from core.logger import log_debug, log_error, log_info, SYSTEM_ACCOUNT
from core.enums import EventType, StepKind


@dataclass
class BaseEvent:
    """Базовый класс для всех событий"""
    # timestamp не участвует в __init__, а создается после
    timestamp: datetime = field(init=False)

    def __post_init__(self):
        """Устанавливает timestamp после создания объекта"""
        self.timestamp = datetime.now()


@dataclass
class AccountStartedEvent(BaseEvent):
    """Кошелёк взят в работу планировщиком"""
    account: str
    run_number: int
    event_type: EventType = field(default=EventType.ACCOUNT_STARTED, init=False)


@dataclass
class AccountFinishedEvent(BaseEvent):
    """Кошелёк закончил последовательность шагов"""
    account: str
    success: bool
    error: Optional[str] = None
    completed_steps: int = 0
    skipped_steps: int = 0
    event_type: EventType = field(default=EventType.ACCOUNT_FINISHED, init=False)


@dataclass
class StepSkippedEvent(BaseEvent):
    """Шаг пропущен из-за невыполненного предусловия"""
    account: str
    step: StepKind
    reason: str
    event_type: EventType = field(default=EventType.STEP_SKIPPED, init=False)


@dataclass
class StepCompletedEvent(BaseEvent):
    """Транзакция шага подтверждена в блоке"""
    account: str
    step: StepKind
    tx_hash: str
    block_number: int
    gas_used: int = 0
    max_fee_gwei: Optional[Decimal] = None
    event_type: EventType = field(default=EventType.STEP_COMPLETED, init=False)


@dataclass
class EndpointFailedEvent(BaseEvent):
    """RPC эндпоинт вернул транспортную ошибку"""
    address: str
    consecutive_failures: int
    error: str
    switched_to: Optional[str] = None
    event_type: EventType = field(default=EventType.ENDPOINT_FAILED, init=False)


@dataclass
class EndpointRecoveredEvent(BaseEvent):
    """RPC эндпоинт снова отвечает"""
    address: str
    event_type: EventType = field(default=EventType.ENDPOINT_RECOVERED, init=False)


# Типизация для обработчиков
Handler = Callable[[Any], Awaitable[None]]


@dataclass
class Subscription:
    """Хранит информацию о подписке"""
    handler: Handler
    event_type: EventType
    account: Optional[str] = None


class EventBus:
    """
    Шина событий жизненного цикла.
    - Единый список подписчиков.
    - Глобальные подписки и подписки на конкретный кошелёк через один метод.
    - Ошибка обработчика не останавливает доставку остальным.
    """

    def __init__(self, max_queue_size: int = 10000):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._subscriptions: List[Subscription] = []
        self._running = False
        self._processor_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        if self._running:
            return
        self._running = True
        self._processor_task = asyncio.create_task(self._process_events())

    async def stop(self):
        if not self._running:
            return
        if self._processor_task:
            # Дожидаемся и событий, которые уже взяты из очереди, но ещё обрабатываются
            await self._queue.join()
            self._running = False
            self._processor_task.cancel()
            try:
                await self._processor_task
            except asyncio.CancelledError:
                pass
        self._running = False

    async def publish(self, event: Any):
        if not self._running:
            log_debug(SYSTEM_ACCOUNT, f"Попытка публикации в остановленную EventBus: {type(event).__name__}", "EventBus")
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            log_error(getattr(event, 'account', SYSTEM_ACCOUNT),
                      f"EventBus переполнен, событие {type(event).__name__} отброшено", "EventBus")

    async def subscribe(self, event_type: EventType, handler: Handler, account: Optional[str] = None):
        """Единый метод подписки. Укажите account для подписки на один кошелёк."""
        async with self._lock:
            for sub in self._subscriptions:
                if sub.handler == handler and sub.event_type == event_type and sub.account == account:
                    return
            self._subscriptions.append(Subscription(handler=handler, event_type=event_type, account=account))
            log_info(account or SYSTEM_ACCOUNT,
                     f"Новая подписка: {handler.__name__} на {event_type.value}",
                     "EventBus")

    async def unsubscribe(self, handler: Handler):
        """Удаляет ВСЕ подписки, связанные с этим обработчиком."""
        async with self._lock:
            initial_count = len(self._subscriptions)
            self._subscriptions = [sub for sub in self._subscriptions if sub.handler != handler]
            removed_count = initial_count - len(self._subscriptions)
            if removed_count > 0:
                log_info(SYSTEM_ACCOUNT, f"Удалено {removed_count} подписок для обработчика {handler.__name__}", "EventBus")

    async def _process_events(self):
        while self._running:
            try:
                event = await self._queue.get()
            except asyncio.CancelledError:
                break

            try:
                event_type = getattr(event, 'event_type', None)
                if event_type:
                    await self._dispatch(event, event_type)
            except Exception as e:
                log_error(SYSTEM_ACCOUNT, f"Критическая ошибка в EventBus: {e}", "EventBus")
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: Any, event_type: EventType):
        event_account = getattr(event, 'account', None)

        # Копируем список, чтобы подписка во время доставки не мешала итерации
        current_subs = self._subscriptions[:]
        for sub in current_subs:
            if sub.event_type != event_type:
                continue
            if sub.account is not None and sub.account != event_account:
                continue
            try:
                await sub.handler(event)
            except Exception as e:
                log_error(event_account or SYSTEM_ACCOUNT, f"Ошибка в обработчике {sub.handler.__name__}: {e}",
                          "EventBus")
