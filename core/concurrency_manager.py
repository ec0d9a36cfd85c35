"""
Concurrency Manager - ограниченный набор рабочих задач для прогонов кошельков

Планировщик запускает прогоны как asyncio задачи через этот менеджер,
а не «выстрелил и забыл»: каждая задача учитывается до завершения,
у владельца есть точка ожидания (wait_idle) и управляемая остановка (shutdown).

Архитектура:
- Один ключ (адрес кошелька) = максимум одна активная задача
- Жёсткий предел числа одновременно выполняемых задач
- Результат задачи всегда наблюдается (исключения логируются, не теряются)
- Декоратор locked для методов, изменяющих общее состояние под self._lock
"""
import asyncio
from functools import partial, wraps
from typing import Any, Callable, Coroutine, Dict, Optional

from core.exceptions import InvalidTransition
from core.logger import log_debug, log_error, log_warning, SYSTEM_ACCOUNT


class ConcurrencyManager:
    """
    Ограниченный набор рабочих задач.

    Принципы:
    - Не более max_workers задач одновременно
    - Не более одной задачи на ключ
    - Завершённые задачи удаляются автоматически
    """

    def __init__(self, max_workers: int):
        if max_workers < 1:
            raise ValueError("max_workers должен быть >= 1")
        self.max_workers = max_workers

        # Активные задачи (ключ -> Task)
        self._tasks: Dict[str, asyncio.Task] = {}

        # Метрики
        self._launched = 0
        self._finished = 0
        self._failed = 0
        self._cancelled = 0

    @property
    def running_count(self) -> int:
        return len(self._tasks)

    @property
    def free_slots(self) -> int:
        return self.max_workers - len(self._tasks)

    def is_running(self, key: str) -> bool:
        return key in self._tasks

    def launch(self, key: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """
        Запускает корутину как отслеживаемую задачу.

        Raises:
            InvalidTransition: задача с этим ключом уже выполняется или нет свободных слотов
        """
        if key in self._tasks or len(self._tasks) >= self.max_workers:
            # Корутина не будет запущена, закрываем её, чтобы не было предупреждения "never awaited"
            coro.close()
            if key in self._tasks:
                raise InvalidTransition(f"Задача для {key} уже выполняется")
            raise InvalidTransition(f"Достигнут предел одновременных задач ({self.max_workers})")

        task = asyncio.create_task(coro, name=f"run:{key}")
        self._tasks[key] = task
        self._launched += 1
        task.add_done_callback(partial(self._on_task_done, key))
        log_debug(key, f"[ConcurrencyManager] Задача запущена ({len(self._tasks)}/{self.max_workers})",
                  "ConcurrencyManager")
        return task

    def _on_task_done(self, key: str, task: asyncio.Task):
        if self._tasks.get(key) is task:
            del self._tasks[key]

        if task.cancelled():
            self._cancelled += 1
            log_warning(key, "[ConcurrencyManager] Задача отменена", "ConcurrencyManager")
            return

        error = task.exception()
        if error is not None:
            self._failed += 1
            log_error(key, f"[ConcurrencyManager] Задача завершилась с необработанной ошибкой: {error!r}",
                      "ConcurrencyManager")
        else:
            self._finished += 1

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Ждёт завершения всех текущих задач.

        Returns:
            bool: True, если все задачи завершились до таймаута
        """
        pending = list(self._tasks.values())
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending

    async def shutdown(self, grace_period: float) -> int:
        """
        Даёт задачам grace_period секунд на завершение, затем отменяет оставшиеся.

        Returns:
            int: Сколько задач пришлось отменить
        """
        if not self._tasks:
            return 0

        log_debug(SYSTEM_ACCOUNT,
                  f"[ConcurrencyManager] Ожидание {len(self._tasks)} задач до {grace_period:.0f}с",
                  "ConcurrencyManager")
        if await self.wait_idle(timeout=grace_period):
            return 0

        remaining = list(self._tasks.values())
        for task in remaining:
            task.cancel()
        await asyncio.gather(*remaining, return_exceptions=True)
        log_warning(SYSTEM_ACCOUNT, f"[ConcurrencyManager] Отменено задач после grace period: {len(remaining)}",
                    "ConcurrencyManager")
        return len(remaining)

    def get_stats(self) -> Dict[str, Any]:
        """Возвращает статистику рабочих задач."""
        return {
            "max_workers": self.max_workers,
            "running": len(self._tasks),
            "launched": self._launched,
            "finished": self._finished,
            "failed": self._failed,
            "cancelled": self._cancelled,
        }


def locked(func: Callable) -> Callable:
    """
    Декоратор для защиты методов, изменяющих общее состояние, блокировкой self._lock.

    Использование:
        @locked
        async def mark_failed(self, endpoint, error):
            ...
    """
    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        async with self._lock:
            return await func(self, *args, **kwargs)

    return wrapper
