"""
Scheduler Loop - главный цикл планирования прогонов кошельков

Опрашивает реестр, запускает исполнителей до потолка одновременности,
разносит запуски во времени и завершается в ограниченном режиме, когда
планировать больше нечего.
"""
import asyncio
import random
from typing import Callable, List, Optional

from core.accounts import Account
from core.concurrency_manager import ConcurrencyManager
from core.enums import StepKind
from core.events import AccountFinishedEvent, AccountStartedEvent
from core.exceptions import BotError
from core.functions import generate_step_sequence
from core.logger import log_error, log_info, log_warning, SYSTEM_ACCOUNT
from core.settings_config import BotConfig
from coordinator.account_registry import AccountRegistry
from strategies.swap_task import SwapTaskExecutor, TaskOutcome


class SchedulerLoop:
    """
    Координатор прогонов.

    Ключевые принципы:
    1. Сам цикл не конкурентен, прогоны идут отдельными задачами
    2. Сбой тика логируется и не останавливает цикл
    3. Прогоны не бросаются: при остановке у них есть grace period, затем отмена
    """

    def __init__(self, registry: AccountRegistry, executor: SwapTaskExecutor, config: BotConfig,
                 event_bus=None, workers: Optional[ConcurrencyManager] = None,
                 step_factory: Optional[Callable[[], List[StepKind]]] = None,
                 rng: Optional[random.Random] = None):
        self.registry = registry
        self.executor = executor
        self.config = config
        self.event_bus = event_bus
        self.rng = rng or random.Random()
        self.workers = workers or ConcurrencyManager(config.wallets.max_concurrent)
        self.step_factory = step_factory or self._default_steps

        self.poll_interval = config.delays.wallet_check_interval
        self.loop_error_cooldown = config.delays.loop_error_cooldown
        self.shutdown_grace_period = config.delays.shutdown_grace_period

        self.running = False
        self._stop_requested = asyncio.Event()
        self._stopped = asyncio.Event()

        self.stats = {
            "ticks": 0,
            "launched": 0,
            "succeeded": 0,
            "failed": 0,
            "loop_errors": 0,
        }

    @property
    def is_running(self) -> bool:
        return self.running

    def _default_steps(self) -> List[StepKind]:
        transactions = self.config.transactions
        return generate_step_sequence(
            transactions.min_steps,
            transactions.max_steps,
            start_with_prior_to_usdc=transactions.always_start_with_prior_to_usdc,
            require_faucet=self.config.wallets.require_faucet,
            rng=self.rng,
        )

    async def run(self):
        """
        Главный цикл. Возвращает управление, когда в ограниченном режиме
        все кошельки выведены из работы, либо после stop().
        """
        if self.running:
            return
        self.running = True
        self._stopped.clear()
        mode = "до исчерпания прогонов" if self.registry.finite_mode else "бесконечный"
        log_info(SYSTEM_ACCOUNT,
                 f"🟢 Планировщик запущен: кошельков {len(self.registry)}, потолок {self.registry.ceiling}, режим {mode}",
                 "scheduler")

        try:
            while not self._stop_requested.is_set():
                try:
                    if await self._tick():
                        log_info(SYSTEM_ACCOUNT, "✅ Все кошельки выполнили свои прогоны", "scheduler")
                        break
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self.stats["loop_errors"] += 1
                    log_error(SYSTEM_ACCOUNT,
                              f"Ошибка в цикле планировщика: {e!r}. Пауза {self.loop_error_cooldown}с",
                              "scheduler")
                    await self._sleep(self.loop_error_cooldown)
        finally:
            cancelled = await self.workers.shutdown(self.shutdown_grace_period)
            if cancelled:
                log_warning(SYSTEM_ACCOUNT, f"Отменено незавершённых прогонов: {cancelled}", "scheduler")
            self.running = False
            self._stopped.set()
            log_info(SYSTEM_ACCOUNT, f"🔴 Планировщик остановлен. Статистика: {self.stats}", "scheduler")

    def request_stop(self):
        """Сигнал остановки (можно вызывать из обработчика сигналов)"""
        self._stop_requested.set()

    def reset(self):
        """Снимает ранее поданный сигнал остановки перед повторным запуском."""
        if self.running:
            raise RuntimeError("Нельзя сбросить работающий планировщик")
        self._stop_requested.clear()

    async def stop(self):
        """Останавливает цикл и ждёт, пока незавершённые прогоны закончатся или будут отменены."""
        if not self.running:
            return
        log_info(SYSTEM_ACCOUNT, "Остановка планировщика...", "scheduler")
        self.request_stop()
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=self.shutdown_grace_period + 5.0)
        except asyncio.TimeoutError:
            log_warning(SYSTEM_ACCOUNT, "Таймаут ожидания остановки планировщика", "scheduler")

    async def _tick(self) -> bool:
        """Один проход цикла. Возвращает True, если работа завершена."""
        self.stats["ticks"] += 1

        if self.registry.is_finished():
            if self.workers.running_count == 0:
                return True
            # Прогоны ещё идут: ждём их и проверяем условие заново
            await self.workers.wait_idle(timeout=self.poll_interval)
            return False

        slots = min(self.registry.ceiling - self.registry.running_count, self.workers.free_slots)
        eligible = self.registry.list_eligible() if slots > 0 else []
        if not eligible:
            await self._sleep(self.poll_interval)
            return False

        for account in eligible[:slots]:
            if self._stop_requested.is_set():
                break
            await self._launch(account)
            await self._sleep(self.config.delays.between_wallets.pick(self.rng))
        return False

    async def _launch(self, account: Account):
        steps = self.step_factory()
        state = await self.registry.mark_running(account)
        run_number = state.run_count + 1

        # После mark_running любой сбой возвращает кошелёк из RUNNING
        try:
            await self._publish(AccountStartedEvent(account=account.address, run_number=run_number))
            self.workers.launch(account.address, self._run_account(account, steps))
        except BaseException as e:
            await self.registry.mark_finished(account, False, f"Прогон не удалось запустить: {e!r}")
            raise

        self.stats["launched"] += 1
        log_info(account.label, f"▶️ Прогон #{run_number}: {len(steps)} шагов "
                                f"({self.registry.running_count}/{self.registry.ceiling} активно)", "scheduler")

    async def _run_account(self, account: Account, steps: List[StepKind]):
        try:
            outcome = await self.executor.run(account, steps)
        except asyncio.CancelledError:
            await self._finish(account, TaskOutcome(success=False, error=BotError("Прогон отменён при остановке")))
            raise
        except Exception as e:
            outcome = TaskOutcome(success=False, error=e)
        await self._finish(account, outcome)

    async def _finish(self, account: Account, outcome: TaskOutcome):
        await self.registry.mark_finished(account, outcome.success, outcome.error_message)
        self.stats["succeeded" if outcome.success else "failed"] += 1
        await self._publish(AccountFinishedEvent(
            account=account.address,
            success=outcome.success,
            error=outcome.error_message,
            completed_steps=outcome.completed_steps,
            skipped_steps=outcome.skipped_steps
        ))

    async def _sleep(self, delay: float):
        """Пауза, которую прерывает сигнал остановки"""
        if delay <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _publish(self, event):
        if self.event_bus is not None:
            await self.event_bus.publish(event)
