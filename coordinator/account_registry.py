"""
Account Registry - единственный источник истины о состоянии кошельков

Хранит статус, время следующего допуска к запуску и историю прогонов.
Все изменения выполняются под asyncio.Lock.
"""
import asyncio
import random
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from core.accounts import Account
from core.concurrency_manager import locked
from core.enums import AccountStatus
from core.exceptions import InvalidTransition
from core.logger import log_debug, log_info, log_warning
from core.settings_config import DelaysConfig, WalletsConfig

UNREACHABLE = float("inf")


@dataclass
class AccountState:
    """Состояние одного кошелька"""
    account: Account
    status: AccountStatus = AccountStatus.READY
    next_eligible_time: float = 0.0
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    last_run_time: Optional[float] = None

    def is_eligible(self, now: float) -> bool:
        if self.status in (AccountStatus.RUNNING, AccountStatus.RETIRED):
            return False
        return now >= self.next_eligible_time


@dataclass(frozen=True)
class RegistryStats:
    total: int
    running: int
    available: int
    completed: int
    retired: int
    failed: int
    waiting: int


class AccountRegistry:
    """
    Реестр кошельков.

    Ключевые принципы:
    1. Кошелёк может выполняться не более чем в одном прогоне
    2. Число выполняющихся кошельков не превышает потолок
    3. После успеха кошелёк отдыхает дольше, чем после сбоя
    4. В режиме ограниченного запуска кошелёк уходит в RETIRED после max_runs успешных прогонов
    """

    def __init__(self, delays: DelaysConfig, wallets: WalletsConfig,
                 clock: Callable[[], float] = time.monotonic, rng: Optional[random.Random] = None):
        self.delays = delays
        self.ceiling = wallets.max_concurrent
        self.finite_mode = not wallets.run_forever
        self.max_runs = wallets.max_runs
        self.clock = clock
        self.rng = rng or random.Random()

        self._states: Dict[str, AccountState] = {}
        self._order: List[str] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._order)

    @locked
    async def register(self, account: Account) -> AccountState:
        """Регистрирует кошелёк. Повторная регистрация ничего не меняет."""
        state = self._states.get(account.address)
        if state is None:
            state = AccountState(account=account, next_eligible_time=self.clock())
            self._states[account.address] = state
            self._order.append(account.address)
            log_debug(account.label, "Кошелёк зарегистрирован", "account_registry")
        return replace(state)

    def get_state(self, account: Account) -> AccountState:
        """Копия состояния кошелька"""
        return replace(self._get(account))

    def list_eligible(self, now: Optional[float] = None) -> List[Account]:
        """Кошельки, готовые к запуску, в порядке регистрации"""
        now = self.clock() if now is None else now
        return [self._states[address].account for address in self._order
                if self._states[address].is_eligible(now)]

    @property
    def running_count(self) -> int:
        return sum(1 for state in self._states.values() if state.status is AccountStatus.RUNNING)

    @locked
    async def mark_running(self, account: Account) -> AccountState:
        """
        Переводит кошелёк в RUNNING.

        Raises:
            InvalidTransition: кошелёк уже выполняется, выведен из работы или достигнут потолок
        """
        state = self._get(account)
        if state.status is AccountStatus.RUNNING:
            raise InvalidTransition(f"{account.label} уже выполняется")
        if state.status is AccountStatus.RETIRED:
            raise InvalidTransition(f"{account.label} выведен из работы")
        if self.running_count >= self.ceiling:
            raise InvalidTransition(f"Достигнут потолок одновременных прогонов ({self.ceiling})")

        state.status = AccountStatus.RUNNING
        state.last_run_time = self.clock()
        return replace(state)

    @locked
    async def mark_finished(self, account: Account, success: bool, error: Optional[str] = None) -> AccountState:
        """
        Фиксирует результат прогона и назначает время следующего запуска.

        Raises:
            InvalidTransition: кошелёк не в статусе RUNNING
        """
        state = self._get(account)
        if state.status is not AccountStatus.RUNNING:
            raise InvalidTransition(f"{account.label} не выполняется (статус {state.status.value})")

        now = self.clock()
        if success:
            delay = self.delays.between_rounds.pick(self.rng)
            state.run_count += 1
            state.status = AccountStatus.COMPLETED
        else:
            delay = self.delays.failure_backoff.pick(self.rng)
            state.error_count += 1
            state.last_error = error or "unknown error"
            state.status = AccountStatus.FAILED
        state.next_eligible_time = now + delay

        if self.finite_mode and state.run_count >= self.max_runs:
            state.status = AccountStatus.RETIRED
            state.next_eligible_time = UNREACHABLE
            log_info(account.label, f"Выполнено прогонов: {state.run_count}/{self.max_runs}, кошелёк выведен из работы",
                     "account_registry")
        elif success:
            log_info(account.label, f"Прогон #{state.run_count} успешен, следующий через {delay / 60:.1f} мин",
                     "account_registry")
        else:
            log_warning(account.label, f"Прогон неудачен (ошибок: {state.error_count}), повтор через {delay:.0f}с",
                        "account_registry")
        return replace(state)

    def stats(self, now: Optional[float] = None) -> RegistryStats:
        now = self.clock() if now is None else now
        counts = {status: 0 for status in AccountStatus}
        available = 0
        for state in self._states.values():
            counts[state.status] += 1
            if state.is_eligible(now):
                available += 1

        running = counts[AccountStatus.RUNNING]
        retired = counts[AccountStatus.RETIRED]
        return RegistryStats(
            total=len(self._states),
            running=running,
            available=available,
            completed=counts[AccountStatus.COMPLETED],
            retired=retired,
            failed=counts[AccountStatus.FAILED],
            waiting=len(self._states) - running - retired - available,
        )

    def is_finished(self, now: Optional[float] = None) -> bool:
        """Ограниченный режим: планировать больше нечего и ничего не станет доступным"""
        if not self.finite_mode:
            return False
        stats = self.stats(now)
        return stats.retired + stats.running >= stats.total and stats.available == 0

    def _get(self, account: Account) -> AccountState:
        try:
            return self._states[account.address]
        except KeyError:
            raise InvalidTransition(f"{account.label} не зарегистрирован") from None
