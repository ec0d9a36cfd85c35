# core/bot_application.py
"""
Главное приложение многокошелькового бота
Собирает компоненты (шина событий, пул RPC, реестр, исполнитель, планировщик)
и управляет их жизненным циклом
"""
import asyncio
import random
from datetime import datetime
from typing import List, Optional

from api.chain_gateway import ChainOperations
from api.endpoint_pool import EndpointPool
from api.report_client import TransactionReporter
from api.resilient_call import ResilientCaller
from api.rpc_client import JsonRpcClient
from coordinator.account_registry import AccountRegistry
from coordinator.scheduler_loop import SchedulerLoop
from core.accounts import Account
from core.enums import EventType
from core.events import AccountFinishedEvent, EventBus
from core.logger import log_error, log_info, SYSTEM_ACCOUNT
from core.settings_config import BotConfig
from strategies.fee_policy import FeeEscalationPolicy
from strategies.swap_task import SwapTaskExecutor


class BotApplication:
    """
    Главный класс приложения. Все компоненты создаются здесь один раз и
    передаются явно, глобального изменяемого состояния нет.
    """

    def __init__(self, config: BotConfig, accounts: List[Account], rng: Optional[random.Random] = None):
        self.config = config
        self.accounts = accounts
        self.rng = rng or random.Random()
        self._running = False

        self.event_bus = EventBus()
        self.rpc_client = JsonRpcClient(config.network.timeout_seconds, chain_id=config.network.chain_id)
        self.pool = EndpointPool(config.network.rpc_urls, event_bus=self.event_bus)
        self.caller = ResilientCaller(
            self.pool,
            timeout=config.network.timeout_seconds,
            max_retries=config.network.max_retries,
            retry_delay=config.network.retry_delay_seconds
        )
        self.operations = ChainOperations(self.caller, self.rpc_client, config.contracts, config.network)
        self.registry = AccountRegistry(config.delays, config.wallets, rng=self.rng)
        self.executor = SwapTaskExecutor(
            self.operations, config, FeeEscalationPolicy(self.rng), event_bus=self.event_bus, rng=self.rng
        )
        self.scheduler = SchedulerLoop(self.registry, self.executor, config, event_bus=self.event_bus, rng=self.rng)
        self.reporter = TransactionReporter(config.reporting, config.network.chain_id)

        # Статистика приложения
        self.app_stats = {
            "start_time": datetime.now(),
            "runs_succeeded": 0,
            "runs_failed": 0,
        }

        self.lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """
        Запуск компонентов. NoHealthyEndpointError пробрасывается вызывающему:
        без живого RPC система не стартует.
        """
        if self._running:
            return
        log_info(SYSTEM_ACCOUNT, "Запуск BotApplication...", module_name=__name__)

        async with self.lock:
            await self.event_bus.start()
            await self.event_bus.subscribe(EventType.ACCOUNT_FINISHED, self._handle_account_finished)
            await self.reporter.attach(self.event_bus)

            await self.pool.initialize(self.rpc_client.probe_health, timeout=self.config.network.timeout_seconds)

            for account in self.accounts:
                await self.registry.register(account)

            self._running = True
        log_info(SYSTEM_ACCOUNT, f"BotApplication запущен, кошельков: {len(self.accounts)}", module_name=__name__)

    async def run(self):
        """Работает до завершения планировщика (ограниченный режим) или до stop()"""
        if not self._running:
            await self.start()
        await self.scheduler.run()

    def request_stop(self):
        self.scheduler.request_stop()

    async def stop(self):
        """Остановка BotApplication"""
        log_info(SYSTEM_ACCOUNT, "Остановка BotApplication...", module_name=__name__)

        async with self.lock:
            self._running = False

            try:
                await self.scheduler.stop()
            except Exception as err:
                log_error(SYSTEM_ACCOUNT, f"Ошибка остановки планировщика: {err}", module_name=__name__)

            await self.event_bus.stop()
            await self.reporter.close()
            await self.rpc_client.close()

        stats = self.registry.stats()
        log_info(SYSTEM_ACCOUNT,
                 f"BotApplication остановлен. Прогонов: успешных {self.app_stats['runs_succeeded']}, "
                 f"неудачных {self.app_stats['runs_failed']}. Кошельков выведено из работы: {stats.retired}/{stats.total}",
                 module_name=__name__)

    async def _handle_account_finished(self, event: AccountFinishedEvent):
        if event.success:
            self.app_stats["runs_succeeded"] += 1
        else:
            self.app_stats["runs_failed"] += 1
