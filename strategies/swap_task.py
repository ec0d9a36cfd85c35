"""
Исполнитель последовательности шагов одного кошелька
Кран, ленивый approve и свапы в обе стороны через FeeEscalationPolicy
"""
import asyncio
import random
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Set

from api.chain_gateway import SWAP_SPENT_TOKEN, TxReceipt
from core.accounts import Account
from core.enums import StepKind, TokenKind
from core.events import StepCompletedEvent, StepSkippedEvent
from core.exceptions import InsufficientNativeBalance
from core.functions import format_number
from core.logger import log_debug, log_error, log_info, log_warning
from core.settings_config import BotConfig, DelayRange
from strategies.fee_policy import FeeEscalationPolicy


@dataclass
class TaskOutcome:
    """Результат одного прогона кошелька"""
    success: bool
    error: Optional[BaseException] = None
    completed_steps: int = 0
    skipped_steps: int = 0

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__


class SwapTaskExecutor:
    """
    Выполняет шаги кошелька строго последовательно.

    Функции:
    - Случайная пауза между шагами (кроме первого)
    - Пропуск свапа при балансе ниже порога (не ошибка)
    - Пропуск крана, если PRIOR уже есть
    - Approve перед свапом только при отсутствии разрешения, не более раза на токен за прогон
    - Первая невосстановимая ошибка прерывает прогон
    """

    def __init__(self, operations, config: BotConfig, fee_policy: Optional[FeeEscalationPolicy] = None,
                 event_bus=None, rng: Optional[random.Random] = None):
        """
        Args:
            operations: Операции с сетью (ChainOperations или совместимый объект)
            config: Конфигурация бота
            fee_policy: Политика повышения комиссии
            event_bus: Приёмник событий (любой объект с async publish)
            rng: Источник случайности для пауз
        """
        self.operations = operations
        self.config = config
        self.rng = rng or random.Random()
        self.fee_policy = fee_policy or FeeEscalationPolicy(self.rng)
        self.event_bus = event_bus

    async def run(self, account: Account, steps: Sequence[StepKind]) -> TaskOutcome:
        completed = 0
        skipped = 0
        approved: Set[TokenKind] = set()
        log_info(account.label, f"Старт последовательности: {[step.value for step in steps]}", "swap_task")

        try:
            await self._check_native_balance(account)

            for index, step in enumerate(steps):
                if index > 0:
                    await self._pause(account, self.config.delays.between_steps, "между шагами")

                if await self._execute_step(account, step, approved):
                    completed += 1
                else:
                    skipped += 1

        except asyncio.CancelledError:
            raise
        except Exception as err:
            log_error(account.label, f"Прогон прерван на шаге {completed + skipped + 1}: {err}", "swap_task")
            return TaskOutcome(success=False, error=err, completed_steps=completed, skipped_steps=skipped)

        log_info(account.label, f"Последовательность завершена: выполнено {completed}, пропущено {skipped}",
                 "swap_task")
        return TaskOutcome(success=True, completed_steps=completed, skipped_steps=skipped)

    async def _check_native_balance(self, account: Account):
        minimum = self.config.wallets.min_native_balance
        if minimum <= 0:
            return
        balance = await self.operations.get_native_balance(account)
        if balance < minimum:
            raise InsufficientNativeBalance(
                f"Недостаточно ETH для газа: {format_number(balance)} < {format_number(minimum)}")

    async def _execute_step(self, account: Account, step: StepKind, approved: Set[TokenKind]) -> bool:
        """Возвращает True, если шаг выполнен, и False, если пропущен."""
        if step is StepKind.CLAIM:
            return await self._claim(account)
        if step is StepKind.APPROVE:
            for token in TokenKind:
                await self._ensure_approved(account, token, approved)
            return True
        return await self._swap(account, step, approved)

    async def _claim(self, account: Account) -> bool:
        prior_balance = await self.operations.get_token_balance(account, TokenKind.PRIOR)
        if prior_balance > 0:
            await self._skip(account, StepKind.CLAIM, f"PRIOR уже на балансе: {format_number(prior_balance)}")
            return False

        receipt = await self._send(account, StepKind.CLAIM,
                                   lambda fee: self.operations.claim_faucet(account, fee))
        log_info(account.label, f"Кран получен, блок {receipt.block_number}", "swap_task")
        await self._pause(account, self.config.delays.after_faucet, "после крана")
        return True

    async def _swap(self, account: Account, step: StepKind, approved: Set[TokenKind]) -> bool:
        token = SWAP_SPENT_TOKEN[step]
        balance = await self.operations.get_token_balance(account, token)
        threshold = self.config.transactions.min_balance(token)
        if balance < threshold:
            await self._skip(account, step,
                             f"Баланс {token.value.upper()} {format_number(balance)} ниже порога {format_number(threshold)}")
            return False

        await self._ensure_approved(account, token, approved)
        await self._send(account, step, lambda fee: self.operations.swap(account, step, fee))
        return True

    async def _ensure_approved(self, account: Account, token: TokenKind, approved: Set[TokenKind]):
        if token in approved:
            return
        if not await self.operations.is_approved(account, token):
            log_info(account.label, f"Нет разрешения на {token.value.upper()}, выполняю approve", "swap_task")
            await self._send(account, StepKind.APPROVE, lambda fee: self.operations.approve(account, token, fee))
        approved.add(token)

    async def _send(self, account: Account, step: StepKind, action) -> TxReceipt:
        profile = self.config.fee_profile_for_step(step)
        last_fee: Any = None

        async def attempt(fee):
            nonlocal last_fee
            last_fee = fee
            return await action(fee)

        receipt = await self.fee_policy.execute(profile, attempt, account=account.label)
        log_info(account.label, f"{step.value}: подтверждено, tx {receipt.tx_hash}, блок {receipt.block_number}",
                 "swap_task")
        await self._publish(StepCompletedEvent(
            account=account.address,
            step=step,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            max_fee_gwei=last_fee.max_fee_gwei if last_fee else None
        ))
        return receipt

    async def _skip(self, account: Account, step: StepKind, reason: str):
        log_warning(account.label, f"{step.value} пропущен: {reason}", "swap_task")
        await self._publish(StepSkippedEvent(account=account.address, step=step, reason=reason))

    async def _pause(self, account: Account, delay_range: DelayRange, reason: str):
        delay = delay_range.pick(self.rng)
        if delay <= 0:
            return
        log_debug(account.label, f"Пауза {delay:.1f}с {reason}", "swap_task")
        await asyncio.sleep(delay)

    async def _publish(self, event):
        if self.event_bus is not None:
            await self.event_bus.publish(event)
