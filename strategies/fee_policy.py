# strategies/fee_policy.py
"""
Повышение комиссии при отклонении транзакции как underpriced.

Параметры комиссии для попытки n вычисляются чистой функцией от базового
профиля и номера попытки: base * multiplier ** n. Профиль никогда не
изменяется, поэтому после любого исхода вызова (успех, исчерпание лимита,
посторонняя ошибка) следующий вызов снова начинает с базовых значений.
"""
import random
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Awaitable, Callable, Optional, TypeVar

from core.exceptions import FeeUnderpricedError, RetryBudgetExhausted
from core.functions import gwei_to_wei
from core.logger import log_warning, SYSTEM_ACCOUNT
from core.settings_config import FeeProfile

T = TypeVar("T")

FEE_QUANTUM = Decimal("0.000001")


@dataclass(frozen=True)
class FeeParams:
    """Параметры комиссии одной попытки"""
    gas_limit: int
    max_fee_gwei: Decimal
    priority_fee_gwei: Decimal
    attempt: int = 0

    @property
    def max_fee_wei(self) -> int:
        return gwei_to_wei(self.max_fee_gwei)

    @property
    def priority_fee_wei(self) -> int:
        return gwei_to_wei(self.priority_fee_gwei)


class FeeEscalationPolicy:
    """Выполняет действие с комиссией, повышая её не более retry_budget раз."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    @staticmethod
    def params_for_attempt(profile: FeeProfile, attempt: int, gas_limit: int) -> FeeParams:
        """Комиссия попытки attempt (0 = базовая)."""
        factor = profile.multiplier ** attempt
        return FeeParams(
            gas_limit=gas_limit,
            max_fee_gwei=(profile.max_fee_gwei * factor).quantize(FEE_QUANTUM, rounding=ROUND_HALF_UP),
            priority_fee_gwei=(profile.priority_fee_gwei * factor).quantize(FEE_QUANTUM, rounding=ROUND_HALF_UP),
            attempt=attempt,
        )

    def pick_gas_limit(self, profile: FeeProfile) -> int:
        return self.rng.randint(profile.gas_limit_min, profile.gas_limit_max)

    async def execute(self, profile: FeeProfile, action: Callable[[FeeParams], Awaitable[T]],
                      account: str = SYSTEM_ACCOUNT) -> T:
        """
        Вызывает action(params), повышая комиссию после каждого FeeUnderpricedError.

        Raises:
            RetryBudgetExhausted: underpriced после retry_budget повышений
            Любую другую ошибку action без повторов
        """
        gas_limit = self.pick_gas_limit(profile)
        attempt = 0
        while True:
            params = self.params_for_attempt(profile, attempt, gas_limit)
            try:
                return await action(params)
            except FeeUnderpricedError as err:
                if attempt >= profile.retry_budget:
                    raise RetryBudgetExhausted(profile.name, attempt + 1) from err
                attempt += 1
                log_warning(account,
                            f"Комиссия '{profile.name}' недостаточна ({err}), повтор {attempt}/{profile.retry_budget} "
                            f"с max_fee={self.params_for_attempt(profile, attempt, gas_limit).max_fee_gwei} gwei",
                            "fee_policy")
