import copy
import json
import random
from decimal import Decimal, InvalidOperation, getcontext
from typing import Any, Dict, List, Optional, Union

from core.enums import StepKind

# Устанавливаем точность для Decimal
getcontext().prec = 28

SWAP_KINDS = (StepKind.SWAP_PRIOR_TO_USDC, StepKind.SWAP_USDC_TO_PRIOR)


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder для Decimal"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


def to_decimal(value: Union[int, float, str, Decimal]) -> Decimal:
    """Безопасное преобразование в Decimal"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation:
            return Decimal('0')
    return Decimal('0')


def format_number(value: Union[int, float, Decimal], precision: int = 8) -> str:
    """Форматирование числа с заданной точностью"""
    decimal_value = to_decimal(value)

    # Убираем лишние нули
    formatted = f"{decimal_value:.{precision}f}".rstrip('0').rstrip('.')
    return formatted if formatted else "0"


def format_address(address: str) -> str:
    """Короткая форма адреса для логов: 0x1234...abcd"""
    if not address or len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


# === Единицы токенов ===

def from_base_units(amount: int, decimals: int) -> Decimal:
    """Перевод целого значения из контракта в человекочитаемое число"""
    return Decimal(amount) / (Decimal(10) ** decimals)


def to_base_units(amount: Union[str, Decimal], decimals: int) -> int:
    """Перевод человекочитаемого числа в целое значение для контракта"""
    return int(to_decimal(amount) * (Decimal(10) ** decimals))


def gwei_to_wei(value: Decimal) -> int:
    return int(to_decimal(value) * Decimal(10 ** 9))


# === Конфигурация ===

def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Рекурсивно сливает override поверх base. Исходные словари не изменяются.

    Args:
        base: Значения по умолчанию
        override: Значения с более высоким приоритетом

    Returns:
        Dict: Новый слитый словарь
    """
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


# === Последовательность шагов ===

def generate_step_sequence(min_steps: int, max_steps: int,
                           start_with_prior_to_usdc: bool = True,
                           require_faucet: bool = False,
                           rng: Optional[random.Random] = None) -> List[StepKind]:
    """
    Генерирует случайную последовательность свапов для одного прогона.

    Длина свапов случайна в [min_steps, max_steps], два одинаковых свапа
    подряд не идут. CLAIM ставится первым, если кран обязателен; исполнитель
    сам пропустит его, если PRIOR уже есть на кошельке.
    """
    rng = rng or random.Random()
    count = rng.randint(min_steps, max_steps)

    swaps: List[StepKind] = []
    if start_with_prior_to_usdc and count > 0:
        swaps.append(StepKind.SWAP_PRIOR_TO_USDC)

    while len(swaps) < count:
        last = swaps[-1] if swaps else None
        swaps.append(rng.choice([kind for kind in SWAP_KINDS if kind != last]))

    if require_faucet:
        return [StepKind.CLAIM] + swaps
    return swaps
