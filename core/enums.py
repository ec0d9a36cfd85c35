# core/enums.py
"""
Перечисления для многокошелькового бота
Содержит состояния кошельков, типы шагов, токены и константы системы
"""
from enum import Enum


class AccountStatus(Enum):
    """Статусы кошелька в реестре"""
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETIRED = "retired"  # Терминальный статус (только в режиме ограниченного запуска)


class StepKind(Enum):
    """Типы шагов последовательности операций"""
    CLAIM = "FAUCET"
    APPROVE = "APPROVE"
    SWAP_PRIOR_TO_USDC = "SWAP_PRIOR_TO_USDC"
    SWAP_USDC_TO_PRIOR = "SWAP_USDC_TO_PRIOR"


class TokenKind(Enum):
    """Токены, с которыми работает бот"""
    PRIOR = "prior"
    USDC = "usdc"


class EventType(Enum):
    """Типы событий в системе"""
    # События кошельков
    ACCOUNT_STARTED = "account_started"
    ACCOUNT_FINISHED = "account_finished"

    # События шагов
    STEP_SKIPPED = "step_skipped"
    STEP_COMPLETED = "step_completed"

    # События RPC эндпоинтов
    ENDPOINT_FAILED = "endpoint_failed"
    ENDPOINT_RECOVERED = "endpoint_recovered"


# Константы для системы
class SystemConstants:
    """Системные константы"""

    # Подстрока сообщений узла о слишком низкой комиссии
    UNDERPRICED = "underpriced"

    # Отклонения узла, которые лечатся повышением комиссии
    UNDERPRICED_MARKERS = (
        UNDERPRICED,
        "max fee per gas less than block base fee",
        "fee cap less than block base fee",
        "transaction fee too low",
    )

    # Признаки транспортных ошибок в тексте исключения
    TRANSPORT_ERROR_MARKERS = ("timeout", "server error", "network error", "connection refused")
