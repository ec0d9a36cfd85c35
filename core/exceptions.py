# core/exceptions.py
"""
Иерархия исключений бота.

Все исключения наследуются от BotError, чтобы вызывающий код мог
перехватывать их широко или узко по необходимости.
"""


class BotError(Exception):
    """Базовое исключение для всех ошибок бота."""


# ---------------------------------------------------------------------------
# Сеть / RPC
# ---------------------------------------------------------------------------

class TransportError(BotError):
    """Транспортная ошибка: таймаут, отказ соединения, ошибка сервера."""


class CallTimeoutError(TransportError):
    """RPC вызов не уложился в отведённое время."""


class RpcError(BotError):
    """Узел отклонил запрос (ошибка предметного уровня, без смены эндпоинта)."""

    def __init__(self, message: str, code: int = 0):
        self.code = code
        super().__init__(message)


class FeeUnderpricedError(RpcError):
    """Узел отклонил транзакцию из-за слишком низкой комиссии."""


class TransactionRevertedError(RpcError):
    """Транзакция попала в блок, но завершилась со статусом 0."""

    def __init__(self, tx_hash: str, block_number: int = 0):
        self.tx_hash = tx_hash
        self.block_number = block_number
        super().__init__(f"Транзакция {tx_hash} отменена в блоке {block_number}")


class NoHealthyEndpointError(BotError):
    """Ни один RPC эндпоинт не прошёл проверку при старте."""


# ---------------------------------------------------------------------------
# Комиссии
# ---------------------------------------------------------------------------

class RetryBudgetExhausted(BotError):
    """Исчерпан лимит повторов с повышенной комиссией."""

    def __init__(self, profile_name: str, attempts: int):
        self.profile_name = profile_name
        self.attempts = attempts
        super().__init__(f"Профиль комиссии '{profile_name}': лимит повторов исчерпан после {attempts} попыток")


# ---------------------------------------------------------------------------
# Реестр кошельков / выполнение
# ---------------------------------------------------------------------------

class InvalidTransition(BotError):
    """Недопустимый переход статуса кошелька."""


class InsufficientNativeBalance(BotError):
    """Недостаточно нативной монеты для оплаты газа."""


# ---------------------------------------------------------------------------
# Конфигурация и загрузка
# ---------------------------------------------------------------------------

class ConfigError(BotError):
    """Некорректная или отсутствующая конфигурация."""


class AccountLoadError(BotError):
    """Не удалось загрузить кошельки из файла ключей."""
