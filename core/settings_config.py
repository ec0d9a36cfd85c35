# core/settings_config.py

"""
Система конфигураций для многокошелькового бота.
Загружает настройки из JSON файла и .env и предоставляет неизменяемый,
структурированный доступ к ним.
"""
import json
import random
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from environs import Env, EnvError

from core.default_configs import DefaultConfigs
from core.enums import StepKind, TokenKind
from core.exceptions import ConfigError
from core.functions import deep_merge
from core.logger import log_info, log_error, SYSTEM_ACCOUNT

# Какой профиль комиссии использует каждый тип шага
STEP_FEE_PROFILES = {
    StepKind.CLAIM: "faucet",
    StepKind.APPROVE: "approve",
    StepKind.SWAP_PRIOR_TO_USDC: "swap",
    StepKind.SWAP_USDC_TO_PRIOR: "swap",
}


# --- ОСНОВНЫЕ ДАТА-КЛАССЫ КОНФИГУРАЦИИ ---

@dataclass(frozen=True)
class DelayRange:
    """Диапазон случайной задержки в секундах"""
    min: float
    max: float

    def pick(self, rng: random.Random) -> float:
        return rng.uniform(self.min, self.max)


@dataclass(frozen=True)
class NetworkConfig:
    """Сеть и RPC эндпоинты"""
    chain_id: int
    rpc_urls: Tuple[str, ...]
    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    receipt_timeout_seconds: float = 180.0
    receipt_poll_interval_seconds: float = 3.0


@dataclass(frozen=True)
class ContractsConfig:
    """Адреса контрактов"""
    prior_token: str
    usdc_token: str
    faucet: str
    swap_router: str

    def token_address(self, token: TokenKind) -> str:
        return self.prior_token if token is TokenKind.PRIOR else self.usdc_token


@dataclass(frozen=True)
class FeeProfile:
    """Базовые параметры комиссии для одного типа операции. Никогда не изменяется."""
    name: str
    gas_limit_min: int
    gas_limit_max: int
    max_fee_gwei: Decimal
    priority_fee_gwei: Decimal
    retry_budget: int = 3
    multiplier: Decimal = Decimal("1.3")


@dataclass(frozen=True)
class DelaysConfig:
    between_wallets: DelayRange
    between_steps: DelayRange
    between_rounds: DelayRange
    failure_backoff: DelayRange
    after_faucet: DelayRange
    wallet_check_interval: float = 5.0
    loop_error_cooldown: float = 10.0
    shutdown_grace_period: float = 30.0


@dataclass(frozen=True)
class WalletsConfig:
    max_concurrent: int = 3
    run_forever: bool = True
    max_runs: int = 1
    randomize_order: bool = True
    require_faucet: bool = True
    min_native_balance: Decimal = Decimal("0.001")


@dataclass(frozen=True)
class TransactionsConfig:
    min_steps: int
    max_steps: int
    always_start_with_prior_to_usdc: bool = True
    min_balance_thresholds: Dict[TokenKind, Decimal] = field(default_factory=dict)

    def min_balance(self, token: TokenKind) -> Decimal:
        return self.min_balance_thresholds.get(token, Decimal("0"))


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    log_dir: str = "logs"
    log_file: str = "prior_bot.log"
    retention_days: int = 60


@dataclass(frozen=True)
class ReportingConfig:
    """Отправка транзакций во внешний API (опционально)"""
    enabled: bool = False
    endpoint_url: str = ""
    timeout_seconds: float = 15.0


@dataclass(frozen=True)
class BotConfig:
    """Главная, корневая конфигурация системы"""
    network: NetworkConfig
    contracts: ContractsConfig
    gas_settings: Dict[str, FeeProfile]
    delays: DelaysConfig
    wallets: WalletsConfig
    transactions: TransactionsConfig
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    reporting: ReportingConfig = field(default_factory=ReportingConfig)
    private_keys_file: str = "wallets.txt"

    def fee_profile(self, name: str) -> FeeProfile:
        try:
            return self.gas_settings[name]
        except KeyError:
            raise ConfigError(f"Профиль комиссии '{name}' не задан в gas_settings") from None

    def fee_profile_for_step(self, step: StepKind) -> FeeProfile:
        return self.fee_profile(STEP_FEE_PROFILES[step])


# --- ПОСТРОЕНИЕ И ВАЛИДАЦИЯ ---

def _delay_range(raw: Dict[str, Any]) -> DelayRange:
    return DelayRange(min=float(raw["min"]), max=float(raw["max"]))


def _flag(section: Dict[str, Any], key: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key}: ожидается true/false, получено {value!r}")
    return value


def _fee_profile(name: str, raw: Dict[str, Any]) -> FeeProfile:
    return FeeProfile(
        name=name,
        gas_limit_min=int(raw["gas_limit_min"]),
        gas_limit_max=int(raw["gas_limit_max"]),
        max_fee_gwei=Decimal(str(raw["max_fee_gwei"])),
        priority_fee_gwei=Decimal(str(raw["priority_fee_gwei"])),
        retry_budget=int(raw.get("retry_budget", 3)),
        multiplier=Decimal(str(raw.get("multiplier", "1.3"))),
    )


def build_bot_config(raw: Dict[str, Any]) -> BotConfig:
    """Строит BotConfig из словаря (уже слитого с настройками по умолчанию) и валидирует его."""
    try:
        network = raw["network"]
        delays = raw["delays"]
        wallets = raw["wallets"]
        transactions = raw["transactions"]
        logging_raw = raw.get("logging", {})
        reporting = raw.get("reporting", {})

        config = BotConfig(
            network=NetworkConfig(
                chain_id=int(network["chain_id"]),
                rpc_urls=tuple(network["rpc_urls"]),
                timeout_seconds=float(network.get("timeout_seconds", 30.0)),
                max_retries=int(network.get("max_retries", 3)),
                retry_delay_seconds=float(network.get("retry_delay_seconds", 2.0)),
                receipt_timeout_seconds=float(network.get("receipt_timeout_seconds", 180.0)),
                receipt_poll_interval_seconds=float(network.get("receipt_poll_interval_seconds", 3.0)),
            ),
            contracts=ContractsConfig(**raw["contracts"]),
            gas_settings={name: _fee_profile(name, profile) for name, profile in raw["gas_settings"].items()},
            delays=DelaysConfig(
                between_wallets=_delay_range(delays["between_wallets"]),
                between_steps=_delay_range(delays["between_steps"]),
                between_rounds=_delay_range(delays["between_rounds"]),
                failure_backoff=_delay_range(delays["failure_backoff"]),
                after_faucet=_delay_range(delays["after_faucet"]),
                wallet_check_interval=float(delays.get("wallet_check_interval", 5.0)),
                loop_error_cooldown=float(delays.get("loop_error_cooldown", 10.0)),
                shutdown_grace_period=float(delays.get("shutdown_grace_period", 30.0)),
            ),
            wallets=WalletsConfig(
                max_concurrent=int(wallets.get("max_concurrent", 3)),
                run_forever=_flag(wallets, "run_forever", True),
                max_runs=int(wallets.get("max_runs", 1)),
                randomize_order=_flag(wallets, "randomize_order", True),
                require_faucet=_flag(wallets, "require_faucet", True),
                min_native_balance=Decimal(str(wallets.get("min_native_balance", "0.001"))),
            ),
            transactions=TransactionsConfig(
                min_steps=int(transactions["min_steps"]),
                max_steps=int(transactions["max_steps"]),
                always_start_with_prior_to_usdc=_flag(transactions, "always_start_with_prior_to_usdc", True),
                min_balance_thresholds={
                    TokenKind(token): Decimal(str(value))
                    for token, value in transactions.get("min_balance_thresholds", {}).items()
                },
            ),
            logging=LoggingConfig(**logging_raw),
            reporting=ReportingConfig(**reporting),
            private_keys_file=str(raw.get("private_keys_file", "wallets.txt")),
        )
    except (KeyError, TypeError, ValueError, InvalidOperation) as err:
        raise ConfigError(f"Некорректная конфигурация: {err!r}") from err

    _validate_config(config)
    return config


def _validate_config(config: BotConfig):
    """Проверка ключевых инвариантов конфигурации."""
    if not config.network.rpc_urls:
        raise ConfigError("Не задан ни один RPC URL (network.rpc_urls)")
    if config.network.max_retries < 1:
        raise ConfigError("network.max_retries должен быть >= 1")
    if config.wallets.max_concurrent < 1:
        raise ConfigError("wallets.max_concurrent должен быть >= 1")
    if config.wallets.max_runs < 1:
        raise ConfigError("wallets.max_runs должен быть >= 1")
    if config.transactions.min_steps < 0 or config.transactions.min_steps > config.transactions.max_steps:
        raise ConfigError("transactions.min_steps должен быть в диапазоне [0, max_steps]")

    delays = config.delays
    for name in ("between_wallets", "between_steps", "between_rounds", "failure_backoff", "after_faucet"):
        delay_range: DelayRange = getattr(delays, name)
        if delay_range.min < 0 or delay_range.min > delay_range.max:
            raise ConfigError(f"delays.{name}: требуется 0 <= min <= max")
    if delays.failure_backoff.max >= delays.between_rounds.min:
        raise ConfigError("delays.failure_backoff.max должен быть меньше delays.between_rounds.min")

    for profile in config.gas_settings.values():
        if profile.gas_limit_min > profile.gas_limit_max:
            raise ConfigError(f"gas_settings.{profile.name}: gas_limit_min > gas_limit_max")
        if profile.retry_budget < 0 or profile.multiplier < 1:
            raise ConfigError(f"gas_settings.{profile.name}: retry_budget >= 0 и multiplier >= 1")
    for step in STEP_FEE_PROFILES:
        config.fee_profile_for_step(step)


# --- КЛАСС ДЛЯ ЗАГРУЗКИ КОНФИГУРАЦИИ ---

class ConfigLoader:
    """Загрузчик конфигурации: значения по умолчанию -> JSON файл -> переменные окружения."""

    def __init__(self, env_file: str = ".env"):
        self.env = Env()
        env_path = Path(env_file)
        if env_path.exists():
            self.env.read_env(env_file)
            log_info(SYSTEM_ACCOUNT, f"Файл .env загружен: {env_path.absolute()}", 'system_config')
        else:
            log_info(SYSTEM_ACCOUNT,
                     f"Файл .env не найден: {env_path.absolute()}. Используются переменные окружения системы.",
                     'system_config')

    def load_config(self, config_file: Optional[str] = None) -> BotConfig:
        """Загрузка и валидация полной конфигурации системы."""
        try:
            merged = DefaultConfigs.get_all_default_configs()

            config_path = Path(config_file or self.env.str("CONFIG_FILE", "config.json"))
            merged = deep_merge(merged, self._load_json(config_path))
            try:
                env_overrides = self._env_overrides()
            except EnvError as err:
                raise ConfigError(f"Некорректная переменная окружения: {err}") from err
            merged = deep_merge(merged, env_overrides)

            config = build_bot_config(merged)
            log_info(SYSTEM_ACCOUNT, "Конфигурация успешно загружена и валидирована.", 'system_config')
            return config

        except ConfigError as err:
            log_error(SYSTEM_ACCOUNT, f"Критическая ошибка загрузки конфигурации: {err}", 'system_config')
            raise

    @staticmethod
    def _load_json(path: Path) -> Dict[str, Any]:
        if not path.exists():
            log_info(SYSTEM_ACCOUNT, f"Файл конфигурации {path} не найден, используются значения по умолчанию",
                     'system_config')
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as err:
            raise ConfigError(f"Не удалось прочитать {path}: {err}") from err
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: ожидается JSON объект верхнего уровня")
        log_info(SYSTEM_ACCOUNT, f"Файл конфигурации загружен: {path.absolute()}", 'system_config')
        return data

    def _env_overrides(self) -> Dict[str, Any]:
        """Переопределения из окружения (аналог опций командной строки)."""
        overrides: Dict[str, Any] = {}

        rpc_urls = self.env.list("RPC_URLS", None)
        chain_id = self.env.int("CHAIN_ID", None)
        if rpc_urls or chain_id is not None:
            overrides["network"] = {}
            if rpc_urls:
                overrides["network"]["rpc_urls"] = rpc_urls
            if chain_id is not None:
                overrides["network"]["chain_id"] = chain_id

        max_concurrent = self.env.int("MAX_CONCURRENT", None)
        if max_concurrent is not None:
            overrides.setdefault("wallets", {})["max_concurrent"] = max_concurrent
        if self.env.bool("ONE_TIME", False):
            overrides.setdefault("wallets", {})["run_forever"] = False

        log_level = self.env.str("LOG_LEVEL", None)
        if self.env.bool("DEBUG", False):
            log_level = "DEBUG"
        if log_level:
            overrides["logging"] = {"level": log_level}

        keys_file = self.env.str("PRIVATE_KEYS_FILE", None)
        if keys_file:
            overrides["private_keys_file"] = keys_file
        return overrides


def load_bot_config(env_file: str = ".env", config_file: Optional[str] = None) -> BotConfig:
    """Фабричная функция для загрузки конфигурации."""
    loader = ConfigLoader(env_file)
    return loader.load_config(config_file)
