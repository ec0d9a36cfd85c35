# core/default_configs.py

from typing import Dict, Any


class DefaultConfigs:
    @staticmethod
    def get_network_config() -> Dict[str, Any]:
        """Сеть и RPC эндпоинты."""
        return {
            "chain_id": 84532,                     # Base Sepolia
            "rpc_urls": ["https://sepolia.base.org"],
            "timeout_seconds": 30.0,               # Таймаут одного RPC вызова
            "max_retries": 3,                      # Всего попыток на один вызов
            "retry_delay_seconds": 2.0,
            "receipt_timeout_seconds": 180.0,      # Ожидание квитанции транзакции
            "receipt_poll_interval_seconds": 3.0,
        }

    @staticmethod
    def get_contracts_config() -> Dict[str, Any]:
        """Адреса контрактов Prior Protocol в тестовой сети."""
        return {
            "prior_token": "0xefc91c5a51e8533282486fa2601dffe0a0b16edb",
            "usdc_token": "0xdb07b0b4e88d9d5a79a08e91fee20bb41f9989a2",
            "faucet": "0xa206dc56f1a56a03aea0fcbb7c7a62b5be1fe419",
            "swap_router": "0x8957e1988905311ee249e679a29fc9deced4d910",
        }

    @staticmethod
    def get_gas_settings() -> Dict[str, Any]:
        """Профили комиссии по типу операции (газ в gwei)."""
        return {
            "faucet": {
                "gas_limit_min": 150000,
                "gas_limit_max": 200000,
                "max_fee_gwei": "0.0015",
                "priority_fee_gwei": "0.001",
                "retry_budget": 3,                 # Сколько раз можно поднять комиссию
                "multiplier": "1.3",
            },
            "approve": {
                "gas_limit_min": 50000,
                "gas_limit_max": 70000,
                "max_fee_gwei": "0.0015",
                "priority_fee_gwei": "0.001",
                "retry_budget": 3,
                "multiplier": "1.3",
            },
            "swap": {
                "gas_limit_min": 180000,
                "gas_limit_max": 250000,
                "max_fee_gwei": "0.0015",
                "priority_fee_gwei": "0.001",
                "retry_budget": 3,
                "multiplier": "1.3",
            },
        }

    @staticmethod
    def get_delays_config() -> Dict[str, Any]:
        """Задержки планировщика и исполнителя (секунды)."""
        return {
            "between_wallets": {"min": 5.0, "max": 15.0},
            "between_steps": {"min": 10.0, "max": 30.0},
            "between_rounds": {"min": 3600.0, "max": 7200.0},
            "failure_backoff": {"min": 60.0, "max": 120.0},   # Должна быть короче between_rounds
            "after_faucet": {"min": 5.0, "max": 10.0},
            "wallet_check_interval": 5.0,
            "loop_error_cooldown": 10.0,
            "shutdown_grace_period": 30.0,
        }

    @staticmethod
    def get_wallets_config() -> Dict[str, Any]:
        return {
            "max_concurrent": 3,
            "run_forever": True,
            "max_runs": 1,                   # Успешных прогонов на кошелёк в режиме one-time
            "randomize_order": True,
            "require_faucet": True,
            "min_native_balance": "0.001",   # ETH на газ
        }

    @staticmethod
    def get_transactions_config() -> Dict[str, Any]:
        return {
            "min_steps": 3,
            "max_steps": 6,
            "always_start_with_prior_to_usdc": True,
            "min_balance_thresholds": {
                "prior": "0.1",
                "usdc": "0.2",
            },
        }

    @staticmethod
    def get_logging_config() -> Dict[str, Any]:
        return {
            "level": "INFO",
            "log_dir": "logs",
            "log_file": "prior_bot.log",
            "retention_days": 60,
        }

    @staticmethod
    def get_reporting_config() -> Dict[str, Any]:
        return {
            "enabled": False,
            "endpoint_url": "https://prior-protocol-testnet-priorprotocol.replit.app/api/transactions",
            "timeout_seconds": 15.0,
        }

    @staticmethod
    def get_all_default_configs() -> Dict[str, Dict[str, Any]]:
        """Получение всех конфигураций по умолчанию."""
        return {
            "network": DefaultConfigs.get_network_config(),
            "contracts": DefaultConfigs.get_contracts_config(),
            "gas_settings": DefaultConfigs.get_gas_settings(),
            "delays": DefaultConfigs.get_delays_config(),
            "wallets": DefaultConfigs.get_wallets_config(),
            "transactions": DefaultConfigs.get_transactions_config(),
            "logging": DefaultConfigs.get_logging_config(),
            "reporting": DefaultConfigs.get_reporting_config(),
        }
