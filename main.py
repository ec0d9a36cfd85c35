import sys
import os
import signal
import asyncio
from decimal import getcontext

# --- 1. Настройка путей (обязательно в самом верху) ---
project_root = os.path.dirname(os.path.abspath(__file__))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

# --- 2. Импорты ---
from core.logger import log_info, log_error, log_critical, configure_logging, SYSTEM_ACCOUNT
from core.settings_config import load_bot_config
from core.accounts import load_accounts
from core.bot_application import BotApplication
from core.exceptions import AccountLoadError, ConfigError, NoHealthyEndpointError

# --- 3. Настройка точности ---
getcontext().prec = 28


def install_signal_handlers(app: BotApplication):
    """SIGINT/SIGTERM запускают мягкую остановку планировщика."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, app.request_stop)
        except NotImplementedError:
            # Windows: остановка через KeyboardInterrupt
            return


async def main() -> int:
    """Главная функция запуска бота"""
    log_info(SYSTEM_ACCOUNT, "=== ЗАПУСК PRIOR TESTNET BOT ===", module_name="main")
    app = None
    exit_code = 0
    try:
        # --- ПОСЛЕДОВАТЕЛЬНАЯ ИНИЦИАЛИЗАЦИЯ ---
        # Каждый шаг может выбросить исключение, которое будет поймано ниже
        config = load_bot_config()
        configure_logging(config.logging.level, config.logging.log_dir, config.logging.log_file,
                          config.logging.retention_days)

        accounts = load_accounts(config.private_keys_file, shuffle=config.wallets.randomize_order)

        app = BotApplication(config, accounts)
        install_signal_handlers(app)
        await app.start()

        log_info(SYSTEM_ACCOUNT, "=== БОТ УСПЕШНО ЗАПУЩЕН И ГОТОВ К РАБОТЕ ===", module_name="main")
        await app.run()

    except NoHealthyEndpointError as e:
        log_critical(SYSTEM_ACCOUNT, f"Нет доступных RPC эндпоинтов, запуск невозможен: {e}", module_name="main")
        exit_code = 1
    except (ConfigError, AccountLoadError) as e:
        log_critical(SYSTEM_ACCOUNT, f"Ошибка начальной загрузки: {e}", module_name="main")
        exit_code = 1
    except (KeyboardInterrupt, SystemExit):
        log_info(SYSTEM_ACCOUNT, "Получен сигнал завершения (KeyboardInterrupt/SystemExit)", module_name="main")
    except Exception as e:
        log_critical(SYSTEM_ACCOUNT, f"Критическая ошибка на этапе запуска или работы бота: {e!r}", module_name="main")
        exit_code = 1
    finally:
        # --- ГАРАНТИРОВАННАЯ ОЧИСТКА РЕСУРСОВ ---
        log_info(SYSTEM_ACCOUNT, "=== НАЧАЛО ПРОЦЕДУРЫ ЗАВЕРШЕНИЯ РАБОТЫ ===", module_name="main")
        if app is not None:
            try:
                await app.stop()
            except Exception as e:
                log_error(SYSTEM_ACCOUNT, f"Ошибка остановки приложения: {e}", module_name="main")

        log_info(SYSTEM_ACCOUNT, "=== БОТ ПОЛНОСТЬЮ ОСТАНОВЛЕН ===", module_name="main")

    return exit_code


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
