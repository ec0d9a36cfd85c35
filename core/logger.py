# core/logger.py
"""
Простая система логирования для многокошелькового бота.
Все события пишутся в единый файл и в консоль в удобном для чтения формате.
"""
import logging
import logging.handlers
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional


SYSTEM_ACCOUNT = "-"


class SimpleLogFormatter(logging.Formatter):
    """
    Форматтер для вывода логов в одну строку.
    Формат: [TIMESTAMP] | LEVEL | Account:LABEL | MODULE | MESSAGE
    """

    def format(self, record):
        account = getattr(record, 'account', SYSTEM_ACCOUNT)
        module_name = getattr(record, 'module_name', 'Unknown')

        log_format = (
            f"{datetime.fromtimestamp(record.created).isoformat()} | "
            f"{record.levelname:<8} | "
            f"Account:{str(account):<14} | "
            f"{module_name:<20} | "
            f"{record.getMessage()}"
        )
        return log_format


class BotLogger:
    """
    Единая система логирования, которая направляет все сообщения в один файл.
    """

    def __init__(self, log_dir: str = "logs", log_file: str = "prior_bot.log", level: str = "INFO"):
        self.log_dir = Path(log_dir)
        self.log_file = log_file
        self.level = level
        self.logger: Optional[logging.Logger] = None
        self._setup_logger()

    def _setup_logger(self):
        """Настройка единого логгера."""
        self.log_dir.mkdir(parents=True, exist_ok=True)

        logger = logging.getLogger("PriorBot")
        logger.setLevel(getattr(logging, self.level.upper(), logging.INFO))
        logger.propagate = False

        # Очищаем существующие обработчики, чтобы избежать дублирования
        if logger.hasHandlers():
            for handler in list(logger.handlers):
                handler.close()
            logger.handlers.clear()

        file_handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / self.log_file,
            maxBytes=20 * 1024 * 1024,  # 20MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(SimpleLogFormatter())
        logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(SimpleLogFormatter())
        logger.addHandler(console_handler)

        self.logger = logger

    def reconfigure(self, level: str, log_dir: Optional[str] = None, log_file: Optional[str] = None):
        """Применяет настройки логирования из конфигурации."""
        self.level = level
        if log_dir:
            self.log_dir = Path(log_dir)
        if log_file:
            self.log_file = log_file
        self._setup_logger()

    def log(
            self,
            level: str,
            account: str,
            message: str,
            module_name: str = "Unknown",
            extra_data: Optional[Dict[str, Any]] = None
    ):
        """Универсальный метод логирования."""

        extra = {
            'account': account or SYSTEM_ACCOUNT,
            'module_name': module_name
        }

        if extra_data:
            message += f" | data: {extra_data}"

        log_level = getattr(logging, level.upper(), logging.INFO)

        self.logger.log(log_level, message, extra=extra)

    def cleanup_old_logs(self, days: int):
        """Удаляет лог-файлы старше указанного количества дней."""
        try:
            cutoff = time.time() - (days * 86400)
            files_deleted_count = 0

            for file_path in self.log_dir.glob(f"{self.log_file}*"):
                if file_path.is_file() and file_path.stat().st_mtime < cutoff:
                    file_path.unlink()
                    files_deleted_count += 1

            if files_deleted_count > 0:
                self.log("INFO", SYSTEM_ACCOUNT,
                         f"Удалено {files_deleted_count} старых лог-файлов (старше {days} дней).",
                         "LogManager")

        except OSError as e:
            self.log("ERROR", SYSTEM_ACCOUNT, f"Ошибка при очистке старых логов: {e}", "LogManager")


# Глобальный экземпляр логгера
bot_logger = BotLogger()


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None, log_file: Optional[str] = None,
                      retention_days: int = 60):
    """Перенастраивает глобальный логгер под LoggingConfig и чистит старые файлы."""
    bot_logger.reconfigure(level, log_dir, log_file)
    bot_logger.cleanup_old_logs(days=retention_days)


# =============================================================================
# ПУБЛИЧНЫЕ ФУНКЦИИ ЛОГИРОВАНИЯ
# =============================================================================

def log_info(account: str, message: str, module_name: str = "Unknown", extra_data: Optional[Dict[str, Any]] = None):
    bot_logger.log("INFO", account, message, module_name, extra_data)


def log_error(account: str, message: str, module_name: str = "Unknown", extra_data: Optional[Dict[str, Any]] = None):
    bot_logger.log("ERROR", account, message, module_name, extra_data)


def log_warning(account: str, message: str, module_name: str = "Unknown", extra_data: Optional[Dict[str, Any]] = None):
    bot_logger.log("WARNING", account, message, module_name, extra_data)


def log_debug(account: str, message: str, module_name: str = "Unknown", extra_data: Optional[Dict[str, Any]] = None):
    bot_logger.log("DEBUG", account, message, module_name, extra_data)


def log_critical(account: str, message: str, module_name: str = "Unknown", extra_data: Optional[Dict[str, Any]] = None):
    bot_logger.log("CRITICAL", account, message, module_name, extra_data)
