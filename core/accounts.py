# core/accounts.py
"""
Источник кошельков: загрузка приватных ключей и подпись транзакций.

Остальная система видит кошелёк только через address / label / sign_transaction
и никогда не обращается к ключу напрямую.
"""
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from eth_account import Account as EthAccount
from eth_account.signers.local import LocalAccount

from core.exceptions import AccountLoadError
from core.functions import format_address
from core.logger import log_info, log_warning, SYSTEM_ACCOUNT


@dataclass(frozen=True)
class SignedTx:
    raw: str
    tx_hash: str


@dataclass(frozen=True)
class Account:
    """Неизменяемый кошелёк. Ключ скрыт от repr и сравнения."""
    address: str
    _signer: LocalAccount = field(repr=False, compare=False)

    @property
    def label(self) -> str:
        return format_address(self.address)

    def sign_transaction(self, tx: Dict[str, Any]) -> SignedTx:
        """Подписывает транзакцию. Возвращает raw hex и хеш с префиксом 0x."""
        signed = self._signer.sign_transaction(tx)
        return SignedTx(
            raw="0x" + bytes(signed.raw_transaction).hex(),
            tx_hash="0x" + bytes(signed.hash).hex(),
        )

    @classmethod
    def from_private_key(cls, private_key: str) -> "Account":
        key = private_key.strip()
        if not key.startswith("0x"):
            key = f"0x{key}"
        signer = EthAccount.from_key(key)
        return cls(address=signer.address, _signer=signer)


def load_accounts(path: str, shuffle: bool = False, rng: Optional[random.Random] = None) -> List[Account]:
    """
    Загружает кошельки из файла: один приватный ключ на строку,
    пустые строки и строки с # игнорируются, префикс 0x необязателен.

    Args:
        path: Путь к файлу ключей
        shuffle: Перемешать порядок один раз при загрузке
        rng: Источник случайности (для тестов)

    Returns:
        List[Account]: Кошельки без дубликатов, в порядке файла (или перемешанные)

    Raises:
        AccountLoadError: файл не найден, ключ некорректен или ключей нет
    """
    keys_path = Path(path)
    if not keys_path.exists():
        raise AccountLoadError(f"Файл приватных ключей не найден: {keys_path.absolute()}")

    accounts: List[Account] = []
    seen = set()
    lines = keys_path.read_text(encoding="utf-8").splitlines()
    for line_number, raw_line in enumerate(lines, start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            account = Account.from_private_key(line)
        except (ValueError, TypeError) as err:
            raise AccountLoadError(f"Некорректный приватный ключ в строке {line_number}") from err

        if account.address in seen:
            log_warning(account.label, f"Дубликат ключа в строке {line_number}, пропущен", "accounts")
            continue
        seen.add(account.address)
        accounts.append(account)

    if not accounts:
        raise AccountLoadError(f"В файле {keys_path} нет ни одного приватного ключа")

    if shuffle:
        (rng or random.Random()).shuffle(accounts)

    log_info(SYSTEM_ACCOUNT, f"Загружено кошельков: {len(accounts)}", "accounts")
    return accounts
