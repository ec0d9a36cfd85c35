# api/chain_gateway.py
"""
Операции с контрактами Prior в тестовой сети.

Все обращения к узлу идут через ResilientCaller, поэтому любой вызов
автоматически получает таймаут, повторы и смену эндпоинта.
"""
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from api.resilient_call import ResilientCaller
from api.rpc_client import JsonRpcClient
from core.accounts import Account
from core.enums import StepKind, TokenKind
from core.exceptions import CallTimeoutError, RpcError, TransactionRevertedError
from core.functions import from_base_units
from core.logger import log_debug, log_info
from core.settings_config import ContractsConfig, NetworkConfig
from strategies.fee_policy import FeeParams

# Селекторы функций
BALANCE_OF_SELECTOR = "0x70a08231"
ALLOWANCE_SELECTOR = "0xdd62ed3e"
APPROVE_SELECTOR = "0x095ea7b3"
DECIMALS_SELECTOR = "0x313ce567"
CLAIM_SELECTOR = "0x4e71d92d"

MAX_UINT256 = 2 ** 256 - 1

# Готовые calldata роутера для свапов фиксированного объёма
SWAP_CALLDATA = {
    StepKind.SWAP_PRIOR_TO_USDC: "0x8ec7baf1000000000000000000000000000000000000000000000000016345785d8a0000",
    StepKind.SWAP_USDC_TO_PRIOR: "0x8ec7baf1000000000000000000000000000000000000000000000000000000000000002d",
}

# Какой токен тратит свап
SWAP_SPENT_TOKEN = {
    StepKind.SWAP_PRIOR_TO_USDC: TokenKind.PRIOR,
    StepKind.SWAP_USDC_TO_PRIOR: TokenKind.USDC,
}

ALREADY_KNOWN_MARKERS = ("already known", "known transaction")


def encode_address(address: str) -> str:
    return address.lower().replace("0x", "").rjust(64, "0")


def encode_uint(value: int) -> str:
    return format(value, "x").rjust(64, "0")


@dataclass(frozen=True)
class TxReceipt:
    """Подтверждённая транзакция"""
    tx_hash: str
    block_number: int
    gas_used: int
    status: int = 1


class ChainOperations:
    """
    Шаги бота в терминах транзакций: кран, approve, свапы, чтение балансов.
    """

    def __init__(self, caller: ResilientCaller, rpc: JsonRpcClient,
                 contracts: ContractsConfig, network: NetworkConfig):
        self.caller = caller
        self.rpc = rpc
        self.contracts = contracts
        self.network = network
        self._decimals_cache: Dict[TokenKind, int] = {}

    async def _rpc(self, method: str, params: Optional[List[Any]] = None, account: Optional[Account] = None) -> Any:
        label = account.label if account else "-"
        return await self.caller.call(
            lambda endpoint: self.rpc.request(endpoint.address, method, params or []),
            account=label,
            description=method
        )

    async def _eth_call(self, to: str, data: str, account: Optional[Account] = None) -> int:
        result = await self._rpc("eth_call", [{"to": to, "data": data}, "latest"], account)
        if not result or result == "0x":
            raise RpcError(f"Пустой ответ eth_call от контракта {to}")
        return int(result, 16)

    # --- Чтение состояния ---

    async def get_native_balance(self, account: Account) -> Decimal:
        """Баланс нативной монеты (ETH) для оплаты газа"""
        wei = int(await self._rpc("eth_getBalance", [account.address, "latest"], account), 16)
        return from_base_units(wei, 18)

    async def get_decimals(self, token: TokenKind) -> int:
        if token not in self._decimals_cache:
            self._decimals_cache[token] = await self._eth_call(self.contracts.token_address(token), DECIMALS_SELECTOR)
        return self._decimals_cache[token]

    async def get_token_balance(self, account: Account, token: TokenKind) -> Decimal:
        raw = await self._eth_call(
            self.contracts.token_address(token),
            BALANCE_OF_SELECTOR + encode_address(account.address),
            account
        )
        return from_base_units(raw, await self.get_decimals(token))

    async def get_allowance(self, account: Account, token: TokenKind) -> int:
        return await self._eth_call(
            self.contracts.token_address(token),
            ALLOWANCE_SELECTOR + encode_address(account.address) + encode_address(self.contracts.swap_router),
            account
        )

    async def is_approved(self, account: Account, token: TokenKind) -> bool:
        """Роутер считается авторизованным при любом ненулевом allowance"""
        return await self.get_allowance(account, token) > 0

    # --- Транзакции ---

    async def claim_faucet(self, account: Account, fee: FeeParams) -> TxReceipt:
        return await self.send_transaction(account, self.contracts.faucet, CLAIM_SELECTOR, fee)

    async def approve(self, account: Account, token: TokenKind, fee: FeeParams) -> TxReceipt:
        data = APPROVE_SELECTOR + encode_address(self.contracts.swap_router) + encode_uint(MAX_UINT256)
        return await self.send_transaction(account, self.contracts.token_address(token), data, fee)

    async def swap(self, account: Account, kind: StepKind, fee: FeeParams) -> TxReceipt:
        return await self.send_transaction(account, self.contracts.swap_router, SWAP_CALLDATA[kind], fee)

    async def send_transaction(self, account: Account, to: str, data: str, fee: FeeParams, value: int = 0) -> TxReceipt:
        """
        Собирает EIP-1559 транзакцию, подписывает, отправляет и ждёт квитанцию.

        Raises:
            FeeUnderpricedError: узел отклонил комиссию (обрабатывается FeeEscalationPolicy)
            TransactionRevertedError: транзакция в блоке со статусом 0
        """
        nonce = int(await self._rpc("eth_getTransactionCount", [account.address, "pending"], account), 16)
        tx = {
            "type": 2,
            "chainId": self.network.chain_id,
            "nonce": nonce,
            "to": to.lower(),
            "value": value,
            "data": data,
            "gas": fee.gas_limit,
            "maxFeePerGas": fee.max_fee_wei,
            "maxPriorityFeePerGas": fee.priority_fee_wei,
        }
        signed = account.sign_transaction(tx)

        try:
            tx_hash = await self._rpc("eth_sendRawTransaction", [signed.raw], account)
        except RpcError as err:
            # Повтор после транспортной ошибки мог отправить ту же транзакцию второй раз
            if not any(marker in str(err).lower() for marker in ALREADY_KNOWN_MARKERS):
                raise
            tx_hash = signed.tx_hash

        log_info(account.label, f"Транзакция отправлена: {tx_hash} (nonce {nonce}, max_fee {fee.max_fee_gwei} gwei)",
                 "chain_gateway")
        return await self.wait_for_receipt(account, tx_hash)

    async def wait_for_receipt(self, account: Account, tx_hash: str) -> TxReceipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.network.receipt_timeout_seconds

        while True:
            receipt = await self._rpc("eth_getTransactionReceipt", [tx_hash], account)
            if receipt:
                block_number = int(receipt.get("blockNumber", "0x0"), 16)
                status = int(receipt.get("status", "0x1"), 16)
                if status == 0:
                    raise TransactionRevertedError(tx_hash, block_number)
                log_debug(account.label, f"Транзакция {tx_hash} подтверждена в блоке {block_number}", "chain_gateway")
                return TxReceipt(
                    tx_hash=tx_hash,
                    block_number=block_number,
                    gas_used=int(receipt.get("gasUsed", "0x0"), 16),
                    status=status,
                )

            if loop.time() >= deadline:
                raise CallTimeoutError(
                    f"timeout: квитанция {tx_hash} не получена за {self.network.receipt_timeout_seconds}с")
            await asyncio.sleep(self.network.receipt_poll_interval_seconds)
