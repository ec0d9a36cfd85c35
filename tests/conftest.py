"""Shared fixtures for the wallet runner tests.

Network access is replaced with in-process fakes; delays are shrunk so the
whole suite runs in well under a second of sleeping.
"""

import random
from decimal import Decimal
from typing import Any, Dict, List

import pytest

from api.chain_gateway import TxReceipt
from core.accounts import Account
from core.default_configs import DefaultConfigs
from core.enums import TokenKind
from core.exceptions import FeeUnderpricedError
from core.functions import deep_merge
from core.settings_config import build_bot_config


TEST_OVERRIDES: Dict[str, Any] = {
    "network": {
        "rpc_urls": ["http://rpc-1.test", "http://rpc-2.test", "http://rpc-3.test"],
        "timeout_seconds": 1.0,
        "max_retries": 3,
        "retry_delay_seconds": 0.0,
        "receipt_timeout_seconds": 0.5,
        "receipt_poll_interval_seconds": 0.0,
    },
    "delays": {
        "between_wallets": {"min": 0.0, "max": 0.0},
        "between_steps": {"min": 0.0, "max": 0.0},
        "between_rounds": {"min": 0.05, "max": 0.1},
        "failure_backoff": {"min": 0.0, "max": 0.01},
        "after_faucet": {"min": 0.0, "max": 0.0},
        "wallet_check_interval": 0.01,
        "loop_error_cooldown": 0.01,
        "shutdown_grace_period": 0.05,
    },
    "wallets": {
        "max_concurrent": 2,
        "run_forever": False,
        "max_runs": 1,
        "randomize_order": False,
        "require_faucet": False,
        "min_native_balance": "0.001",
    },
}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def make_config():
    """Factory: BotConfig built from defaults + test overrides + per-test overrides."""
    def _make(overrides: Dict[str, Any] = None):
        raw = deep_merge(DefaultConfigs.get_all_default_configs(), TEST_OVERRIDES)
        return build_bot_config(deep_merge(raw, overrides or {}))
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


# ---------------------------------------------------------------------------
# Accounts, clock, randomness
# ---------------------------------------------------------------------------

@pytest.fixture
def make_accounts():
    def _make(count: int) -> List[Account]:
        return [Account.from_private_key(f"0x{index:064x}") for index in range(1, count + 1)]
    return _make


@pytest.fixture
def accounts(make_accounts):
    return make_accounts(3)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(1234)


# ---------------------------------------------------------------------------
# Event sink
# ---------------------------------------------------------------------------

class RecordingSink:
    """Any object with async publish(event) is a valid event sink."""

    def __init__(self):
        self.events = []

    async def publish(self, event):
        self.events.append(event)

    def of_type(self, event_class):
        return [event for event in self.events if isinstance(event, event_class)]


@pytest.fixture
def event_sink():
    return RecordingSink()


# ---------------------------------------------------------------------------
# Chain operations fake
# ---------------------------------------------------------------------------

class FakeOperations:
    """In-memory stand-in for ChainOperations.

    - balances are per token and shared by every account
    - underpriced[name] = N makes the next N transactions of that kind fail as underpriced
    - fail_on[name] = exc makes every transaction of that kind raise exc
    """

    def __init__(self, native=Decimal("1"), prior=Decimal("0"), usdc=Decimal("0"), approved=()):
        self.native = native
        self.balances = {TokenKind.PRIOR: Decimal(prior), TokenKind.USDC: Decimal(usdc)}
        self.approved = set(approved)
        self.underpriced: Dict[str, int] = {}
        self.fail_on: Dict[str, BaseException] = {}
        self.calls: List[tuple] = []
        self.fees: List[tuple] = []
        self.block = 100

    async def get_native_balance(self, account):
        self.calls.append(("native", account.address))
        return self.native

    async def get_token_balance(self, account, token):
        self.calls.append(("balance", token))
        return self.balances[token]

    async def is_approved(self, account, token):
        self.calls.append(("is_approved", token))
        return token in self.approved

    async def claim_faucet(self, account, fee):
        receipt = await self._transaction("claim", fee)
        self.balances[TokenKind.PRIOR] += Decimal("1")
        return receipt

    async def approve(self, account, token, fee):
        receipt = await self._transaction(f"approve:{token.value}", fee)
        self.approved.add(token)
        return receipt

    async def swap(self, account, kind, fee):
        return await self._transaction(kind.value, fee)

    def transactions(self) -> List[str]:
        return [call[1] for call in self.calls if call[0] == "tx"]

    async def _transaction(self, name, fee):
        self.fees.append((name, fee))
        self.calls.append(("tx", name))
        if name in self.fail_on:
            raise self.fail_on[name]
        if self.underpriced.get(name, 0) > 0:
            self.underpriced[name] -= 1
            raise FeeUnderpricedError("replacement transaction underpriced")
        self.block += 1
        return TxReceipt(tx_hash=f"0x{len(self.fees):064x}", block_number=self.block, gas_used=21000)


@pytest.fixture
def make_operations():
    return FakeOperations


@pytest.fixture
def operations():
    return FakeOperations(prior=Decimal("5"), usdc=Decimal("5"))
