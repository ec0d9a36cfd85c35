"""Tests for strategies/swap_task.py: step execution, skips, lazy approve."""

import random
from decimal import Decimal

import pytest

from core.enums import StepKind, TokenKind
from core.events import StepCompletedEvent, StepSkippedEvent
from core.exceptions import (
    InsufficientNativeBalance, RetryBudgetExhausted, TransactionRevertedError,
)
from strategies.swap_task import SwapTaskExecutor

P2U = StepKind.SWAP_PRIOR_TO_USDC
U2P = StepKind.SWAP_USDC_TO_PRIOR


@pytest.fixture
def make_executor(config, event_sink):
    def _make(operations, cfg=None):
        return SwapTaskExecutor(operations, cfg or config, event_bus=event_sink, rng=random.Random(5))
    return _make


class TestBalanceThresholds:
    @pytest.mark.asyncio
    async def test_swap_below_threshold_is_skipped_not_failed(self, make_executor, make_operations,
                                                            accounts, event_sink):
        operations = make_operations(prior=Decimal("0"), usdc=Decimal("1"))
        executor = make_executor(operations)

        outcome = await executor.run(accounts[0], [P2U, U2P])

        assert outcome.success
        assert outcome.completed_steps == 1
        assert outcome.skipped_steps == 1
        assert operations.transactions() == ["approve:usdc", U2P.value]

        skipped = event_sink.of_type(StepSkippedEvent)
        assert [event.step for event in skipped] == [P2U]
        assert "PRIOR" in skipped[0].reason

    @pytest.mark.asyncio
    async def test_all_steps_skipped_is_still_success(self, make_executor, make_operations, accounts):
        operations = make_operations()
        outcome = await make_executor(operations).run(accounts[0], [P2U, U2P, P2U])

        assert outcome.success
        assert outcome.skipped_steps == 3
        assert operations.transactions() == []

    @pytest.mark.asyncio
    async def test_balance_equal_to_threshold_is_swapped(self, make_executor, make_operations, accounts):
        operations = make_operations(prior=Decimal("0.1"), approved={TokenKind.PRIOR})
        outcome = await make_executor(operations).run(accounts[0], [P2U])

        assert outcome.completed_steps == 1
        assert operations.transactions() == [P2U.value]


class TestApprove:
    @pytest.mark.asyncio
    async def test_approve_once_per_token_per_run(self, make_executor, operations, accounts):
        outcome = await make_executor(operations).run(accounts[0], [P2U, U2P, P2U, U2P])

        assert outcome.success
        assert operations.transactions() == [
            "approve:prior", P2U.value, "approve:usdc", U2P.value, P2U.value, U2P.value,
        ]
        assert [call for call in operations.calls if call[0] == "is_approved"] == [
            ("is_approved", TokenKind.PRIOR), ("is_approved", TokenKind.USDC),
        ]

    @pytest.mark.asyncio
    async def test_existing_allowance_means_no_approve(self, make_executor, make_operations, accounts):
        operations = make_operations(prior=Decimal("5"), usdc=Decimal("5"),
                                     approved={TokenKind.PRIOR, TokenKind.USDC})
        await make_executor(operations).run(accounts[0], [P2U, U2P])

        assert operations.transactions() == [P2U.value, U2P.value]

    @pytest.mark.asyncio
    async def test_explicit_approve_step_covers_both_tokens(self, make_executor, operations, accounts):
        outcome = await make_executor(operations).run(accounts[0], [StepKind.APPROVE, P2U])

        assert outcome.completed_steps == 2
        assert operations.transactions() == ["approve:prior", "approve:usdc", P2U.value]

    @pytest.mark.asyncio
    async def test_approve_uses_approve_fee_profile(self, make_executor, operations, accounts, config):
        await make_executor(operations).run(accounts[0], [P2U])

        approve_fee = dict(operations.fees)["approve:prior"]
        profile = config.fee_profile("approve")
        assert profile.gas_limit_min <= approve_fee.gas_limit <= profile.gas_limit_max


class TestFaucet:
    @pytest.mark.asyncio
    async def test_claim_skipped_when_prior_present(self, make_executor, operations, accounts, event_sink):
        outcome = await make_executor(operations).run(accounts[0], [StepKind.CLAIM])

        assert outcome.success and outcome.skipped_steps == 1
        assert operations.transactions() == []
        assert event_sink.of_type(StepSkippedEvent)[0].step is StepKind.CLAIM

    @pytest.mark.asyncio
    async def test_claim_then_swap_on_empty_wallet(self, make_executor, make_operations, accounts, event_sink):
        operations = make_operations(prior=Decimal("0"), approved={TokenKind.PRIOR})

        outcome = await make_executor(operations).run(accounts[0], [StepKind.CLAIM, P2U])

        assert outcome.completed_steps == 2
        assert operations.transactions() == ["claim", P2U.value]
        completed = event_sink.of_type(StepCompletedEvent)
        assert [event.step for event in completed] == [StepKind.CLAIM, P2U]
        assert all(event.tx_hash.startswith("0x") for event in completed)


class TestFailures:
    @pytest.mark.asyncio
    async def test_native_balance_precheck_aborts_before_any_step(self, make_executor, make_operations, accounts):
        operations = make_operations(native=Decimal("0.0001"), prior=Decimal("5"))

        outcome = await make_executor(operations).run(accounts[0], [P2U])

        assert not outcome.success
        assert isinstance(outcome.error, InsufficientNativeBalance)
        assert operations.transactions() == []

    @pytest.mark.asyncio
    async def test_first_unrecoverable_error_stops_the_run(self, make_executor, operations, accounts):
        operations.approved = {TokenKind.PRIOR, TokenKind.USDC}
        operations.fail_on[U2P.value] = TransactionRevertedError("0xdead", 101)

        outcome = await make_executor(operations).run(accounts[0], [P2U, U2P, P2U])

        assert not outcome.success
        assert outcome.completed_steps == 1
        assert operations.transactions() == [P2U.value, U2P.value]
        assert "0xdead" in outcome.error_message

    @pytest.mark.asyncio
    async def test_underpriced_is_retried_with_higher_fee(self, make_executor, operations, accounts):
        operations.approved = {TokenKind.PRIOR}
        operations.underpriced[P2U.value] = 2

        outcome = await make_executor(operations).run(accounts[0], [P2U])

        assert outcome.success
        fees = [fee for name, fee in operations.fees if name == P2U.value]
        assert [fee.attempt for fee in fees] == [0, 1, 2]
        assert fees[0].max_fee_gwei < fees[2].max_fee_gwei

    @pytest.mark.asyncio
    async def test_exhausted_fee_budget_fails_the_run(self, make_executor, operations, accounts, config):
        operations.approved = {TokenKind.PRIOR}
        operations.underpriced[P2U.value] = 100

        outcome = await make_executor(operations).run(accounts[0], [P2U])

        assert not outcome.success
        assert isinstance(outcome.error, RetryBudgetExhausted)
        assert len(operations.transactions()) == config.fee_profile("swap").retry_budget + 1


class TestStepPauses:
    @pytest.mark.asyncio
    async def test_pause_between_steps_but_not_before_first(self, make_executor, make_config, operations,
                                                            accounts, monkeypatch):
        config = make_config({"delays": {"between_steps": {"min": 0.001, "max": 0.002}}})
        operations.approved = {TokenKind.PRIOR, TokenKind.USDC}
        executor = make_executor(operations, config)
        original_pause = executor._pause

        async def recording_pause(account, delay_range, reason):
            operations.calls.append(("pause", reason))
            await original_pause(account, delay_range, reason)

        monkeypatch.setattr(executor, "_pause", recording_pause)
        steps = [P2U, U2P, P2U]

        outcome = await executor.run(accounts[0], steps)

        assert outcome.completed_steps == 3
        timeline = [call[1] if call[0] == "tx" else call[0] for call in operations.calls
                    if call[0] in ("tx", "pause")]
        assert timeline == [P2U.value, "pause", U2P.value, "pause", P2U.value]
        assert timeline.count("pause") == len(steps) - 1

    @pytest.mark.asyncio
    async def test_single_step_has_no_pause(self, make_executor, make_config, operations, accounts, monkeypatch):
        config = make_config({"delays": {"between_steps": {"min": 0.001, "max": 0.002}}})
        operations.approved = {TokenKind.PRIOR}
        executor = make_executor(operations, config)
        pauses = []

        async def recording_pause(account, delay_range, reason):
            pauses.append(reason)

        monkeypatch.setattr(executor, "_pause", recording_pause)

        await executor.run(accounts[0], [P2U])

        assert pauses == []
