"""Tests for api/report_client.py."""

from decimal import Decimal

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from api.report_client import TransactionReporter
from core.enums import StepKind
from core.events import EventBus, StepCompletedEvent
from core.settings_config import ReportingConfig

WALLET = "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"


def _event(step, tx_hash="0xabc"):
    return StepCompletedEvent(account=WALLET, step=step, tx_hash=tx_hash, block_number=12,
                              gas_used=21000, max_fee_gwei=Decimal("0.0015"))


@pytest_asyncio.fixture
async def collector():
    received = []

    async def accept(request):
        received.append(await request.json())
        return web.json_response({"ok": True}, status=201)

    async def reject(request):
        return web.Response(status=500)

    app = web.Application()
    app.router.add_post("/api/transactions", accept)
    app.router.add_post("/broken", reject)
    server = TestServer(app)
    await server.start_server()
    server.received = received
    yield server
    await server.close()


def _reporter(url, enabled=True):
    return TransactionReporter(ReportingConfig(enabled=enabled, endpoint_url=url, timeout_seconds=1.0), 84532)


class TestPayload:
    def test_swap_payload(self):
        payload = _reporter("http://unused.test").build_payload(_event(StepKind.SWAP_USDC_TO_PRIOR))

        assert payload["userId"] == WALLET.lower()
        assert (payload["fromToken"], payload["toToken"]) == ("USDC", "PRIOR")
        assert payload["txHash"] == "0xabc"
        assert payload["status"] == "completed"

    def test_faucet_payload(self):
        payload = _reporter("http://unused.test").build_payload(_event(StepKind.CLAIM))

        assert payload["type"] == StepKind.CLAIM.value
        assert payload["chainId"] == 84532
        assert payload["hash"] == "0xabc"


class TestDelivery:
    @pytest.mark.asyncio
    async def test_event_is_posted_through_bus(self, collector):
        reporter = _reporter(str(collector.make_url("/api/transactions")))
        bus = EventBus()
        await bus.start()
        await reporter.attach(bus)

        await bus.publish(_event(StepKind.SWAP_PRIOR_TO_USDC))
        await bus.stop()
        await reporter.close()

        assert len(collector.received) == 1
        assert collector.received[0]["fromToken"] == "PRIOR"
        assert reporter.stats == {"sent": 1, "failed": 0}

    @pytest.mark.asyncio
    async def test_disabled_reporter_does_not_subscribe(self, collector):
        reporter = _reporter(str(collector.make_url("/api/transactions")), enabled=False)
        bus = EventBus()
        await bus.start()
        await reporter.attach(bus)

        await bus.publish(_event(StepKind.SWAP_PRIOR_TO_USDC))
        await bus.stop()

        assert collector.received == []

    @pytest.mark.asyncio
    async def test_failures_are_reported_not_raised(self, collector):
        reporter = _reporter(str(collector.make_url("/broken")))
        try:
            assert not await reporter.report({"type": "swap"}, WALLET)
        finally:
            await reporter.close()

        unreachable = _reporter("http://127.0.0.1:1/api")
        try:
            assert not await unreachable.report({"type": "swap"}, WALLET)
        finally:
            await unreachable.close()

        assert reporter.stats["failed"] == 1
        assert unreachable.stats["failed"] == 1
