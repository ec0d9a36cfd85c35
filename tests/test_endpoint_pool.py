"""Tests for api/endpoint_pool.py: failover order, soft reset, health probing."""

import asyncio
import random

import pytest

from api.endpoint_pool import EndpointPool
from core.events import EndpointFailedEvent, EndpointRecoveredEvent
from core.exceptions import NoHealthyEndpointError, TransportError

URLS = ["http://e1.test", "http://e2.test", "http://e3.test"]


def _set_failures(pool, counts):
    for endpoint, count in zip(pool.endpoints, counts):
        endpoint.consecutive_failures = count


@pytest.fixture
def pool(event_sink):
    return EndpointPool(URLS, event_bus=event_sink)


class TestMarkFailed:
    @pytest.mark.asyncio
    async def test_switches_to_next_healthy_endpoint(self, pool):
        current = await pool.mark_failed(pool.current(), TransportError("network error"))

        assert current.address == URLS[1]
        assert pool.failure_counts() == [1, 0, 0]

    @pytest.mark.asyncio
    async def test_scan_is_circular(self, pool):
        await pool.mark_failed(pool.current(), TransportError("x"))
        await pool.mark_failed(pool.current(), TransportError("x"))
        assert pool.current().address == URLS[2]

        _set_failures(pool, [0, 1, 0])
        await pool.mark_failed(pool.current(), TransportError("x"))

        assert pool.current().address == URLS[0]

    @pytest.mark.asyncio
    async def test_full_pool_soft_reset_when_last_healthy_fails(self, pool):
        # E2 and E3 already failing; the current E1 fails too -> 1,1,1 -> 0,0,0
        _set_failures(pool, [0, 1, 1])

        await pool.mark_failed(pool.current(), TransportError("server error"))

        assert pool.failure_counts() == [0, 0, 0]
        assert pool.current().address == URLS[1]

    @pytest.mark.asyncio
    async def test_soft_reset_keeps_residual_count_of_repeat_offender(self, pool):
        _set_failures(pool, [1, 1, 1])

        await pool.mark_failed(pool.current(), TransportError("server error"))

        assert pool.failure_counts() == [1, 0, 0]
        assert pool.current().address == URLS[1]

    @pytest.mark.asyncio
    async def test_stale_report_only_increments_counter(self, pool):
        stale = pool.endpoints[2]

        await pool.mark_failed(stale, TransportError("timeout"))

        assert pool.current().address == URLS[0]
        assert pool.failure_counts() == [0, 0, 1]

    @pytest.mark.asyncio
    async def test_emits_failed_event_with_switch_target(self, pool, event_sink):
        await pool.mark_failed(pool.current(), TransportError("connection refused"))

        events = event_sink.of_type(EndpointFailedEvent)
        assert len(events) == 1
        assert events[0].address == URLS[0]
        assert events[0].consecutive_failures == 1
        assert events[0].switched_to == URLS[1]

    @pytest.mark.asyncio
    async def test_concurrent_failures_keep_state_consistent(self, pool):
        await asyncio.gather(*(pool.mark_failed(pool.current(), TransportError("x")) for _ in range(20)))

        counts = pool.failure_counts()
        assert all(count >= 0 for count in counts)
        if any(count == 0 for count in counts):
            assert pool.current().consecutive_failures == 0


class TestHealthyPreference:
    @pytest.mark.asyncio
    async def test_never_returns_failing_endpoint_while_healthy_one_exists(self, pool):
        rng = random.Random(7)
        for _ in range(300):
            endpoint = rng.choice(pool.endpoints)
            if rng.random() < 0.7:
                await pool.mark_failed(endpoint, TransportError("x"))
            else:
                await pool.mark_healthy(endpoint)

            assert all(count >= 0 for count in pool.failure_counts())
            if any(endpoint.is_healthy for endpoint in pool.endpoints):
                assert pool.current().is_healthy


class TestMarkHealthy:
    @pytest.mark.asyncio
    async def test_resets_counter_and_emits_recovery(self, pool, event_sink):
        _set_failures(pool, [0, 3, 0])

        await pool.mark_healthy(pool.endpoints[1])

        assert pool.failure_counts() == [0, 0, 0]
        recovered = event_sink.of_type(EndpointRecoveredEvent)
        assert [event.address for event in recovered] == [URLS[1]]

    @pytest.mark.asyncio
    async def test_no_event_for_already_healthy_endpoint(self, pool, event_sink):
        await pool.mark_healthy(pool.current())

        assert event_sink.of_type(EndpointRecoveredEvent) == []

    @pytest.mark.asyncio
    async def test_recovered_endpoint_replaces_failing_current(self, pool):
        _set_failures(pool, [2, 2, 2])

        await pool.mark_healthy(pool.endpoints[2])

        assert pool.current().address == URLS[2]


class TestInitialize:
    @pytest.mark.asyncio
    async def test_starts_at_first_healthy_endpoint(self, pool):
        async def probe(address):
            if address == URLS[0]:
                raise TransportError("connection refused")
            return 42

        await pool.initialize(probe, timeout=1.0)

        assert pool.current().address == URLS[1]
        assert pool.failure_counts() == [1, 0, 0]

    @pytest.mark.asyncio
    async def test_refuses_to_start_without_healthy_endpoint(self, pool):
        async def probe(address):
            raise TransportError("network error")

        with pytest.raises(NoHealthyEndpointError):
            await pool.initialize(probe, timeout=1.0)

    @pytest.mark.asyncio
    async def test_slow_probe_counts_as_unhealthy(self, pool):
        async def probe(address):
            if address == URLS[0]:
                await asyncio.sleep(5)
            return 1

        await pool.initialize(probe, timeout=0.05)

        assert pool.current().address == URLS[1]

    def test_empty_pool_is_rejected(self):
        with pytest.raises(ValueError):
            EndpointPool([])
