"""
Unit tests for the cache-first orchestrator.
"""

import pytest
import asyncio
import httpx
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_inventory.app.cache import RedisEnvelopeStore
from service_inventory.app.models import ALL_KEY, SourceState
from service_inventory.app.orchestrator import CacheService
from service_inventory.app.upstream import ReportApiClient, default_retry_policy
from shared.errors import NoDataAvailable, UpstreamTimeout, UpstreamUnavailable
from shared.test_helpers import FakeClock, FakeRedis, StubUpstream, TestDataFactory


async def settle(rounds: int = 50):
    """Let every ready task run until it blocks."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []
        self.gauges = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))

    def set_gauge(self, metric_name: str, value: float, **labels):
        self.gauges.append((metric_name, value, labels))


class TestCacheService:
    """Test cases for CacheService."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def fake_redis(self, clock):
        return FakeRedis(clock=clock)

    @pytest.fixture
    def store(self, fake_redis):
        return RedisEnvelopeStore("redis://localhost:6379/0", client=fake_redis)

    @pytest.fixture
    def upstream(self):
        return StubUpstream()

    @pytest.fixture
    def metrics(self):
        return DummyMetrics()

    @pytest.fixture
    def service(self, store, upstream, clock, metrics):
        return CacheService(store, upstream, default_ttl_seconds=900, clock=clock, metrics=metrics)

    @pytest.mark.asyncio
    async def test_cold_miss_fetches_and_caches(self, service, upstream, fake_redis):
        result = await service.get_inventory()

        assert result.source_state is SourceState.FRESH
        assert [r.sku for r in result.records] == ["A", "B"]
        assert upstream.calls == 1
        assert ALL_KEY in fake_redis.data

        snapshot = service.fetch_metrics.snapshot()
        assert snapshot.cache_misses == 1
        assert snapshot.api_calls == 1
        assert snapshot.last_fetch_at is not None

    @pytest.mark.asyncio
    async def test_fresh_hit_skips_upstream(self, service, upstream, clock):
        await service.get_inventory()
        clock.advance(60)

        result = await service.get_inventory()

        assert result.source_state is SourceState.FRESH
        assert upstream.calls == 1
        assert service.fetch_metrics.snapshot().cache_hits == 1

    @pytest.mark.asyncio
    async def test_ttl_respect(self, service, upstream, clock):
        """No second upstream call inside the TTL, a refresh once it has passed."""
        await service.get_inventory()

        clock.advance(899)
        await service.get_inventory()
        assert upstream.calls == 1

        clock.advance(2)
        await service.get_inventory()
        assert upstream.calls == 2

    @pytest.mark.asyncio
    async def test_caller_ttl_overrides_envelope_ttl(self, service, upstream, clock):
        await service.get_inventory()
        clock.advance(200)

        await service.get_inventory(ttl_seconds=120)

        assert upstream.calls == 2

    @pytest.mark.asyncio
    async def test_ttl_clamped_to_minimum(self, service, upstream, clock):
        await service.get_inventory(ttl_seconds=5)
        clock.advance(30)

        await service.get_inventory(ttl_seconds=5)

        assert upstream.calls == 1
        assert service.effective_ttl(5) == 60

    @pytest.mark.asyncio
    async def test_single_flight(self, service, upstream):
        """Concurrent misses share one upstream fetch and one result."""
        upstream.gate = asyncio.Event()

        tasks = [asyncio.create_task(service.get_inventory()) for _ in range(10)]
        await settle()
        assert service.is_refreshing(ALL_KEY)

        upstream.gate.set()
        results = await asyncio.gather(*tasks)

        assert upstream.calls == 1
        assert all(result.records == results[0].records for result in results)
        assert not service.is_refreshing(ALL_KEY)
        assert service.fetch_metrics.snapshot().cache_misses == 10

    @pytest.mark.asyncio
    async def test_force_refresh_collapses(self, service, upstream):
        upstream.gate = asyncio.Event()

        tasks = [
            asyncio.create_task(service.get_inventory(force_refresh=True))
            for _ in range(5)
        ]
        await settle()
        upstream.gate.set()
        await asyncio.gather(*tasks)

        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_fresh_entry(self, service, upstream):
        await service.get_inventory()
        await service.get_inventory(force_refresh=True)

        assert upstream.calls == 2

    @pytest.mark.asyncio
    async def test_single_flight_failure_shared(self, service, upstream):
        """Every joined caller sees the same failure at once."""
        upstream.gate = asyncio.Event()
        upstream.error = UpstreamTimeout()

        tasks = [asyncio.create_task(service.get_inventory()) for _ in range(3)]
        await settle()
        upstream.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert upstream.calls == 1
        assert all(isinstance(result, NoDataAvailable) for result in results)
        assert not service.is_refreshing(ALL_KEY)

    @pytest.mark.asyncio
    async def test_stale_fallback(self, service, upstream, clock):
        """Expired envelope plus failing upstream serves the stale copy, tagged."""
        first = await service.get_inventory()
        clock.advance(901)
        upstream.error = UpstreamTimeout()

        result = await service.get_inventory()

        assert result.source_state is SourceState.STALE_FALLBACK
        assert result.records == first.records
        assert result.fetched_at == first.fetched_at
        assert service.fetch_metrics.snapshot().last_fetch_error.startswith("UPSTREAM_TIMEOUT")

    @pytest.mark.asyncio
    async def test_stale_fallback_survives_past_ttl(self, service, upstream, clock):
        """Store expiry is a multiple of the TTL, so the stale copy is still readable."""
        await service.get_inventory()
        clock.advance(900 * 5)
        upstream.error = UpstreamUnavailable()

        result = await service.get_inventory()

        assert result.is_stale

    @pytest.mark.asyncio
    async def test_upstream_failure_does_not_overwrite_envelope(self, service, upstream, clock, fake_redis):
        await service.get_inventory()
        stored = fake_redis.data[ALL_KEY]
        clock.advance(901)
        upstream.error = UpstreamTimeout()

        await service.get_inventory()

        assert fake_redis.data[ALL_KEY] == stored

    @pytest.mark.asyncio
    async def test_stale_fallback_never_written_back(self, service, upstream, clock):
        await service.get_inventory()
        clock.advance(901)
        upstream.error = UpstreamTimeout()
        await service.get_inventory()

        upstream.error = None
        result = await service.get_inventory()

        assert result.source_state is SourceState.FRESH
        assert upstream.calls == 3

    @pytest.mark.asyncio
    async def test_cold_total_failure(self, service, upstream):
        upstream.error = UpstreamTimeout()

        with pytest.raises(NoDataAvailable) as exc_info:
            await service.get_inventory()

        assert exc_info.value.code == "NO_DATA_AVAILABLE"
        assert exc_info.value.details["cause"] == "UPSTREAM_TIMEOUT"
        assert isinstance(exc_info.value.cause, UpstreamTimeout)

    @pytest.mark.asyncio
    async def test_store_down_falls_through_to_upstream(self, service, upstream, fake_redis):
        fake_redis.fail = True

        result = await service.get_inventory()

        assert result.source_state is SourceState.FRESH
        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_fallback_rereads_store(self, service, upstream, fake_redis, clock):
        """A failed first read still lets the fallback find the envelope."""
        await service.get_inventory()
        clock.advance(901)
        upstream.error = UpstreamTimeout()

        original_get = fake_redis.get
        reads = []

        async def flaky_get(key):
            reads.append(key)
            if len(reads) == 1:
                raise ConnectionError("blip")
            return await original_get(key)

        fake_redis.get = flaky_get

        result = await service.get_inventory()

        assert result.is_stale
        assert len(reads) == 2

    @pytest.mark.asyncio
    async def test_success_clears_last_error(self, service, upstream):
        upstream.error = UpstreamTimeout()
        with pytest.raises(NoDataAvailable):
            await service.get_inventory()
        assert service.fetch_metrics.snapshot().last_fetch_error is not None

        upstream.error = None
        await service.get_inventory()

        assert service.fetch_metrics.snapshot().last_fetch_error is None

    @pytest.mark.asyncio
    async def test_clear_cache(self, service, upstream, fake_redis):
        await service.get_inventory()
        upstream.error = UpstreamTimeout()
        await service.get_inventory(force_refresh=True)

        cleared = await service.clear_cache()

        assert cleared is True
        assert ALL_KEY not in fake_redis.data
        snapshot = service.fetch_metrics.snapshot()
        assert (snapshot.cache_hits, snapshot.cache_misses, snapshot.api_calls) == (0, 0, 0)
        assert snapshot.last_fetch_error is not None

    @pytest.mark.asyncio
    async def test_clear_cache_reports_store_failure(self, service, fake_redis):
        fake_redis.fail = True
        assert await service.clear_cache() is False

    @pytest.mark.asyncio
    async def test_warm_up_cache(self, service, upstream):
        await service.get_inventory()

        metrics = await service.warm_up_cache()

        assert upstream.calls == 2
        assert metrics.api_calls == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_fail_joiners(self, service, upstream, clock):
        """The first caller going away leaves the shared fetch running for the rest."""
        await service.get_inventory()
        clock.advance(901)
        upstream.gate = asyncio.Event()

        first = asyncio.create_task(service.get_inventory())
        await settle()
        second = asyncio.create_task(service.get_inventory())
        await settle()

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert service.is_refreshing(ALL_KEY)

        upstream.gate.set()
        result = await second

        assert result.source_state is SourceState.FRESH
        assert upstream.calls == 2
        assert not service.is_refreshing(ALL_KEY)

    @pytest.mark.asyncio
    async def test_cancelled_fetch_serves_stale_to_waiters(self, service, upstream, clock):
        first = await service.get_inventory()
        clock.advance(901)
        upstream.gate = asyncio.Event()

        tasks = [asyncio.create_task(service.get_inventory()) for _ in range(2)]
        await settle()
        service._inflight[ALL_KEY].cancel()
        results = await asyncio.gather(*tasks)

        assert all(result.source_state is SourceState.STALE_FALLBACK for result in results)
        assert all(result.records == first.records for result in results)
        assert service.fetch_metrics.snapshot().last_fetch_error.startswith("UPSTREAM_UNAVAILABLE")
        assert not service.is_refreshing(ALL_KEY)

    @pytest.mark.asyncio
    async def test_cancelled_fetch_without_cache_is_no_data(self, service, upstream):
        upstream.gate = asyncio.Event()

        task = asyncio.create_task(service.get_inventory())
        await settle()
        service._inflight[ALL_KEY].cancel()

        with pytest.raises(NoDataAvailable) as exc_info:
            await task
        assert exc_info.value.details["cause"] == "UPSTREAM_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_undecodable_upstream_body_serves_stale(self, store, clock):
        """A corrupt compressed body is an upstream failure, not an unhandled error."""
        bodies = [TestDataFactory.create_api_rows()]

        def handler(request):
            if bodies:
                return httpx.Response(200, json=bodies.pop())
            return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip")

        upstream = ReportApiClient(
            "http://upstream.test",
            "key",
            "secret",
            transport=httpx.MockTransport(handler),
            retry_policy=default_retry_policy(sleep=AsyncMock()),
            min_interval_seconds=0,
        )
        service = CacheService(store, upstream, default_ttl_seconds=900, clock=clock)

        first = await service.get_inventory()
        clock.advance(901)
        result = await service.get_inventory()

        assert result.source_state is SourceState.STALE_FALLBACK
        assert result.records == first.records
        assert service.fetch_metrics.snapshot().last_fetch_error.startswith("UPSTREAM_MALFORMED")

    @pytest.mark.asyncio
    async def test_prometheus_counters(self, service, metrics):
        await service.get_inventory()
        await service.get_inventory()

        names = [name for name, _ in metrics.counters]
        assert names == ["inventory_cache_misses_total", "inventory_cache_hits_total"]
        assert metrics.gauges[0] == ("inventory_records_cached", 2, {"key": ALL_KEY})

    @pytest.mark.asyncio
    async def test_write_failure_still_serves_fresh(self, service, upstream, fake_redis):
        original_set = fake_redis.set

        async def failing_set(*args, **kwargs):
            raise ConnectionError("read only replica")

        fake_redis.set = failing_set
        result = await service.get_inventory()
        fake_redis.set = original_set

        assert result.source_state is SourceState.FRESH
        assert service.fetch_metrics.snapshot().last_fetch_error is None
