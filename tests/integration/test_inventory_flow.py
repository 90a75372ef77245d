"""
Integration tests for the inventory flow against the mock upstream report.
"""

import pytest
import pytest_asyncio
import httpx
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from mocks.upstream_report.server import MockUpstreamReportServer
from service_inventory.app.cache import RedisEnvelopeStore
from service_inventory.app.main import InventoryService
from service_inventory.app.upstream import ReportApiClient, default_retry_policy
from shared.config import get_config
from shared.test_helpers import FakeClock, FakeRedis, TestEnvironment


class TestInventoryFlow:
    """End-to-end flow: HTTP API, orchestrator, Redis double and mock upstream."""

    @pytest.fixture
    def mock_upstream(self):
        return MockUpstreamReportServer(api_key="test-key", api_secret="test-secret")

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def fake_redis(self, clock):
        return FakeRedis(clock=clock)

    @pytest.fixture
    def inventory_service(self, mock_upstream, fake_redis, clock):
        config = get_config("inventory", 8020, **TestEnvironment.get_mock_config())
        upstream = ReportApiClient(
            config.upstream_base_url,
            config.upstream_api_key,
            config.upstream_api_secret,
            report_path=config.upstream_report_path,
            retry_policy=default_retry_policy(sleep=AsyncMock()),
            min_interval_seconds=0,
            transport=httpx.ASGITransport(app=mock_upstream.app),
        )
        store = RedisEnvelopeStore(config.store_connection_string, client=fake_redis)
        return InventoryService(config, store=store, upstream=upstream, clock=clock)

    @pytest_asyncio.fixture
    async def client(self, inventory_service):
        transport = httpx.ASGITransport(app=inventory_service.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://inventory.test") as client:
            yield client

    @pytest.mark.asyncio
    async def test_cold_read_then_cached(self, client, mock_upstream):
        first = await client.get("/inventory")
        second = await client.get("/inventory")

        assert first.status_code == 200
        assert first.json()["count"] == 3
        assert second.json()["sourceState"] == "fresh"
        assert mock_upstream.report.requests == 1

    @pytest.mark.asyncio
    async def test_low_stock_view(self, client):
        data = (await client.get("/inventory", params={"lowStock": "true", "lowStockThreshold": 4})).json()
        assert [item["sku"] for item in data["data"]] == ["GAD-200", "GIZ-300"]

    @pytest.mark.asyncio
    async def test_csv_report(self, client, mock_upstream):
        mock_upstream.report.output = "csv"

        data = (await client.get("/inventory")).json()

        assert data["count"] == 3
        assert data["data"][0]["quantityOnHand"] == 120

    @pytest.mark.asyncio
    async def test_outage_serves_stale_and_reports_degraded(self, client, mock_upstream, clock):
        await client.get("/inventory")
        clock.advance(16 * 60)
        mock_upstream.report.mode = "error"

        data = (await client.get("/inventory")).json()
        health = (await client.post("/inventory/cache", json={"action": "healthCheck"})).json()

        assert data["sourceState"] == "stale-fallback"
        assert data["count"] == 3
        assert health["upstreamState"] == "degraded"
        assert health["metrics"]["lastFetchError"].startswith("UPSTREAM_UNAVAILABLE")
        # initial fetch plus one retried failing fetch
        assert mock_upstream.report.requests == 3

    @pytest.mark.asyncio
    async def test_cold_outage_is_structured_error(self, client, mock_upstream):
        mock_upstream.report.mode = "unauthorized"

        response = await client.get("/inventory")

        assert response.status_code == 503
        assert response.json()["details"]["cause"] == "UPSTREAM_AUTH_FAILURE"
        assert mock_upstream.report.requests == 1

    @pytest.mark.asyncio
    async def test_recovery_after_outage(self, client, mock_upstream, clock):
        await client.get("/inventory")
        clock.advance(16 * 60)
        mock_upstream.report.mode = "malformed"
        await client.get("/inventory")

        mock_upstream.report.mode = "ok"
        data = (await client.get("/inventory")).json()
        health = (await client.post("/inventory/cache", json={"action": "healthCheck"})).json()

        assert data["sourceState"] == "fresh"
        assert health["upstreamState"] == "healthy"
        assert health["metrics"]["lastFetchError"] is None

    @pytest.mark.asyncio
    async def test_warm_up_and_clear(self, client, fake_redis, mock_upstream):
        warm = (await client.post("/inventory/cache", json={"action": "warmUpCache"})).json()
        assert warm["metrics"]["apiCalls"] == 1
        assert "inventory:all" in fake_redis.data

        cleared = (await client.post("/inventory/cache", json={"action": "clearCache"})).json()
        assert cleared == {"cleared": True}
        assert fake_redis.data == {}

        summary = (await client.get("/inventory/summary")).json()
        assert summary["totalItems"] == 3
        assert mock_upstream.report.requests == 2
