"""
Inventory Service: a cache-first read API in front of the upstream report.
"""

import time
from typing import Callable, Dict, Optional

from fastapi import Query

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import NotFoundError, ValidationError
from .cache import RedisEnvelopeStore
from .health import HealthCollector
from .models import CacheAction, CacheActionRequest
from .orchestrator import CacheService
from .query import InventoryIndex
from .query.index import DEFAULT_LOW_STOCK_THRESHOLD
from .upstream import ReportApiClient, default_retry_policy


SERVICE_NAME = "inventory"
SERVICE_PORT = 8020


class InventoryService(BaseService):
    """Inventory service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[RedisEnvelopeStore] = None,
        upstream: Optional[ReportApiClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config or get_config(SERVICE_NAME, SERVICE_PORT))

        self.store = store or RedisEnvelopeStore(
            self.config.store_connection_string,
            timeout_seconds=self.config.store_timeout_seconds,
            metrics=self.metrics,
        )
        self.upstream = upstream or ReportApiClient(
            self.config.upstream_base_url,
            self.config.upstream_api_key,
            self.config.upstream_api_secret,
            report_path=self.config.upstream_report_path,
            timeout_seconds=self.config.upstream_timeout_seconds,
            retry_policy=default_retry_policy(self.config.upstream_retry_backoff_seconds),
            min_interval_seconds=self.config.upstream_min_interval_seconds,
            metrics=self.metrics,
        )
        self.cache_service = CacheService(
            self.store,
            self.upstream,
            default_ttl_seconds=self.config.cache_default_ttl_seconds,
            min_ttl_seconds=self.config.cache_min_ttl_seconds,
            stale_retention_factor=self.config.cache_stale_retention_factor,
            clock=clock,
            metrics=self.metrics,
        )
        self.index = InventoryIndex(self.cache_service, search_limit=self.config.search_max_results)
        self.health = HealthCollector(self.cache_service)

        self._setup_inventory_routes()

    async def on_startup(self):
        if not self.config.cache_warm_on_startup:
            return
        try:
            metrics = await self.cache_service.warm_up_cache()
            self.logger.info("Inventory cache warmed on startup", **metrics.to_dict())
        except Exception as e:
            self.logger.warning("Startup warm-up failed", error=str(e))

    async def on_shutdown(self):
        await self.store.close()

    def _setup_inventory_routes(self):
        """Set up inventory routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Inventory Cache Layer - Inventory Service",
                "version": "1.0.0"
            }

        @self.app.get("/inventory")
        async def get_inventory(
            force_refresh: bool = Query(False, alias="forceRefresh"),
            ttl: Optional[int] = Query(None, ge=1, description="Freshness window in minutes"),
            search: Optional[str] = Query(None),
            vendor: Optional[str] = Query(None),
            low_stock: bool = Query(False, alias="lowStock"),
            low_stock_threshold: Optional[int] = Query(None, ge=0, alias="lowStockThreshold"),
            limit: Optional[int] = Query(None, ge=0),
        ):
            """Inventory snapshot with optional combined filters."""
            threshold = None
            if low_stock or low_stock_threshold is not None:
                threshold = DEFAULT_LOW_STOCK_THRESHOLD if low_stock_threshold is None else low_stock_threshold

            result = await self.index.query(
                search=search,
                vendor=vendor,
                low_stock_threshold=threshold,
                limit=limit,
                force_refresh=force_refresh,
                ttl_seconds=ttl * 60 if ttl is not None else None,
            )
            return result.to_response(self.cache_service.clock())

        @self.app.get("/inventory/vendors")
        async def get_vendors():
            """Distinct vendors in the current snapshot."""
            vendors, snapshot = await self.index.vendors()
            return {
                "data": vendors,
                "count": len(vendors),
                "sourceState": snapshot.source_state.value,
            }

        @self.app.get("/inventory/summary")
        async def get_summary():
            """Aggregate figures for the current snapshot."""
            summary = await self.index.summary()
            return summary.to_dict()

        @self.app.get("/inventory/items/{sku}")
        async def get_item(sku: str):
            """Single record by SKU."""
            record, snapshot = await self.index.get_item(sku)
            if record is None:
                raise NotFoundError(f"SKU {sku} not found", details={"sku": sku})
            return {
                "data": record.to_dict(),
                "sourceState": snapshot.source_state.value,
                "cacheAgeSeconds": snapshot.cache_age_seconds(self.cache_service.clock()),
            }

        @self.app.post("/inventory/cache")
        async def cache_action(request: CacheActionRequest):
            """Administrative cache actions."""
            try:
                action = CacheAction(request.action)
            except ValueError:
                raise ValidationError(
                    f"Unknown action: {request.action}",
                    details={"availableActions": [item.value for item in CacheAction]}
                )

            if action is CacheAction.CLEAR_CACHE:
                cleared = await self.cache_service.clear_cache()
                return {"cleared": cleared}

            if action is CacheAction.WARM_UP_CACHE:
                metrics = await self.cache_service.warm_up_cache()
                return {"metrics": metrics.to_dict()}

            report = await self.health.health_check()
            return report.to_dict()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check inventory dependencies."""
        report = await self.health.health_check()
        return {
            "cache": report.cache_state.value,
            "upstream": report.upstream_state.value,
        }


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = InventoryService(config)
    return service.app


if __name__ == "__main__":
    service = InventoryService()
    service.run()
