"""
Cache-first orchestration for inventory reads.

Per key, a request observes one of four states: cold (nothing stored), fresh,
stale (deadline passed) or refreshing (an upstream fetch is in flight). At
most one upstream fetch per key is ever in flight; every caller that misses
while it runs awaits the same fetch task and receives the same envelope or the
same upstream error. Each caller then applies the stale fallback on its own.
"""

import asyncio
import time
from functools import partial
from typing import Callable, Dict, Iterable, Optional, Set

from shared.errors import NoDataAvailable, UpstreamError, UpstreamUnavailable
from shared.logging import get_logger
from ..cache import RedisEnvelopeStore
from ..health.fetch_metrics import FetchMetricsRecorder
from ..models import ALL_KEY, CacheEnvelope, FetchMetrics, InventoryResult
from ..transform import transform
from ..upstream import ReportApiClient


DEFAULT_TTL_SECONDS = 15 * 60
MIN_TTL_SECONDS = 60
DEFAULT_STALE_RETENTION_FACTOR = 10

FETCH_CANCELLED = "Upstream fetch was cancelled"


class CacheService:
    """Serves inventory snapshots from the store, refreshing from upstream on demand."""

    def __init__(
        self,
        store: RedisEnvelopeStore,
        upstream: ReportApiClient,
        *,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        min_ttl_seconds: int = MIN_TTL_SECONDS,
        stale_retention_factor: int = DEFAULT_STALE_RETENTION_FACTOR,
        transformer: Callable = transform,
        clock: Callable[[], float] = time.time,
        fetch_metrics: Optional[FetchMetricsRecorder] = None,
        metrics=None,
    ):
        self.store = store
        self.upstream = upstream
        self.min_ttl_seconds = min_ttl_seconds
        self.default_ttl_seconds = max(min_ttl_seconds, default_ttl_seconds)
        self.stale_retention_factor = stale_retention_factor
        self.transformer = transformer
        self.clock = clock
        self.fetch_metrics = fetch_metrics or FetchMetricsRecorder()
        self.metrics = metrics
        self.logger = get_logger("inventory.cache_service")

        self._inflight: Dict[str, asyncio.Task] = {}
        self._inflight_lock = asyncio.Lock()
        self._known_keys: Set[str] = {ALL_KEY}

    @property
    def known_keys(self) -> Iterable[str]:
        return sorted(self._known_keys)

    def effective_ttl(self, ttl_seconds: Optional[int] = None) -> int:
        """Caller TTL (or the default) clamped to the configured minimum."""
        if ttl_seconds is None:
            ttl_seconds = self.default_ttl_seconds
        return max(self.min_ttl_seconds, int(ttl_seconds))

    def is_refreshing(self, key: str = ALL_KEY) -> bool:
        return key in self._inflight

    async def get_inventory(
        self,
        key: str = ALL_KEY,
        *,
        ttl_seconds: Optional[int] = None,
        force_refresh: bool = False,
    ) -> InventoryResult:
        """Return the snapshot for ``key``, tagged fresh or stale-fallback.

        Raises ``NoDataAvailable`` only when the upstream fetch failed and
        nothing at all is cached for the key.
        """
        self._known_keys.add(key)
        ttl = self.effective_ttl(ttl_seconds)
        freshness_ttl = ttl if ttl_seconds is not None else None
        fallback: Optional[CacheEnvelope] = None

        if not force_refresh:
            cached = await self.store.get(key)
            if cached.ok and cached.value is not None:
                envelope = cached.value
                if envelope.is_fresh(self.clock(), freshness_ttl):
                    self.fetch_metrics.record_hit()
                    self._count("inventory_cache_hits_total", key)
                    return InventoryResult.from_envelope(envelope)
                fallback = envelope
            elif not cached.ok:
                self.logger.info("Cache store unavailable, treating key as cold", key=key)

        self.fetch_metrics.record_miss()
        self._count("inventory_cache_misses_total", key)

        try:
            envelope = await self._single_flight(key, ttl)
        except UpstreamError as exc:
            return InventoryResult.from_envelope(await self._fallback(key, fallback, exc))

        return InventoryResult.from_envelope(envelope)

    async def warm_up_cache(self, ttl_seconds: Optional[int] = None) -> FetchMetrics:
        """Proactive forced refresh of the full inventory view."""
        await self.get_inventory(ALL_KEY, ttl_seconds=ttl_seconds, force_refresh=True)
        return self.fetch_metrics.snapshot()

    async def clear_cache(self) -> bool:
        """Delete every known key and reset the counters; the last fetch error is kept."""
        cleared = True
        for key in self.known_keys:
            result = await self.store.delete(key)
            if not result.ok:
                cleared = False
        self.fetch_metrics.reset_counters()
        self.logger.info("Cache cleared", keys=list(self.known_keys), cleared=cleared)
        return cleared

    async def _single_flight(self, key: str, ttl: int) -> CacheEnvelope:
        """Await the one fetch for ``key``, starting it if none is in flight.

        The fetch runs in its own task, so a cancelled caller only stops
        waiting; the other callers and the store write are unaffected.
        """
        async with self._inflight_lock:
            task = self._inflight.get(key)
            if task is None:
                task = asyncio.get_running_loop().create_task(self._fetch_and_store(key, ttl))
                task.add_done_callback(partial(self._release, key))
                self._inflight[key] = task
            else:
                self.logger.debug("Joining in-flight fetch", key=key)

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            # The fetch itself was cancelled; waiters fall back like any upstream failure
            raise UpstreamUnavailable(FETCH_CANCELLED)

    def _release(self, key: str, task: asyncio.Task):
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            self.fetch_metrics.record_failure(f"UPSTREAM_UNAVAILABLE: {FETCH_CANCELLED}")
            self.logger.warning("Upstream fetch cancelled", key=key)
        else:
            # Mark retrieved so a failure nobody awaited is not reported as unhandled
            task.exception()

    async def _fetch_and_store(self, key: str, ttl: int) -> CacheEnvelope:
        self.fetch_metrics.record_api_call()
        try:
            raw_records = await self.upstream.fetch_all()
        except UpstreamError as exc:
            self.fetch_metrics.record_failure(f"{exc.code}: {exc.message}")
            self.logger.warning("Upstream fetch failed", key=key, code=exc.code, error=exc.message)
            raise

        records = self.transformer(raw_records)
        now = self.clock()
        envelope = CacheEnvelope(
            key=key,
            payload=tuple(records),
            fetched_at=now,
            ttl_seconds=ttl,
        )

        written = await self.store.set(key, envelope, expire_seconds=ttl * self.stale_retention_factor)
        if not written.ok:
            self.logger.warning("Failed to write fresh envelope", key=key, error=written.error.message)

        self.fetch_metrics.record_success(now)
        self._set_gauge("inventory_records_cached", len(records), key)
        self.logger.info("Inventory refreshed", key=key, records=len(records), ttl_seconds=ttl)
        return envelope

    async def _fallback(
        self,
        key: str,
        candidate: Optional[CacheEnvelope],
        error: UpstreamError,
    ) -> CacheEnvelope:
        if candidate is None:
            reread = await self.store.get(key)
            if reread.ok and reread.value is not None:
                candidate = reread.value

        if candidate is None:
            self.logger.error("No inventory data available", key=key, cause=error.code)
            raise NoDataAvailable(key, cause=error)

        self.logger.warning(
            "Serving stale inventory after upstream failure",
            key=key,
            cause=error.code,
            age_seconds=round(candidate.age_seconds(self.clock()), 1),
        )
        return candidate.as_stale_fallback()

    def _count(self, metric_name: str, key: str):
        if not self.metrics:
            return
        try:
            self.metrics.increment_counter(metric_name, key=key)
        except Exception as exc:  # pragma: no cover - metrics failures never break reads
            self.logger.debug("Failed to record cache metrics", error=str(exc))

    def _set_gauge(self, metric_name: str, value: float, key: str):
        if not self.metrics:
            return
        try:
            self.metrics.set_gauge(metric_name, value, key=key)
        except Exception as exc:  # pragma: no cover - metrics failures never break reads
            self.logger.debug("Failed to record cache metrics", error=str(exc))
