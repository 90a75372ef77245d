"""
Health classification for the cache store and the upstream report API.
"""

from typing import Optional, Sequence

from shared.logging import get_logger
from ..models import ALL_KEY, FetchMetrics, HealthReport, HealthState


UPSTREAM_WINDOW_MULTIPLIER = 10


def classify_store(outcomes: Sequence[bool], window: int = 3) -> HealthState:
    """Classify from the success flags of the most recent store operations."""
    recent = list(outcomes)[-window:]
    if len(recent) == window and not any(recent):
        return HealthState.DOWN
    if not all(recent):
        return HealthState.DEGRADED
    return HealthState.HEALTHY


def classify_upstream(metrics: FetchMetrics, now: float, window_seconds: float) -> HealthState:
    """Down when failing with no success inside the window; degraded when failing after a recent success."""
    if metrics.last_fetch_error is None:
        return HealthState.HEALTHY
    if metrics.last_fetch_at is None or now - metrics.last_fetch_at > window_seconds:
        return HealthState.DOWN
    return HealthState.DEGRADED


class HealthCollector:
    """Answers health-check queries for a ``CacheService``."""

    def __init__(self, cache_service):
        self.cache_service = cache_service
        self.logger = get_logger("inventory.health")

    @property
    def upstream_window_seconds(self) -> float:
        return UPSTREAM_WINDOW_MULTIPLIER * self.cache_service.default_ttl_seconds

    async def health_check(self) -> HealthReport:
        store = self.cache_service.store
        now = self.cache_service.clock()

        await store.ping()
        cached = await store.get(ALL_KEY)
        cache_age: Optional[float] = None
        if cached.ok and cached.value is not None:
            cache_age = round(cached.value.age_seconds(now), 3)

        metrics = self.cache_service.fetch_metrics.snapshot()
        report = HealthReport(
            cache_state=classify_store(store.recent_outcomes()),
            upstream_state=classify_upstream(metrics, now, self.upstream_window_seconds),
            metrics=metrics,
            cache_age_seconds=cache_age,
        )

        if report.cache_state is not HealthState.HEALTHY or report.upstream_state is not HealthState.HEALTHY:
            self.logger.warning(
                "Inventory cache degraded",
                cache_state=report.cache_state.value,
                upstream_state=report.upstream_state.value,
                last_fetch_error=metrics.last_fetch_error,
            )
        return report
