"""
Process-wide fetch counters.
"""

import threading
from typing import Optional

from ..models import FetchMetrics


class FetchMetricsRecorder:
    """Thread-safe hit/miss/call counters plus the last fetch outcome."""

    def __init__(self):
        self._lock = threading.Lock()
        self._cache_hits = 0
        self._cache_misses = 0
        self._api_calls = 0
        self._last_fetch_at: Optional[float] = None
        self._last_fetch_error: Optional[str] = None

    def record_hit(self):
        with self._lock:
            self._cache_hits += 1

    def record_miss(self):
        with self._lock:
            self._cache_misses += 1

    def record_api_call(self):
        with self._lock:
            self._api_calls += 1

    def record_success(self, fetched_at: float):
        """A successful fetch supersedes whatever error was kept for diagnosis."""
        with self._lock:
            self._last_fetch_at = fetched_at
            self._last_fetch_error = None

    def record_failure(self, error: str):
        with self._lock:
            self._last_fetch_error = error

    def reset_counters(self):
        """Zero the counters; the last fetch timestamp and error are kept."""
        with self._lock:
            self._cache_hits = 0
            self._cache_misses = 0
            self._api_calls = 0

    def snapshot(self) -> FetchMetrics:
        with self._lock:
            return FetchMetrics(
                cache_hits=self._cache_hits,
                cache_misses=self._cache_misses,
                api_calls=self._api_calls,
                last_fetch_at=self._last_fetch_at,
                last_fetch_error=self._last_fetch_error,
            )
