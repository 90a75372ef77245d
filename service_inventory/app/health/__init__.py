"""
Health and fetch-metrics tracking for the Inventory Service.
"""

from .collector import HealthCollector, classify_store, classify_upstream
from .fetch_metrics import FetchMetricsRecorder

__all__ = ["HealthCollector", "FetchMetricsRecorder", "classify_store", "classify_upstream"]
