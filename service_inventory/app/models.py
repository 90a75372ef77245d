"""
Data models for the Inventory Service.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field


ALL_KEY = "inventory:all"


def to_iso(epoch: Optional[float]) -> Optional[str]:
    """Render an epoch timestamp as an ISO-8601 UTC string."""
    if epoch is None:
        return None
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


class SourceState(str, Enum):
    """Where served data came from."""
    FRESH = "fresh"
    STALE_FALLBACK = "stale-fallback"


class HealthState(str, Enum):
    """Health classification of a dependency."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class CacheAction(str, Enum):
    """Administrative cache actions."""
    CLEAR_CACHE = "clearCache"
    WARM_UP_CACHE = "warmUpCache"
    HEALTH_CHECK = "healthCheck"


@dataclass(frozen=True)
class InventoryRecord:
    """Canonical inventory row served to clients."""
    id: str
    sku: str
    name: str = ""
    quantity_on_hand: int = 0
    unit_cost: Decimal = Decimal("0")
    vendor: Optional[str] = None
    location: Optional[str] = None
    last_modified_upstream: Optional[datetime] = None

    def __post_init__(self):
        if not self.sku:
            raise ValueError("sku must be non-empty")
        if self.quantity_on_hand < 0:
            raise ValueError("quantity_on_hand must be >= 0")
        if self.unit_cost < 0:
            raise ValueError("unit_cost must be >= 0")

    def to_dict(self) -> Dict[str, Any]:
        """API representation."""
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "quantityOnHand": self.quantity_on_hand,
            "unitCost": float(self.unit_cost),
            "vendor": self.vendor,
            "location": self.location,
            "lastModifiedUpstream": (
                self.last_modified_upstream.isoformat() if self.last_modified_upstream else None
            ),
        }

    def to_storage(self) -> Dict[str, Any]:
        """Lossless representation written to the cache store."""
        data = self.to_dict()
        data["unitCost"] = str(self.unit_cost)
        return data

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "InventoryRecord":
        modified = data.get("lastModifiedUpstream")
        return cls(
            id=str(data["id"]),
            sku=str(data["sku"]),
            name=data.get("name") or "",
            quantity_on_hand=int(data.get("quantityOnHand", 0)),
            unit_cost=Decimal(str(data.get("unitCost", "0"))),
            vendor=data.get("vendor"),
            location=data.get("location"),
            last_modified_upstream=datetime.fromisoformat(modified) if modified else None,
        )


@dataclass(frozen=True)
class CacheEnvelope:
    """A cached payload together with when it was fetched and for how long it is fresh."""
    key: str
    payload: Tuple[InventoryRecord, ...]
    fetched_at: float
    ttl_seconds: int
    source_state: SourceState = SourceState.FRESH

    def __post_init__(self):
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

    def deadline(self, ttl_seconds: Optional[int] = None) -> float:
        return self.fetched_at + (ttl_seconds or self.ttl_seconds)

    def is_fresh(self, now: float, ttl_seconds: Optional[int] = None) -> bool:
        """A stale-fallback copy is never fresh, whatever its timestamps say."""
        if self.source_state is not SourceState.FRESH:
            return False
        return now < self.deadline(ttl_seconds)

    def age_seconds(self, now: float) -> float:
        return max(0.0, now - self.fetched_at)

    def as_stale_fallback(self) -> "CacheEnvelope":
        return replace(self, source_state=SourceState.STALE_FALLBACK)

    def to_storage(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "payload": [record.to_storage() for record in self.payload],
            "fetchedAt": self.fetched_at,
            "ttlSeconds": self.ttl_seconds,
            "sourceState": self.source_state.value,
        }

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "CacheEnvelope":
        return cls(
            key=data["key"],
            payload=tuple(InventoryRecord.from_storage(item) for item in data["payload"]),
            fetched_at=float(data["fetchedAt"]),
            ttl_seconds=int(data["ttlSeconds"]),
            source_state=SourceState(data.get("sourceState", SourceState.FRESH.value)),
        )


@dataclass(frozen=True)
class FetchMetrics:
    """Point-in-time copy of the fetch counters."""
    cache_hits: int = 0
    cache_misses: int = 0
    api_calls: int = 0
    last_fetch_at: Optional[float] = None
    last_fetch_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cacheHits": self.cache_hits,
            "cacheMisses": self.cache_misses,
            "apiCalls": self.api_calls,
            "lastFetchAt": to_iso(self.last_fetch_at),
            "lastFetchError": self.last_fetch_error,
        }


@dataclass(frozen=True)
class InventoryResult:
    """Records served for one query plus the provenance of the snapshot they came from."""
    records: Tuple[InventoryRecord, ...]
    source_state: SourceState
    fetched_at: float
    ttl_seconds: int

    @classmethod
    def from_envelope(cls, envelope: CacheEnvelope) -> "InventoryResult":
        return cls(
            records=envelope.payload,
            source_state=envelope.source_state,
            fetched_at=envelope.fetched_at,
            ttl_seconds=envelope.ttl_seconds,
        )

    @property
    def is_stale(self) -> bool:
        return self.source_state is SourceState.STALE_FALLBACK

    def with_records(self, records) -> "InventoryResult":
        return replace(self, records=tuple(records))

    def cache_age_seconds(self, now: float) -> float:
        return round(max(0.0, now - self.fetched_at), 3)

    def to_response(self, now: float) -> Dict[str, Any]:
        return {
            "data": [record.to_dict() for record in self.records],
            "sourceState": self.source_state.value,
            "count": len(self.records),
            "cacheAgeSeconds": self.cache_age_seconds(now),
        }


@dataclass(frozen=True)
class InventorySummary:
    """Aggregate figures over one snapshot."""
    total_items: int
    total_inventory_value: Decimal
    out_of_stock_count: int
    vendors_count: int
    source_state: SourceState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalItems": self.total_items,
            "totalInventoryValue": float(self.total_inventory_value),
            "outOfStockCount": self.out_of_stock_count,
            "vendorsCount": self.vendors_count,
            "sourceState": self.source_state.value,
        }


@dataclass(frozen=True)
class HealthReport:
    """Answer to a health-check query."""
    cache_state: HealthState
    upstream_state: HealthState
    metrics: FetchMetrics
    cache_age_seconds: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cacheState": self.cache_state.value,
            "upstreamState": self.upstream_state.value,
            "metrics": self.metrics.to_dict(),
            "cacheAgeSeconds": self.cache_age_seconds,
        }


class CacheActionRequest(BaseModel):
    """Request body for POST /inventory/cache."""
    action: str = Field(..., description="One of clearCache, warmUpCache, healthCheck")
