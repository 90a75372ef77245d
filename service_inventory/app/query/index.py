"""
Filtered views over the current inventory snapshot.

Nothing here is cached separately: each view is derived live from the
``inventory:all`` envelope held by the cache service, and carries that
envelope's ``source_state``.
"""

from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from shared.logging import get_logger
from ..models import ALL_KEY, InventoryRecord, InventoryResult, InventorySummary


DEFAULT_SEARCH_LIMIT = 100
DEFAULT_LOW_STOCK_THRESHOLD = 10


def matches_search(record: InventoryRecord, term: str) -> bool:
    needle = term.lower()
    return any(
        needle in value.lower()
        for value in (record.name, record.sku, record.vendor or "")
    )


def filter_search(records: Iterable[InventoryRecord], term: Optional[str]) -> List[InventoryRecord]:
    term = (term or "").strip()
    if not term:
        return list(records)
    return [record for record in records if matches_search(record, term)]


def filter_vendor(records: Iterable[InventoryRecord], vendor: str) -> List[InventoryRecord]:
    return [record for record in records if record.vendor == vendor]


def filter_low_stock(records: Iterable[InventoryRecord], threshold: int) -> List[InventoryRecord]:
    return [record for record in records if record.quantity_on_hand <= threshold]


def distinct_vendors(records: Iterable[InventoryRecord]) -> List[str]:
    return sorted({record.vendor for record in records if record.vendor})


def summarize(records: Tuple[InventoryRecord, ...]) -> Tuple[int, Decimal, int, int]:
    total_value = sum(
        (record.unit_cost * record.quantity_on_hand for record in records),
        Decimal("0"),
    )
    out_of_stock = sum(1 for record in records if record.quantity_on_hand == 0)
    return len(records), total_value, out_of_stock, len(distinct_vendors(records))


class InventoryIndex:
    """Query layer over a ``CacheService``; never talks to upstream directly."""

    def __init__(self, cache_service, search_limit: int = DEFAULT_SEARCH_LIMIT):
        self.cache_service = cache_service
        self.search_limit = search_limit
        self.logger = get_logger("inventory.query")

    async def _snapshot(self, force_refresh: bool = False, ttl_seconds: Optional[int] = None) -> InventoryResult:
        return await self.cache_service.get_inventory(
            ALL_KEY,
            ttl_seconds=ttl_seconds,
            force_refresh=force_refresh,
        )

    async def query(
        self,
        *,
        search: Optional[str] = None,
        vendor: Optional[str] = None,
        low_stock_threshold: Optional[int] = None,
        limit: Optional[int] = None,
        force_refresh: bool = False,
        ttl_seconds: Optional[int] = None,
    ) -> InventoryResult:
        """Apply every supplied filter to one snapshot."""
        snapshot = await self._snapshot(force_refresh=force_refresh, ttl_seconds=ttl_seconds)
        records: List[InventoryRecord] = list(snapshot.records)

        if search:
            records = filter_search(records, search)
        if vendor:
            records = filter_vendor(records, vendor)
        if low_stock_threshold is not None:
            records = filter_low_stock(records, low_stock_threshold)
        if limit is not None:
            records = records[:max(0, limit)]

        return snapshot.with_records(records)

    async def search(self, term: str, limit: Optional[int] = None) -> InventoryResult:
        """Case-insensitive substring match over name, SKU and vendor."""
        snapshot = await self._snapshot()
        limit = self.search_limit if limit is None else limit
        return snapshot.with_records(filter_search(snapshot.records, term)[:max(0, limit)])

    async def by_vendor(self, name: str) -> InventoryResult:
        snapshot = await self._snapshot()
        return snapshot.with_records(filter_vendor(snapshot.records, name))

    async def low_stock(self, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> InventoryResult:
        snapshot = await self._snapshot()
        return snapshot.with_records(filter_low_stock(snapshot.records, threshold))

    async def get_item(self, sku: str) -> Tuple[Optional[InventoryRecord], InventoryResult]:
        """Look up one SKU; the snapshot is returned alongside for provenance."""
        snapshot = await self._snapshot()
        for record in snapshot.records:
            if record.sku == sku:
                return record, snapshot.with_records([record])
        return None, snapshot.with_records([])

    async def vendors(self) -> Tuple[List[str], InventoryResult]:
        snapshot = await self._snapshot()
        return distinct_vendors(snapshot.records), snapshot

    async def summary(self) -> InventorySummary:
        snapshot = await self._snapshot()
        total_items, total_value, out_of_stock, vendors_count = summarize(snapshot.records)
        return InventorySummary(
            total_items=total_items,
            total_inventory_value=total_value,
            out_of_stock_count=out_of_stock,
            vendors_count=vendors_count,
            source_state=snapshot.source_state,
        )
