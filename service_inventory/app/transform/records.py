"""
Normalization of upstream report rows into canonical inventory records.

Upstream rows arrive in several shapes: report exports use display column
names ("Product ID", "Units in stock"), API payloads use snake_case or
camelCase, and hand-built feeds use short forms such as ``qty``. Every shape
is resolved here through an alias table, so nothing downstream of
``transform`` ever sees a raw row.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from shared.logging import get_logger
from ..models import InventoryRecord


RawRecord = Mapping[str, Any]

FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "sku": ("sku", "SKU", "Product ID", "productId", "product_id", "Item ID", "itemId"),
    "id": ("id", "finale_id", "finaleId", "Product URL", "productUrl", "url"),
    "name": ("name", "Product Name", "productName", "product_name", "Description", "Name"),
    "quantity_on_hand": (
        "quantityOnHand", "quantity_on_hand", "qty", "quantity", "Units in stock",
        "On hand", "Stock", "stock", "totalStock", "current_stock",
    ),
    "unit_cost": ("unitCost", "unit_cost", "cost", "Cost", "Unit cost", "Average cost"),
    "vendor": ("vendor", "Vendor", "supplier", "Supplier", "Supplier 1", "Primary Supplier"),
    "location": ("location", "Location", "Sublocation"),
    "last_modified_upstream": (
        "lastModifiedUpstream", "last_modified", "lastModified", "lastUpdatedDate",
        "Last modified", "updated_at",
    ),
}

logger = get_logger("inventory.transform")


def _lookup(raw: RawRecord, field: str) -> Any:
    """First alias of ``field`` present in ``raw`` with a non-blank value."""
    for alias in FIELD_ALIASES[field]:
        value = raw.get(alias)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = int(Decimal(str(value).replace(",", "").strip()))
    except (InvalidOperation, ValueError, OverflowError):
        return 0
    return max(0, number)


def _to_decimal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal("0")
    try:
        number = Decimal(str(value).replace(",", "").replace("$", "").strip())
    except InvalidOperation:
        return Decimal("0")
    if not number.is_finite() or number < 0:
        return Decimal("0")
    return number


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def transform_record(raw: RawRecord) -> Optional[InventoryRecord]:
    """Normalize one row; ``None`` when it has no usable SKU."""
    if not isinstance(raw, Mapping):
        return None

    sku = _text(_lookup(raw, "sku"))
    if sku is None:
        return None

    return InventoryRecord(
        id=_text(_lookup(raw, "id")) or sku,
        sku=sku,
        name=_text(_lookup(raw, "name")) or "",
        quantity_on_hand=_to_int(_lookup(raw, "quantity_on_hand")),
        unit_cost=_to_decimal(_lookup(raw, "unit_cost")),
        vendor=_text(_lookup(raw, "vendor")),
        location=_text(_lookup(raw, "location")),
        last_modified_upstream=_to_datetime(_lookup(raw, "last_modified_upstream")),
    )


def transform(raw_records: Iterable[RawRecord]) -> List[InventoryRecord]:
    """Normalize a batch, keeping upstream order.

    Rows without a SKU are dropped and counted, never raised; a repeated SKU
    keeps its first occurrence.
    """
    records: List[InventoryRecord] = []
    seen = set()
    dropped = 0
    duplicates = 0
    total = 0

    for raw in raw_records:
        total += 1
        record = transform_record(raw)
        if record is None:
            dropped += 1
            continue
        if record.sku in seen:
            duplicates += 1
            continue
        seen.add(record.sku)
        records.append(record)

    if dropped:
        logger.warning("Dropped upstream rows without SKU", dropped=dropped, total=total)
    if duplicates:
        logger.warning("Dropped duplicate SKUs", duplicates=duplicates, total=total)

    return records
