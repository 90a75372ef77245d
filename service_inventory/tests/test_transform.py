"""
Unit tests for the inventory record transformer.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_inventory.app.transform import transform, transform_record
from shared.test_helpers import TestDataFactory


class TestTransformRecord:
    """Test cases for single-row normalization."""

    def test_report_export_spelling(self):
        """Report column names map onto canonical fields."""
        record = transform_record(TestDataFactory.create_report_rows()[0])

        assert record.sku == "SKU-001"
        assert record.id == "/api/product/1001"
        assert record.name == "Widget"
        assert record.quantity_on_hand == 12
        assert record.unit_cost == Decimal("2.50")
        assert record.vendor == "Acme"
        assert record.location == "Main"
        assert record.last_modified_upstream == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_short_form_spelling(self):
        record = transform_record({"sku": "A", "qty": 5, "cost": "1.5"})

        assert record.quantity_on_hand == 5
        assert record.unit_cost == Decimal("1.5")

    def test_id_falls_back_to_sku(self):
        record = transform_record({"sku": "A"})
        assert record.id == "A"

    @pytest.mark.parametrize("raw", [
        {"name": "No SKU"},
        {"sku": ""},
        {"sku": "   "},
        {"sku": None},
        "not a mapping",
    ])
    def test_missing_sku_returns_none(self, raw):
        assert transform_record(raw) is None

    @pytest.mark.parametrize("value", ["abc", None, "", "NaN", "Infinity", True])
    def test_unparseable_quantity_becomes_zero(self, value):
        record = transform_record({"sku": "A", "qty": value})
        assert record.quantity_on_hand == 0

    def test_negative_values_clamped(self):
        record = transform_record({"sku": "A", "qty": -4, "unitCost": "-2.00"})

        assert record.quantity_on_hand == 0
        assert record.unit_cost == Decimal("0")

    def test_thousands_separator_and_currency(self):
        record = transform_record({"sku": "A", "Units in stock": "1,250", "Average cost": "$3.10"})

        assert record.quantity_on_hand == 1250
        assert record.unit_cost == Decimal("3.10")

    def test_fractional_quantity_truncated(self):
        record = transform_record({"sku": "A", "qty": "7.9"})
        assert record.quantity_on_hand == 7

    def test_unparseable_timestamp_is_none(self):
        record = transform_record({"sku": "A", "lastModified": "yesterday"})
        assert record.last_modified_upstream is None

    def test_naive_timestamp_assumed_utc(self):
        record = transform_record({"sku": "A", "updated_at": "2024-05-01T10:00:00"})
        assert record.last_modified_upstream == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

    def test_blank_alias_skipped_for_next_spelling(self):
        record = transform_record({"sku": "A", "quantity": "", "Units in stock": "9"})
        assert record.quantity_on_hand == 9


class TestTransformBatch:
    """Test cases for batch normalization."""

    def test_scenario_mixed_batch(self):
        """One row without a SKU is dropped, a bad quantity becomes zero."""
        raw = [
            {"sku": "A", "qty": 5},
            {"sku": "", "qty": 3},
            {"sku": "B", "qty": "abc"},
        ]

        records = transform(raw)

        assert [(r.sku, r.quantity_on_hand) for r in records] == [("A", 5), ("B", 0)]

    def test_preserves_upstream_order(self):
        records = transform(TestDataFactory.create_report_rows())
        assert [r.sku for r in records] == ["SKU-001", "SKU-002", "SKU-003"]

    def test_duplicate_sku_keeps_first(self):
        records = transform([
            {"sku": "A", "qty": 1},
            {"sku": "A", "qty": 2},
        ])

        assert len(records) == 1
        assert records[0].quantity_on_hand == 1

    def test_idempotent(self):
        raw = TestDataFactory.create_report_rows() + TestDataFactory.create_api_rows()
        assert transform(raw) == transform(raw)

    def test_empty_batch(self):
        assert transform([]) == []

    def test_accepts_generator(self):
        records = transform(row for row in TestDataFactory.create_api_rows())
        assert [r.sku for r in records] == ["A", "B"]
