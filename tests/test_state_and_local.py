"""
Tests for persisted sync state and the SQL-backed local system.
"""

import os
import tempfile
from datetime import datetime

import pytest
import pytz

from ordersync.db_setup import init_database
from ordersync.errors import ValidationError
from ordersync.state import (
    LOCKED,
    STATE_FULFILLMENT_SERVICE_REGISTERED,
    UNLOCKED,
    StateStore,
)


class TestStateStore:

    def setup_method(self):
        db_fd, self.db_path = tempfile.mkstemp(suffix=".db")
        os.close(db_fd)
        self.state = StateStore(init_database(self.db_path))

    def teardown_method(self):
        os.unlink(self.db_path)

    def test_values_are_json_encoded(self):
        self.state.set(STATE_FULFILLMENT_SERVICE_REGISTERED, True)
        self.state.set("custom", {"a": [1, 2]})

        assert self.state.get(STATE_FULFILLMENT_SERVICE_REGISTERED) is True
        assert self.state.get("custom") == {"a": [1, 2]}

    def test_set_updates_in_place(self):
        self.state.set("custom", 1)
        self.state.set("custom", 2)
        assert self.state.get("custom") == 2

    def test_none_removes_key(self):
        self.state.set("custom", "value")
        self.state.set("custom", None)
        assert self.state.get("custom") is None

    def test_set_many(self):
        self.state.set_many({"a": 1, "b": None})
        assert self.state.get("a") == 1
        assert self.state.get("b") is None

    def test_watermark_round_trip(self):
        assert self.state.get_watermark() is None
        self.state.set_watermark(datetime(2024, 3, 2, 10, 15, 0))
        assert self.state.get("order_last_sync_at") == "2024-03-02 10:15:00"
        assert self.state.get_watermark() == datetime(2024, 3, 2, 10, 15, 0)

    def test_iso_watermark_is_read(self):
        self.state.set("order_last_sync_at", "2024-01-01T00:00:00")
        assert self.state.get_watermark() == datetime(2024, 1, 1, 0, 0, 0)
        self.state.set("order_last_sync_at", "2024-01-01T02:00:00+02:00")
        assert self.state.get_watermark() == datetime(2024, 1, 1, 0, 0, 0)

    def test_unreadable_watermark_is_ignored(self):
        self.state.set("order_last_sync_at", "last tuesday")
        assert self.state.get_watermark() is None

    def test_lock_record(self):
        assert self.state.is_locked() is False
        self.state.set_lock_record(LOCKED, datetime(2024, 3, 2, 12, 0, 0))
        assert self.state.get_lock_record() == {"value": "locked", "updated_at": "2024-03-02 12:00:00"}
        assert self.state.is_locked() is True
        self.state.set_lock_record(UNLOCKED, datetime(2024, 3, 2, 12, 0, 5))
        assert self.state.is_locked() is False


class TestSqlLocalSystem:

    def test_create_order_generates_unique_id(self, local):
        created = local.create("order", {
            "store": None,
            "items": [{"sku": "WIDGET-1", "name": "Widget", "quantity": 1}],
            "address": {"full_name": "Ada Lovelace"},
            "options": {"order_ref": "100001", "shipping_method": "flat_rate", "source": "woocommerce:100001"},
            "timestamp": pytz.timezone("America/Edmonton").localize(datetime(2024, 3, 2, 5, 0)),
        })

        assert len(created["unique_id"]) == 10
        assert created["order_ref"] == "100001"
        assert created["items"] == [{"sku": "WIDGET-1", "name": "Widget", "quantity": 1}]
        assert created["created_at"]

    def test_order_requires_ref_and_items(self, local):
        with pytest.raises(ValidationError):
            local.create("order", {"items": [{"sku": "A"}], "options": {}})
        with pytest.raises(ValidationError):
            local.create("order", {"items": [], "options": {"order_ref": "1"}})

    def test_search_by_value_and_list(self, local):
        local.create("product", {"sku": "A", "name": "A", "qty_available": 1})
        local.create("product", {"sku": "B", "name": "B", "qty_available": -2})
        local.create("product", {"sku": "C", "name": "C", "qty_available": 0})

        assert [p["sku"] for p in local.search("product", {"sku": "B"})] == ["B"]
        assert [p["sku"] for p in local.search("product", {"sku": ["A", "C"]})] == ["A", "C"]
        assert len(local.search("product", {})) == 3

    def test_unknown_entity_type(self, local):
        with pytest.raises(ValidationError):
            local.search("invoice", {})

    def test_unknown_filter_field(self, local):
        with pytest.raises(ValidationError):
            local.search("product", {"colour": "red"})

    def test_get_warehouse(self, local):
        warehouse = local.create("warehouse", {"name": "Calgary DC"})
        assert local.get("warehouse", warehouse["id"]) == {"id": warehouse["id"], "name": "Calgary DC"}
        assert local.get("warehouse", 999) is None

    def test_comment_on_order(self, local, session_factory):
        from ordersync.models import OrderComment

        created = local.create("order", {
            "items": [{"sku": "A", "name": "A", "quantity": 1}],
            "address": {"full_name": "Ada"},
            "options": {"order_ref": "100002"},
        })
        local.comment(created["id"], "Packed by robot")

        session = session_factory()
        try:
            assert [c.comment for c in session.query(OrderComment).all()] == ["Packed by robot"]
        finally:
            session.close()

    def test_comment_on_missing_order(self, local):
        with pytest.raises(ValidationError):
            local.comment(42, "nobody home")
