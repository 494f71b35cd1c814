"""
Tests for the SyncPlugin facade: lifecycle, events, webhooks and callbacks.
"""

from datetime import datetime

import pytest

from ordersync.cursor import IMPORT_ORDER_EVENT
from ordersync.errors import SyncError, TransportError, ValidationError
from ordersync.events import QueuedEventBus
from ordersync.plugin import (
    ADJUST_INVENTORY_EVENT,
    SHIPMENT_PACKED_EVENT,
    SyncPlugin,
    remote_shipment_id,
    validate_date,
)
from ordersync.settings import ConfigStore
from ordersync.state import STATE_ORDER_LAST_SYNC_AT

from conftest import FakeGateway, fixture_data

BASE_CONFIG = {
    "api_url": "https://shop.example.com/wp-json/",
    "api_login": "ck_test",
    "api_password": "cs_test",
    "auto_fulfill_status": "processing",
    "callback_url": "https://ordersync.example.com/callback",
    "callback_secret": "s3cret",
}


class PluginTestBase:

    @pytest.fixture(autouse=True)
    def setup(self, local, state, clock):
        self.local = local
        self.state = state
        self.clock = clock
        self.gateway = FakeGateway({
            "order_shipment/info": fixture_data("order_info"),
            "order/addComment": True,
            "order/list": [],
            "set_config": True,
            "info": fixture_data("info"),
        })
        self.bus = QueuedEventBus()
        self.plugin = self.make_plugin()

    def make_plugin(self, **overrides):
        config = ConfigStore(dict(BASE_CONFIG, **overrides), environ={})
        return SyncPlugin(
            config,
            self.local,
            self.state,
            bus=self.bus,
            gateway=self.gateway,
            clock=self.clock,
            sleep=self.clock.sleep,
        )


class TestHelpers:

    def test_validate_date(self):
        assert validate_date("2024-03-01") is True
        assert validate_date("2024-3-1") is False
        assert validate_date("2024-02-30") is False
        assert validate_date("") is False

    def test_remote_shipment_id(self):
        assert remote_shipment_id("woocommerce_shipment:100001") == "100001"
        assert remote_shipment_id("manual:100001") is None
        assert remote_shipment_id(None) is None


class TestLifecycle(PluginTestBase):

    def test_has_connection_config(self):
        assert self.plugin.has_connection_config() is True
        assert self.make_plugin(api_password="").has_connection_config() is False

    def test_activate_registers_callback_url(self):
        assert self.plugin.activate() == []
        path, _, params = self.gateway.calls_to("set_config")[0]
        assert params == {"path": "warehouse_api_url", "value": "https://ordersync.example.com/callback"}
        assert self.plugin.is_fulfillment_service_registered() is True

    def test_activate_returns_warnings(self):
        warnings = self.make_plugin(callback_url="").activate()
        assert warnings == ["Configuration parameter 'callback_url' is required."]
        assert self.plugin.is_fulfillment_service_registered() is False

    def test_activate_reports_remote_failure(self):
        self.gateway.responses["set_config"] = TransportError("Request Error: 500")
        assert self.plugin.activate() == ["Request Error: 500"]

    def test_reinstall_activates(self):
        assert self.plugin.reinstall() == []
        assert self.plugin.is_fulfillment_service_registered() is True

    def test_deactivate_clears_state(self):
        self.plugin.activate()
        self.state.set_watermark(datetime(2024, 3, 1))
        self.state.set_lock_record("locked", datetime(2024, 3, 1))

        assert self.plugin.deactivate() == []

        assert self.gateway.calls_to("set_config")[-1][2] == {"path": "warehouse_api_url", "value": None}
        assert self.state.get(STATE_ORDER_LAST_SYNC_AT) is None
        assert self.state.get_lock_record() is None
        assert self.plugin.is_fulfillment_service_registered() is False

    def test_deactivate_still_clears_state_when_remote_fails(self):
        self.state.set_watermark(datetime(2024, 3, 1))
        self.gateway.responses["set_config"] = TransportError("Request Error: 502")

        assert self.plugin.deactivate() == ["Request Error: 502"]
        assert self.state.get_watermark() is None

    def test_connection_diagnostics(self):
        lines = self.plugin.connection_diagnostics()
        assert lines == [
            "WooCommerce Version: 8.6.1",
            "WordPress Version: 6.4.3",
            "ShipStream Sync Version: 1.2.0",
            "Service Status: Not registered",
        ]

    def test_validate_config(self):
        assert self.plugin.validate_config() == []
        plugin = self.make_plugin(
            api_url="",
            sync_orders_since="03/01/2024",
            shipping_method_config='[{"shipping_method": "x", "field": "shipping_method", "operator": "=~", "pattern": "("}]',
        )
        problems = plugin.validate_config()
        assert len(problems) == 3


class TestOrderSync(PluginTestBase):

    def test_sync_orders_rejects_bad_date(self):
        plugin = self.make_plugin(sync_orders_since="2024/03/01")
        with pytest.raises(ValidationError, match="YYYY-MM-DD"):
            plugin.sync_orders()
        assert self.gateway.calls == []

    def test_sync_orders_uses_since_date(self):
        plugin = self.make_plugin(sync_orders_since="2024-03-01")
        plugin.sync_orders()

        params = self.gateway.calls_to("order/list")[0][2]
        assert params["filters"]["updated_at"]["from"] == "2024-03-01 00:00:00"

    def test_cron_sync_queues_imports(self):
        self.gateway.responses["order/list"] = fixture_data("order_list_page")

        assert self.plugin.cron_sync_orders() == 2
        assert self.bus.pending() == 2
        assert self.state.get_watermark() == self.clock()

    def test_queued_import_creates_order(self):
        self.plugin.handle_order_new({"increment_id": "100001"})
        assert self.bus.drain() == 1

        orders = self.local.search("order", {"order_ref": "100001"})
        assert len(orders) == 1

    def test_order_update_for_imported_order_is_idempotent(self):
        self.plugin.handle_order_new({"increment_id": "100001"})
        self.plugin.handle_order_update({"increment_id": "100001"})
        self.bus.drain()

        assert len(self.local.search("order", {"order_ref": "100001"})) == 1

    def test_import_order_event_requires_ref(self):
        with pytest.raises(ValidationError):
            self.plugin.import_order_event({})

    def test_sync_inventory(self):
        self.gateway.responses["sync_inventory"] = {"success": True}
        self.plugin.sync_inventory()
        assert self.gateway.calls_to("sync_inventory")

    def test_sync_inventory_failure(self):
        self.gateway.responses["sync_inventory"] = {"success": False, "message": "Inventory sync already running"}
        with pytest.raises(SyncError, match="already running"):
            self.plugin.sync_inventory()


class TestInventoryAndShipments(PluginTestBase):

    def test_adjust_inventory_skips_empty_adjustments(self):
        adjusted = self.plugin.adjust_inventory_event({"stock_adjustments": {
            "WIDGET-1": {"qty_adjust": "-2"},
            "BUNDLE-1": {"qty_adjust": 0},
            "": {"qty_adjust": 5},
        }})

        assert adjusted == 1
        assert self.gateway.calls_to("stock_item/adjust") == [("stock_item/adjust", "POST", ["WIDGET-1", -2.0])]

    def test_inventory_observers_queue_events(self):
        payload = {"stock_adjustments": {"WIDGET-1": {"qty_adjust": 3}}}
        self.plugin.respond_delivery_committed(payload)
        self.plugin.respond_inventory_adjusted(payload)

        assert self.bus.pending() == 2
        assert self.bus.drain() == 2
        assert len(self.gateway.calls_to("stock_item/adjust")) == 2

    def test_shipment_packed_creates_remote_shipment(self):
        warehouse = self.local.create("warehouse", {"name": "Calgary DC"})
        info = fixture_data("order_info")
        info["status"] = "submitted"
        self.gateway.responses["order_shipment/info"] = info
        self.gateway.responses["order_shipment/create_with_tracking"] = 555

        result = self.plugin.shipment_packed_event({
            "source": "woocommerce_shipment:100001",
            "warehouse_id": warehouse["id"],
            "tracking_numbers": ["1Z999"],
        })

        assert result == 555
        _, _, params = self.gateway.calls_to("order_shipment/create_with_tracking")[0]
        assert params[0] == "100001"
        assert params[1]["warehouse_name"] == "Calgary DC"
        assert params[1]["tracking_numbers"] == ["1Z999"]

    def test_shipment_packed_requires_submitted_status(self):
        with pytest.raises(SyncError, match="expected 'submitted'"):
            self.plugin.shipment_packed_event({"source": "woocommerce_shipment:100001"})
        assert self.gateway.calls_to("order_shipment/create_with_tracking") == []

    def test_shipment_observer_ignores_other_sources(self):
        self.plugin.respond_shipment_packed({"source": "manual:42"})
        assert self.bus.pending() == 0

        self.plugin.respond_shipment_packed({"source": "woocommerce_shipment:100001"})
        assert self.bus.pending() == 1


class TestCallbacks(PluginTestBase):

    def test_inventory_query(self):
        self.local.create("product", {"sku": "WIDGET-1", "name": "Widget", "qty_available": 12})
        self.local.create("product", {"sku": "BACKORDER-1", "name": "Backordered", "qty_available": -3})

        assert self.plugin.inventory_query({}) == {"skus": {"WIDGET-1": 12, "BACKORDER-1": -3}}
        assert self.plugin.inventory_query({"skus": ["BACKORDER-1"]}) == {"skus": {"BACKORDER-1": -3}}

    def test_inventory_query_reports_errors(self):
        class BrokenLocal:
            def search(self, entity_type, filters):
                raise RuntimeError("database offline")

        self.plugin.local = BrokenLocal()
        assert self.plugin.inventory_query({}) == {"errors": "database offline"}

    def test_lock_and_unlock_import(self):
        assert self.plugin.lock_import() is True
        assert self.state.is_locked() is True

        assert self.plugin.lock_import() == {"errors": "cannot lock"}

        assert self.plugin.unlock_import() is True
        assert self.state.is_locked() is False

    def test_trigger_order_sync_queues_import(self):
        assert self.plugin.trigger_order_sync({"external_ref": "100001"}) is True
        assert self.bus.pending() == 1

    def test_trigger_order_sync_requires_ref(self):
        assert self.plugin.trigger_order_sync({}) == {"errors": "An increment_id is required."}

    def test_handle_callback_dispatch(self):
        assert self.plugin.handle_callback("trigger_order_sync", {"increment_id": "100001"}) is True
        assert self.plugin.handle_callback("drop_tables", {}) == {"errors": "Unknown callback method 'drop_tables'"}

    def test_handle_webhook(self):
        assert self.plugin.handle_webhook("order.new", {"increment_id": "100001"}) is True
        assert self.bus.pending() == 1
        assert "errors" in self.plugin.handle_webhook("order.deleted", {})

    def test_event_names(self):
        assert IMPORT_ORDER_EVENT == "importOrderEvent"
        assert ADJUST_INVENTORY_EVENT == "adjustInventoryEvent"
        assert SHIPMENT_PACKED_EVENT == "shipmentPackedEvent"
