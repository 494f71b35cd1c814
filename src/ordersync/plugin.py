"""
SyncPlugin: the facade the host (CLI, HTTP callbacks, worker) talks to.

It wires the configuration, remote gateway, local system, sync state and
event bus together and exposes:

    lifecycle   activate / deactivate / reinstall / connection_diagnostics
    actions     sync_orders / cron_sync_orders / sync_inventory
    events      import_order_event / adjust_inventory_event / shipment_packed_event
    webhooks    handle_order_new / handle_order_update / respond_* observers
    callbacks   inventory_query / lock_import / unlock_import / trigger_order_sync

Callbacks are called by the remote side over HTTP; they always return a
value and report failures as ``{"errors": message}``.
"""

import logging
import re
import time
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

import pytz

from .cursor import IMPORT_ORDER_EVENT, SyncCursor
from .db_setup import init_database
from .errors import RuleError, SyncError, TransformError, ValidationError
from .events import EventBus, InlineEventBus
from .feedback import STATUS_FAILED_TO_SUBMIT, STATUS_SUBMITTED, StatusFeedback
from .gateway import RemoteGateway
from .guard import ImportGuard
from .importer import DEFAULT_SOURCE_TAG, OrderImporter
from .local import LocalSystem, SqlLocalSystem
from .rules import parse_rules
from .settings import ConfigStore
from .state import (
    STATE_FULFILLMENT_SERVICE_REGISTERED,
    STATE_LOCK_ORDER_PULL,
    STATE_ORDER_LAST_SYNC_AT,
    StateStore,
)
from .transforms import TransformPipeline, load_transform

lgr = logging.getLogger(__name__)

ADJUST_INVENTORY_EVENT = "adjustInventoryEvent"
SHIPMENT_PACKED_EVENT = "shipmentPackedEvent"

DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
SHIPMENT_SOURCE_PREFIX = "woocommerce_shipment:"
DEFAULT_DB_PATH = "~/.ordersync/ordersync.db"


def remote_shipment_id(source: Optional[str]) -> Optional[str]:
    """Remote shipment id encoded in a local shipment source, if any."""
    if source and source.startswith(SHIPMENT_SOURCE_PREFIX):
        return source[len(SHIPMENT_SOURCE_PREFIX):]
    return None


def validate_date(value: str) -> bool:
    match = DATE_PATTERN.match(value or "")
    if not match:
        return False
    try:
        date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return False
    return True


class SyncPlugin:

    def __init__(
        self,
        config: ConfigStore,
        local: LocalSystem,
        state: StateStore,
        bus: Optional[EventBus] = None,
        gateway: Optional[RemoteGateway] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.local = local
        self.state = state
        self.bus = bus if bus is not None else InlineEventBus()
        self._gateway = gateway
        self._clock = clock
        self._sleep = sleep
        self._importer = None
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self.bus.register(IMPORT_ORDER_EVENT, self.import_order_event)
        self.bus.register(ADJUST_INVENTORY_EVENT, self.adjust_inventory_event)
        self.bus.register(SHIPMENT_PACKED_EVENT, self.shipment_packed_event)

    @classmethod
    def from_config(cls, config: ConfigStore, bus: Optional[EventBus] = None) -> "SyncPlugin":
        """Build a plugin on the SQLite database named by ``db_path``."""
        db_path = config.get("db_path", DEFAULT_DB_PATH)
        lgr.debug(f"Using local database {db_path}")
        session_factory = init_database(db_path)
        return cls(config, SqlLocalSystem(session_factory), StateStore(session_factory), bus=bus)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    @property
    def gateway(self) -> RemoteGateway:
        if self._gateway is None:
            self._gateway = RemoteGateway.from_config(self.config)
        return self._gateway

    @property
    def feedback(self) -> StatusFeedback:
        return StatusFeedback(self.gateway)

    @property
    def guard(self) -> ImportGuard:
        feedback = self.feedback if self.has_connection_config() else None
        return ImportGuard(self.local, self.state, feedback, sleep=self._sleep, clock=self._clock)

    def _timezone(self):
        name = self.config.get("timezone", "UTC")
        try:
            return pytz.timezone(name)
        except pytz.UnknownTimeZoneError:
            self.logger.warning(f"Unknown timezone '{name}', using UTC")
            return pytz.UTC

    @property
    def importer(self) -> OrderImporter:
        if self._importer is None:
            transform = load_transform(self.config.get("order_transform_script"))
            self._importer = OrderImporter(
                self.gateway,
                self.local,
                self.guard,
                TransformPipeline(self.local, transform),
                self.feedback,
                shipping_rules=self.config.get_shipping_rules(),
                source_tag=self.config.get("source_tag", DEFAULT_SOURCE_TAG),
                timezone=self._timezone(),
            )
        return self._importer

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def has_connection_config(self) -> bool:
        return bool(self.config.get("api_url") and self.config.get("api_login") and self.config.get("api_password"))

    def validate_config(self) -> List[str]:
        """Return a list of configuration problems; empty when usable."""
        errors = []
        if not self.has_connection_config():
            errors.append("api_url, api_login and api_password are required.")
        since = self.config.get("sync_orders_since")
        if since and not validate_date(since):
            errors.append("Invalid synchronize orders since date format. Valid format: YYYY-MM-DD.")
        try:
            parse_rules(self.config.get_shipping_rules())
        except RuleError as e:
            errors.append(f"Invalid shipping method rules: {e}")
        try:
            load_transform(self.config.get("order_transform_script"))
        except TransformError as e:
            errors.append(str(e))
        return errors

    def connection_diagnostics(self) -> List[str]:
        info = self.gateway.api("info") or {}
        registered = "Registered" if self.is_fulfillment_service_registered() else "Not registered"
        return [
            f"WooCommerce Version: {info.get('woocommerce_version', 'undefined')}",
            f"WordPress Version: {info.get('wordpress_version', 'undefined')}",
            f"ShipStream Sync Version: {info.get('shipstream_sync_version', 'undefined')}",
            f"Service Status: {registered}",
        ]

    def activate(self) -> List[str]:
        """Register with the remote side. Problems are returned as warnings."""
        warnings = []
        try:
            self.register_fulfillment_service()
        except SyncError as e:
            warnings.append(str(e))
        return warnings

    def deactivate(self) -> List[str]:
        """Unregister and forget all sync state. Problems are returned."""
        errors = []
        try:
            self.unregister_fulfillment_service()
        except SyncError as e:
            errors.append(str(e))
        try:
            self.state.set_many({
                STATE_LOCK_ORDER_PULL: None,
                STATE_ORDER_LAST_SYNC_AT: None,
                STATE_FULFILLMENT_SERVICE_REGISTERED: None,
            })
        except SyncError as e:
            errors.append(str(e))
        return errors

    def reinstall(self) -> List[str]:
        return self.activate()

    def is_fulfillment_service_registered(self) -> bool:
        return bool(self.state.get(STATE_FULFILLMENT_SERVICE_REGISTERED))

    def register_fulfillment_service(self) -> None:
        callback_url = self.config.get("callback_url")
        if not callback_url:
            raise ValidationError("Configuration parameter 'callback_url' is required.")
        if self.gateway.api("set_config", "POST", {"path": "warehouse_api_url", "value": callback_url}):
            self.state.set(STATE_FULFILLMENT_SERVICE_REGISTERED, True)
            self.logger.info(f"Registered fulfillment service callback {callback_url}")

    def unregister_fulfillment_service(self) -> None:
        self.gateway.api("set_config", "POST", {"path": "warehouse_api_url", "value": None})
        self.state.set(STATE_FULFILLMENT_SERVICE_REGISTERED, None)
        self.logger.info("Unregistered fulfillment service")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def sync_inventory(self) -> None:
        """Ask the remote side to pull a full inventory snapshot."""
        result = self.gateway.api("sync_inventory", "POST") or {}
        if not result.get("success"):
            raise SyncError(result.get("message") or "Inventory sync failed")
        self.logger.info("Inventory sync requested")

    def sync_orders(self) -> int:
        """Pull orders modified since ``sync_orders_since`` (or the watermark)."""
        since = self.config.get("sync_orders_since")
        if since and not validate_date(since):
            raise ValidationError("Invalid synchronize orders since date format. Valid format: YYYY-MM-DD.")
        since_date = datetime.strptime(since, "%Y-%m-%d").date() if since else None
        return self._import_orders(since_date)

    def cron_sync_orders(self) -> int:
        """Pull orders modified since the last pass."""
        return self._import_orders()

    def _import_orders(self, since: Optional[date] = None) -> int:
        cursor = SyncCursor(
            self.gateway,
            self.state,
            self.bus,
            self.config.get_status_filter(),
            clock=self._clock,
        )
        return cursor.run(since)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def import_order_event(self, data: Dict[str, Any]):
        external_ref = data.get("increment_id")
        if not external_ref:
            raise ValidationError("importOrderEvent requires an increment_id")
        return self.importer.import_order(str(external_ref))

    def adjust_inventory_event(self, data: Dict[str, Any]) -> int:
        adjusted = 0
        for sku, change in (data.get("stock_adjustments") or {}).items():
            qty = change.get("qty_adjust") if isinstance(change, dict) else None
            if not sku or not qty:
                continue
            self.gateway.api("stock_item/adjust", "POST", [sku, float(qty)])
            self.logger.info(f"Adjusted inventory for the product {sku}. Adjustment: {float(qty):.4f}.")
            adjusted += 1
        return adjusted

    def shipment_packed_event(self, data: Dict[str, Any]):
        """Complete the remote fulfillment of a packed local shipment."""
        remote_order_id = remote_shipment_id(data.get("source"))
        if remote_order_id is None:
            raise ValidationError(f"Shipment source '{data.get('source')}' is not a remote shipment")

        remote_order = self.gateway.api("order_shipment/info", "POST", remote_order_id) or {}
        status = remote_order.get("status")
        if status not in (STATUS_SUBMITTED, STATUS_FAILED_TO_SUBMIT):
            raise SyncError(f"Order {remote_order_id} status is '{status}', expected 'submitted'.")

        payload = dict(data)
        payload["warehouse_name"] = self._warehouse_name(data.get("warehouse_id"))
        shipment_id = self.gateway.api("order_shipment/create_with_tracking", "POST", [remote_order_id, payload])
        self.logger.info(f"Created remote shipment # {shipment_id} for order # {remote_order_id}")
        return shipment_id

    def _warehouse_name(self, warehouse_id) -> Optional[str]:
        if warehouse_id is None:
            return None
        warehouse = self.local.get("warehouse", int(warehouse_id))
        return warehouse.get("name") if warehouse else None

    # ------------------------------------------------------------------
    # Observers and webhooks
    # ------------------------------------------------------------------

    def respond_delivery_committed(self, data: Dict[str, Any]) -> None:
        self.bus.dispatch(ADJUST_INVENTORY_EVENT, {"stock_adjustments": data.get("stock_adjustments")})

    def respond_inventory_adjusted(self, data: Dict[str, Any]) -> None:
        self.bus.dispatch(ADJUST_INVENTORY_EVENT, {"stock_adjustments": data.get("stock_adjustments")})

    def respond_shipment_packed(self, data: Dict[str, Any]) -> None:
        if remote_shipment_id(data.get("source")):
            self.bus.dispatch(SHIPMENT_PACKED_EVENT, dict(data))

    def handle_order_new(self, data: Dict[str, Any]) -> None:
        self.bus.dispatch(IMPORT_ORDER_EVENT, {"increment_id": data.get("increment_id")})

    def handle_order_update(self, data: Dict[str, Any]) -> None:
        self.bus.dispatch(IMPORT_ORDER_EVENT, {"increment_id": data.get("increment_id")})

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def inventory_query(self, filters: Optional[Dict[str, Any]] = None):
        """Signed available quantity per SKU, optionally limited to ``filters['skus']``."""
        try:
            filters = filters or {}
            skus = filters.get("skus") or filters.get("sku")
            search = {"sku": skus} if skus else {}
            products = self.local.search("product", search)
            return {"skus": {p["sku"]: p["qty_available"] for p in products}}
        except Exception as e:
            self.logger.error(f"inventory_query failed: {e}")
            return {"errors": str(e)}

    def lock_import(self, data: Optional[Dict[str, Any]] = None):
        try:
            return self.guard.acquire_import_lock()
        except Exception as e:
            self.logger.warning(f"lock_import failed: {e}")
            return {"errors": str(e)}

    def unlock_import(self, data: Optional[Dict[str, Any]] = None):
        try:
            return self.guard.release_import_lock()
        except Exception as e:
            self.logger.error(f"unlock_import failed: {e}")
            return {"errors": str(e)}

    def trigger_order_sync(self, data: Optional[Dict[str, Any]] = None):
        data = data or {}
        external_ref = data.get("increment_id") or data.get("external_ref")
        if not external_ref:
            return {"errors": "An increment_id is required."}
        try:
            self.bus.dispatch(IMPORT_ORDER_EVENT, {"increment_id": str(external_ref)})
            return True
        except Exception as e:
            self.logger.error(f"trigger_order_sync failed for {external_ref}: {e}")
            return {"errors": str(e)}

    CALLBACKS = ("inventory_query", "lock_import", "unlock_import", "trigger_order_sync")

    def handle_callback(self, method: str, data: Optional[Dict[str, Any]] = None):
        if method not in self.CALLBACKS:
            return {"errors": f"Unknown callback method '{method}'"}
        return getattr(self, method)(data)

    WEBHOOKS = {
        "order.new": "handle_order_new",
        "order.updated": "handle_order_update",
        "delivery.committed": "respond_delivery_committed",
        "inventory.adjusted": "respond_inventory_adjusted",
        "shipment.packed": "respond_shipment_packed",
    }

    def handle_webhook(self, topic: str, data: Dict[str, Any]):
        handler = self.WEBHOOKS.get(topic)
        if handler is None:
            return {"errors": f"Unknown webhook topic '{topic}'"}
        try:
            getattr(self, handler)(data or {})
            return True
        except Exception as e:
            self.logger.error(f"Webhook {topic} failed: {e}")
            return {"errors": str(e)}
