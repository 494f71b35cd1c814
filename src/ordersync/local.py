"""
Local commerce system.

LocalSystem is the narrow contract the sync core uses to read and write the
local side. SqlLocalSystem implements it on the SQLAlchemy models in
models.py; entity types are "order", "product" and "warehouse".
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from datetime import timezone
import json
import logging
import uuid

from .db_concurrency import retry_on_database_busy, session_scope
from .errors import ValidationError
from .models import Order, OrderComment, Product, Warehouse

lgr = logging.getLogger(__name__)


class LocalSystem(ABC):

    @abstractmethod
    def search(self, entity_type: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Find entities matching ``filters``.

        A filter value that is a list matches any of its members.
        """
        pass

    @abstractmethod
    def create(self, entity_type: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Create an entity; the returned dict has at least ``id``."""
        pass

    @abstractmethod
    def comment(self, entity_id: Any, text: str) -> None:
        pass

    @abstractmethod
    def get(self, entity_type: str, entity_id: Any) -> Optional[Dict[str, Any]]:
        pass


def _order_to_dict(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "unique_id": order.unique_id,
        "order_ref": order.order_ref,
        "store": order.store,
        "status": order.status,
        "shipping_method": order.shipping_method,
        "source": order.source,
        "items": json.loads(order.items_json),
        "address": json.loads(order.address_json),
        "created_at": order.created_at.strftime("%Y-%m-%d %H:%M:%S") if order.created_at else None,
    }


def _product_to_dict(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "sku": product.sku,
        "name": product.name,
        "qty_available": product.qty_available,
    }


def _warehouse_to_dict(warehouse: Warehouse) -> Dict[str, Any]:
    return {"id": warehouse.id, "name": warehouse.name}


class SqlLocalSystem(LocalSystem):
    """LocalSystem backed by the local SQLite database."""

    ENTITIES = {
        "order": (Order, _order_to_dict, ("id", "unique_id", "order_ref", "status", "store")),
        "product": (Product, _product_to_dict, ("id", "sku", "name")),
        "warehouse": (Warehouse, _warehouse_to_dict, ("id", "name")),
    }

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _entity(self, entity_type: str):
        if entity_type not in self.ENTITIES:
            raise ValidationError(f"Unknown entity type '{entity_type}'")
        return self.ENTITIES[entity_type]

    @retry_on_database_busy(max_retries=5, delay=0.1)
    def search(self, entity_type, filters):
        model, to_dict, searchable = self._entity(entity_type)
        with session_scope(self._session_factory) as session:
            query = session.query(model)
            for name, value in (filters or {}).items():
                if name not in searchable:
                    raise ValidationError(f"Cannot filter {entity_type} by '{name}'")
                column = getattr(model, name)
                if isinstance(value, (list, tuple, set)):
                    query = query.filter(column.in_(list(value)))
                else:
                    query = query.filter(column == value)
            return [to_dict(row) for row in query.order_by(model.id).all()]

    @retry_on_database_busy(max_retries=5, delay=0.1)
    def create(self, entity_type, fields):
        if entity_type == "order":
            return self._create_order(fields)
        model, to_dict, _ = self._entity(entity_type)
        with session_scope(self._session_factory) as session:
            row = model(**fields)
            session.add(row)
            session.flush()
            return to_dict(row)

    def _create_order(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        options = dict(fields.get("options") or {})
        order_ref = options.get("order_ref")
        if not order_ref:
            raise ValidationError("Order options must contain an order_ref")
        if not fields.get("items"):
            raise ValidationError("Order has no items")

        timestamp = fields.get("timestamp")
        if timestamp is not None and timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
        with session_scope(self._session_factory) as session:
            order = Order(
                unique_id=uuid.uuid4().hex[:10].upper(),
                order_ref=str(order_ref),
                store=fields.get("store"),
                shipping_method=options.get("shipping_method"),
                source=options.get("source"),
                items_json=json.dumps(fields["items"]),
                address_json=json.dumps(fields.get("address") or {}),
                options_json=json.dumps(options, default=str),
                ordered_at=timestamp,
            )
            session.add(order)
            session.flush()
            lgr.info(f"Created local order {order.unique_id} for order ref {order.order_ref}")
            return _order_to_dict(order)

    @retry_on_database_busy(max_retries=5, delay=0.1)
    def comment(self, entity_id, text):
        with session_scope(self._session_factory) as session:
            order = session.get(Order, entity_id)
            if order is None:
                raise ValidationError(f"Order {entity_id} not found")
            session.add(OrderComment(order_id=order.id, comment=text))

    @retry_on_database_busy(max_retries=5, delay=0.1)
    def get(self, entity_type, entity_id):
        model, to_dict, _ = self._entity(entity_type)
        with session_scope(self._session_factory) as session:
            row = session.get(model, entity_id)
            return to_dict(row) if row is not None else None
