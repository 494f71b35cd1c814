"""
Order records exchanged between the sync stages.

RemoteOrderRecord is an immutable snapshot of the remote order as fetched.
NormalizedOrder is the mutable working copy that the transform stage may
rewrite and the commit step consumes exactly once.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pytz

lgr = logging.getLogger(__name__)


def parse_remote_datetime(value) -> Optional[datetime]:
    """Parse a remote timestamp into an aware UTC datetime (naive values are UTC)."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            lgr.warning(f"Unparsable remote timestamp '{value}'")
            return None
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


@dataclass(frozen=True)
class ShippingLine:
    method: str = ""
    description: str = ""

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "ShippingLine":
        method = data.get("method", data.get("method_id")) or ""
        description = data.get("description", data.get("method_title")) or ""
        return cls(method=str(method), description=str(description))


@dataclass(frozen=True)
class RemoteLineItem:
    sku: str
    name: str
    qty_ordered: float
    product_type: str = ""
    parent_item_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "RemoteLineItem":
        return cls(
            sku=str(data.get("sku") or ""),
            name=str(data.get("name") or ""),
            qty_ordered=float(data.get("qty_ordered") or 0),
            product_type=str(data.get("product_type") or ""),
            parent_item_id=data.get("parent_item_id") or None,
        )


@dataclass(frozen=True)
class RemoteOrderRecord:
    """Snapshot of a remote order. Never mutated locally."""

    external_ref: str
    items: Tuple[RemoteLineItem, ...] = ()
    shipping_address: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    shipping_lines: Tuple[ShippingLine, ...] = ()
    shipping_method: str = ""
    status: str = ""
    updated_at: Optional[datetime] = None
    raw: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}), repr=False)

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "RemoteOrderRecord":
        external_ref = data.get("increment_id")
        if not external_ref:
            raise ValueError("Remote order payload has no increment_id")

        shipping_lines = tuple(
            ShippingLine.from_api(line) for line in (data.get("shipping_lines") or [])
        )
        if not shipping_lines and data.get("shipping_method"):
            shipping_lines = (ShippingLine(
                method=str(data.get("shipping_method") or ""),
                description=str(data.get("shipping_description") or ""),
            ),)

        return cls(
            external_ref=str(external_ref),
            items=tuple(RemoteLineItem.from_api(item) for item in (data.get("items") or [])),
            shipping_address=MappingProxyType(dict(data.get("shipping_address") or {})),
            shipping_lines=shipping_lines,
            shipping_method=str(data.get("shipping_method") or ""),
            status=str(data.get("status") or ""),
            updated_at=parse_remote_datetime(data.get("updated_at") or data.get("date_modified")),
            raw=MappingProxyType(copy.deepcopy(dict(data))),
        )


def format_shipping_address(address: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a remote shipping address onto the local address fields."""
    def value(key):
        return address.get(key) or ""

    return {
        "full_name": f"{value('firstname')} {value('lastname')}".strip(),
        "company": value("company"),
        "street1": f"{value('street')} {value('street2')}".strip(),
        "city": value("city"),
        "state": value("region"),
        "postal_code": value("postcode"),
        "country": value("country_id"),
        "phone": value("telephone"),
    }


def build_order_items(items) -> List[Dict[str, Any]]:
    """Top level line items only; children of bundles/configurables are skipped."""
    order_items = []
    for item in items:
        if item.parent_item_id:
            continue
        order_items.append({
            "sku": item.sku,
            "name": item.name,
            "quantity": int(item.qty_ordered),
        })
    return order_items


@dataclass
class NormalizedOrder:
    """Working record submitted to the local system."""

    store: Optional[str]
    items: List[Dict[str, Any]]
    address: Dict[str, Any]
    options: Dict[str, Any]
    timestamp: datetime

    @property
    def order_ref(self) -> Optional[str]:
        return self.options.get("order_ref")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "store": self.store,
            "items": copy.deepcopy(self.items),
            "address": copy.deepcopy(self.address),
            "options": copy.deepcopy(self.options),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NormalizedOrder":
        return cls(
            store=data.get("store"),
            items=list(data.get("items") or []),
            address=dict(data.get("address") or {}),
            options=dict(data.get("options") or {}),
            timestamp=data.get("timestamp"),
        )


@dataclass
class ImportResult:
    success: bool
    unique_id: Optional[str] = None
    message: str = ""
    skipped: bool = False
