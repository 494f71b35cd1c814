"""
Order Transform Plugin Interface

This module defines the contract for order transforms: user supplied code
that may rewrite, filter or reject an order right before it is submitted to
the local system. Transforms are loaded as Python modules, they are never
evaluated from configuration text.

USAGE:
    from ordersync.transforms.base import OrderTransform

    class GiftWrap(OrderTransform):
        def transform(self, order, context):
            order["options"]["note"] = "gift wrap"
            for item in order["items"]:
                if item["sku"].startswith("SAMPLE-"):
                    item["skip"] = True
            return order

CONTRACT:
    Input   order dict with keys store, items, address, options, timestamp.
            Each item carries a ``product`` key with the local product
            (or None) while the transform runs.
            context is the read-only RemoteOrderRecord.
    Output  the (possibly modified) order dict.
            order["skip"] = True     skip the whole order
            item["skip"] = True      drop that item
    Anything printed to stdout is captured and logged with the order.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import logging

from ..records import NormalizedOrder, RemoteOrderRecord

lgr = logging.getLogger(__name__)


class OrderTransform(ABC):
    """
    Abstract base class for all order transforms.

    THREAD SAFETY:
        One instance is shared by every import handled by the process.
        Keep per-order data in local variables, not on self.
        Stdout capture replaces sys.stdout process wide, so transform calls
        are serialized: a slow transform delays other imports, and prints
        from other threads while it runs end up in its output.
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def transform(self, order: Dict[str, Any], context: RemoteOrderRecord) -> Dict[str, Any]:
        """
        Rewrite the order.

        Args:
            order: Mutable order dict (see module docstring)
            context: Remote order the dict was built from

        Returns:
            The order dict to submit
        """
        pass

    def get_name(self) -> str:
        return self.__class__.__name__


class FunctionTransform(OrderTransform):
    """Adapter for a plain ``fn(order, context) -> order`` function."""

    def __init__(self, func: Callable[[Dict[str, Any], RemoteOrderRecord], Dict[str, Any]]):
        super().__init__()
        self._func = func

    def transform(self, order, context):
        return self._func(order, context)

    def get_name(self) -> str:
        return getattr(self._func, "__qualname__", repr(self._func))


class SkipVirtualItemsTransform(OrderTransform):
    """Drop items whose remote product type needs no physical fulfillment."""

    VIRTUAL_TYPES = ("virtual", "downloadable")

    def transform(self, order, context):
        virtual_skus = {
            item.sku for item in context.items
            if item.product_type in self.VIRTUAL_TYPES
        }
        for item in order["items"]:
            if item.get("sku") in virtual_skus:
                item["skip"] = True
        return order


@dataclass
class TransformResult:
    """Outcome of the transform stage."""

    order: NormalizedOrder
    skipped: bool = False
    reason: str = ""
    output: Optional[str] = None
