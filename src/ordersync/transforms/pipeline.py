"""
Transform stage of the import flow.

Runs the configured OrderTransform against a NormalizedOrder, validates what
comes back and applies the skip flags. Without a transform the stage passes
the order through untouched.
"""

import contextlib
import io
import logging
import threading
from typing import Any, Dict, List, Optional

from ..errors import TransformError
from ..records import NormalizedOrder, RemoteOrderRecord
from .base import OrderTransform, TransformResult

lgr = logging.getLogger(__name__)

PRODUCT_KEY = "product"
SKIP_KEY = "skip"

# redirect_stdout swaps sys.stdout for the whole process
_STDOUT_CAPTURE_LOCK = threading.Lock()


class TransformPipeline:

    def __init__(self, local=None, transform: Optional[OrderTransform] = None):
        self._local = local
        self._transform = transform

    @property
    def transform(self) -> Optional[OrderTransform]:
        return self._transform

    def apply(self, order: NormalizedOrder, context: RemoteOrderRecord) -> TransformResult:
        """
        Apply the transform to ``order``.

        Returns:
            TransformResult; ``skipped`` is True when the transform rejected
            the whole order or dropped every item.

        Raises:
            TransformError: the transform raised or returned an unusable order
        """
        if self._transform is None:
            return TransformResult(order=order)

        order_ref = order.order_ref or context.external_ref
        log_prefix = f"Remote Order # {order_ref}: "

        data = order.to_dict()
        self._enrich_items(data["items"], log_prefix)

        buffer = io.StringIO()
        try:
            with _STDOUT_CAPTURE_LOCK, contextlib.redirect_stdout(buffer):
                result = self._transform.transform(data, context)
        except Exception as e:
            raise TransformError(f"Transform Script: {e}", subject=order_ref) from e

        output = buffer.getvalue().strip() or None
        if output:
            lgr.info(log_prefix + f"Transform Script Output: {output}")

        self._check_shape(result, order_ref)

        if result.get(SKIP_KEY):
            lgr.info(log_prefix + "Transform Script: Order skipped.")
            return TransformResult(order=order, skipped=True, reason="order skipped by transform", output=output)

        items = []
        for item in result["items"]:
            if item.get(SKIP_KEY):
                lgr.info(log_prefix + f"Transform Script: Skipped item '{item.get('sku')}'.")
                continue
            item = {k: v for k, v in item.items() if k != PRODUCT_KEY}
            items.append(item)
        result["items"] = items

        if not items:
            lgr.info(log_prefix + "Transform Script: No items left, order skipped.")
            return TransformResult(order=order, skipped=True, reason="no items to submit", output=output)

        result.pop(SKIP_KEY, None)
        lgr.info(log_prefix + "Transform Script: Applied.")
        return TransformResult(order=NormalizedOrder.from_dict(result), output=output)

    def _enrich_items(self, items: List[Dict[str, Any]], log_prefix: str) -> None:
        """Attach the local product to each item, best effort, in one lookup."""
        products = {}
        skus = sorted({item.get("sku") for item in items if item.get("sku")})
        if skus and self._local is not None:
            try:
                for product in self._local.search("product", {"sku": skus}):
                    products[product["sku"]] = product
            except Exception as e:
                lgr.warning(log_prefix + f"Product lookup for transform failed: {e}")

        for item in items:
            item[PRODUCT_KEY] = products.get(item.get("sku"))

    @staticmethod
    def _check_shape(result: Any, order_ref: str) -> None:
        if (
            not isinstance(result, dict)
            or "store" not in result
            or not isinstance(result.get("items"), list)
            or not all(isinstance(item, dict) for item in result["items"])
            or not isinstance(result.get("address"), dict) or not result["address"]
            or not isinstance(result.get("options"), dict) or not result["options"]
        ):
            raise TransformError("unexpected shape", subject=order_ref)
