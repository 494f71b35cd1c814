"""
Per-order import flow.

    already imported? -> fetch remote order -> normalize -> classify shipping
    -> transform -> [import lock: re-check, commit] -> status feedback

The local order reference (options.order_ref) is the remote increment id,
which makes it the idempotency key.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytz

from .errors import LockError, SubmitError, SyncError, TransportError
from .feedback import STATUS_FAILED_TO_SUBMIT, STATUS_SUBMITTED
from .records import (
    ImportResult,
    NormalizedOrder,
    RemoteOrderRecord,
    build_order_items,
    format_shipping_address,
)
from .rules import classify

lgr = logging.getLogger(__name__)

DEFAULT_SOURCE_TAG = "woocommerce"


class OrderImporter:

    def __init__(
        self,
        gateway,
        local,
        guard,
        pipeline,
        feedback,
        shipping_rules: Optional[List[Dict[str, Any]]] = None,
        source_tag: str = DEFAULT_SOURCE_TAG,
        timezone=pytz.UTC,
    ):
        self._gateway = gateway
        self._local = local
        self._guard = guard
        self._pipeline = pipeline
        self._feedback = feedback
        self._shipping_rules = list(shipping_rules or [])
        self._source_tag = source_tag
        self._timezone = timezone

    def fetch_remote_order(self, external_ref: str) -> RemoteOrderRecord:
        data = self._gateway.api("order_shipment/info", "POST", external_ref)
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected order info response: {data!r}", subject=external_ref)
        try:
            return RemoteOrderRecord.from_api(data)
        except ValueError as e:
            raise TransportError(f"Unexpected order info response: {e}", subject=external_ref) from e

    def shipping_method(self, remote: RemoteOrderRecord) -> str:
        if not self._shipping_rules:
            return remote.shipping_method
        return classify(remote.shipping_lines, self._shipping_rules, default_value=remote.shipping_method)

    def build_order(self, remote: RemoteOrderRecord) -> NormalizedOrder:
        return NormalizedOrder(
            store=None,
            items=build_order_items(remote.items),
            address=format_shipping_address(remote.shipping_address),
            options={
                "order_ref": remote.external_ref,
                "shipping_method": self.shipping_method(remote),
                "source": f"{self._source_tag}:{remote.external_ref}",
            },
            timestamp=datetime.now(self._timezone),
        )

    def import_order(self, external_ref: str) -> ImportResult:
        """
        Import one remote order.

        Returns:
            ImportResult; ``skipped`` is set when nothing was created

        Raises:
            LockError: the import lock could not be taken
            SubmitError: any other failure; the original error is chained and
                         auto-retry is disabled
        """
        log_prefix = f"Remote Order # {external_ref}: "

        if self._guard.already_imported(external_ref):
            return ImportResult(success=True, skipped=True, message="already imported")

        try:
            remote = self.fetch_remote_order(external_ref)
            order = self.build_order(remote)
            if not order.items:
                lgr.info(log_prefix + "No items to fulfill, skipping.")
                return ImportResult(success=False, skipped=True, message="no items")

            transformed = self._pipeline.apply(order, remote)
            if transformed.skipped:
                return ImportResult(success=False, skipped=True, message=transformed.reason)

            with self._guard.import_lock():
                if self._guard.already_imported(external_ref):
                    return ImportResult(success=True, skipped=True, message="already imported")
                return self.submit_order(transformed.order, log_prefix)

        except LockError:
            lgr.warning(log_prefix + "Import lock is busy, giving up on this attempt.")
            raise
        except SyncError as e:
            self._feedback.comment(external_ref, STATUS_FAILED_TO_SUBMIT, f"Failed to Submit: {e.message}")
            if isinstance(e, SubmitError):
                raise
            raise SubmitError(e.message, subject=external_ref) from e

    def submit_order(self, order: NormalizedOrder, log_prefix: str) -> ImportResult:
        """Create the local order. Must run while the import lock is held."""
        lgr.info(log_prefix + "Submitting Order...")
        try:
            created = self._local.create("order", order.to_dict())
        except Exception as e:
            raise SubmitError(str(e), subject=order.order_ref) from e

        unique_id = created.get("unique_id") or str(created.get("id"))
        lgr.info(log_prefix + f"Order Submitted: Local Order # {unique_id}")
        self._feedback.comment(order.order_ref, STATUS_SUBMITTED, f"Submitted: Local Order # {unique_id}")
        return ImportResult(success=True, unique_id=unique_id)
