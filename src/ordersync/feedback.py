"""
Status feedback to the remote storefront.

Comments and status changes are informational for the merchant. They must
never block or fail the import they describe, so every failure here is
logged and dropped.
"""

import logging

lgr = logging.getLogger(__name__)

STATUS_SUBMITTED = "submitted"
STATUS_FAILED_TO_SUBMIT = "failed_to_submit"


class StatusFeedback:

    def __init__(self, gateway):
        self._gateway = gateway

    def comment(self, external_ref: str, status: str, message: str) -> None:
        """Add a comment to the remote order and move it to ``status``."""
        try:
            self._gateway.api("order/addComment", "POST", [external_ref, status, message])
            lgr.debug(f"Remote Order # {external_ref}: status '{status}' reported")
        except Exception as e:
            lgr.error(f"Remote Order # {external_ref}: could not report status '{status}': {e}")
