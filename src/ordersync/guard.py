"""
Idempotency and import lock.

already_imported() keeps a remote order from being created twice locally.
The import lock serializes the commit section between triggers that may race
for the same order (a webhook and a scheduled pull, two webhook retries).

The lock is advisory: a record in the shared sync state that every
participant checks by polling once per second. A holder that crashed without
releasing is presumed dead once its record is older than the staleness
threshold, at which point another trigger may take the lock over.
"""

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Optional

from .errors import LockError
from .feedback import STATUS_SUBMITTED
from .state import LOCKED, UNLOCKED, parse_timestamp

lgr = logging.getLogger(__name__)

DEFAULT_MAX_WAIT_SECONDS = 20
DEFAULT_STALE_AFTER_SECONDS = 60
POLL_INTERVAL_SECONDS = 1


class ImportGuard:

    def __init__(
        self,
        local,
        state,
        feedback=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._local = local
        self._state = state
        self._feedback = feedback
        self._sleep = sleep
        self._clock = clock

    def already_imported(self, external_ref: str, notify: bool = True) -> bool:
        """
        True when a local order already exists for ``external_ref``.

        With ``notify`` the remote order is told which local order it became.
        """
        results = self._local.search("order", {"order_ref": external_ref})
        if not results:
            return False

        existing = results[0]
        message = f"Local Order # {existing['unique_id']} was created at {existing.get('created_at')}"
        lgr.info(f"Remote Order # {external_ref}: already imported. {message}")
        if notify and self._feedback is not None:
            self._feedback.comment(external_ref, STATUS_SUBMITTED, message)
        return True

    def _is_available(self, record: Optional[dict], stale_after_seconds: float) -> bool:
        if not record or record.get("value") != LOCKED:
            return True
        try:
            updated_at = parse_timestamp(record["updated_at"])
        except (KeyError, TypeError, ValueError):
            lgr.warning(f"Import lock record is unreadable, taking it over: {record}")
            return True
        if self._clock() - updated_at > timedelta(seconds=stale_after_seconds):
            lgr.warning(f"Import lock held since {record['updated_at']} is stale, taking it over")
            return True
        return False

    def acquire_import_lock(
        self,
        max_wait_seconds: int = DEFAULT_MAX_WAIT_SECONDS,
        stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
    ) -> bool:
        """
        Take the import lock, waiting up to ``max_wait_seconds``.

        Raises:
            LockError: the lock is still held after the wait
        """
        waited = 0
        while True:
            if self._is_available(self._state.get_lock_record(), stale_after_seconds):
                self._state.set_lock_record(LOCKED, self._clock())
                lgr.debug("Import lock acquired")
                return True
            if waited >= max_wait_seconds:
                raise LockError("cannot lock")
            self._sleep(POLL_INTERVAL_SECONDS)
            waited += POLL_INTERVAL_SECONDS

    def release_import_lock(self) -> bool:
        """Mark the lock as free. Failures are logged, never raised."""
        try:
            self._state.set_lock_record(UNLOCKED, self._clock())
            lgr.debug("Import lock released")
            return True
        except Exception as e:
            lgr.error(f"Could not release import lock: {e}")
            return False

    @contextmanager
    def import_lock(
        self,
        max_wait_seconds: int = DEFAULT_MAX_WAIT_SECONDS,
        stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
    ):
        self.acquire_import_lock(max_wait_seconds, stale_after_seconds)
        try:
            yield
        finally:
            self.release_import_lock()
