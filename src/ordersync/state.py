"""
Persisted sync state.

Three keys are kept in the ``sync_state`` table:

    order_last_sync_at              watermark of the last completed order pull
    lock_order_pull                 advisory import lock record
                                    {"value": "locked"|"unlocked", "updated_at": "..."}
    fulfillment_service_registered  True once the remote side knows our callback URL

Values are JSON encoded. Reads and writes are plain read-then-write with no
compare-and-swap; callers coordinate through the import lock.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .db_concurrency import retry_on_database_busy, session_scope
from .models import SyncStateEntry

lgr = logging.getLogger(__name__)

STATE_ORDER_LAST_SYNC_AT = "order_last_sync_at"
STATE_LOCK_ORDER_PULL = "lock_order_pull"
STATE_FULFILLMENT_SERVICE_REGISTERED = "fulfillment_service_registered"

LOCKED = "locked"
UNLOCKED = "unlocked"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(dt: datetime) -> str:
    return dt.strftime(DATE_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Accepts "YYYY-MM-DD HH:MM:SS" and ISO 8601 ("T" separator, optional offset)."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class StateStore:
    """Key/value access to the sync_state table."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    @retry_on_database_busy(max_retries=5, delay=0.1)
    def get(self, key: str) -> Optional[Any]:
        with session_scope(self._session_factory) as session:
            entry = session.get(SyncStateEntry, key)
            if entry is None or entry.value is None:
                return None
            return json.loads(entry.value)

    @retry_on_database_busy(max_retries=5, delay=0.1)
    def set(self, key: str, value: Any) -> bool:
        """Create or update ``key``. Setting None removes the entry."""
        with session_scope(self._session_factory) as session:
            entry = session.get(SyncStateEntry, key)
            if value is None:
                if entry is not None:
                    session.delete(entry)
                return True
            encoded = json.dumps(value)
            if entry is None:
                session.add(SyncStateEntry(key=key, value=encoded))
            else:
                entry.value = encoded
            return True

    def set_many(self, values: Dict[str, Any]) -> bool:
        for key, value in values.items():
            self.set(key, value)
        return True

    # Convenience accessors

    def get_watermark(self) -> Optional[datetime]:
        value = self.get(STATE_ORDER_LAST_SYNC_AT)
        if not value:
            return None
        try:
            return parse_timestamp(value)
        except (TypeError, ValueError):
            lgr.warning(f"Ignoring unreadable sync watermark '{value}'")
            return None

    def set_watermark(self, dt: datetime) -> bool:
        return self.set(STATE_ORDER_LAST_SYNC_AT, format_timestamp(dt))

    def get_lock_record(self) -> Optional[Dict[str, str]]:
        record = self.get(STATE_LOCK_ORDER_PULL)
        return record if isinstance(record, dict) else None

    def set_lock_record(self, value: str, updated_at: datetime) -> bool:
        return self.set(STATE_LOCK_ORDER_PULL, {
            "value": value,
            "updated_at": format_timestamp(updated_at),
        })

    def is_locked(self) -> bool:
        record = self.get_lock_record()
        return bool(record) and record.get("value") == LOCKED
