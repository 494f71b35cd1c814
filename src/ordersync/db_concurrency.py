#!/usr/bin/env python3

"""
    Transaction helpers for the local SQLite database.

    The cron worker, queued import tasks and the callback API all write sync
    state and orders through the same database file. SQLite answers
    concurrent writers with "database is locked", so state and order writes
    go through ``retry_on_database_busy`` and each unit of work gets its own
    ``session_scope``.
"""

import functools
import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from .errors import SyncError

lgr = logging.getLogger(__name__)

BUSY_KEYWORDS = ('database is locked', 'database busy', 'locked')


class DatabaseBusyError(SyncError):
    """The local database stayed locked through every retry."""


def _is_busy(exc: OperationalError) -> bool:
    message = str(exc).lower()
    return any(keyword in message for keyword in BUSY_KEYWORDS)


def retry_on_database_busy(max_retries: int = 3, delay: float = 0.1):
    """
    Retry the wrapped store operation while SQLite reports it is locked.

    The wait doubles after each busy attempt, starting at ``delay`` seconds.
    Operational errors that are not lock contention are raised immediately.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except OperationalError as e:
                    if not _is_busy(e):
                        raise
                    if attempt >= max_retries:
                        lgr.error(f"{func.__qualname__}: local database still locked after {max_retries} retries")
                        raise DatabaseBusyError(f"Local database is busy ({func.__qualname__})") from e
                    pause = delay * (2 ** attempt)
                    attempt += 1
                    lgr.warning(f"{func.__qualname__}: local database locked, retry {attempt}/{max_retries} in {pause}s")
                    time.sleep(pause)

        return wrapper
    return decorator


@contextmanager
def session_scope(session_factory) -> Iterator[Session]:
    """
    Yield a session that commits when the block finishes and rolls back
    when it raises. The session is always closed.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except (OperationalError, IntegrityError) as e:
        session.rollback()
        if isinstance(e, OperationalError) and not _is_busy(e):
            lgr.error(f"Rolled back local transaction: {e}")
        else:
            lgr.warning(f"Rolled back local transaction: {e}")
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
