"""
Background worker: pull orders on a fixed interval and drain queued events.
"""

import logging
import threading

from .errors import SyncError
from .events import QueuedEventBus

lgr = logging.getLogger(__name__)

STOP_EVENT = threading.Event()  # set to stop the worker loop


def run_cycle(plugin, stop_event=None) -> int:
    """
    One worker tick: incremental order pull, then run whatever is queued.

    Returns:
        Number of events that completed
    """
    try:
        plugin.cron_sync_orders()
    except SyncError as e:
        lgr.error(f"Scheduled order pull failed: {e}")

    if isinstance(plugin.bus, QueuedEventBus):
        return plugin.bus.drain(stop_event if stop_event is not None else STOP_EVENT)
    return 0


def sync_orders_repeatedly(plugin, interval=300, stop_event=None):
    """
    Keep syncing every ``interval`` seconds.
    Exit cleanly when ``stop_event`` (STOP_EVENT by default) is set.
    """
    stop_event = stop_event if stop_event is not None else STOP_EVENT

    while not stop_event.is_set():
        completed = run_cycle(plugin, stop_event)
        lgr.info(f"Worker cycle finished, {completed} events processed. Next pull in {interval} seconds.")
        stop_event.wait(interval)

    lgr.info("Exiting sync_orders_repeatedly because the stop event was set.")
