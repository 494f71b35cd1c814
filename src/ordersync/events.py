"""
Event dispatch.

Webhooks and the sync cursor do not import orders themselves; they dispatch
an event ("importOrderEvent", "adjustInventoryEvent", "shipmentPackedEvent")
that a handler processes later. Delivery is at-least-once: failed tasks are
retried unless the error says a retry would not help (``skip_auto_retry``).
Deduplication of the same order is the import guard's job, not the bus's.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import copy
import logging
import queue
import threading

lgr = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Any]


@dataclass
class Task:
    event_name: str
    payload: Dict[str, Any]
    attempts: int = 0


class EventBus(ABC):

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def register(self, event_name: str, handler: Handler) -> None:
        self._handlers[event_name] = handler

    @abstractmethod
    def dispatch(self, event_name: str, payload: Dict[str, Any]) -> None:
        pass

    def _handle(self, event_name: str, payload: Dict[str, Any]) -> Any:
        handler = self._handlers.get(event_name)
        if handler is None:
            lgr.warning(f"No handler registered for event '{event_name}', dropping it")
            return None
        return handler(payload)


class InlineEventBus(EventBus):
    """
    Runs the handler immediately in the dispatching thread.

    Handler errors are logged and not propagated, so one failing order does
    not abort the pull that dispatched it. There are no retries.
    """

    def dispatch(self, event_name, payload):
        lgr.debug(f"Handling event {event_name} inline")
        try:
            self._handle(event_name, copy.deepcopy(payload))
        except Exception as e:
            lgr.error(f"Event {event_name} failed: {e}")


class QueuedEventBus(EventBus):
    """In-process queue; tasks run when ``drain`` is called."""

    def __init__(self, max_attempts: int = 3):
        super().__init__()
        self._queue: "queue.Queue[Task]" = queue.Queue()
        self._max_attempts = max_attempts

    def dispatch(self, event_name, payload):
        self._queue.put(Task(event_name, copy.deepcopy(payload)))
        lgr.debug(f"Queued event {event_name}: {payload}")

    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self, stop_event: Optional[threading.Event] = None) -> int:
        """
        Run queued tasks until the queue is empty or ``stop_event`` is set.

        Returns:
            Number of tasks that completed successfully
        """
        completed = 0
        while not (stop_event is not None and stop_event.is_set()):
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                break

            task.attempts += 1
            try:
                self._handle(task.event_name, task.payload)
                completed += 1
            except Exception as e:
                if getattr(e, "skip_auto_retry", False):
                    lgr.error(f"Event {task.event_name} failed, not retrying: {e}")
                elif task.attempts >= self._max_attempts:
                    lgr.error(f"Event {task.event_name} failed after {task.attempts} attempts: {e}")
                else:
                    lgr.warning(f"Event {task.event_name} failed (attempt {task.attempts}/{self._max_attempts}), requeued: {e}")
                    self._queue.put(task)
            finally:
                self._queue.task_done()

        return completed
