"""
Progress notification for batch jobs.

A synchronous, in-process publish/subscribe channel. Every event is
published globally with its ``job_id``; subscribers that only care about
one job wrap their handler with ``for_job`` so the filter runs on the
subscriber side and publishing stays O(handlers of that event).

Nothing is persisted: a handler registered after an event fired never
sees it. Pair a subscription with a snapshot (BatchManager.watch_job)
to catch up.
"""

from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from config.logging_config import get_logger

logger = get_logger(__name__)


class JobEvent(Enum):
    """Lifecycle and per-item events"""
    JOB_CREATED = "job_created"
    JOB_STARTED = "job_started"
    JOB_PAUSED = "job_paused"
    JOB_RESUMED = "job_resumed"
    JOB_CANCELLED = "job_cancelled"
    JOB_COMPLETED = "job_completed"
    JOB_DELETED = "job_deleted"
    ITEM_STATUS_CHANGED = "item_status_changed"


# Events that change what an observer of one job would see
PROGRESS_EVENTS = (
    JobEvent.JOB_STARTED,
    JobEvent.JOB_COMPLETED,
    JobEvent.JOB_PAUSED,
    JobEvent.JOB_RESUMED,
    JobEvent.JOB_CANCELLED,
    JobEvent.ITEM_STATUS_CHANGED,
)

EventHandler = Callable[[Dict[str, Any]], None]
Unsubscribe = Callable[[], None]


def for_job(job_id: str, handler: EventHandler) -> EventHandler:
    """Wrap ``handler`` so it only sees payloads for ``job_id``."""
    def filtered(payload: Dict[str, Any]):
        if payload.get("job_id") == job_id:
            handler(payload)
    return filtered


class ProgressNotifier:
    """
    Per-event-name handler registry.

    Usage:
        notifier = ProgressNotifier()
        unsubscribe = notifier.subscribe(
            JobEvent.ITEM_STATUS_CHANGED,
            for_job(job_id, on_item_change),
        )
        ...
        unsubscribe()
    """

    def __init__(self):
        self._handlers: Dict[JobEvent, List[EventHandler]] = {
            event: [] for event in JobEvent
        }

    def subscribe(self, event: JobEvent, handler: EventHandler) -> Unsubscribe:
        """Register ``handler`` for ``event``; returns a callable that removes it."""
        self._handlers[event].append(handler)

        def unsubscribe():
            self.unsubscribe(event, handler)

        return unsubscribe

    def subscribe_many(
        self,
        events: Iterable[JobEvent],
        handler: EventHandler,
    ) -> Unsubscribe:
        """Register one handler for several events."""
        removers = [self.subscribe(event, handler) for event in events]

        def unsubscribe():
            for remove in removers:
                remove()

        return unsubscribe

    def unsubscribe(self, event: JobEvent, handler: EventHandler):
        """Remove ``handler``; unknown handlers are ignored."""
        handlers = self._handlers[event]
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event: Optional[JobEvent] = None) -> int:
        if event is not None:
            return len(self._handlers[event])
        return sum(len(handlers) for handlers in self._handlers.values())

    def emit(self, event: JobEvent, payload: Dict[str, Any]):
        """
        Deliver ``payload`` to every handler of ``event``, in registration
        order, before returning.

        A failing handler is logged and does not stop delivery to the rest.
        """
        payload = dict(payload, event=event.value)
        # Copy: handlers may unsubscribe themselves while being called
        for handler in list(self._handlers[event]):
            try:
                handler(payload)
            except Exception:
                logger.exception(
                    f"Handler {handler!r} failed for {event.value} "
                    f"(job {payload.get('job_id')})"
                )
