"""Observer-list event bus for upload queue events.

Each scheduler owns one EventBus. Listeners are plain callables (or
coroutine functions, whose coroutines are scheduled on the running loop).
A listener that raises is logged and skipped; it never breaks the emitter
or the other listeners.
"""

import asyncio
import enum
import inspect
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from upload_pipeline.utils.logging import get_logger

log = get_logger(__name__)

Listener = Callable[[Any], Any]


class UploadEvent(str, enum.Enum):
    """Event names consumed by UI code and tests (values are part of the API)."""

    QUEUE_UPDATED = "queueUpdated"
    UPLOAD_ADDED = "uploadAdded"
    UPLOAD_STARTED = "uploadStarted"
    UPLOAD_PROGRESS = "uploadProgress"
    UPLOAD_SUCCESS = "uploadSuccess"
    UPLOAD_FAILED = "uploadFailed"
    UPLOAD_CANCELLED = "uploadCancelled"
    UPLOAD_RETRYING = "uploadRetrying"
    UPLOAD_RETRIED = "uploadRetried"


class EventBus:
    """Synchronous publish/subscribe keyed by UploadEvent."""

    def __init__(self) -> None:
        self._listeners: dict[UploadEvent, list[Listener]] = defaultdict(list)
        self._pending: set[asyncio.Future] = set()

    def on(self, event: UploadEvent, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A callable that unregisters the listener.
        """
        self._listeners[UploadEvent(event)].append(listener)
        return lambda: self.off(event, listener)

    def off(self, event: UploadEvent, listener: Listener) -> bool:
        """Unregister a listener. Returns False if it was not registered."""
        listeners = self._listeners.get(UploadEvent(event), [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def listener_count(self, event: UploadEvent) -> int:
        return len(self._listeners.get(UploadEvent(event), []))

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def emit(self, event: UploadEvent, payload: Any = None) -> int:
        """Deliver ``payload`` to every listener of ``event``.

        Returns:
            Number of listeners notified.
        """
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                result = listener(payload)
            except Exception as e:
                log.error("event_listener_failed", upload_event=event.value, error=str(e))
                continue

            if inspect.isawaitable(result):
                self._track(asyncio.ensure_future(result), event)

        return len(listeners)

    def _track(self, future: asyncio.Future, event: UploadEvent) -> None:
        self._pending.add(future)

        def _done(done: asyncio.Future) -> None:
            self._pending.discard(done)
            if not done.cancelled() and done.exception() is not None:
                log.error(
                    "event_listener_failed",
                    upload_event=event.value,
                    error=str(done.exception()),
                )

        future.add_done_callback(_done)
