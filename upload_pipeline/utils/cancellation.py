"""Cooperative cancellation for in-flight uploads.

A ``CancellationToken`` is created per task when the scheduler starts it and
is threaded through every I/O call in the task's pipeline. Cancelling the
token interrupts whichever await is currently running and surfaces as
``UploadCancelledError`` in the scheduler.

Usage:
    token = CancellationToken()
    data = await token.run(reader.read_base64(uri))
    ...
    token.cancel()  # from another coroutine
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from upload_pipeline.exceptions import UploadCancelledError

T = TypeVar("T")

CANCELLED_MESSAGE = "Upload was cancelled"


class CancellationToken:
    """Abort handle shared by every await in one task's pipeline."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str = CANCELLED_MESSAGE

    @property
    def cancelled(self) -> bool:
        """True once ``cancel()`` has been called."""
        return self._event.is_set()

    def cancel(self, reason: str = CANCELLED_MESSAGE) -> None:
        """Signal cancellation. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise UploadCancelledError if the token has been cancelled."""
        if self._event.is_set():
            raise UploadCancelledError(self.reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token is cancelled first.

        Returns:
            The awaitable's result.

        Raises:
            UploadCancelledError: If the token fires before the awaitable
                finishes. The awaitable is cancelled and awaited.
        """
        if self._event.is_set():
            # Close un-awaited coroutines so they don't warn
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise UploadCancelledError(self.reason)

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            if not waiter.done():
                waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise UploadCancelledError(self.reason)
