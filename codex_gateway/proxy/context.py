"""Per-request forwarding state and the linked cancellation signal.

A forward can be cut short by two things: the caller hanging up, and (for
non-streaming requests only) the fixed upstream deadline. Both feed one
``CancelSignal``; every upstream await goes through ``CancelSignal.guard`` so
each suspension point sees the same, already merged signal.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from codex_gateway.logging.audit import generate_request_id

T = TypeVar("T")

Receive = Callable[[], Awaitable[dict[str, Any]]]


class CancelReason(str, Enum):
    CALLER_DISCONNECTED = "caller_disconnected"
    DEADLINE = "deadline"


class ForwardState(str, Enum):
    BUILDING = "building"
    SENDING = "sending"
    HEADERS_RECEIVED = "headers_received"
    NON_STREAMING_BUFFERING = "non_streaming_buffering"
    STREAMING_RELAY = "streaming_relay"
    DONE = "done"
    FAILED = "failed"


class ForwardCancelled(Exception):
    """Raised at a suspension point once the linked signal has fired."""

    def __init__(self, reason: CancelReason):
        self.reason = reason
        super().__init__(f"Forwarding cancelled: {reason.value}")


class CancelSignal:
    """First-wins cancellation with a recorded reason."""

    def __init__(self):
        self._event = asyncio.Event()
        self._timer: asyncio.TimerHandle | None = None
        self.reason: CancelReason | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: CancelReason) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def cancel_after(self, seconds: float) -> None:
        """Arm the deadline. Must be called from inside the running loop."""
        self.clear_deadline()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(seconds, self.cancel, CancelReason.DEADLINE)

    def clear_deadline(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def wait(self) -> CancelReason:
        await self._event.wait()
        return self.reason

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the signal fires first.

        On cancellation the in-flight operation is cancelled and awaited
        before ``ForwardCancelled`` is raised, so nothing keeps running in
        the background.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ForwardCancelled(self.reason)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if task.done():
                return task.result()

            task.cancel()
            await asyncio.wait({task})
            if not task.cancelled():
                # Mark the outcome as retrieved; it is discarded either way
                task.exception()
            raise ForwardCancelled(self.reason)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()


@dataclass
class ForwardContext:
    """State for one forwarding operation. Never shared across requests."""

    request_id: str = field(default_factory=generate_request_id)
    receive: Receive | None = field(default=None, repr=False)
    stream: bool = False
    state: ForwardState = ForwardState.BUILDING
    signal: CancelSignal = field(default_factory=CancelSignal, repr=False)
    _watcher: asyncio.Task | None = field(default=None, init=False, repr=False)

    def start(self, deadline: float | None = None) -> None:
        """Arm the linked signal: caller disconnect plus an optional deadline."""
        if deadline is not None:
            self.signal.cancel_after(deadline)
        if self.receive is not None and self._watcher is None:
            self._watcher = asyncio.create_task(self._watch_disconnect(self.receive))

    async def _watch_disconnect(self, receive: Receive) -> None:
        # The request body has already been read, so the next ASGI message
        # is the disconnect.
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                self.signal.cancel(CancelReason.CALLER_DISCONNECTED)
                return

    def close(self) -> None:
        self.signal.clear_deadline()
        if self._watcher is not None and not self._watcher.done():
            self._watcher.cancel()
        self._watcher = None
