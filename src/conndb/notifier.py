"""Change notification fan-out.

Every successful mutation of the store produces one ChangeEvent. Each
listener gets its own queue and receives, in order, every event emitted
after it subscribed. Delivery is put_nowait(): a slow listener never
blocks the store or the other listeners.

Key classes: ChangeNotifier, Subscription, ChangeEvent, ChangeType.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum

import structlog

from .errors import ClosedError

logger = structlog.get_logger()


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One change to the address map."""

    type: ChangeType
    address: str


_CLOSED = object()  # end-of-stream marker


class Subscription:
    """A live listener. Iterate with ``async for`` or pull with get()."""

    def __init__(self, notifier: "ChangeNotifier", maxsize: int = 0) -> None:
        self._notifier = notifier
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._maxsize = maxsize
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        if self._maxsize and self._queue.qsize() >= self._maxsize:
            self.dropped += 1
            logger.warning(
                "Listener queue full, dropped %s event for %s", event.type.value, event.address
            )
            return
        self._queue.put_nowait(event)

    def _finish(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def close(self) -> None:
        """Stop receiving events. Already-queued events can still be read."""
        self._notifier._unsubscribe(self)
        self._finish()

    async def get(self) -> ChangeEvent:
        """Wait for the next event. Raises ClosedError once the stream ended."""
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise ClosedError("subscription closed")
        return item  # type: ignore[return-value]

    def get_nowait(self) -> ChangeEvent | None:
        """Return the next queued event, or None if nothing is queued."""
        if self._queue.empty():
            return None
        item = self._queue.get_nowait()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    def drain(self) -> list[ChangeEvent]:
        """Return and remove every queued event."""
        events: list[ChangeEvent] = []
        while (event := self.get_nowait()) is not None:
            events.append(event)
        return events

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self

    async def __anext__(self) -> ChangeEvent:
        try:
            return await self.get()
        except ClosedError:
            raise StopAsyncIteration from None

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ChangeNotifier:
    """Broadcast ChangeEvents to every live Subscription."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._closed = False

    def __len__(self) -> int:
        return len(self._subscriptions)

    def listen(self, maxsize: int = 0) -> Subscription:
        """Subscribe to events emitted from now on. maxsize=0 is unbounded."""
        if self._closed:
            raise ClosedError("notifier closed")
        sub = Subscription(self, maxsize=maxsize)
        self._subscriptions.append(sub)
        return sub

    def notify(self, event: ChangeEvent) -> None:
        for sub in list(self._subscriptions):
            sub._deliver(event)

    def _unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def close(self) -> None:
        """End every subscription and refuse new ones."""
        self._closed = True
        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            sub._finish()
