"""Cart events emitted by CartManager after successful persistence.

Intended for UI refresh, caching and integrations. Events reach every
open CartEventStream and every registered listener in the order the
manager's side effects happened.
"""
import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from multicart.cart.models import CartID, StoreID, UserProfileID
from multicart.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CartCreated:
    cart_id: CartID


@dataclass(frozen=True)
class CartUpdated:
    cart_id: CartID


@dataclass(frozen=True)
class CartDeleted:
    cart_id: CartID


@dataclass(frozen=True)
class ActiveCartChanged:
    """Active cart switched for a (store, profile) scope; cart_id None = no active cart."""
    store_id: StoreID
    profile_id: Optional[UserProfileID]
    cart_id: Optional[CartID]


CartEvent = Union[CartCreated, CartUpdated, CartDeleted, ActiveCartChanged]

CartEventListener = Callable[[CartEvent], None]

# Unread events kept per stream before the oldest are dropped
DEFAULT_STREAM_BUFFER = 1000


class CartEventStream:
    """
    Async-iterable view of the event feed for one subscriber.

    Usage:
        stream = manager.observe_events()
        async for event in stream:
            ...
        stream.close()

    A stream holds at most `max_buffer` unread events. A reader that falls
    behind loses the oldest ones (counted in `dropped`). Close streams that
    are no longer read.
    """

    def __init__(self, publisher: "CartEventPublisher", max_buffer: int = DEFAULT_STREAM_BUFFER):
        self._publisher = publisher
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_buffer)
        self._closed = False
        self.dropped = 0

    def _push(self, event: Optional[CartEvent]) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop receiving events; a pending iteration ends after draining."""
        if self._closed:
            return
        self._closed = True
        self._publisher._unsubscribe(self)
        self._push(None)

    def pending(self) -> List[CartEvent]:
        """Drain events already delivered without waiting."""
        events = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    async def next_event(self) -> CartEvent:
        """Wait for the next event; StopAsyncIteration once closed and drained."""
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def __aiter__(self) -> "CartEventStream":
        return self

    async def __anext__(self) -> CartEvent:
        return await self.next_event()


class CartEventPublisher:
    """Fans events out to streams and callback listeners."""

    def __init__(self):
        self._streams: List[CartEventStream] = []
        self._listeners: List[CartEventListener] = []

    def subscribe(self, max_buffer: int = DEFAULT_STREAM_BUFFER) -> CartEventStream:
        stream = CartEventStream(self, max_buffer)
        self._streams.append(stream)
        return stream

    def _unsubscribe(self, stream: CartEventStream) -> None:
        if stream in self._streams:
            self._streams.remove(stream)

    def add_listener(self, listener: CartEventListener) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def publish(self, event: CartEvent) -> None:
        for stream in list(self._streams):
            stream._push(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # Listener failures are logged, never raised
                logger.warning(f"Cart event listener failed for {type(event).__name__}: {e}", exc_info=True)

    def close(self) -> None:
        """Close every open stream."""
        for stream in list(self._streams):
            stream.close()
