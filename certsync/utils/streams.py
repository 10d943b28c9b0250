import asyncio
from typing import Callable, Generic, Optional, Set, TypeVar

from certsync.utils.logging import get_logger

logger = get_logger()

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """
    Handle to a continuous in-process feed.

    Items are buffered in a queue and consumed with ``async for``. With a
    ``maxsize`` the buffer keeps only the newest items: delivering to a full
    subscription drops the oldest buffered item.
    The consumer calls ``task_done()`` after handling each item so that
    ``join()`` can be used to wait until everything delivered so far has been
    processed. ``close()`` detaches the handle from its broadcaster and ends
    iteration once the buffered items are drained.
    """

    def __init__(
        self,
        broadcaster: "Broadcaster[T]",
        accept: Optional[Callable[[T], bool]] = None,
        name: str = "subscription",
        maxsize: Optional[int] = None,
    ):
        self.name = name
        self.maxsize = maxsize
        self.dropped = 0
        self._broadcaster = broadcaster
        self._accept = accept
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._outstanding = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def idle(self) -> bool:
        """True when every delivered item has been marked done."""
        return self._outstanding == 0

    def deliver(self, item: T) -> bool:
        if self._closed:
            return False
        if self._accept is not None and not self._accept(item):
            return False
        if self.maxsize and self._queue.qsize() >= self.maxsize:
            self._drop_oldest()
        self._outstanding += 1
        self._queue.put_nowait(item)
        return True

    def _drop_oldest(self) -> None:
        self._queue.get_nowait()
        self.task_done()
        self.dropped += 1
        logger.warning(
            f"Subscription {self.name} is full ({self.maxsize}), dropped oldest item"
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._broadcaster.detach(self)
        self._queue.put_nowait(_CLOSED)

    def task_done(self) -> None:
        self._outstanding -= 1
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    async def get(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.task_done()
            raise StopAsyncIteration
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> T:
        return await self.get()


class Broadcaster(Generic[T]):
    """Fans every published item out to all attached subscriptions."""

    def __init__(self, maxsize: Optional[int] = None):
        # Per-subscription buffer limit; None keeps every item.
        self.maxsize = maxsize
        self._subscriptions: Set[Subscription[T]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self, accept: Optional[Callable[[T], bool]] = None, name: str = "subscription"
    ) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(
            self, accept=accept, name=name, maxsize=self.maxsize
        )
        self._subscriptions.add(subscription)
        return subscription

    def detach(self, subscription: Subscription[T]) -> None:
        self._subscriptions.discard(subscription)

    def publish(self, item: T) -> int:
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.deliver(item):
                delivered += 1
        return delivered

    def close_all(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()
