"""
Bounded single-consumer channel.

Used to push raw diagnostic lines from the executor to the progress
tracker and Progress values from the manager to the caller.

Backpressure policy: DROP OLDEST.
- put() never blocks, so a slow consumer can never stall process I/O
- when the buffer is full the oldest buffered item is discarded and
  counted in `dropped`
- order is never changed, so anything monotonic going in stays
  monotonic coming out

The channel is finite (iteration ends once closed and drained) and not
restartable (it can be iterated once).
"""

import threading
from collections import deque
from typing import Deque, Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class ChannelClosed(Exception):
    """Raised by get() when the channel is closed and empty."""

    pass


class ChannelTimeout(Exception):
    """Raised by get() when no item arrived within the timeout."""

    pass


class BoundedChannel(Generic[T]):
    def __init__(self, capacity: int = 256):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.dropped = 0
        self._items: Deque[T] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._consumed = False

    def put(self, item: T) -> bool:
        """
        Offer an item without blocking.

        Returns:
            False if the channel is already closed, True otherwise
        """
        with self._cond:
            if self._closed:
                return False
            if len(self._items) >= self.capacity:
                self._items.popleft()
                self.dropped += 1
            self._items.append(item)
            self._cond.notify_all()
            return True

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def get(self, timeout: Optional[float] = None) -> T:
        """
        Take the next item, waiting if necessary.

        Raises:
            ChannelClosed: Channel closed and fully drained
            ChannelTimeout: Nothing arrived within `timeout` seconds
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._items or self._closed, timeout):
                raise ChannelTimeout()
            if self._items:
                return self._items.popleft()
            raise ChannelClosed()

    def drain(self) -> List[T]:
        """Take everything currently buffered without waiting."""
        with self._cond:
            items = list(self._items)
            self._items.clear()
            return items

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def __iter__(self) -> Iterator[T]:
        with self._cond:
            if self._consumed:
                raise RuntimeError("channel can only be consumed once")
            self._consumed = True
        return self._iterate()

    def _iterate(self) -> Iterator[T]:
        while True:
            try:
                yield self.get()
            except ChannelClosed:
                return
