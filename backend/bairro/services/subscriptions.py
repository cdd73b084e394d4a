import asyncio
import logging
from threading import Lock
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
_CLOSED = object()


class Subscription(Generic[T]):
    """Live feed owned by exactly one consumer.

    Producers call ``publish`` from any thread; items are queued on the event
    loop that created the subscription and consumed with ``async for``.
    ``cancel`` releases the upstream listener and ends iteration. Items still
    queued at that point are dropped.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._lock = Lock()
        self._release: Optional[Callable[[], None]] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self, release: Callable[[], None]) -> None:
        """Attach the callable that tears down the upstream listener."""
        with self._lock:
            if not self._cancelled:
                self._release = release
                return
        release()

    def publish(self, item: T) -> None:
        if self._cancelled:
            return
        self._call_in_loop(self._deliver, item)

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            release, self._release = self._release, None
        if release is not None:
            release()
        self._call_in_loop(self._queue.put_nowait, _CLOSED)

    def _deliver(self, item: T) -> None:
        if not self._cancelled:
            self._queue.put_nowait(item)

    def _call_in_loop(self, callback: Callable, item) -> None:
        if self._loop.is_closed():
            return
        try:
            self._loop.call_soon_threadsafe(callback, item)
        except RuntimeError:
            # Loop closed between the check and the call.
            logger.debug("Dropping subscription item; event loop is closed")

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._cancelled:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._cancelled:
            raise StopAsyncIteration
        return item

    async def next(self, timeout: Optional[float] = None) -> T:
        return await asyncio.wait_for(self.__anext__(), timeout)

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cancel()
