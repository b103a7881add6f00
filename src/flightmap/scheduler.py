"""
Cancelable callback scheduling on the asyncio event loop.

Every pending callback is registered under a key. Scheduling a key again
replaces the pending callback, which is what debouncing needs, and every key
can be cancelled individually so tearing a diagram down leaves no stale
timers behind.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Scheduler(Protocol):
    """Protocol for keyed, cancelable schedulers."""

    def schedule(self, key: str, callback: Callable[[], None], delay: float) -> None:
        """Run ``callback`` after ``delay`` seconds, replacing any pending one."""
        ...

    def call_soon(self, key: str, callback: Callable[[], None]) -> None:
        """Run ``callback`` on the next loop iteration."""
        ...

    def cancel(self, key: str) -> bool:
        """Cancel the pending callback for ``key``."""
        ...

    def cancel_all(self, prefix: str = "") -> None:
        """Cancel every pending callback whose key starts with ``prefix``."""
        ...

    def spawn(self, awaitable: Awaitable[T]) -> "asyncio.Future[T]":
        """Run an awaitable in the background."""
        ...

    def pending_keys(self) -> List[str]:
        ...


class AsyncioScheduler:
    """
    Scheduler backed by an asyncio event loop.

    The loop is resolved lazily from the running loop, so the scheduler can
    be constructed outside of a coroutine.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._timers: Dict[str, asyncio.Handle] = {}
        self._tasks: Set["asyncio.Future"] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, key: str, callback: Callable[[], None], delay: float) -> None:
        self.cancel(key)
        self._timers[key] = self.loop.call_later(delay, self._fire, key, callback)

    def call_soon(self, key: str, callback: Callable[[], None]) -> None:
        self.cancel(key)
        self._timers[key] = self.loop.call_soon(self._fire, key, callback)

    def _fire(self, key: str, callback: Callable[[], None]) -> None:
        self._timers.pop(key, None)
        callback()

    def cancel(self, key: str) -> bool:
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self, prefix: str = "") -> None:
        for key in [k for k in self._timers if k.startswith(prefix)]:
            self.cancel(key)

    def pending_keys(self) -> List[str]:
        return sorted(self._timers)

    def spawn(self, awaitable: Awaitable[T]) -> "asyncio.Future[T]":
        future = asyncio.ensure_future(awaitable, loop=self.loop)
        self._tasks.add(future)
        future.add_done_callback(self._tasks.discard)
        return future

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Cancel all timers and in-flight tasks."""
        self.cancel_all()
        for task in list(self._tasks):
            task.cancel()
