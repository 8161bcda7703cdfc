"""
Call Serializer - Single-holder FIFO gate for a rate-limited external service.

At most one wrapped call runs at a time. Waiters are served in arrival order
(asyncio.Lock keeps a FIFO waiter queue and does not let late arrivals barge).
Acquisition is bounded by its own wait timeout, independent of whatever
timeout the wrapped call applies, so a stuck holder surfaces as a
MutexTimeoutError rather than a hang.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, TypeVar

from .errors import MutexTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CallSerializer:
    """
    Mutual exclusion gate for one external tool.

    Usage:
        serializer = CallSerializer("gh", wait_timeout=120.0)
        result = await serializer.with_exclusive(run_gh_search, query)
    """

    def __init__(self, name: str, wait_timeout: float = 120.0):
        self.name = name
        self.wait_timeout = wait_timeout
        self._lock = asyncio.Lock()
        self._waiting = 0
        self._completed = 0
        self._wait_timeouts = 0

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @property
    def waiting(self) -> int:
        return self._waiting

    async def _acquire(self):
        self._waiting += 1
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.wait_timeout)
        except asyncio.TimeoutError:
            self._wait_timeouts += 1
            logger.warning(
                f"Serializer '{self.name}' acquisition timed out after {self.wait_timeout}s"
            )
            raise MutexTimeoutError(
                f"'{self.name}' calls are serialized and the slot was not released within {self.wait_timeout}s",
                wait_timeout=self.wait_timeout,
                serializer=self.name,
            ) from None
        finally:
            self._waiting -= 1

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        """Hold the slot for the duration of the block. Released on any exit."""
        await self._acquire()
        try:
            yield
        finally:
            self._lock.release()
            self._completed += 1

    async def with_exclusive(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        async with self.exclusive():
            return await fn(*args, **kwargs)

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "locked": self.locked,
            "waiting": self._waiting,
            "completed": self._completed,
            "wait_timeouts": self._wait_timeouts,
            "wait_timeout_seconds": self.wait_timeout,
        }
