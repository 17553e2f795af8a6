"""
Per-backend message spool.

Matches one inbound event to at most one receiver waiting on its key.
Events nobody is waiting for are reported back to the caller, which
treats them as the start of a new conversation. Nothing is queued.
"""

import asyncio
import logging
from typing import Dict, Generic, Hashable, Optional, TypeVar

from palaver.core.sync.errors import AlreadyWaiting, WaitTimeout

logger = logging.getLogger(__name__)

K = TypeVar('K', bound=Hashable)
V = TypeVar('V')


class Spool(Generic[K, V]):
    """Single-waiter rendezvous between ``wait(key)`` and ``dispatch(key, value)``"""

    def __init__(self):
        self._waiters: Dict[K, asyncio.Future] = {}

    def waiting(self, key: K) -> bool:
        """Check whether a receiver is currently suspended on ``key``."""
        return key in self._waiters

    async def wait(self, key: K, timeout: Optional[float] = None) -> V:
        """
        Suspend until the next value for ``key`` is dispatched.

        Raises:
            AlreadyWaiting: Another receiver is suspended on ``key``
            WaitTimeout: ``timeout`` seconds passed without a value
        """
        if key in self._waiters:
            raise AlreadyWaiting(f"already waiting on {key!r}")

        future = asyncio.get_running_loop().create_future()
        self._waiters[key] = future
        try:
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            logger.info(f"Stopped waiting on {key!r} after {timeout}s")
            raise WaitTimeout(key, timeout) from None
        finally:
            if self._waiters.get(key) is future:
                del self._waiters[key]

    def dispatch(self, key: K, value: V) -> bool:
        """
        Hand ``value`` to the receiver waiting on ``key``.

        Returns:
            True if a receiver took the value, False if nobody was waiting
            (the value is dropped)
        """
        future = self._waiters.pop(key, None)
        if future is None or future.done():
            return False
        future.set_result(value)
        return True
