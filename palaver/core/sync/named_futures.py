"""
Single-assignment futures addressed by an opaque token.

A conversation that needs something from the web (a settings form, an
OAuth redirect) mints a token, hands the user a URL containing it, and
suspends on ``get(token)``. Whichever web request carries the token later
calls ``put(token, value)``. Either side may arrive first; the value is
delivered to exactly one consumer.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

from palaver.core.sync.errors import TokenError, WaitTimeout

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class _Slot:
    """One token's state: an unresolved future, or a value waiting for its consumer"""
    future: asyncio.Future = field(
        default_factory=lambda: asyncio.get_running_loop().create_future()
    )
    claimed: bool = False


class NamedFutures(Generic[T]):
    """
    Registry of single-use rendezvous slots keyed by token.

    Slot states:
        - absent: never issued, or already consumed and discarded
        - awaiting-value: issued or claimed by ``get`` with no value yet
        - has-value: ``put`` arrived before the consumer
    """

    def __init__(self, token_bytes: int = 16):
        self.token_bytes = token_bytes
        self._slots: Dict[str, _Slot] = {}

    def __len__(self) -> int:
        return len(self._slots)

    def issue(self) -> str:
        """Mint an unpredictable token and register an empty slot for it."""
        token = secrets.token_urlsafe(self.token_bytes)
        while token in self._slots:
            token = secrets.token_urlsafe(self.token_bytes)
        self._slots[token] = _Slot()
        return token

    def has(self, token: str) -> bool:
        """Check whether a slot exists for ``token``."""
        return token in self._slots

    async def get(self, token: str, timeout: Optional[float] = None) -> T:
        """
        Wait for the value delivered to ``token``.

        Resumes immediately when the value is already stored. The slot is
        released once this call returns, raises or is cancelled.

        Args:
            token: The slot to claim; registered here if it was never issued
            timeout: Seconds to wait before giving up, None for no deadline

        Raises:
            TokenError: Another consumer already claimed this token
            WaitTimeout: ``timeout`` elapsed before a value arrived
        """
        slot = self._slots.get(token)
        if slot is None:
            slot = self._slots[token] = _Slot()
        elif slot.claimed:
            raise TokenError(f"token {token!r} already has a consumer")
        slot.claimed = True

        try:
            if timeout is None:
                return await slot.future
            return await asyncio.wait_for(slot.future, timeout)
        except asyncio.TimeoutError:
            logger.info(f"Named future {token[:6]}... expired after {timeout}s")
            raise WaitTimeout(token, timeout) from None
        finally:
            if self._slots.get(token) is slot:
                del self._slots[token]

    def put(self, token: str, value: T) -> None:
        """
        Deliver ``value`` to ``token``.

        Wakes the suspended consumer if there is one; otherwise the value
        is kept until ``get`` claims it.

        Raises:
            TokenError: The slot already holds a value
        """
        slot = self._slots.get(token)
        if slot is None:
            slot = self._slots[token] = _Slot()
        if slot.future.done():
            raise TokenError(f"token {token!r} already has a value")
        slot.future.set_result(value)

    def discard(self, token: str) -> None:
        """Release a slot, cancelling any consumer still waiting on it."""
        slot = self._slots.pop(token, None)
        if slot is not None and not slot.future.done():
            slot.future.cancel()
