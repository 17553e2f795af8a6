"""
Abstract interface for bot-like communication.

Every chat backend (terminal, web, Facebook, Slack, SMS) implements ``Bot``
and hands out ``Conversation`` objects. The conversation logic is written
only against these two classes.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from palaver.core.sync import Spool
from palaver.core.web import Route
from palaver.models import ConversationState

logger = logging.getLogger(__name__)


class Conversation(ABC):
    """An ongoing textual interaction with a single user."""

    state: ConversationState = ConversationState.NEW

    @abstractmethod
    def send(self, text: str) -> None:
        """Send a message in the conversation without waiting for delivery."""

    @abstractmethod
    async def recv(self, timeout: Optional[float] = None) -> str:
        """Wait for the user's next message in this conversation."""

    @abstractmethod
    def who(self) -> Tuple[str, str]:
        """
        Identify the user that this conversation is with.

        Returns:
            A *namespace* naming the service the user is on and the user's
            *id* within that service
        """


ConversationHandler = Callable[[str, Conversation], Awaitable[None]]


class Bot(ABC):
    """
    A chat backend.

    Inbound messages go through ``deliver``: a message for a user whose
    conversation is waiting in ``recv`` resumes it, anything else starts a
    new conversation through the ``on_converse`` hook.
    """

    namespace: str = ''

    def __init__(self, spool: Optional[Spool] = None):
        self.spool: Spool[str, str] = spool if spool is not None else Spool()
        self.on_converse: Optional[ConversationHandler] = None
        # Default deadline for Conversation.recv; None waits forever
        self.reply_timeout: Optional[float] = None
        self._tasks: Set[asyncio.Task] = set()
        # Sends to one user go out in the order they were posted
        self._send_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def routes(self) -> List[Route]:
        """Web routes this backend needs served (webhooks etc.)."""
        return []

    async def start(self) -> None:
        """Run the backend's own transport. Webhook backends have nothing to run."""

    @abstractmethod
    async def send_message(self, user: str, text: str) -> None:
        """Deliver ``text`` to ``user`` over the backend's transport."""

    def conversation(self, user: str) -> Conversation:
        return SpooledConversation(self, user)

    def deliver(self, user: str, text: str) -> bool:
        """
        Route an inbound message.

        Returns:
            True if it continued a waiting conversation, False if it
            started a new one (or was dropped for lack of a handler)
        """
        if self.spool.dispatch(user, text):
            return True

        if self.on_converse is None:
            logger.warning(f"No conversation handler on {self.namespace}; dropping message from {user}")
            return False

        logger.info(f"New {self.namespace} conversation with {user}")
        conv = self.conversation(user)
        self._spawn(self.on_converse(text, conv))
        return False

    def post(self, user: str, text: str) -> None:
        """Send without waiting; failures are logged."""
        self._spawn(self._send_logged(user, text))

    async def _send_logged(self, user: str, text: str) -> None:
        try:
            async with self._send_locks[user]:
                await self.send_message(user, text)
        except Exception:
            logger.exception(f"Failed to send {self.namespace} message to {user}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every conversation and send started so far to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class SpooledConversation(Conversation):
    """A conversation whose replies arrive through its bot's spool"""

    def __init__(self, bot: Bot, user: str):
        self.bot = bot
        self.user = user
        self.state = ConversationState.NEW

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.bot.namespace}:{self.user} {self.state.value}>"

    def send(self, text: str) -> None:
        self.bot.post(self.user, text)

    async def recv(self, timeout: Optional[float] = None) -> str:
        previous = self.state
        self.state = ConversationState.AWAITING_REPLY
        try:
            if timeout is None:
                timeout = self.bot.reply_timeout
            return await self.bot.spool.wait(self.user, timeout)
        finally:
            self.state = previous

    def who(self) -> Tuple[str, str]:
        return self.bot.namespace, self.user
