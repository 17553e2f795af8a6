"""
The core behavior for the calendar assistant.

Every chat backend funnels new conversations into ``interact``, which asks
the NLP service what the user wants and runs the matching handler. Handlers
that need calendar settings send the user to a single-use web form and
suspend until that form is submitted.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Tuple

from palaver.api.routes.settings import settings_routes
from palaver.core.bots import Bot, Conversation
from palaver.core.calendars import (
    Calendar,
    OfficeAuth,
    OfficeClient,
    open_calendar,
    summarize_events,
)
from palaver.core.database import UserStore
from palaver.core.services import entity_value, get_entity
from palaver.core.sync import NamedFutures, TokenError, WaitTimeout
from palaver.core.web import Route
from palaver.models import CalendarService, ConversationState, UserRecord, UserSettings

logger = logging.getLogger(__name__)

APOLOGY = "sorry, something went wrong on my end. please try again in a bit"
EXPIRED = "that link expired; just ask me again when you're ready"

# Small-talk entities win over whatever intent was detected, in this order
SPECIAL_ENTITIES = (
    ("greetings", "handle_greeting"),
    ("bye", "handle_bye"),
    ("thanks", "handle_thanks"),
)

INTENT_HANDLERS = {
    "show_calendar": "handle_show_calendar",
    "schedule_meeting": "handle_schedule_meeting",
    "setup_calendar": "handle_setup_calendar",
    "help": "handle_help",
}

# How far ahead "show my calendar" looks
LOOKAHEAD = timedelta(days=7)


class IntentClassifier(Protocol):
    async def message(self, text: str) -> Dict[str, Any]: ...


CalendarFactory = Callable[[UserSettings], Optional[Calendar]]
Handler = Callable[[Conversation], Awaitable[None]]


class ConversationOrchestrator:
    """
    The main conversation logic, independent of any chat backend.

    Owns the pending web sessions (named futures keyed by the token in each
    settings URL) and the routes the web server must serve.
    """

    def __init__(self, nlp: IntentClassifier, users: UserStore, web_url: str,
                 web_sessions: Optional[NamedFutures] = None,
                 calendar_factory: CalendarFactory = open_calendar,
                 settings_timeout: Optional[float] = None):
        self.nlp = nlp
        self.users = users
        self.web_url = web_url.rstrip('/')
        self.web_sessions: NamedFutures[UserSettings] = (
            web_sessions if web_sessions is not None else NamedFutures()
        )
        self.open_calendar = calendar_factory
        self.settings_timeout = settings_timeout

        self.office: Optional[OfficeClient] = None
        self.bots: List[Bot] = []
        self.web_routes: List[Route] = settings_routes(self)
        self._tasks: Set[asyncio.Task] = set()
        # Office sign-in offered on each open settings page, by settings token
        self._office_sign_ins: Dict[str, Tuple[OfficeAuth, asyncio.Task]] = {}

    def register(self, bot: Bot) -> None:
        """Register this assistant's callbacks with a backend."""
        bot.on_converse = self.interact

    def add_bot(self, bot: Bot) -> Bot:
        """Register a backend and serve whatever web routes it needs."""
        self.register(bot)
        self.bots.append(bot)
        self.web_routes.extend(bot.routes())
        return bot

    def add_office(self, client_id: str, client_secret: str) -> OfficeClient:
        """Add support for getting calendars via the Office 365 API."""
        client = OfficeClient(client_id, client_secret, self.web_url)
        self.web_routes.append(client.auth_route)
        self.office = client
        return client

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def get_user(self, conv: Conversation) -> UserRecord:
        """Get a user from the database, or create it if it doesn't exist."""
        namespace, user_id = conv.who()
        return await self.users.get_or_create(f"{namespace}:{user_id}")

    def settings_url(self, token: str) -> str:
        return f"{self.web_url}/settings/{token}"

    async def gather_settings(self, conv: Conversation) -> UserSettings:
        """Interact with the user to get their settings."""
        token = self.web_sessions.issue()
        conv.send(f"please fill out the form at {self.settings_url(token)}")

        previous = conv.state
        conv.state = ConversationState.AWAITING_SETTINGS
        try:
            return await self.web_sessions.get(token, self.settings_timeout)
        finally:
            conv.state = previous
            self.end_office_sign_in(token)

    def office_sign_in(self, token: str) -> OfficeAuth:
        """
        Get the Office sign-in for a settings page, starting it on first view.

        Reloading the page reuses the same sign-in, so only one waits per token.
        """
        pending = self._office_sign_ins.get(token)
        # A failed or declined sign-in can be retried from a fresh link
        if pending is not None and not pending[1].done():
            return pending[0]
        auth = self.office.authenticate()
        task = self.spawn(self.complete_office_sign_in(token, auth))
        self._office_sign_ins[token] = (auth, task)
        return auth

    def end_office_sign_in(self, token: str) -> None:
        """Abandon the Office sign-in for a settings token that has closed."""
        pending = self._office_sign_ins.pop(token, None)
        if pending is None:
            return
        auth, task = pending
        self.office.futures.discard(auth.state)
        task.cancel()

    async def complete_office_sign_in(self, token: str, auth: OfficeAuth) -> None:
        """Fill a settings token with Office credentials once the user signs in."""
        try:
            office_token = await self.office.wait_token(auth, self.settings_timeout)
        except WaitTimeout:
            return
        except Exception:
            logger.exception("Office sign-in did not complete")
            return

        if not self.web_sessions.has(token):
            logger.info("Office sign-in finished after the settings request closed")
            return
        try:
            self.web_sessions.put(token, UserSettings(
                service=CalendarService.OFFICE,
                office_token=office_token,
            ))
        except TokenError:
            logger.info("Settings were already submitted through the form")

    async def get_calendar(self, conv: Conversation, force: bool = False) -> Optional[Calendar]:
        """
        Get the user's configured calendar.

        If ``force`` is enabled or no calendar has been set up, interact with
        the user to set it up first.
        """
        user = await self.get_user(conv)

        if force or user.settings.service is None:
            user.settings = await self.gather_settings(conv)
            await self.users.update(user)
            await self.users.save()

        return self.open_calendar(user.settings)

    async def handle_greeting(self, conv: Conversation) -> None:
        conv.send("hi!")

    async def handle_bye(self, conv: Conversation) -> None:
        conv.send(":wave: I'll be right here")

    async def handle_thanks(self, conv: Conversation) -> None:
        conv.send("nbd yo")

    async def handle_show_calendar(self, conv: Conversation) -> None:
        """The user wants to see what's coming up this week."""
        conv.send("let's get your calendar!")
        calendar = await self.get_calendar(conv)
        if calendar is None:
            return

        now = datetime.now(timezone.utc)
        events = await calendar.get_events(now, now + LOOKAHEAD)
        if events:
            conv.send(summarize_events(events))

    async def handle_schedule_meeting(self, conv: Conversation) -> None:
        conv.send("let's get to schedulin'! [actually this is not quite implemented yet]")

    async def handle_setup_calendar(self, conv: Conversation) -> None:
        await self.get_calendar(conv, force=True)
        conv.send("ok, all set!")

    async def handle_help(self, conv: Conversation) -> None:
        conv.send("I can schedule a meeting or show your calendar")

    async def handle_default(self, conv: Conversation) -> None:
        """Missing or unrecognized intent."""
        conv.send(":confused: :grey_question:")

    def choose_handler(self, result: Dict[str, Any]) -> Handler:
        for entity, name in SPECIAL_ENTITIES:
            if get_entity(result, entity):
                return getattr(self, name)
        intent = entity_value(result, "intent")
        return getattr(self, INTENT_HANDLERS.get(intent, "handle_default"))

    async def interact(self, text: str, conv: Conversation) -> None:
        """Handle a new conversation by dispatching based on intent."""
        conv.state = ConversationState.ACTIVE
        try:
            result = await self.nlp.message(text)
            logger.debug(f"Wit parse: {result}")
            handler = self.choose_handler(result)
            logger.info(f"{':'.join(conv.who())} -> {handler.__name__}")
            await handler(conv)
        except WaitTimeout as e:
            logger.info(f"Conversation with {':'.join(conv.who())} timed out: {e}")
            conv.send(EXPIRED)
        except Exception:
            logger.exception(f"Conversation with {':'.join(conv.who())} failed")
            conv.send(APOLOGY)
        finally:
            conv.state = ConversationState.TERMINAL
