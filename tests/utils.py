"""Fakes and helpers shared by the tests."""

import asyncio
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from palaver.core.bots import Conversation
from palaver.core.calendars import Calendar
from palaver.models import CalendarEvent, ConversationState

SETTINGS_URL = re.compile(r"/settings/([\w-]+)")


class FakeNLP:
    """Answers with canned Wit results keyed by message text."""

    def __init__(self, results: Optional[Dict[str, Dict[str, Any]]] = None,
                 error: Optional[Exception] = None):
        self.results = results or {}
        self.error = error
        self.seen: List[str] = []

    async def message(self, text: str) -> Dict[str, Any]:
        self.seen.append(text)
        if self.error is not None:
            raise self.error
        return self.results.get(text, {})


class FakeCalendar(Calendar):
    def __init__(self, events: Optional[List[CalendarEvent]] = None,
                 error: Optional[Exception] = None):
        self.events = events or []
        self.error = error
        self.queries: List[Tuple[datetime, datetime]] = []

    async def get_events(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        self.queries.append((start, end))
        if self.error is not None:
            raise self.error
        return list(self.events)


class FakeConversation(Conversation):
    """Records what the assistant says; replies come from a queue."""

    def __init__(self, namespace: str = "test", user: str = "u1"):
        self.namespace = namespace
        self.user = user
        self.sent: List[str] = []
        self.replies: asyncio.Queue = asyncio.Queue()
        self.state = ConversationState.NEW
        self.states: List[ConversationState] = []

    def send(self, text: str) -> None:
        self.sent.append(text)
        self.states.append(self.state)

    async def recv(self, timeout: Optional[float] = None) -> str:
        return await asyncio.wait_for(self.replies.get(), timeout)

    def who(self) -> Tuple[str, str]:
        return self.namespace, self.user


def wit_entity(name: str, value: str = "true") -> Dict[str, Any]:
    return {"entities": {name: [{"value": value, "confidence": 0.98}]}}


def wit_intent(intent: str) -> Dict[str, Any]:
    return wit_entity("intent", intent)


def make_event(day: int, hour: int, title: str) -> CalendarEvent:
    return CalendarEvent(
        title=title,
        start=datetime(2026, 10, day, hour, tzinfo=timezone.utc),
        end=datetime(2026, 10, day, hour + 1, tzinfo=timezone.utc),
    )


def settings_token(text: str) -> str:
    match = SETTINGS_URL.search(text)
    assert match, f"no settings URL in {text!r}"
    return match.group(1)


async def wait_until(predicate, attempts: int = 200, delay: float = 0.005):
    """Let other tasks run until ``predicate()`` is truthy."""
    for _ in range(attempts):
        result = predicate()
        if result:
            return result
        await asyncio.sleep(delay)
    raise AssertionError("condition never became true")


def asgi_client(app) -> httpx.AsyncClient:
    """An HTTP client that calls the app in-process on the current loop."""
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
