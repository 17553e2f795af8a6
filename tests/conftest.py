"""Shared fixtures for the test suite."""

from typing import List

import pytest

from palaver.core.conversation import ConversationOrchestrator
from palaver.core.database import JsonUserStore
from palaver.core.sync import NamedFutures
from palaver.models import UserSettings
from tests.utils import FakeCalendar, FakeNLP, make_event


@pytest.fixture
def store(tmp_path):
    return JsonUserStore(str(tmp_path / "store.json"))


@pytest.fixture
def calendar():
    return FakeCalendar([make_event(18, 9, "standup"), make_event(19, 14, "dentist")])


@pytest.fixture
def make_orchestrator(store, calendar):
    """Build an orchestrator over the fakes; override any piece by keyword."""

    def factory(results=None, nlp=None, calendar_factory=None, **kwargs):
        opened: List[UserSettings] = []

        def open_fake(settings: UserSettings):
            opened.append(settings)
            return calendar if settings.service is not None else None

        orchestrator = ConversationOrchestrator(
            nlp or FakeNLP(results),
            kwargs.pop("users", store),
            kwargs.pop("web_url", "http://test"),
            web_sessions=kwargs.pop("web_sessions", NamedFutures()),
            calendar_factory=calendar_factory or open_fake,
            **kwargs,
        )
        orchestrator.opened = opened
        return orchestrator

    return factory
