"""Common interface for calendar backends"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List

from palaver.models import CalendarEvent


class Calendar(ABC):
    @abstractmethod
    async def get_events(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        """Fetch events between a pair of times, ordered by start time."""


def summarize_events(events: Iterable[CalendarEvent]) -> str:
    """Get a quick text summary of things on a calendar."""
    return '\n'.join(f"{event.start.isoformat()}: {event.title}" for event in events)
