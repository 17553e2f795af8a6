"""Pydantic records shared across the assistant"""

from .schemas import (
    CalDAVSettings,
    CalendarEvent,
    CalendarService,
    ConversationState,
    OfficeToken,
    UserRecord,
    UserSettings,
)

__all__ = [
    'CalDAVSettings',
    'CalendarEvent',
    'CalendarService',
    'ConversationState',
    'OfficeToken',
    'UserRecord',
    'UserSettings',
]
