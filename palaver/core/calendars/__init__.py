"""Calendar backends and selection by user settings"""

from typing import Optional

from palaver.models import CalendarService, UserSettings

from .base import Calendar, summarize_events
from .caldav import CalDAVCalendar, CalDAVError
from .office import OfficeAuth, OfficeCalendar, OfficeClient, OfficeError


def open_calendar(settings: UserSettings) -> Optional[Calendar]:
    """Get the calendar for a user's configured service, if any."""
    if settings.service == CalendarService.CALDAV and settings.caldav:
        cd = settings.caldav
        return CalDAVCalendar(cd.url, cd.username, cd.password)
    if settings.service == CalendarService.OFFICE and settings.office_token:
        return OfficeCalendar(settings.office_token)
    return None


__all__ = [
    'CalDAVCalendar',
    'CalDAVError',
    'Calendar',
    'OfficeAuth',
    'OfficeCalendar',
    'OfficeClient',
    'OfficeError',
    'open_calendar',
    'summarize_events',
]
