"""
A calendar source for CalDAV servers, including iCloud.
"""

import logging
import xml.etree.ElementTree as ET
from datetime import date, datetime, time, timezone
from typing import List

import aiohttp
from icalendar import Calendar as ICalendar

from palaver import __version__
from palaver.core.calendars.base import Calendar
from palaver.models import CalendarEvent

logger = logging.getLogger(__name__)

NAMESPACES = {
    'D': 'DAV:',
    'C': 'urn:ietf:params:xml:ns:caldav',
}

RANGE_QUERY = """<?xml version="1.0" encoding="utf-8" ?>
<C:calendar-query xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
  <D:prop>
    <C:calendar-data/>
  </D:prop>
  <C:filter>
    <C:comp-filter name="VCALENDAR">
      <C:comp-filter name="VEVENT">
        <C:time-range start="{start}" end="{end}"/>
      </C:comp-filter>
    </C:comp-filter>
  </C:filter>
</C:calendar-query>"""


class CalDAVError(Exception):
    """The CalDAV server refused or garbled a query"""


def davtime(t: datetime) -> str:
    """
    Format a time for a CalDAV query.

    Servers accept the "basic" ISO 8601 form in UTC, not the full standard.
    """
    if t.tzinfo is not None:
        t = t.astimezone(timezone.utc)
    return t.strftime('%Y%m%dT%H%M%SZ')


def range_query(start: datetime, end: datetime) -> str:
    return RANGE_QUERY.format(start=davtime(start), end=davtime(end))


def as_datetime(value) -> datetime:
    """iCalendar values may be all-day dates or naive times; normalise to aware UTC."""
    if not isinstance(value, datetime) and isinstance(value, date):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def parse_event(ics: str) -> CalendarEvent:
    """
    Parse the first event from a calendar document.

    CalDAV gives us "singleton" calendars containing just one VEVENT.
    """
    cal = ICalendar.from_ical(ics)
    for component in cal.walk('VEVENT'):
        end = component.get('DTEND')
        return CalendarEvent(
            title=str(component.get('SUMMARY', '')),
            start=as_datetime(component.decoded('DTSTART')),
            end=as_datetime(end.dt) if end is not None else None,
        )
    raise CalDAVError("no event in calendar")


def parse_multistatus(xml_text: str) -> List[CalendarEvent]:
    """
    Pull every event out of a REPORT response.

    The response XML document has this form:
      <multistatus>
        <response><propstat><prop><calendar-data>[ICS HERE]
        ...
      </multistatus>
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise CalDAVError(f"unparseable CalDAV response: {e}") from e

    events = []
    for data in root.iterfind('D:response/D:propstat/D:prop/C:calendar-data', NAMESPACES):
        if data.text and data.text.strip():
            events.append(parse_event(data.text))
    return sorted(events, key=lambda event: event.start)


class CalDAVCalendar(Calendar):
    """A client for a specific CalDAV calendar"""

    def __init__(self, url: str, username: str, password: str, timeout: float = 30):
        self.url = url
        self.username = username
        self.password = password
        self._timeout = timeout

    async def get_events(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        async with aiohttp.ClientSession() as session:
            async with session.request(
                'REPORT',
                self.url,
                data=range_query(start, end),
                auth=aiohttp.BasicAuth(self.username, self.password),
                headers={
                    'Content-Type': 'text/xml; charset=utf-8',
                    'Depth': '1',
                    'User-Agent': f'palaver/{__version__}',
                },
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                if response.status not in (200, 207):
                    raise CalDAVError(f"error communicating with CalDAV server ({response.status})")
                body = await response.text()

        events = parse_multistatus(body)
        logger.debug(f"CalDAV returned {len(events)} events from {self.url}")
        return events
