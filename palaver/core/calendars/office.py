"""
Calendars from Office 365 through the Microsoft Graph API.

Authentication is the OAuth2 authorization-code flow. The ``state``
parameter sent to Microsoft is a named-future token, so the redirect
back to ``/office/callback`` wakes whoever is waiting for the sign-in.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import aiohttp
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, Response

from palaver.core.calendars.base import Calendar
from palaver.core.sync import NamedFutures, TokenError
from palaver.core.web import Params, Route
from palaver.models import CalendarEvent, OfficeToken

logger = logging.getLogger(__name__)

AUTHORITY = "https://login.microsoftonline.com/common/oauth2/v2.0"
GRAPH_URL = "https://graph.microsoft.com/v1.0"
SCOPES = "openid offline_access Calendars.Read"
CALLBACK_PATH = "/office/callback"


class OfficeError(Exception):
    """Microsoft rejected a token exchange or calendar query"""


@dataclass
class OfficeAuth:
    """A pending sign-in: send the user to ``url``, then wait on ``state``"""
    url: str
    state: str


def parse_graph_time(value: Dict[str, Any]) -> datetime:
    """
    Graph reports times like ``2026-10-17T09:30:00.0000000`` with the
    zone named separately; we always ask for UTC.
    """
    stamp = value['dateTime'].split('.')[0]
    return datetime.fromisoformat(stamp).replace(tzinfo=timezone.utc)


class OfficeClient:
    """Connection for authenticating with the Office 365 API"""

    def __init__(self, client_id: str, client_secret: str, web_url: str,
                 futures: Optional[NamedFutures] = None, timeout: float = 15):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = web_url.rstrip('/') + CALLBACK_PATH
        # Sign-in states only; settings tokens live in a separate registry
        self.futures: NamedFutures[str] = futures if futures is not None else NamedFutures()
        self._timeout = timeout

    @property
    def auth_route(self) -> Route:
        return Route('GET', CALLBACK_PATH, self.callback)

    def authenticate(self) -> OfficeAuth:
        """Start a sign-in and return the URL the user should visit."""
        state = self.futures.issue()
        query = urlencode({
            'client_id': self.client_id,
            'response_type': 'code',
            'redirect_uri': self.redirect_uri,
            'response_mode': 'query',
            'scope': SCOPES,
            'state': state,
        })
        return OfficeAuth(url=f"{AUTHORITY}/authorize?{query}", state=state)

    async def wait_token(self, auth: OfficeAuth, timeout: Optional[float] = None) -> OfficeToken:
        """Suspend until the user finishes signing in, then redeem the code."""
        code = await self.futures.get(auth.state, timeout)
        return await self.request_token({
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self.redirect_uri,
        })

    async def request_token(self, grant: Dict[str, str]) -> OfficeToken:
        form = dict(grant, client_id=self.client_id, client_secret=self.client_secret, scope=SCOPES)
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{AUTHORITY}/token",
                data=form,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                data = await response.json()
                if response.status != 200:
                    raise OfficeError(f"token request failed: {data.get('error_description', response.status)}")

        return OfficeToken(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(data.get('expires_in', 3600))),
        )

    async def callback(self, request: Request, params: Params) -> Response:
        """Microsoft redirects here with ``code`` and our ``state`` token."""
        state = request.query_params.get('state', '')
        code = request.query_params.get('code')
        if not self.futures.has(state):
            return PlainTextResponse('invalid state', status_code=404)
        if not code:
            error = request.query_params.get('error_description', 'sign-in failed')
            logger.warning(f"Office sign-in failed: {error}")
            self.futures.discard(state)
            return PlainTextResponse(error, status_code=400)

        try:
            self.futures.put(state, code)
        except TokenError:
            return PlainTextResponse('sign-in already completed', status_code=409)
        return HTMLResponse('<p>signed in; you can close this window</p>')


class OfficeCalendar(Calendar):
    """The signed-in user's default Office 365 calendar"""

    def __init__(self, token: OfficeToken, timeout: float = 30):
        self.token = token
        self._timeout = timeout

    async def get_events(self, start: datetime, end: datetime) -> List[CalendarEvent]:
        async with aiohttp.ClientSession() as session:
            async with session.get(
                f"{GRAPH_URL}/me/calendarView",
                params={
                    'startDateTime': start.astimezone(timezone.utc).isoformat(),
                    'endDateTime': end.astimezone(timezone.utc).isoformat(),
                    '$orderby': 'start/dateTime',
                    '$select': 'subject,start,end',
                },
                headers={
                    'Authorization': f"Bearer {self.token.access_token}",
                    'Prefer': 'outlook.timezone="UTC"',
                },
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                if response.status != 200:
                    raise OfficeError(f"calendar query failed ({response.status})")
                data = await response.json()

        return [
            CalendarEvent(
                title=item.get('subject') or '',
                start=parse_graph_time(item['start']),
                end=parse_graph_time(item['end']) if item.get('end') else None,
            )
            for item in data.get('value', [])
        ]
