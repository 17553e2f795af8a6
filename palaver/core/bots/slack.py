"""
A bot backend for Slack, using the Events API.

Slack posts message events to ``/slack``; replies go back with
``chat.postMessage`` into the channel the user last wrote from.
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Dict, List, Optional

import aiohttp
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from palaver import __version__
from palaver.core.bots.base import Bot
from palaver.core.web import Params, Route

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"

# Slack rejects replays older than five minutes
MAX_REQUEST_AGE = 60 * 5


class SlackError(Exception):
    """The Slack Web API reported a failure"""


def verify_signature(secret: str, timestamp: str, body: bytes, signature: str,
                     now: Optional[float] = None) -> bool:
    """Check an ``X-Slack-Signature`` header against the raw request body."""
    try:
        age = abs((now or time.time()) - int(timestamp))
    except ValueError:
        return False
    if age > MAX_REQUEST_AGE:
        return False
    base = b"v0:" + timestamp.encode() + b":" + body
    expected = "v0=" + hmac.new(secret.encode(), base, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


class SlackBot(Bot):
    """A Slack workspace connection"""

    namespace = 'slack'

    def __init__(self, token: str, signing_secret: Optional[str] = None,
                 status_channel: Optional[str] = None, timeout: float = 15):
        super().__init__()
        self.token = token
        self.signing_secret = signing_secret
        self.status_channel = status_channel
        self._timeout = timeout
        # Where to answer each user: the channel of their latest message
        self.channels: Dict[str, str] = {}

    def routes(self) -> List[Route]:
        return [Route('POST', '/slack', self.events)]

    async def start(self) -> None:
        """Announce ourselves in the status channel."""
        if not self.status_channel:
            return
        try:
            await self.api_call("chat.postMessage", channel=self.status_channel,
                                text=f":wave: @ {__version__}")
        except (SlackError, aiohttp.ClientError) as e:
            logger.error(f"❌ Could not post to #{self.status_channel}: {e}")

    async def events(self, request: Request, params: Params) -> Response:
        body = await request.body()
        if self.signing_secret:
            ok = verify_signature(
                self.signing_secret,
                request.headers.get('X-Slack-Request-Timestamp', ''),
                body,
                request.headers.get('X-Slack-Signature', ''),
            )
            if not ok:
                logger.warning("❌ Rejected Slack request with a bad signature")
                return PlainTextResponse('invalid signature', status_code=401)

        try:
            payload = json.loads(body or b'{}')
        except ValueError:
            return PlainTextResponse('malformed body', status_code=400)
        if not isinstance(payload, dict):
            return PlainTextResponse('malformed body', status_code=400)
        if payload.get('type') == 'url_verification':
            return JSONResponse({'challenge': payload.get('challenge')})

        if payload.get('type') == 'event_callback':
            event = payload.get('event') or {}
            # Skip our own messages, edits and other subtypes
            if event.get('type') == 'message' and not event.get('bot_id') and not event.get('subtype'):
                user = event.get('user')
                text = event.get('text')
                if user and text:
                    self.channels[user] = event.get('channel') or user
                    self.deliver(user, text)

        return PlainTextResponse('ok')

    async def send_message(self, user: str, text: str) -> None:
        # Direct messages to a user id open an IM channel on Slack's side
        channel = self.channels.get(user, user)
        await self.api_call("chat.postMessage", channel=channel, text=text)

    async def api_call(self, method: str, **payload) -> dict:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{SLACK_API_URL}/{method}",
                json=payload,
                headers={"Authorization": f"Bearer {self.token}"},
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                data = await response.json()
        if not data.get('ok'):
            raise SlackError(f"{method} failed: {data.get('error', 'unknown error')}")
        return data
