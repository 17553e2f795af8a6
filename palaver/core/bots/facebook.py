"""
A bot backend for Facebook Messenger.

Messenger calls the ``/fb`` webhook for every event on the page; replies
go out through the Graph Send API.
"""

import logging
from typing import List

import aiohttp
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from palaver.core.bots.base import Bot
from palaver.core.web import Params, Route

logger = logging.getLogger(__name__)

SEND_API_URL = "https://graph.facebook.com/v18.0/me/messages"


class FacebookError(Exception):
    """The Send API rejected a message"""


class FacebookBot(Bot):
    """A Messenger page connection"""

    namespace = 'facebook'

    def __init__(self, page_token: str, verify_token: str, timeout: float = 15):
        super().__init__()
        self.page_token = page_token
        self.verify_token = verify_token
        self._timeout = timeout

    def routes(self) -> List[Route]:
        return [
            Route('GET', '/fb', self.verify),
            Route('POST', '/fb', self.webhook),
        ]

    async def verify(self, request: Request, params: Params) -> Response:
        """Answer Messenger's subscription handshake."""
        query = request.query_params
        if query.get('hub.mode') == 'subscribe' and query.get('hub.verify_token') == self.verify_token:
            return PlainTextResponse(query.get('hub.challenge', ''))
        logger.warning("❌ Facebook webhook verification failed")
        return PlainTextResponse('verification failed', status_code=403)

    async def webhook(self, request: Request, params: Params) -> Response:
        """Deliver every text message in a batch of page events."""
        try:
            body = await request.json()
        except ValueError:
            return PlainTextResponse('malformed body', status_code=400)
        if not isinstance(body, dict) or body.get('object') != 'page':
            return PlainTextResponse('not a page event', status_code=400)

        # Check the whole batch before delivering any of it
        messages = []
        for entry in body.get('entry', []):
            for event in entry.get('messaging', []):
                message = event.get('message') or {}
                text = message.get('text')
                if not text or message.get('is_echo'):
                    continue
                sender = (event.get('sender') or {}).get('id')
                if not sender:
                    logger.warning("❌ Messenger message event without a sender")
                    return PlainTextResponse('missing sender', status_code=400)
                messages.append((sender, text))

        for sender, text in messages:
            self.deliver(sender, text)

        return PlainTextResponse('EVENT_RECEIVED')

    async def send_message(self, user: str, text: str) -> None:
        payload = {
            "recipient": {"id": user},
            "message": {"text": text},
            "messaging_type": "RESPONSE",
        }
        async with aiohttp.ClientSession() as session:
            async with session.post(
                SEND_API_URL,
                params={"access_token": self.page_token},
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise FacebookError(f"Send API error {response.status}: {error_text}")
