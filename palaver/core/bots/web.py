"""
A bot backend for talking to the assistant directly over HTTP.

Messages are posted to ``/chat/<user>``; replies pile up in a per-user
outbox that the client drains with a GET on the same path.
"""

import logging
from collections import defaultdict, deque
from typing import Deque, Dict, List

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from palaver.core.bots.base import Bot
from palaver.core.web import Params, Route

logger = logging.getLogger(__name__)


class WebBot(Bot):
    """HTTP polling chat backend"""

    namespace = 'web'

    def __init__(self, max_outbox: int = 100):
        super().__init__()
        self.outboxes: Dict[str, Deque[str]] = defaultdict(lambda: deque(maxlen=max_outbox))

    async def send_message(self, user: str, text: str) -> None:
        self.outboxes[user].append(text)

    def routes(self) -> List[Route]:
        return [
            Route('POST', '/chat/:user', self.receive),
            Route('GET', '/chat/:user', self.outbox),
        ]

    async def receive(self, request: Request, params: Params) -> Response:
        form = await request.form()
        text = (form.get('text') or '').strip()
        if not text:
            return PlainTextResponse('missing text', status_code=400)
        handled = self.deliver(params['user'], text)
        return JSONResponse({'handled': handled})

    async def outbox(self, request: Request, params: Params) -> Response:
        pending = self.outboxes.pop(params['user'], None) or []
        return JSONResponse({'messages': list(pending)})
