"""
SMS bot backend using Twilio

Twilio posts each inbound text to the ``/sms`` webhook; replies are sent
through the Twilio REST client.
"""

import asyncio
import logging
from typing import List, Optional

from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from twilio.base.exceptions import TwilioRestException
from twilio.request_validator import RequestValidator
from twilio.rest import Client

from palaver.core.bots.base import Bot
from palaver.core.web import Params, Route

logger = logging.getLogger(__name__)

# Twilio splits and re-joins long texts up to this many characters
MAX_SMS_LENGTH = 1600

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def signed_url(request: Request) -> str:
    """
    Rebuild the URL Twilio signed.

    Behind a proxy the app sees plain HTTP, but Twilio signs the public
    HTTPS URL, so honour the forwarded protocol and drop any port.
    """
    proto = request.headers.get('X-Forwarded-Proto', request.url.scheme)
    host = request.headers.get('Host', request.url.netloc).split(':')[0]
    return f"{proto}://{host}{request.url.path}"


class SMSBot(Bot):
    """Text-message backend for one Twilio phone number"""

    namespace = 'sms'

    def __init__(self, account_sid: str, auth_token: str, from_number: str,
                 validate_requests: bool = True, client: Optional[Client] = None):
        super().__init__()
        self.from_number = from_number
        self.validate_requests = validate_requests
        self.validator = RequestValidator(auth_token)
        self.client = client or Client(account_sid, auth_token)
        logger.info(f"✅ Twilio SMS backend initialized | From: {from_number}")

    def routes(self) -> List[Route]:
        return [Route('POST', '/sms', self.webhook)]

    async def webhook(self, request: Request, params: Params) -> Response:
        """
        Receive an inbound SMS

        Twilio Form Data:
        - From: +14045551234 (sender)
        - Body: message text
        - plus MessageSid, To, NumMedia, ...
        """
        # Request body can only be read once
        form = await request.form()

        if self.validate_requests:
            signature = request.headers.get('X-Twilio-Signature', '')
            if not self.validator.validate(signed_url(request), dict(form.items()), signature):
                logger.error(f"❌ Invalid Twilio signature from {form.get('From')}")
                return PlainTextResponse('invalid signature', status_code=403)

        sender = form.get('From')
        body = (form.get('Body') or '').strip()
        if not sender or not body:
            logger.error("❌ Missing required fields in webhook request")
            return PlainTextResponse('missing required fields', status_code=400)

        logger.info(f"📥 Received SMS from {sender}")
        self.deliver(sender, body)

        # Empty TwiML: replies go out through the REST API instead
        return Response(content=EMPTY_TWIML, media_type="application/xml")

    async def send_message(self, user: str, text: str) -> None:
        if len(text) > MAX_SMS_LENGTH:
            logger.warning(f"⚠️  Message truncated from {len(text)} to {MAX_SMS_LENGTH} chars")
            text = text[:MAX_SMS_LENGTH - 3] + "..."

        try:
            # The Twilio client is blocking
            message = await asyncio.to_thread(
                self.client.messages.create, to=user, from_=self.from_number, body=text,
            )
        except TwilioRestException as e:
            logger.error(f"❌ Twilio API error sending SMS to {user}: {e.code} {e.msg}")
            raise
        logger.info(f"📤 SMS sent | SID: {message.sid} | Status: {message.status}")
