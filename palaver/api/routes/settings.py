"""
Web pages for showing and modifying user settings

Each page lives at ``/settings/<token>``, where the token was minted by a
conversation that is now suspended waiting for the submitted settings.
"""

import logging
from typing import TYPE_CHECKING, List

from jinja2 import Environment, PackageLoader, select_autoescape
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, Response

from palaver.core.sync import TokenError
from palaver.core.web import Params, Route
from palaver.models import CalDAVSettings, CalendarService, UserSettings

if TYPE_CHECKING:
    from palaver.core.conversation.orchestrator import ConversationOrchestrator

logger = logging.getLogger(__name__)

templates = Environment(
    loader=PackageLoader("palaver", "templates"),
    autoescape=select_autoescape(["html"]),
)

NOT_UNDERSTOOD = "sorry; I did not understand the form"


def invalid_token() -> Response:
    return PlainTextResponse("invalid token", status_code=404)


def settings_routes(orchestrator: "ConversationOrchestrator") -> List[Route]:
    """The GET (form) and POST (submission) routes for settings pages."""
    sessions = orchestrator.web_sessions

    async def show_form(request: Request, params: Params) -> Response:
        token = params["token"]
        if not sessions.has(token):
            return invalid_token()

        context = {"token": token}
        if orchestrator.office is not None:
            context["office_auth_url"] = orchestrator.office_sign_in(token).url

        return HTMLResponse(templates.get_template("settings.html").render(**context))

    async def submit_form(request: Request, params: Params) -> Response:
        token = params["token"]
        if not sessions.has(token):
            return invalid_token()

        data = await request.form()
        if data.get("service") != CalendarService.CALDAV.value:
            return PlainTextResponse(NOT_UNDERSTOOD, status_code=400)
        try:
            caldav = CalDAVSettings(
                url=data.get("url"),
                username=data.get("username"),
                password=data.get("password"),
            )
        except ValidationError as e:
            logger.info(f"Rejected settings form: {e.error_count()} invalid fields")
            return PlainTextResponse(NOT_UNDERSTOOD, status_code=400)

        try:
            sessions.put(token, UserSettings(service=CalendarService.CALDAV, caldav=caldav))
        except TokenError:
            return PlainTextResponse("these settings were already submitted", status_code=409)
        return PlainTextResponse("got it; thanks!")

    return [
        Route("GET", "/settings/:token", show_form),
        Route("POST", "/settings/:token", submit_form),
    ]
