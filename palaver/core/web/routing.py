"""
Really simple HTTP request router.

Routes pair a method with a path template such as ``/settings/:token``.
Each ``:name`` placeholder captures one path segment. Routes are tried in
the order given and the first match wins; unmatched requests go to a
not-found handler.
"""

import logging
import re
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import Receive, Scope, Send

logger = logging.getLogger(__name__)

Params = Dict[str, str]
RouteHandler = Callable[[Request, Params], Awaitable[Response]]
NotFoundHandler = Callable[[Request], Awaitable[Response]]

PLACEHOLDER = re.compile(r':(\w+)')


class RouteError(ValueError):
    """A path template could not be compiled"""


def compile_template(template: str):
    """
    Turn a path template into an anchored regex and its placeholder names.

    Literal text is escaped; every ``:name`` becomes a ``([^/]*)`` group.
    """
    parts = PLACEHOLDER.split(template)
    names: List[str] = []
    pattern = ''
    # split() alternates literal text and captured names
    for i, part in enumerate(parts):
        if i % 2:
            if part in names:
                raise RouteError(f"duplicate placeholder :{part} in {template!r}")
            names.append(part)
            pattern += '([^/]*)'
        else:
            pattern += re.escape(part)
    return re.compile('^' + pattern + '$'), names


class Route:
    """One method + path template bound to an async handler"""

    def __init__(self, method: str, template: str, handler: RouteHandler):
        self.method = method.upper()
        self.template = template
        self.handler = handler
        self.regex, self.param_names = compile_template(template)

    def __repr__(self) -> str:
        return f"Route({self.method!r}, {self.template!r})"

    def match(self, request: Request) -> Optional[Params]:
        """Return the captured parameters if the request hits this route."""
        if request.method.upper() != self.method:
            return None
        match = self.regex.match(request.url.path)
        if match is None:
            return None
        return dict(zip(self.param_names, match.groups()))


async def not_found(request: Request) -> Response:
    return PlainTextResponse('not found', status_code=404)


class Router:
    """Ordered route list usable both from FastAPI and as a bare ASGI app"""

    def __init__(self, routes: Iterable[Route] = (), not_found: NotFoundHandler = not_found):
        self.routes: List[Route] = list(routes)
        self.not_found = not_found

    def add(self, route: Route) -> Route:
        self.routes.append(route)
        return route

    def route(self, method: str, template: str):
        """Decorator registering an async handler for ``method`` + ``template``."""
        def decorator(handler: RouteHandler) -> RouteHandler:
            self.add(Route(method, template, handler))
            return handler
        return decorator

    async def respond(self, request: Request) -> Response:
        """Dispatch to the first matching route, or to the not-found handler."""
        for route in self.routes:
            params = route.match(request)
            if params is not None:
                logger.debug(f"{request.method} {request.url.path} -> {route!r} {params}")
                return await route.handler(request, params)
        return await self.not_found(request)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope['type'] != 'http':
            return
        request = Request(scope, receive)
        response = await self.respond(request)
        await response(scope, receive, send)


def dispatch(routes: Iterable[Route], not_found: NotFoundHandler = not_found) -> Router:
    """Build a router over ``routes``, trying them strictly in order."""
    return Router(routes, not_found)
