"""aiohttp middlewares binding logging context and browser sessions."""

from __future__ import annotations

import re
import uuid
from typing import Awaitable, Callable

from aiohttp import web

from logger import bind_context, get_logger, reset_context

SESSION_COOKIE = "tryon_session"
_SESSION_RE = re.compile(r"^[0-9a-f]{32}$")

REQUEST_ID_KEY = web.RequestKey("request_id", str)
SESSION_ID_KEY = web.RequestKey("session_id", str)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

LOGGER = get_logger("web.request")


@web.middleware
async def logging_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Inject request_id into the logging context for each request."""

    request_id = uuid.uuid4().hex[:8]
    request[REQUEST_ID_KEY] = request_id
    token = bind_context(request_id=request_id)
    try:
        response = await handler(request)
        LOGGER.debug("%s %s -> %s", request.method, request.path, response.status)
        return response
    finally:
        reset_context(token)


@web.middleware
async def session_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Attach a stable session id taken from (or issued as) a cookie."""

    raw = request.cookies.get(SESSION_COOKIE, "")
    is_new = not _SESSION_RE.fullmatch(raw)
    session_id = uuid.uuid4().hex if is_new else raw
    request[SESSION_ID_KEY] = session_id

    token = bind_context(session_id=session_id[:8])
    try:
        response = await handler(request)
    finally:
        reset_context(token)
    if is_new:
        response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="Lax", path="/")
    return response


__all__ = [
    "REQUEST_ID_KEY",
    "SESSION_COOKIE",
    "SESSION_ID_KEY",
    "logging_middleware",
    "session_middleware",
]
