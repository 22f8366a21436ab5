"""Request ID propagation for logs, responses and backend calls (pure ASGI).

The ID of the request being served lives in :data:`current_request_id` for
as long as the request runs, so the resolver, the defaults engine and the
backend client all log it through :class:`RequestIdLogFilter`, and the
backend client forwards it upstream.
"""

from __future__ import annotations

import contextvars
import logging
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = "x-request-id"

current_request_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "current_request_id", default="-"
)


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class RequestIdLogFilter(logging.Filter):
    """Stamp ``record.request_id`` (``-`` outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = current_request_id.get()
        return True


class RequestIdMiddleware:
    """Reuse the caller's ``X-Request-ID`` or mint one, and echo it back.

    The ID is also stored on ``request.state.request_id`` for handlers.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        request_id = Headers(scope=scope).get(REQUEST_ID_HEADER) or new_request_id()
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_tagged(message: Message) -> None:
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
            await send(message)

        token = current_request_id.set(request_id)
        try:
            await self.app(scope, receive, send_tagged)
        finally:
            current_request_id.reset(token)
