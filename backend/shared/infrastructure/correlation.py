"""
Request correlation ids.

CorrelationIdMiddleware binds one id per HTTP request or WebSocket session
(taken from X-Request-ID when the client sends a well-formed one) and echoes
it on HTTP responses. Work that does not arrive through ASGI, such as
events read from Redis, binds its own id with bind_request_id().
"""

import re
import uuid
from contextvars import ContextVar

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = "X-Request-ID"

# Client-supplied ids end up in log lines
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    return request_id_var.get()


def bind_request_id(request_id: str | None = None, prefix: str = "") -> str:
    """Bind a correlation id to the current task and return it. Generates one if none is given."""
    if not request_id or not _VALID_REQUEST_ID.match(request_id):
        request_id = f"{prefix}{uuid.uuid4()}"
    request_id_var.set(request_id)
    return request_id


class CorrelationIdMiddleware:
    """Pure ASGI middleware so WebSocket sessions get an id too."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        supplied = Headers(scope=scope).get(REQUEST_ID_HEADER)
        if supplied and _VALID_REQUEST_ID.match(supplied):
            request_id = supplied
        else:
            request_id = str(uuid.uuid4())

        scope.setdefault("state", {})["request_id"] = request_id
        token = request_id_var.set(request_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            request_id_var.reset(token)


class CorrelationIdFilter:
    """
    Logging filter that copies the bound id onto each record.

        handler.addFilter(CorrelationIdFilter())
    """

    def filter(self, record) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True
