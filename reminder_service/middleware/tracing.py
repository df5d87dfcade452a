"""
Trace id middleware

Honours an incoming ``X-Trace-Id`` header or generates one, exposes it as
``request.state.trace_id`` and echoes it on the response.
"""

import uuid
import logging
from fastapi import Request

logger = logging.getLogger(__name__)

TRACE_HEADER = "x-trace-id"


def get_trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", None) or ""


class TraceIdMiddleware:
    """Attach a trace id to every HTTP request"""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        trace_id = request.headers.get(TRACE_HEADER) or uuid.uuid4().hex
        scope.setdefault("state", {})["trace_id"] = trace_id

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-trace-id", trace_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, send_wrapper)
