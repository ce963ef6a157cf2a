"""
Request ID middleware.

Every payment log line carries the request id so a charge can be traced from
the checkout click through the gateway call to the bookkeeping writes.

Headers:
- X-Request-ID: honoured when the caller (or the edge proxy) sends one,
  generated otherwise, and echoed on the response.
"""

import uuid
import logging
from contextvars import ContextVar
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


class RequestIdMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        token = request_id_ctx.set(request_id)
        request.state.request_id = request_id
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response


def get_request_id() -> str:
    """Current request id, or "-" outside a request."""
    return request_id_ctx.get() or "-"


class RequestIdLogFilter(logging.Filter):
    """
    Logging filter that stamps ``request_id`` onto every record.

    Usage:
        handler.addFilter(RequestIdLogFilter())
        handler.setFormatter(logging.Formatter("%(request_id)s %(message)s"))
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True
