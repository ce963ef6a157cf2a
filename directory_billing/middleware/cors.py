"""
CORS middleware for the payment functions.

The checkout runs as a browser SPA on a different origin from the payment
functions, so every response is stamped with permissive CORS headers and a
bare OPTIONS preflight is answered here with 200 and an empty body, whether
or not the browser sent Access-Control-Request-Method.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from typing import Callable, Dict

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


class EdgeCorsMiddleware(BaseHTTPMiddleware):
    """Short-circuits OPTIONS and adds CORS headers to everything else."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=dict(CORS_HEADERS))

        response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers[name] = value
        return response
