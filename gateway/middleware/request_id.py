from time import perf_counter
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from gateway.metrics import record_request

UNMETERED_PATHS = {"/healthz", "/readyz", "/metrics"}


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every request with ``x-request-id`` and records request metrics.

    For streamed responses the latency covers time to first byte.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = perf_counter()
        request_id = request.headers.get("x-request-id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        if request.url.path not in UNMETERED_PATHS and request.method != "OPTIONS":
            record_request(request.url.path, response.status_code, perf_counter() - started)
        return response
