"""Request logging middleware with correlation ids."""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from imagegate.core.logging import correlation_id_var

logger = logging.getLogger("imagegate.access")

CORRELATION_HEADER = "X-Correlation-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration for every request.

    The correlation id comes from ``X-Correlation-ID`` or is generated, is
    stored on ``request.state`` for handlers, and is echoed on the response.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)

        start = time.monotonic()
        response: Response | None = None
        try:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            status_code = response.status_code if response is not None else 500
            payload = {
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
                "user_id": request.headers.get("x-user-id") or "anonymous",
            }
            extra = {"request": payload, "correlation_id": correlation_id}
            if status_code >= 500:
                logger.error("%s %s -> %d", request.method, request.url.path, status_code, extra=extra)
            elif status_code >= 400:
                logger.warning("%s %s -> %d", request.method, request.url.path, status_code, extra=extra)
            else:
                logger.info("%s %s -> %d", request.method, request.url.path, status_code, extra=extra)
            correlation_id_var.reset(token)
