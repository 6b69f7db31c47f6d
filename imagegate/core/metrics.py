"""Prometheus metrics for the application."""

import time

from prometheus_client import Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("imagegate", "Image inference gateway info")
APP_INFO.info({"version": "1.0.0", "name": "imagegate"})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60],
)

ADMISSION_DECISIONS = Counter(
    "guest_admission_decisions_total",
    "Guest admission decisions",
    ["outcome"],  # allowed | GLOBAL_LIMIT | IP_LIMIT | BOT_DETECTED
)

CREDIT_ADJUSTMENTS = Counter(
    "credit_adjustments_total",
    "Ledger adjustments",
    ["kind", "status"],  # kind: charge | refund | grant
)

PROVIDER_RETRIES = Counter(
    "provider_retries_total",
    "Retries of provider calls after transient errors",
    ["model"],
)

REQUEST_OUTCOMES = Counter(
    "inference_requests_total",
    "Orchestrated inference requests by terminal state",
    ["path", "state", "gate"],
)


# --- Middleware ---


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect HTTP request metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = request.url.path

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
