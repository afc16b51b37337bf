"""Prometheus metrics utilities for API and worker processes."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_LATENCY_SECONDS = Histogram(
    "http_request_latency_seconds",
    "Latency of HTTP requests in seconds.",
    labelnames=("method", "path"),
)
REQUEST_COUNTER = Counter(
    "http_requests_total",
    "Total number of HTTP requests processed.",
    labelnames=("method", "path", "status"),
)
REQUEST_ERROR_COUNTER = Counter(
    "http_request_errors_total",
    "Total number of HTTP requests that resulted in server errors.",
    labelnames=("method", "path", "status"),
)
INGEST_ROWS_COUNTER = Counter(
    "ingest_rows_total",
    "Imported transaction rows by kind and outcome.",
    labelnames=("kind", "outcome"),
)
LEDGER_POSTINGS_COUNTER = Counter(
    "ledger_postings_total",
    "Journal entries sent to the ledger provider by kind and outcome.",
    labelnames=("provider", "kind", "outcome"),
)
DIAGNOSTICS_EVALUATIONS_COUNTER = Counter(
    "diagnostics_evaluations_total",
    "Integration health evaluations by resulting status.",
    labelnames=("overall",),
)
ALERTS_DISPATCHED_COUNTER = Counter(
    "alerts_dispatched_total",
    "Health transition alerts recorded by kind.",
    labelnames=("kind",),
)
ALERT_CHANNEL_FAILURES_COUNTER = Counter(
    "alert_channel_failures_total",
    "Alert deliveries that failed by channel.",
    labelnames=("channel",),
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware that records request metrics for Prometheus scraping."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        method = request.method
        path = request.url.path
        start_time = time.perf_counter()
        status = "500"

        try:
            response = await call_next(request)
            status = str(response.status_code)
            if response.status_code >= 500:
                REQUEST_ERROR_COUNTER.labels(method=method, path=path, status=status).inc()
            return response
        except Exception:
            REQUEST_ERROR_COUNTER.labels(method=method, path=path, status="500").inc()
            raise
        finally:
            latency = time.perf_counter() - start_time
            REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(latency)
            REQUEST_COUNTER.labels(method=method, path=path, status=status).inc()


metrics_router = APIRouter(tags=["observability"])


@metrics_router.get("/metrics", include_in_schema=False)
def metrics_endpoint() -> Response:
    """Expose Prometheus metrics for scraping."""
    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


def record_ingest_row(kind: str, outcome: str) -> None:
    """Count one imported row; ``outcome`` is inserted, duplicate or error."""
    INGEST_ROWS_COUNTER.labels(kind=kind, outcome=outcome).inc()


__all__ = [
    "ALERTS_DISPATCHED_COUNTER",
    "ALERT_CHANNEL_FAILURES_COUNTER",
    "DIAGNOSTICS_EVALUATIONS_COUNTER",
    "INGEST_ROWS_COUNTER",
    "LEDGER_POSTINGS_COUNTER",
    "PrometheusMiddleware",
    "REQUEST_COUNTER",
    "REQUEST_ERROR_COUNTER",
    "REQUEST_LATENCY_SECONDS",
    "metrics_endpoint",
    "metrics_router",
    "record_ingest_row",
]
