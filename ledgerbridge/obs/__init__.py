"""Observability utilities."""

from .audit import AuditLogRecord, AuditMiddleware
from .metrics import (
    ALERT_CHANNEL_FAILURES_COUNTER,
    ALERTS_DISPATCHED_COUNTER,
    DIAGNOSTICS_EVALUATIONS_COUNTER,
    INGEST_ROWS_COUNTER,
    LEDGER_POSTINGS_COUNTER,
    REQUEST_COUNTER,
    REQUEST_ERROR_COUNTER,
    REQUEST_LATENCY_SECONDS,
    PrometheusMiddleware,
    metrics_router,
    record_ingest_row,
)
from .tracing import (
    initialise_tracing,
    inject_traceparent,
    instrument_fastapi_app,
    instrument_sqlalchemy_engine,
    span_from_traceparent,
)

__all__ = [
    "ALERTS_DISPATCHED_COUNTER",
    "ALERT_CHANNEL_FAILURES_COUNTER",
    "AuditLogRecord",
    "AuditMiddleware",
    "DIAGNOSTICS_EVALUATIONS_COUNTER",
    "INGEST_ROWS_COUNTER",
    "LEDGER_POSTINGS_COUNTER",
    "PrometheusMiddleware",
    "REQUEST_COUNTER",
    "REQUEST_ERROR_COUNTER",
    "REQUEST_LATENCY_SECONDS",
    "metrics_router",
    "record_ingest_row",
    "initialise_tracing",
    "inject_traceparent",
    "instrument_fastapi_app",
    "instrument_sqlalchemy_engine",
    "span_from_traceparent",
]
