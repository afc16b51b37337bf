from __future__ import annotations

import json

from fastapi import FastAPI
from fastapi.testclient import TestClient
from opentelemetry import trace

from ledgerbridge.obs import (
    INGEST_ROWS_COUNTER,
    PrometheusMiddleware,
    initialise_tracing,
    inject_traceparent,
    metrics_router,
    record_ingest_row,
    span_from_traceparent,
)
from ledgerbridge.obs.audit import AuditLogRecord, _mask_value, summarize_body


def test_metrics_endpoint_exposes_counters() -> None:
    app = FastAPI()
    app.add_middleware(PrometheusMiddleware)
    app.include_router(metrics_router)

    client = TestClient(app)
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_record_ingest_row_updates_counter() -> None:
    before = INGEST_ROWS_COUNTER.labels(kind="sale", outcome="error")._value.get()
    record_ingest_row("sale", "error")
    assert INGEST_ROWS_COUNTER.labels(kind="sale", outcome="error")._value.get() == before + 1


def test_span_from_traceparent_links_context() -> None:
    initialise_tracing(service_name="unit-test-service")
    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span("parent"):
        carrier = inject_traceparent({})
    traceparent = carrier.get("traceparent")
    assert traceparent is not None

    with span_from_traceparent("child", traceparent) as span:
        assert (
            span.get_span_context().trace_id == trace.get_current_span().get_span_context().trace_id
        )


def test_audit_masking_hides_credentials_and_contacts() -> None:
    masked = _mask_value(
        {
            "orgId": "org-1",
            "accessToken": "secret-token",
            "contacts": [{"email": "owner@example.com", "webhookUrl": "https://hooks.test/abcd1234"}],
            "note": "ping ops@example.com",
        }
    )
    assert masked["orgId"] == "org-1"
    assert masked["accessToken"] == "***"
    assert masked["contacts"][0]["email"] == "***.com"
    assert masked["contacts"][0]["webhookUrl"] == "***1234"
    assert masked["note"] == "ping ops@example.com"


def test_audit_body_summary_counts_rows_and_masks_the_rest() -> None:
    summary = summarize_body(
        {"orgId": "org-1", "rows": [{"salePrice": "1.00"}] * 3, "contact": {"email": "owner@example.com"}}
    )
    assert summary == {"orgId": "org-1", "contact": {"email": "***.com"}, "rowCount": 3}
    assert summarize_body([{"apiKey": "k"}]) == [{"apiKey": "***"}]


def test_audit_object_keys_fall_back_to_unscoped() -> None:
    record = AuditLogRecord(
        timestamp="2026-10-17T08:00:00+00:00",
        request_id="abc",
        method="GET",
        path="/api/mappings",
        status=422,
        duration_ms=1.234,
        org_id=None,
        ip_address=None,
        query={},
        body=None,
    )
    assert record.object_key("audit/records/") == "audit/records/2026/10/17/_unscoped/abc.json"
    assert json.loads(record.to_json())["duration_ms"] == 1.23
