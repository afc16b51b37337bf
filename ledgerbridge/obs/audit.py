"""Request audit trail for ledger-facing endpoints, stored as one S3 object per request."""
from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

import boto3
from botocore.exceptions import ClientError  # type: ignore[import-untyped]
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from ledgerbridge.core.config import Settings

UNAUDITED_PATHS = frozenset({"/api/healthz", "/api/readyz", "/metrics"})

# Credential material is hidden entirely; contact details keep a hint for support.
_SECRET_KEYS = {
    "access_token",
    "accesstoken",
    "refresh_token",
    "refreshtoken",
    "authorization",
    "api_key",
    "apikey",
}
_SENSITIVE_KEYS = {
    "email",
    "webhook_url",
    "webhookurl",
    "realm_id",
    "realmid",
}


def _mask_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _mask_field(str(key).lower(), item) for key, item in value.items()}
    if isinstance(value, list):
        return [_mask_value(item) for item in value]
    return value


def _mask_field(key: str, value: Any) -> Any:
    if key in _SECRET_KEYS:
        return "***"
    if key in _SENSITIVE_KEYS:
        return f"***{value[-4:]}" if isinstance(value, str) and len(value) > 4 else "***"
    return _mask_value(value)


def summarize_body(payload: Any) -> Any:
    """Masked request body with ingest row lists collapsed to a count.

    Sales and expense batches can carry thousands of rows; the audit trail keeps
    who imported how many, not the rows themselves.
    """

    if isinstance(payload, dict) and isinstance(payload.get("rows"), list):
        summary = {key: value for key, value in payload.items() if key != "rows"}
        summary["rowCount"] = len(payload["rows"])
        return _mask_value(summary)
    return _mask_value(payload)


@dataclass(slots=True)
class AuditLogRecord:
    timestamp: str
    request_id: str
    method: str
    path: str
    status: int
    duration_ms: float
    org_id: str | None
    ip_address: str | None
    query: dict[str, Any]
    body: Any

    def to_json(self) -> str:
        payload = asdict(self)
        payload["duration_ms"] = round(self.duration_ms, 2)
        return json.dumps(payload, default=str)

    def object_key(self, prefix: str) -> str:
        day = self.timestamp[:10].replace("-", "/")
        return f"{prefix.rstrip('/')}/{day}/{self.org_id or '_unscoped'}/{self.request_id}.json"


class AuditMiddleware(BaseHTTPMiddleware):
    """Records who called which ledger endpoint for which organization, and the outcome."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        settings: Settings,
        logger: logging.Logger | None = None,
        s3_client_factory: Callable[[], Any] | None = None,
    ) -> None:
        super().__init__(app)
        self._settings = settings
        self._logger = logger or logging.getLogger("audit")
        self._s3_client_factory = s3_client_factory or self._default_client_factory
        self._s3_client: Any | None = None
        self._bucket_ready = False

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        if request.url.path in UNAUDITED_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        request.state.request_id = request_id
        start = time.perf_counter()

        body_bytes = await request.body()
        self._set_body(request, body_bytes)
        body, body_org_id = self._read_body(body_bytes)

        response = await call_next(request)

        org_id = body_org_id or request.query_params.get("orgId")
        record = AuditLogRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=(time.perf_counter() - start) * 1000,
            org_id=str(org_id) if org_id is not None else None,
            ip_address=request.client.host if request.client else None,
            query=_mask_value(dict(request.query_params.multi_items())),
            body=body,
        )
        self._logger.info(record.to_json())
        self._persist_to_s3(record)

        response.headers["X-Request-ID"] = request_id
        return response

    @staticmethod
    def _read_body(body_bytes: bytes) -> tuple[Any, str | None]:
        if not body_bytes:
            return None, None
        try:
            parsed = json.loads(body_bytes)
        except json.JSONDecodeError:
            return "<binary>", None
        org_id = parsed.get("orgId") if isinstance(parsed, dict) else None
        return summarize_body(parsed), org_id

    def _default_client_factory(self) -> Any:
        return boto3.client(
            "s3",
            region_name=self._settings.aws_region,
            endpoint_url=self._settings.s3_endpoint_url,
        )

    def _sampled(self) -> bool:
        rate = self._settings.audit_log_sample_rate
        return rate >= 1 or (rate > 0 and random.random() < rate)

    def _persist_to_s3(self, record: AuditLogRecord) -> None:
        if not self._sampled():
            return
        bucket = self._settings.audit_log_bucket
        try:
            if self._s3_client is None:
                self._s3_client = self._s3_client_factory()
            client = self._s3_client
            if not self._bucket_ready:
                try:
                    client.head_bucket(Bucket=bucket)
                except ClientError:
                    client.create_bucket(Bucket=bucket)
                self._bucket_ready = True
            client.put_object(
                Bucket=bucket,
                Key=record.object_key(self._settings.audit_log_prefix),
                Body=record.to_json().encode("utf-8"),
                ContentType="application/json",
            )
        except Exception as exc:  # pragma: no cover - S3 connectivity issues
            # An unreachable audit store must not fail the ledger request.
            self._logger.error(
                "failed to persist audit record",
                extra={"request_id": record.request_id, "error": str(exc)},
            )

    @staticmethod
    def _set_body(request: Request, body: bytes) -> None:
        async def receive() -> dict[str, Any]:
            nonlocal consumed
            if consumed:
                return {"type": "http.request", "body": b"", "more_body": False}
            consumed = True
            return {"type": "http.request", "body": body, "more_body": False}

        consumed = False
        request._receive = receive  # type: ignore[attr-defined]


__all__ = ["AuditLogRecord", "AuditMiddleware", "UNAUDITED_PATHS", "summarize_body"]
