"""Configuration management for the LedgerBridge service."""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = Field(default="LedgerBridge")
    version: str = Field(default="0.1.0")
    docs_url: str | None = Field(default="/docs")
    redoc_url: str | None = Field(default="/redoc")
    openapi_url: str = Field(default="/openapi.json")

    database_url: str = Field(default="postgresql+psycopg://ledger:ledger@db:5432/ledgerbridge")

    aws_region: str = Field(default="us-east-1")
    s3_endpoint_url: str | None = Field(default=None)
    audit_log_bucket: str = Field(default="ledgerbridge-audit-logs")
    audit_log_prefix: str = Field(default="audit/records")
    audit_log_sample_rate: float = Field(default=1.0)

    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=True)
    otel_exporter_endpoint: str | None = Field(default=None)

    default_currency: str = Field(default="USD", min_length=3, max_length=3)

    ledger_provider: str = Field(default="quickbooks")
    ledger_api_base_url: str = Field(default="https://quickbooks.api.intuit.com")
    ledger_minor_version: int = Field(default=73)
    xero_api_base_url: str = Field(default="https://api.xero.com/api.xro/2.0")
    ledger_timeout_seconds: float = Field(default=10.0)
    test_posting_amount_minor: int = Field(default=1, ge=1)
    test_posting_note: str = Field(default="LEDGERBRIDGE TEST EXPORT (AUTO-REVERSE)")

    app_dashboard_url: str = Field(default="https://app.example.com")
    alert_on_yellow: bool = Field(default=True)
    alert_dedupe_window_seconds: int = Field(default=60, ge=0)
    alert_timeout_seconds: float = Field(default=5.0)
    alert_email_api_url: str = Field(default="https://api.resend.com/emails")
    alert_email_api_key: str | None = Field(default=None)
    alert_from: str = Field(default="Alerts <alerts@example.com>")
    alert_bcc: str | None = Field(default=None)
    alert_default_webhook_url: str | None = Field(default=None)

    diagnostics_interval_seconds: int = Field(default=900)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


__all__ = ["Settings", "get_settings"]
