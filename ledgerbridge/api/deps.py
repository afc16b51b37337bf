"""Common dependencies for API routes."""
from __future__ import annotations

from collections.abc import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session

from ledgerbridge.core.config import Settings, get_settings
from ledgerbridge.db.session import SessionLocal
from ledgerbridge.services.alerts import AlertChannel, default_channels
from ledgerbridge.services.ledger_client import LedgerClientFactory, ledger_client_factory


def get_db_session() -> Iterator[Session]:
    """Yield a database session for FastAPI dependencies."""

    session: Session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_app_settings() -> Settings:
    return get_settings()


def get_ledger_client_factory(settings: Settings = Depends(get_app_settings)) -> LedgerClientFactory:
    """Build ledger provider clients from an organization's stored credential."""
    return ledger_client_factory(settings)


def get_alert_channels(settings: Settings = Depends(get_app_settings)) -> list[AlertChannel]:
    return default_channels(settings)


__all__ = ["get_alert_channels", "get_app_settings", "get_db_session", "get_ledger_client_factory"]
