"""Organization and ledger connection lookups shared by the sync services."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledgerbridge.models import IntegrationToken, Organization
from ledgerbridge.services.errors import NotConnectedError, OrganizationNotFoundError


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(slots=True, frozen=True)
class ConnectionHealth:
    """Whether an organization currently holds a usable provider credential."""

    provider: str
    connected: bool
    expires_in_sec: int | None = None
    realm_id: str | None = None
    company_name: str | None = None
    access_token: str | None = None


def require_organization(session: Session, org_id: str) -> Organization:
    organization = session.get(Organization, org_id)
    if organization is None:
        raise OrganizationNotFoundError(f"Organization '{org_id}' was not found")
    return organization


def load_connection(
    session: Session, org_id: str, provider: str, *, now: datetime | None = None
) -> ConnectionHealth:
    """Read the provider token; a missing or expired token means not connected."""

    token = session.scalar(
        select(IntegrationToken).where(
            IntegrationToken.org_id == org_id, IntegrationToken.provider == provider
        )
    )
    if token is None:
        return ConnectionHealth(provider=provider, connected=False)

    current = as_utc(now or datetime.now(timezone.utc))
    remaining = int((as_utc(token.expires_at) - current).total_seconds())
    connected = remaining > 0
    return ConnectionHealth(
        provider=provider,
        connected=connected,
        expires_in_sec=max(0, remaining),
        realm_id=token.realm_id,
        company_name=token.company_name,
        access_token=token.access_token if connected else None,
    )


def require_connection(
    session: Session, org_id: str, provider: str, *, now: datetime | None = None
) -> ConnectionHealth:
    connection = load_connection(session, org_id, provider, now=now)
    if not connection.connected:
        raise NotConnectedError(f"Organization '{org_id}' is not connected to {provider}")
    return connection


__all__ = ["ConnectionHealth", "as_utc", "load_connection", "require_connection", "require_organization"]
