"""Periodic worker re-verifying test postings and saving diagnostics for every active organization."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledgerbridge.core.config import Settings, get_settings
from ledgerbridge.db.session import SessionLocal
from ledgerbridge.models import HealthStatus, Organization, OrganizationStatus
from ledgerbridge.services.alerts import AlertChannel, AlertDispatcher
from ledgerbridge.services.diagnostics import DiagnosticsService
from ledgerbridge.services.errors import LedgerSyncError
from ledgerbridge.services.ledger_client import LedgerClientFactory
from ledgerbridge.services.verification import VerificationProbe
from ledgerbridge.workers.observability import configure_worker, worker_span

LOGGER = logging.getLogger(__name__)


def active_organization_ids(session: Session) -> list[str]:
    statement = (
        select(Organization.id)
        .where(Organization.status == OrganizationStatus.ACTIVE)
        .order_by(Organization.id)
    )
    return list(session.scalars(statement))


def process_organization(
    session: Session,
    org_id: str,
    *,
    settings: Settings,
    client_factory: LedgerClientFactory | None = None,
    channels: Sequence[AlertChannel] | None = None,
) -> HealthStatus:
    """Verify the last test posting ids, then save a fresh diagnostics snapshot."""

    dispatcher = AlertDispatcher(session, settings=settings, channels=channels)
    service = DiagnosticsService(session, settings=settings, dispatcher=dispatcher)

    verified_at: datetime | None = None
    snapshot = service.snapshot(org_id)
    if snapshot is not None:
        ids = [value for value in (snapshot.last_test_forward_id, snapshot.last_test_reverse_id) if value]
        if ids:
            verifier = VerificationProbe(session, settings=settings, client_factory=client_factory)
            results = verifier.verify(org_id, ids)
            if results and all(result.found for result in results):
                verified_at = datetime.now(tz=UTC)
            else:
                LOGGER.warning(
                    "test postings not verified",
                    extra={
                        "org_id": org_id,
                        "missing": [result.id for result in results if not result.found],
                    },
                )

    run = service.run(org_id, save=True, last_verified_at=verified_at)
    return run.report.overall


def run_once(
    session_factory: Callable[[], Session] = SessionLocal,
    *,
    settings: Settings | None = None,
    client_factory: LedgerClientFactory | None = None,
    channels: Sequence[AlertChannel] | None = None,
) -> dict[str, str]:
    """Execute one diagnostics cycle and return the overall status (or ``error``) per organization."""

    resolved = settings or get_settings()
    outcomes: dict[str, str] = {}
    with worker_span("diagnostics.cycle"):
        try:
            with session_factory() as session:
                org_ids = active_organization_ids(session)
        except SQLAlchemyError:
            LOGGER.exception("could not list organizations, skipping diagnostics cycle")
            return outcomes
        for org_id in org_ids:
            with session_factory() as session, worker_span("diagnostics.organization", org_id=org_id):
                try:
                    overall = process_organization(
                        session,
                        org_id,
                        settings=resolved,
                        client_factory=client_factory,
                        channels=channels,
                    )
                except (LedgerSyncError, SQLAlchemyError) as exc:
                    session.rollback()
                    outcomes[org_id] = "error"
                    LOGGER.exception(
                        "diagnostics failed for organization", extra={"org_id": org_id, "error": str(exc)}
                    )
                    continue
                outcomes[org_id] = overall.value
    LOGGER.info(
        "diagnostics cycle complete",
        extra={"organizations": len(outcomes), "errors": sum(1 for v in outcomes.values() if v == "error")},
    )
    return outcomes


async def run() -> None:
    """Continuously run diagnostics cycles at the configured cadence."""

    settings = get_settings()
    configure_worker("diagnostics-cron")
    interval = max(60, settings.diagnostics_interval_seconds)
    LOGGER.info("starting diagnostics worker", extra={"interval_seconds": interval})
    while True:
        await asyncio.to_thread(run_once, settings=settings)
        await asyncio.sleep(interval)


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown
        LOGGER.info("diagnostics worker stopped")


if __name__ == "__main__":
    main()
