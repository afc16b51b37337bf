"""Integration health evaluation and the persisted per-organization snapshot."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from ledgerbridge.core.config import Settings, get_settings
from ledgerbridge.models import AlertEvent, DiagnosticsStatus, HealthStatus
from ledgerbridge.obs import DIAGNOSTICS_EVALUATIONS_COUNTER
from ledgerbridge.services.alerts import AlertDispatcher, org_lock
from ledgerbridge.services.bucket_map import (
    REQUIRED_BUCKETS,
    AccountMappingService,
    missing_buckets,
    type_warnings,
)
from ledgerbridge.services.connections import ConnectionHealth, load_connection, require_organization

logger = logging.getLogger(__name__)


def compute_overall(connected: bool, missing: Sequence[str], warnings: Sequence[str]) -> HealthStatus:
    """Reduce the three health facts to one status.

    Red when disconnected or any required bucket is unmapped, yellow when only
    type warnings remain, green otherwise.
    """

    if not connected or missing:
        return HealthStatus.RED
    if warnings:
        return HealthStatus.YELLOW
    return HealthStatus.GREEN


@dataclass(slots=True, frozen=True)
class DiagnosticsReport:
    org_id: str
    health: ConnectionHealth
    missing: list[str]
    warnings: list[str]
    overall: HealthStatus

    @property
    def mappings_complete(self) -> bool:
        return not self.missing


@dataclass(slots=True, frozen=True)
class DiagnosticsRun:
    report: DiagnosticsReport
    previous: HealthStatus | None = None
    saved: bool = False
    alert: AlertEvent | None = field(default=None, compare=False)


class DiagnosticsService:
    """Evaluates health on demand and optionally persists it, alerting on transitions."""

    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        dispatcher: AlertDispatcher | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._provider = self._settings.ledger_provider
        self._mappings = AccountMappingService(session, provider=self._provider)
        self._dispatcher = dispatcher or AlertDispatcher(session, settings=self._settings)

    def evaluate(self, org_id: str, *, now: datetime | None = None) -> DiagnosticsReport:
        """Compute the current health without writing anything."""

        require_organization(self._session, org_id)
        health = load_connection(self._session, org_id, self._provider, now=now)
        if not health.connected:
            missing = list(REQUIRED_BUCKETS)
            warnings: list[str] = []
        else:
            mappings = self._mappings.mapping_by_bucket(org_id)
            missing = missing_buckets(mappings)
            warnings = type_warnings(mappings, self._mappings.cached_accounts(org_id))
        overall = compute_overall(health.connected, missing, warnings)
        DIAGNOSTICS_EVALUATIONS_COUNTER.labels(overall=overall.value).inc()
        return DiagnosticsReport(
            org_id=org_id, health=health, missing=missing, warnings=warnings, overall=overall
        )

    def snapshot(self, org_id: str) -> DiagnosticsStatus | None:
        return self._session.get(DiagnosticsStatus, org_id, populate_existing=True)

    def run(
        self,
        org_id: str,
        *,
        save: bool = False,
        last_test_forward_id: str | None = None,
        last_test_reverse_id: str | None = None,
        last_verified_at: datetime | None = None,
    ) -> DiagnosticsRun:
        """Evaluate, and when ``save`` is set upsert the snapshot and alert on a transition.

        Optional test-posting fields only overwrite the snapshot when supplied.
        """

        report = self.evaluate(org_id)
        if not save:
            return DiagnosticsRun(report=report)

        with org_lock(org_id):
            snapshot = self.snapshot(org_id)
            previous = snapshot.overall if snapshot is not None else None
            if snapshot is None:
                snapshot = DiagnosticsStatus(org_id=org_id)
                self._session.add(snapshot)
            snapshot.overall = report.overall
            snapshot.connected = report.health.connected
            snapshot.mappings_complete = report.mappings_complete
            snapshot.warnings_count = len(report.warnings)
            if last_test_forward_id is not None:
                snapshot.last_test_forward_id = last_test_forward_id
            if last_test_reverse_id is not None:
                snapshot.last_test_reverse_id = last_test_reverse_id
            if last_verified_at is not None:
                snapshot.last_verified_at = last_verified_at
            snapshot.updated_at = datetime.now(timezone.utc)
            self._session.commit()

            alert = self._dispatcher.dispatch(
                org_id,
                previous,
                report.overall,
                missing=report.missing,
                warnings=report.warnings,
            )

        logger.info(
            "diagnostics saved",
            extra={
                "org_id": org_id,
                "overall": report.overall.value,
                "previous": previous.value if previous is not None else None,
                "alerted": alert is not None,
            },
        )
        return DiagnosticsRun(report=report, previous=previous, saved=True, alert=alert)


__all__ = ["DiagnosticsReport", "DiagnosticsRun", "DiagnosticsService", "compute_overall"]
