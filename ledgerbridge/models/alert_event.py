"""Alert audit and contact ORM models."""
from __future__ import annotations

import enum

from sqlalchemy import Boolean, Enum as SAEnum
from sqlalchemy import ForeignKey, Index, JSON, String, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledgerbridge.models.base import Base, CreatedAtMixin, IdMixin, TimestampMixin
from ledgerbridge.models.diagnostics_status import HealthStatus


class AlertKind(str, enum.Enum):
    DEGRADED = "degraded"
    RECOVERED = "recovered"


class AlertEvent(IdMixin, CreatedAtMixin, Base):
    """Append-only record of one health transition that produced an alert."""

    __tablename__ = "alert_events"
    __table_args__ = (Index("ix_alert_events_org_id", "org_id"),)

    org_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    prev_status: Mapped[HealthStatus | None] = mapped_column(
        SAEnum(HealthStatus, name="health_status", values_callable=lambda e: [m.value for m in e])
    )
    next_status: Mapped[HealthStatus] = mapped_column(
        SAEnum(HealthStatus, name="health_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    kind: Mapped[AlertKind] = mapped_column(
        SAEnum(AlertKind, name="alert_kind", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    recipients: Mapped[list | None] = mapped_column(JSON)
    channel_results: Mapped[dict | None] = mapped_column(JSON)


@event.listens_for(AlertEvent, "before_update")
def _reject_alert_update(mapper, connection, target) -> None:  # type: ignore[no-untyped-def]
    raise ValueError("alert events are append-only")


@event.listens_for(AlertEvent, "before_delete")
def _reject_alert_delete(mapper, connection, target) -> None:  # type: ignore[no-untyped-def]
    raise ValueError("alert events are append-only")


class OrgContact(IdMixin, TimestampMixin, Base):
    """Person or channel to notify when an organization's integration health changes."""

    __tablename__ = "org_contacts"
    __table_args__ = (Index("ix_org_contacts_org_id", "org_id"),)

    org_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str | None] = mapped_column(String(320))
    webhook_url: Mapped[str | None] = mapped_column(String(512))
    notify: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    organization = relationship("Organization", back_populates="contacts")


__all__ = ["AlertEvent", "AlertKind", "OrgContact"]
