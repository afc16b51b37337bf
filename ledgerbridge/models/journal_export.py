"""Journal export ORM model."""
from __future__ import annotations

import enum
from datetime import date

from sqlalchemy import Date, Enum as SAEnum
from sqlalchemy import ForeignKey, Index, JSON, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from ledgerbridge.models.base import Base, IdMixin, TimestampMixin


class JournalExportStatus(str, enum.Enum):
    PREVIEW = "preview"
    COMMITTED = "committed"
    ERROR = "error"


class JournalExportKind(str, enum.Enum):
    JOURNAL = "journal"
    REVERSING_TEST = "reversing_test"


class JournalExport(IdMixin, TimestampMixin, Base):
    """One posting attempt against the ledger provider.

    The row is written with status ``preview`` before the provider is called
    and is terminal once the status moves to ``committed`` or ``error``.
    """

    __tablename__ = "journal_exports"
    __table_args__ = (
        Index("ix_journal_exports_org_id", "org_id"),
        # At most one live (in-flight or committed) export per payload.
        Index(
            "uq_journal_exports_active_fingerprint",
            "org_id",
            "provider",
            "fingerprint",
            unique=True,
            postgresql_where=text("status <> 'error'"),
            sqlite_where=text("status <> 'error'"),
        ),
    )

    org_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    kind: Mapped[JournalExportKind] = mapped_column(
        SAEnum(JournalExportKind, name="journal_export_kind", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JournalExportKind.JOURNAL,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[JournalExportStatus] = mapped_column(
        SAEnum(JournalExportStatus, name="journal_export_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JournalExportStatus.PREVIEW,
    )
    preview: Mapped[dict | None] = mapped_column(JSON)
    payload: Mapped[dict | None] = mapped_column(JSON)
    # SHA-256 of the posted payload; a live fingerprint is never posted twice.
    fingerprint: Mapped[str | None] = mapped_column(String(64), index=True)
    external_id: Mapped[str | None] = mapped_column(String(64))
    error: Mapped[str | None] = mapped_column(Text)


__all__ = ["JournalExport", "JournalExportKind", "JournalExportStatus"]
