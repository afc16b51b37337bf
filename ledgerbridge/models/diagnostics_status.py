"""Diagnostics snapshot ORM model."""
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ledgerbridge.models.base import Base


class HealthStatus(str, enum.Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class DiagnosticsStatus(Base):
    """Live integration health for one organization, overwritten on each save."""

    __tablename__ = "diagnostics_status"

    org_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True
    )
    overall: Mapped[HealthStatus] = mapped_column(
        SAEnum(HealthStatus, name="health_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mappings_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    warnings_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_test_forward_id: Mapped[str | None] = mapped_column(String(64))
    last_test_reverse_id: Mapped[str | None] = mapped_column(String(64))
    last_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


__all__ = ["DiagnosticsStatus", "HealthStatus"]
