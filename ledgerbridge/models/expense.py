"""Expense ORM model."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, JSON, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledgerbridge.models.base import Base, IdMixin, TimestampMixin


class Expense(IdMixin, TimestampMixin, Base):
    """Business expense imported from a bank or card export."""

    __tablename__ = "expenses"
    __table_args__ = (
        UniqueConstraint("org_id", "row_hash", name="uq_expenses_org_row_hash"),
        Index("ix_expenses_org_id", "org_id"),
        Index("ix_expenses_occurred_at", "occurred_at"),
    )

    org_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    source_label: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    category: Mapped[str] = mapped_column(String(128), nullable=False)
    vendor: Mapped[str | None] = mapped_column(String(255))
    method: Mapped[str | None] = mapped_column(String(64))
    note: Mapped[str | None] = mapped_column(String(512))
    # Mileage inputs are distances and rates, not money.
    mileage_miles: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    vehicle_rate: Mapped[Decimal | None] = mapped_column(Numeric(8, 4))
    raw_payload: Mapped[dict | None] = mapped_column(JSON)
    row_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    organization = relationship("Organization", back_populates="expenses")


__all__ = ["Expense"]
