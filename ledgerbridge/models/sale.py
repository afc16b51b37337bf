"""Sale and extra cost ORM models."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledgerbridge.models.base import Base, IdMixin, TimestampMixin

# Columns that may change after import; everything else is fixed at insert time.
SALE_MUTABLE_FIELDS = frozenset({"payout_at", "payout_amount_cents", "locked_cogs_cents"})


class Sale(IdMixin, TimestampMixin, Base):
    """A marketplace sale with every money field in integer minor units."""

    __tablename__ = "sales"
    __table_args__ = (
        UniqueConstraint("org_id", "row_hash", name="uq_sales_org_row_hash"),
        Index("ix_sales_org_id", "org_id"),
        Index("ix_sales_sold_at", "sold_at"),
    )

    org_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    source_label: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    marketplace: Mapped[str] = mapped_column(String(64), nullable=False)
    marketplace_order_id: Mapped[str | None] = mapped_column(String(128))
    sold_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255))
    sku: Mapped[str | None] = mapped_column(String(128))
    item_ref: Mapped[str | None] = mapped_column(String(128))
    buyer_state: Mapped[str | None] = mapped_column(String(32))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    sale_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    shipping_charged_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    shipping_cost_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    platform_fees_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    discounts_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    refunds_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    chargebacks_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    tax_collected_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    tax_remitted_by_marketplace: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    purchase_price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    locked_cogs_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    payout_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    payout_amount_cents: Mapped[int | None] = mapped_column(BigInteger)

    raw_payload: Mapped[dict | None] = mapped_column(JSON)
    row_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    organization = relationship("Organization", back_populates="sales")
    extra_costs = relationship(
        "ExtraCost", back_populates="sale", cascade="all, delete-orphan", order_by="ExtraCost.incurred_at"
    )


class ExtraCost(IdMixin, TimestampMixin, Base):
    """Additional cost attached to a sale (repairs, cleaning, inbound shipping)."""

    __tablename__ = "sale_extra_costs"
    __table_args__ = (
        Index("ix_sale_extra_costs_org_id", "org_id"),
        Index("ix_sale_extra_costs_sale_id", "sale_id"),
    )

    org_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    sale_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sales.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    incurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    note: Mapped[str | None] = mapped_column(String(255))

    sale = relationship("Sale", back_populates="extra_costs")


__all__ = ["ExtraCost", "SALE_MUTABLE_FIELDS", "Sale"]
