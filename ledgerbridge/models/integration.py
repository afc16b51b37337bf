"""ORM models describing the external ledger connection of an organization."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from ledgerbridge.models.base import Base, IdMixin, TimestampMixin


class IntegrationToken(IdMixin, TimestampMixin, Base):
    """OAuth credential issued by the ledger provider for one organization."""

    __tablename__ = "integration_tokens"
    __table_args__ = (
        UniqueConstraint("org_id", "provider", name="uq_integration_tokens_org_provider"),
        Index("ix_integration_tokens_org_id", "org_id"),
    )

    org_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    realm_id: Mapped[str | None] = mapped_column(String(64))
    company_name: Mapped[str | None] = mapped_column(String(255))


class ExternalAccount(IdMixin, Base):
    """Cached chart-of-accounts entry reported by the ledger provider."""

    __tablename__ = "external_accounts_cache"
    __table_args__ = (
        UniqueConstraint("org_id", "provider", "external_id", name="uq_external_accounts_org_provider_ext"),
        Index("ix_external_accounts_cache_org_id", "org_id"),
    )

    org_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))
    account_type: Mapped[str | None] = mapped_column(String(64))
    account_subtype: Mapped[str | None] = mapped_column(String(64))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    refreshed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class AccountMapping(IdMixin, TimestampMixin, Base):
    """Links a logical accounting bucket to one external ledger account."""

    __tablename__ = "account_mappings"
    __table_args__ = (
        UniqueConstraint("org_id", "provider", "bucket", name="uq_account_mappings_org_provider_bucket"),
        Index("ix_account_mappings_org_id", "org_id"),
    )

    org_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    bucket: Mapped[str] = mapped_column(String(64), nullable=False)
    external_account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))


__all__ = ["AccountMapping", "ExternalAccount", "IntegrationToken"]
