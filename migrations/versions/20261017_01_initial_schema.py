"""Initial schema for organizations, transactions, ledger mappings and diagnostics."""
from __future__ import annotations

from collections.abc import Iterable

import sqlalchemy as sa
from alembic import op

revision = "20261017_01"
down_revision = None
branch_labels = None
depends_on: Iterable[str] | None = None


def _drop_enum(name: str) -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute(sa.text(f"DROP TYPE IF EXISTS {name}"))


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _org_fk() -> sa.Column:
    return sa.Column(
        "org_id",
        sa.String(length=64),
        sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:  # noqa: D401
    """Create initial tables and constraints."""

    organization_status = sa.Enum("ACTIVE", "SUSPENDED", name="organization_status")
    journal_export_kind = sa.Enum("journal", "reversing_test", name="journal_export_kind")
    journal_export_status = sa.Enum("preview", "committed", "error", name="journal_export_status")
    health_status = sa.Enum("green", "yellow", "red", name="health_status")
    alert_kind = sa.Enum("degraded", "recovered", name="alert_kind")

    for enum_type in (organization_status, journal_export_kind, journal_export_status, health_status, alert_kind):
        enum_type.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "organizations",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", organization_status, nullable=False, server_default="ACTIVE"),
        *_timestamps(),
    )

    op.create_table(
        "sales",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _org_fk(),
        sa.Column("source_label", sa.String(length=64), nullable=False),
        sa.Column("marketplace", sa.String(length=64), nullable=False),
        sa.Column("marketplace_order_id", sa.String(length=128)),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("title", sa.String(length=255)),
        sa.Column("sku", sa.String(length=128)),
        sa.Column("item_ref", sa.String(length=128)),
        sa.Column("buyer_state", sa.String(length=32)),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("sale_price_cents", sa.BigInteger(), nullable=False),
        sa.Column("shipping_charged_cents", sa.BigInteger(), nullable=False),
        sa.Column("shipping_cost_cents", sa.BigInteger(), nullable=False),
        sa.Column("platform_fees_cents", sa.BigInteger(), nullable=False),
        sa.Column("discounts_cents", sa.BigInteger(), nullable=False),
        sa.Column("refunds_cents", sa.BigInteger(), nullable=False),
        sa.Column("chargebacks_cents", sa.BigInteger(), nullable=False),
        sa.Column("tax_collected_cents", sa.BigInteger(), nullable=False),
        sa.Column("tax_remitted_by_marketplace", sa.Boolean(), nullable=False),
        sa.Column("purchase_price_cents", sa.BigInteger(), nullable=False),
        sa.Column("locked_cogs_cents", sa.BigInteger(), nullable=False),
        sa.Column("payout_at", sa.DateTime(timezone=True)),
        sa.Column("payout_amount_cents", sa.BigInteger()),
        sa.Column("raw_payload", sa.JSON()),
        sa.Column("row_hash", sa.String(length=64), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "row_hash", name="uq_sales_org_row_hash"),
    )
    op.create_index("ix_sales_org_id", "sales", ["org_id"])
    op.create_index("ix_sales_sold_at", "sales", ["sold_at"])

    op.create_table(
        "sale_extra_costs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _org_fk(),
        sa.Column("sale_id", sa.String(length=36), sa.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("incurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("note", sa.String(length=255)),
        *_timestamps(),
    )
    op.create_index("ix_sale_extra_costs_org_id", "sale_extra_costs", ["org_id"])
    op.create_index("ix_sale_extra_costs_sale_id", "sale_extra_costs", ["sale_id"])

    op.create_table(
        "expenses",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _org_fk(),
        sa.Column("source_label", sa.String(length=64), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("category", sa.String(length=128), nullable=False),
        sa.Column("vendor", sa.String(length=255)),
        sa.Column("method", sa.String(length=64)),
        sa.Column("note", sa.String(length=512)),
        sa.Column("mileage_miles", sa.Numeric(12, 2)),
        sa.Column("vehicle_rate", sa.Numeric(8, 4)),
        sa.Column("raw_payload", sa.JSON()),
        sa.Column("row_hash", sa.String(length=64), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "row_hash", name="uq_expenses_org_row_hash"),
    )
    op.create_index("ix_expenses_org_id", "expenses", ["org_id"])
    op.create_index("ix_expenses_occurred_at", "expenses", ["occurred_at"])

    op.create_table(
        "integration_tokens",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _org_fk(),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("realm_id", sa.String(length=64)),
        sa.Column("company_name", sa.String(length=255)),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "provider", name="uq_integration_tokens_org_provider"),
    )
    op.create_index("ix_integration_tokens_org_id", "integration_tokens", ["org_id"])

    op.create_table(
        "external_accounts_cache",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _org_fk(),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255)),
        sa.Column("account_type", sa.String(length=64)),
        sa.Column("account_subtype", sa.String(length=64)),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("refreshed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("org_id", "provider", "external_id", name="uq_external_accounts_org_provider_ext"),
    )
    op.create_index("ix_external_accounts_cache_org_id", "external_accounts_cache", ["org_id"])

    op.create_table(
        "account_mappings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _org_fk(),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("bucket", sa.String(length=64), nullable=False),
        sa.Column("external_account_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255)),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "provider", "bucket", name="uq_account_mappings_org_provider_bucket"),
    )
    op.create_index("ix_account_mappings_org_id", "account_mappings", ["org_id"])

    op.create_table(
        "journal_exports",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _org_fk(),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("kind", journal_export_kind, nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("status", journal_export_status, nullable=False),
        sa.Column("preview", sa.JSON()),
        sa.Column("payload", sa.JSON()),
        sa.Column("fingerprint", sa.String(length=64)),
        sa.Column("external_id", sa.String(length=64)),
        sa.Column("error", sa.Text()),
        *_timestamps(),
    )
    op.create_index("ix_journal_exports_org_id", "journal_exports", ["org_id"])
    op.create_index("ix_journal_exports_fingerprint", "journal_exports", ["fingerprint"])
    op.create_index(
        "uq_journal_exports_active_fingerprint",
        "journal_exports",
        ["org_id", "provider", "fingerprint"],
        unique=True,
        postgresql_where=sa.text("status <> 'error'"),
        sqlite_where=sa.text("status <> 'error'"),
    )

    op.create_table(
        "diagnostics_status",
        sa.Column(
            "org_id",
            sa.String(length=64),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("overall", health_status, nullable=False),
        sa.Column("connected", sa.Boolean(), nullable=False),
        sa.Column("mappings_complete", sa.Boolean(), nullable=False),
        sa.Column("warnings_count", sa.Integer(), nullable=False),
        sa.Column("last_test_forward_id", sa.String(length=64)),
        sa.Column("last_test_reverse_id", sa.String(length=64)),
        sa.Column("last_verified_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "alert_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _org_fk(),
        sa.Column("prev_status", health_status),
        sa.Column("next_status", health_status, nullable=False),
        sa.Column("kind", alert_kind, nullable=False),
        sa.Column("recipients", sa.JSON()),
        sa.Column("channel_results", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_alert_events_org_id", "alert_events", ["org_id"])

    op.create_table(
        "org_contacts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _org_fk(),
        sa.Column("email", sa.String(length=320)),
        sa.Column("webhook_url", sa.String(length=512)),
        sa.Column("notify", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_org_contacts_org_id", "org_contacts", ["org_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _org_fk(),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("resource_type", sa.String(length=128), nullable=False),
        sa.Column("resource_id", sa.String(length=128)),
        sa.Column("payload", sa.JSON()),
        *_timestamps(),
    )
    op.create_index("ix_audit_logs_org_id", "audit_logs", ["org_id"])


def downgrade() -> None:  # noqa: D401
    """Drop all organization-scoped tables."""

    for index_name, table_name in [
        ("ix_audit_logs_org_id", "audit_logs"),
        ("ix_org_contacts_org_id", "org_contacts"),
        ("ix_alert_events_org_id", "alert_events"),
        ("uq_journal_exports_active_fingerprint", "journal_exports"),
        ("ix_journal_exports_fingerprint", "journal_exports"),
        ("ix_journal_exports_org_id", "journal_exports"),
        ("ix_account_mappings_org_id", "account_mappings"),
        ("ix_external_accounts_cache_org_id", "external_accounts_cache"),
        ("ix_integration_tokens_org_id", "integration_tokens"),
        ("ix_expenses_occurred_at", "expenses"),
        ("ix_expenses_org_id", "expenses"),
        ("ix_sale_extra_costs_sale_id", "sale_extra_costs"),
        ("ix_sale_extra_costs_org_id", "sale_extra_costs"),
        ("ix_sales_sold_at", "sales"),
        ("ix_sales_org_id", "sales"),
    ]:
        op.drop_index(index_name, table_name=table_name)

    for table_name in [
        "audit_logs",
        "org_contacts",
        "alert_events",
        "diagnostics_status",
        "journal_exports",
        "account_mappings",
        "external_accounts_cache",
        "integration_tokens",
        "expenses",
        "sale_extra_costs",
        "sales",
        "organizations",
    ]:
        op.drop_table(table_name)

    for enum_name in [
        "alert_kind",
        "health_status",
        "journal_export_status",
        "journal_export_kind",
        "organization_status",
    ]:
        _drop_enum(enum_name)
