"""Seed script for a demo organization with contacts and a partial bucket mapping."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ledgerbridge.core.config import get_settings
from ledgerbridge.db.session import engine, session_scope
from ledgerbridge.models import (
    AccountMapping,
    Base,
    OrgContact,
    Organization,
    OrganizationStatus,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_ORG_ID = "demo-org"

# Required buckets except ``clearing`` so the demo starts in a red, actionable state.
DEMO_MAPPINGS = [
    ("revenue", "1", "Sales of Product Income"),
    ("shipping_income", "2", "Shipping Income"),
    ("sales_tax_liability", "3", "Sales Tax Payable"),
    ("fees_expense", "4", "Merchant Fees"),
    ("refunds_contra", "5", "Refunds and Allowances"),
    ("chargebacks_expense", "6", "Chargebacks"),
    ("shipping_cost", "7", "Shipping and Delivery"),
]


def seed(session: Session) -> None:
    """Seed the demo organization, one alert contact and most bucket mappings."""

    provider = get_settings().ledger_provider

    organization = session.get(Organization, DEMO_ORG_ID)
    if organization is None:
        organization = Organization(id=DEMO_ORG_ID, name="Demo Reseller", status=OrganizationStatus.ACTIVE)
        session.add(organization)
        session.flush()
        logger.info("Created organization %s", DEMO_ORG_ID)
    else:
        logger.info("Organization %s already exists", DEMO_ORG_ID)

    if not session.query(OrgContact).filter(OrgContact.org_id == DEMO_ORG_ID).count():
        session.add(OrgContact(org_id=DEMO_ORG_ID, email="owner@demo.local", notify=True))
        logger.info("Added contact owner@demo.local")

    existing = {
        mapping.bucket
        for mapping in session.query(AccountMapping).filter(
            AccountMapping.org_id == DEMO_ORG_ID, AccountMapping.provider == provider
        )
    }
    for bucket, account_id, name in DEMO_MAPPINGS:
        if bucket in existing:
            logger.info("Mapping %s already exists", bucket)
            continue
        session.add(
            AccountMapping(
                org_id=DEMO_ORG_ID,
                provider=provider,
                bucket=bucket,
                external_account_id=account_id,
                name=name,
            )
        )
        logger.info("Mapped %s to account %s", bucket, account_id)


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with session_scope() as session:
        seed(session)


if __name__ == "__main__":
    main()
