"""ORM models package."""
from .alert_event import AlertEvent, AlertKind, OrgContact
from .audit_log import AuditLog
from .base import Base, CreatedAtMixin, IdMixin, TimestampMixin
from .diagnostics_status import DiagnosticsStatus, HealthStatus
from .expense import Expense
from .integration import AccountMapping, ExternalAccount, IntegrationToken
from .journal_export import JournalExport, JournalExportKind, JournalExportStatus
from .organization import Organization, OrganizationStatus
from .sale import SALE_MUTABLE_FIELDS, ExtraCost, Sale

__all__ = [
    "AccountMapping",
    "AlertEvent",
    "AlertKind",
    "AuditLog",
    "Base",
    "CreatedAtMixin",
    "DiagnosticsStatus",
    "Expense",
    "ExternalAccount",
    "ExtraCost",
    "HealthStatus",
    "IdMixin",
    "IntegrationToken",
    "JournalExport",
    "JournalExportKind",
    "JournalExportStatus",
    "OrgContact",
    "Organization",
    "OrganizationStatus",
    "SALE_MUTABLE_FIELDS",
    "Sale",
    "TimestampMixin",
]
