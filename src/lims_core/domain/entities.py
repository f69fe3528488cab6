"""Laboratory entity value objects.

Entities are immutable records. Every mutation produces a new record via
dataclasses.replace() and the store swaps it in place, so no caller ever
observes a half-applied change.

This module defines:
- Master catalog: LabTest, ParameterTemplate.
- Billing: Invoice, InvoiceTest (line item), PaymentRecord.
- Results: Report, ReportTest, ParameterResult, StatusChange, ReportComment.
- Trail: AuditLog, Notification.
- Directory records used by the dashboard: Patient, Doctor, StockItem, Expense.

Money (prices, amounts, discounts) is Decimal. Timestamps are tz-aware UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceStatus(Enum):
    DRAFT = "draft"
    FINALIZED = "finalized"
    DUE = "due"
    OVERDUE = "overdue"
    PARTIAL = "partial"
    PAID = "paid"
    CANCELLED = "cancelled"


class ReportStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"
    LOCKED = "locked"
    DECLINED = "declined"


class NotificationType(Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ---------------------------------------------------------------------------
# Test catalog
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParameterTemplate:
    """A named sub-measurement of a test (e.g. Hemoglobin within a CBC)."""
    name: str
    normal_range: str = ""
    unit: str = ""


@dataclass(frozen=True)
class LabTest:
    """Master catalog record."""
    id: str
    name: str
    category: str = ""
    price: Decimal = Decimal("0")
    sample_type: str = ""
    reference_range: str = ""
    unit: str = ""
    parameters: tuple[ParameterTemplate, ...] = ()
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InvoiceTest:
    """Line item: test reference, name snapshot, billed unit price, quantity."""
    test_id: str
    test_name: str
    price: Decimal
    quantity: int = 1


@dataclass(frozen=True)
class PaymentRecord:
    amount: Decimal
    date: datetime = field(default_factory=utcnow)
    method: str = "cash"
    received_by: str = ""
    note: str = ""


@dataclass(frozen=True)
class Invoice:
    id: str
    invoice_number: str
    patient_id: str
    doctor_id: str = ""
    tests: tuple[InvoiceTest, ...] = ()
    total_amount: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    final_amount: Decimal = Decimal("0")
    amount_paid: Decimal = Decimal("0")
    due_date: datetime | None = None
    payment_history: tuple[PaymentRecord, ...] = ()
    status: InvoiceStatus = InvoiceStatus.DUE
    is_locked: bool = False
    created_at: datetime = field(default_factory=utcnow)
    created_by: str = ""
    collection_center_id: str | None = None
    notes: str = ""
    payment_method: str = ""

    @property
    def test_ids(self) -> set[str]:
        return {t.test_id for t in self.tests}

    @property
    def balance(self) -> Decimal:
        return self.final_amount - self.amount_paid


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParameterResult:
    """Per-report instance of a ParameterTemplate."""
    name: str
    result: str = ""
    normal_range: str = ""
    unit: str = ""
    is_abnormal: bool = False
    is_critical: bool = False


@dataclass(frozen=True)
class ReportTest:
    test_id: str
    test_name: str
    result: str = ""
    normal_range: str = ""
    unit: str = ""
    is_abnormal: bool = False
    is_critical: bool = False
    critical_comment: str = ""
    parameters: tuple[ParameterResult, ...] = ()


@dataclass(frozen=True)
class StatusChange:
    """One entry of a report's append-only status history."""
    status: ReportStatus
    changed_by: str
    changed_at: datetime
    comment: str = ""


@dataclass(frozen=True)
class ReportComment:
    user_id: str
    comment: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Report:
    id: str
    invoice_id: str
    patient_id: str
    doctor_id: str = ""
    tests: tuple[ReportTest, ...] = ()
    status: ReportStatus = ReportStatus.PENDING
    status_history: tuple[StatusChange, ...] = ()
    comments: tuple[ReportComment, ...] = ()
    attachments: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    created_by: str = ""
    verified_by: str | None = None
    verified_at: datetime | None = None
    declined_by: str | None = None
    declined_at: datetime | None = None
    decline_reason: str | None = None
    interpretation: str = ""
    critical_values: bool = False
    collection_center_id: str | None = None

    @property
    def test_ids(self) -> set[str]:
        return {t.test_id for t in self.tests}


# ---------------------------------------------------------------------------
# Audit trail and notifications
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AuditLog:
    id: str
    user_id: str
    action: str
    module: str
    details: str
    timestamp: datetime = field(default_factory=utcnow)
    collection_center_id: str | None = None


@dataclass(frozen=True)
class Notification:
    id: str
    type: NotificationType
    category: str
    title: str
    message: str
    created_at: datetime = field(default_factory=utcnow)
    is_read: bool = False
    priority: Priority = Priority.MEDIUM


# ---------------------------------------------------------------------------
# Directory records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Patient:
    id: str
    name: str
    age: int | None = None
    gender: str = ""
    contact: str = ""
    address: str = ""
    created_at: datetime = field(default_factory=utcnow)
    created_by: str = ""
    collection_center_id: str | None = None


@dataclass(frozen=True)
class Doctor:
    id: str
    name: str
    specialty: str = ""
    contact: str = ""
    commission_percent: float = 0.0
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StockItem:
    id: str
    name: str
    category: str = ""
    current_stock: float = 0
    reorder_level: float = 0
    unit: str = ""
    cost_per_unit: Decimal = Decimal("0")
    created_at: datetime = field(default_factory=utcnow)
    collection_center_id: str | None = None


@dataclass(frozen=True)
class Expense:
    id: str
    category: str
    amount: Decimal
    description: str = ""
    payment_method: str = ""
    date: datetime = field(default_factory=utcnow)
    created_by: str = ""
    collection_center_id: str | None = None


# Collection name → record type. Order is the load order at startup.
COLLECTIONS: dict[str, type] = {
    "patients": Patient,
    "doctors": Doctor,
    "tests": LabTest,
    "invoices": Invoice,
    "reports": Report,
    "stock": StockItem,
    "expenses": Expense,
    "audit_logs": AuditLog,
    "notifications": Notification,
}
