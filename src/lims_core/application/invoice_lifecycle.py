"""Invoice Lifecycle Manager.

Creates, updates and deletes invoices while keeping the linked report in
step:

- create: the invoice and exactly one pending report are built first and
  only then written, so no caller sees one without the other.
- update: totals are recomputed whenever line items, discount or amounts
  are touched; if the set of billed tests changes, the report's result
  sheet is reconciled (kept / seeded / dropped) and a completed or
  verified report goes back to pending. A payment-driven status (due,
  overdue, partial, paid) is re-derived when the final amount moves.
- delete: the invoice and its report leave together.
"""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from lims_core.application.audit_recorder import AuditRecorder
from lims_core.config import Settings, get_settings
from lims_core.domain.billing import with_payment_status, with_totals
from lims_core.domain.entities import (
    Invoice,
    NotificationType,
    Priority,
    Report,
    ReportStatus,
    StatusChange,
)
from lims_core.domain.ports import EntityStore
from lims_core.domain.records import coerce_fields
from lims_core.domain.report_workflow import reset_for_test_change
from lims_core.domain.seeding import has_critical, reconcile_report_tests, seed_report_tests

logger = logging.getLogger(__name__)

_PROTECTED = {"id", "created_at"}
_AMOUNT_FIELDS = {"tests", "discount", "total_amount", "final_amount"}
_SENSITIVE_FIELDS = {"final_amount", "status", "amount_paid"}


class InvoiceLifecycleManager:

    def __init__(
        self,
        store: EntityStore,
        recorder: AuditRecorder,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._recorder = recorder
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, invoice_id: str) -> Invoice | None:
        return self._store.get("invoices", invoice_id)

    def report_for(self, invoice_id: str) -> Report | None:
        for report in self._store.all("reports"):
            if report.invoice_id == invoice_id:
                return report
        return None

    # -- create --------------------------------------------------------------

    def create(self, draft: Mapping[str, Any], user_id: str | None = None) -> Invoice:
        now = self._clock()
        values = coerce_fields(Invoice, draft)
        for key in _PROTECTED:
            values.pop(key, None)

        if values.get("due_date") is None:
            values["due_date"] = now
        if not values.get("invoice_number"):
            values["invoice_number"] = self._store.next_invoice_number(
                self._settings.invoice_number_prefix,
                self._settings.invoice_number_width,
            )
        values["created_by"] = values.get("created_by") or user_id or self._settings.system_user
        if values.get("status") is None:
            values.pop("status", None)

        invoice = Invoice(id=self._store.new_id(), created_at=now, **values)
        invoice = with_totals(invoice, values.get("total_amount"))

        catalog = {t.id: t for t in self._store.all("tests")}
        report = Report(
            id=self._store.new_id(),
            invoice_id=invoice.id,
            patient_id=invoice.patient_id,
            doctor_id=invoice.doctor_id,
            tests=seed_report_tests(invoice.tests, catalog),
            status=ReportStatus.PENDING,
            status_history=(
                StatusChange(
                    status=ReportStatus.PENDING,
                    changed_by=invoice.created_by,
                    changed_at=now,
                ),
            ),
            created_at=now,
            created_by=invoice.created_by,
            collection_center_id=invoice.collection_center_id,
        )

        self._store.put("invoices", invoice)
        self._store.put("reports", report)

        self._recorder.record(
            "CREATE", "INVOICES",
            f"Created invoice {invoice.invoice_number} with {len(invoice.tests)} test(s)",
            user_id=invoice.created_by,
            collection_center_id=invoice.collection_center_id,
        )
        self._recorder.record(
            "CREATE", "REPORTS",
            f"Created report for invoice: {invoice.id}",
            user_id=invoice.created_by,
            collection_center_id=invoice.collection_center_id,
        )
        self._recorder.notify(
            "New Invoice",
            f"Invoice #{invoice.invoice_number} for patient {invoice.patient_id} created.",
        )
        logger.info("Created invoice %s with report %s", invoice.invoice_number, report.id)
        return invoice

    # -- update --------------------------------------------------------------

    def update(
        self, invoice_id: str, patch: Mapping[str, Any], user_id: str | None = None,
    ) -> Invoice | None:
        before = self._store.get("invoices", invoice_id)
        if before is None:
            return None

        changes = coerce_fields(Invoice, patch)
        for key in _PROTECTED:
            changes.pop(key, None)
        invoice = replace(before, **changes)

        if _AMOUNT_FIELDS & changes.keys():
            if "total_amount" in changes:
                total = changes["total_amount"]
            elif "tests" in changes:
                total = None
            else:
                total = before.total_amount
            invoice = with_totals(invoice, total)
            if "status" not in changes and invoice.final_amount != before.final_amount:
                invoice = with_payment_status(invoice, self._clock())

        diff = self._recorder.diff(before, {f.name: getattr(invoice, f.name) for f in fields(invoice)})
        self._store.put("invoices", invoice)

        added: list[str] = []
        removed: list[str] = []
        if before.test_ids != invoice.test_ids:
            added, removed = self._reconcile_report(invoice, user_id)
        else:
            self._sync_report_parties(invoice)

        details = f"Updated invoice with ID: {invoice_id}"
        if removed:
            details += f". Removed tests: {', '.join(removed)}"
        self._recorder.record(
            "UPDATE", "INVOICES", details,
            user_id=user_id, changes=diff,
            collection_center_id=invoice.collection_center_id,
        )

        message = f"Invoice #{invoice.invoice_number} updated."
        if added or removed:
            message += f" {len(added)} test(s) added, {len(removed)} test(s) removed."
        sensitive = any(c.field in _SENSITIVE_FIELDS for c in diff)
        self._recorder.notify(
            "Invoice Updated",
            message,
            type=NotificationType.WARNING if sensitive else NotificationType.INFO,
        )
        return invoice

    def _reconcile_report(
        self, invoice: Invoice, user_id: str | None,
    ) -> tuple[list[str], list[str]]:
        report = self.report_for(invoice.id)
        if report is None:
            logger.warning("Invoice %s has no linked report to reconcile", invoice.id)
            return [], []

        catalog = {t.id: t for t in self._store.all("tests")}
        tests, added, removed = reconcile_report_tests(report.tests, invoice.tests, catalog)
        comment = (
            f"Test list updated from invoice: added {', '.join(added) or 'none'}; "
            f"removed {', '.join(removed) or 'none'}"
        )
        previous_status = report.status
        report = replace(
            report,
            tests=tests,
            critical_values=has_critical(tests),
            patient_id=invoice.patient_id,
            doctor_id=invoice.doctor_id,
        )
        report = reset_for_test_change(
            report, user_id or self._settings.system_user, self._clock(), comment,
        )
        self._store.put("reports", report)

        self._recorder.record(
            "UPDATE", "REPORTS",
            f"Reconciled report {report.id} with invoice {invoice.invoice_number}: {comment}",
            user_id=user_id,
            collection_center_id=report.collection_center_id,
        )
        logger.info(
            "Reconciled report %s (+%d/-%d tests, %s → %s)",
            report.id, len(added), len(removed), previous_status.value, report.status.value,
        )
        return added, removed

    def _sync_report_parties(self, invoice: Invoice) -> None:
        report = self.report_for(invoice.id)
        if report is None:
            return
        if (report.patient_id, report.doctor_id) != (invoice.patient_id, invoice.doctor_id):
            self._store.put(
                "reports",
                replace(report, patient_id=invoice.patient_id, doctor_id=invoice.doctor_id),
            )

    # -- delete --------------------------------------------------------------

    def delete(self, invoice_id: str, user_id: str | None = None) -> bool:
        """Delete an invoice together with its report. Unknown ids are a no-op."""
        invoice = self._store.get("invoices", invoice_id)
        if invoice is None:
            return False

        self._store.remove("invoices", invoice_id)
        for report in self._store.all("reports"):
            if report.invoice_id == invoice_id:
                self._store.remove("reports", report.id)

        self._recorder.record(
            "DELETE", "INVOICES", f"Deleted invoice with ID: {invoice_id}",
            user_id=user_id,
            collection_center_id=invoice.collection_center_id,
        )
        self._recorder.notify(
            "Invoice Deleted",
            f"Invoice #{invoice.invoice_number} and its report were deleted.",
            type=NotificationType.WARNING,
            priority=Priority.HIGH,
        )
        return True
