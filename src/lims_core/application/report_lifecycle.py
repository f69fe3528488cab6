"""Report Lifecycle Manager.

Drives reports through the verification state machine defined in
domain/report_workflow.py and records comments, attachments and result
edits. Each operation loads the report, applies a pure transition, writes
the new record and emits audit + notification.

Rejected operations raise DomainError before anything is written: an
illegal transition, or a second report for an invoice that has one. The
service turns those into a logged None.

A report's test list mirrors its invoice. Updates may edit results on the
entries the report holds, never add or drop entries.
"""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from lims_core.application.audit_recorder import AuditRecorder
from lims_core.config import Settings, get_settings
from lims_core.domain import report_workflow
from lims_core.domain.entities import (
    NotificationType,
    Report,
    ReportComment,
    ReportStatus,
    StatusChange,
)
from lims_core.domain.ports import EntityStore
from lims_core.domain.records import coerce_fields
from lims_core.domain.report_workflow import DomainError
from lims_core.domain.seeding import apply_result_edits, has_critical, seed_report_tests

logger = logging.getLogger(__name__)

# status and its history only change through the state machine
_PROTECTED = {"id", "created_at", "status_history"}
# the invoice link is fixed at creation
_FIXED = _PROTECTED | {"invoice_id"}


class ReportLifecycleManager:

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

    def get(self, report_id: str) -> Report | None:
        return self._store.get("reports", report_id)

    # -- create / update -----------------------------------------------------

    def create(self, draft: Mapping[str, Any], user_id: str | None = None) -> Report:
        """Create a report. One per invoice.

        For a known invoice the tests and parties come from the invoice, not
        the draft. Raises DomainError if the invoice already has a report.
        """
        now = self._clock()
        values = coerce_fields(Report, draft)
        for key in _PROTECTED | {"comments", "attachments"}:
            values.pop(key, None)
        values["created_by"] = values.get("created_by") or user_id or self._settings.system_user
        status = values.pop("status", None) or ReportStatus.PENDING
        tests = values.pop("tests", None) or ()

        invoice_id = values.get("invoice_id")
        existing = self._report_for(invoice_id) if invoice_id else None
        if existing is not None:
            raise DomainError(f"Invoice {invoice_id} already has report {existing.id}")
        invoice = self._store.get("invoices", invoice_id) if invoice_id else None
        if invoice is not None:
            catalog = {t.id: t for t in self._store.all("tests")}
            tests = seed_report_tests(invoice.tests, catalog)
            values.update(
                patient_id=invoice.patient_id,
                doctor_id=invoice.doctor_id,
                collection_center_id=invoice.collection_center_id,
            )

        report = Report(
            id=self._store.new_id(),
            created_at=now,
            tests=tests,
            status=status,
            status_history=(
                StatusChange(status=status, changed_by=values["created_by"], changed_at=now),
            ),
            **{**values, "critical_values": has_critical(tests)},
        )
        self._store.put("reports", report)
        self._recorder.record(
            "CREATE", "REPORTS", f"Created report for invoice: {report.invoice_id}",
            user_id=report.created_by,
            collection_center_id=report.collection_center_id,
        )
        return report

    def update(
        self,
        report_id: str,
        patch: Mapping[str, Any],
        user_id: str | None = None,
    ) -> Report | None:
        """Patch report fields. A differing status goes through the state machine.

        patch may carry "comment", used as the transition comment (and as
        the reason when the target is declined). "tests" edits results on
        existing entries only; entries for other test ids are ignored.
        """
        before = self._store.get("reports", report_id)
        if before is None:
            return None

        changes = coerce_fields(Report, {k: v for k, v in patch.items() if k != "tests"})
        for key in _FIXED:
            changes.pop(key, None)
        target = changes.pop("status", None)

        if "tests" in patch:
            tests, ignored = apply_result_edits(before.tests, patch.get("tests") or ())
            if ignored:
                logger.warning(
                    "Report %s: ignored results for tests not on the report: %s",
                    report_id, ", ".join(ignored),
                )
            changes["tests"] = tests
            changes["critical_values"] = has_critical(tests)

        report = replace(before, **changes)
        if target is not None and target != before.status:
            report = report_workflow.transition(
                report, target, self._actor(user_id), self._clock(),
                comment=str(patch.get("comment") or ""),
            )

        diff = self._recorder.diff(before, {f.name: getattr(report, f.name) for f in fields(report)})
        self._store.put("reports", report)

        self._recorder.record(
            "UPDATE", "REPORTS", f"Updated report with ID: {report_id}",
            user_id=user_id, changes=diff,
            collection_center_id=report.collection_center_id,
        )
        status_changed = report.status != before.status
        self._recorder.notify(
            "Report Updated",
            f"Report for invoice {report.invoice_id} updated. "
            f"{self._recorder.format_changes(diff)}".strip(),
            type=NotificationType.WARNING if status_changed else NotificationType.INFO,
            category="report",
        )
        return report

    # -- state machine -------------------------------------------------------

    def mark_in_progress(self, report_id: str, user_id: str | None = None) -> Report | None:
        return self._transition(
            report_id, user_id,
            lambda r, actor, at: report_workflow.advance(r, ReportStatus.IN_PROGRESS, actor, at),
        )

    def mark_completed(self, report_id: str, user_id: str | None = None) -> Report | None:
        return self._transition(
            report_id, user_id,
            lambda r, actor, at: report_workflow.advance(r, ReportStatus.COMPLETED, actor, at),
        )

    def verify(self, report_id: str, user_id: str | None = None) -> Report | None:
        return self._transition(report_id, user_id, report_workflow.verify)

    def decline(self, report_id: str, reason: str, user_id: str | None = None) -> Report | None:
        return self._transition(
            report_id, user_id,
            lambda r, actor, at: report_workflow.decline(r, actor, at, reason),
        )

    def undo(self, report_id: str, user_id: str | None = None) -> Report | None:
        return self._transition(report_id, user_id, report_workflow.undo)

    def lock(self, report_id: str, user_id: str | None = None) -> Report | None:
        return self._transition(report_id, user_id, report_workflow.lock)

    def _transition(
        self,
        report_id: str,
        user_id: str | None,
        step: Callable[[Report, str, datetime], Report],
    ) -> Report | None:
        before = self._store.get("reports", report_id)
        if before is None:
            return None
        report = step(before, self._actor(user_id), self._clock())
        self._store.put("reports", report)

        details = f"Report {report_id} status {before.status.value} → {report.status.value}"
        comment = report.status_history[-1].comment
        if comment:
            details += f" ({comment})"
        self._recorder.record(
            "STATUS", "REPORTS", details,
            user_id=user_id,
            collection_center_id=report.collection_center_id,
        )
        self._recorder.notify(
            "Report Status Changed",
            f"Report for invoice {report.invoice_id} is now {report.status.value}.",
            type=NotificationType.WARNING
            if report.status == ReportStatus.DECLINED else NotificationType.INFO,
            category="report",
        )
        logger.info("Report %s: %s → %s", report_id, before.status.value, report.status.value)
        return report

    # -- comments / attachments ----------------------------------------------

    def add_comment(
        self, report_id: str, comment: str, user_id: str | None = None,
    ) -> Report | None:
        report = self._store.get("reports", report_id)
        if report is None:
            return None
        entry = ReportComment(user_id=self._actor(user_id), comment=comment, created_at=self._clock())
        report = replace(report, comments=report.comments + (entry,))
        self._store.put("reports", report)
        self._recorder.record(
            "COMMENT", "REPORTS", f"Added comment to report with ID: {report_id}",
            user_id=user_id,
            collection_center_id=report.collection_center_id,
        )
        return report

    def add_attachment(
        self, report_id: str, file_id: str, user_id: str | None = None,
    ) -> Report | None:
        report = self._store.get("reports", report_id)
        if report is None:
            return None
        report = replace(report, attachments=report.attachments + (file_id,))
        self._store.put("reports", report)
        self._recorder.record(
            "ATTACHMENT", "REPORTS", f"Added attachment to report with ID: {report_id}",
            user_id=user_id,
            collection_center_id=report.collection_center_id,
        )
        return report

    def _actor(self, user_id: str | None) -> str:
        return user_id or self._settings.system_user

    def _report_for(self, invoice_id: str) -> Report | None:
        for report in self._store.all("reports"):
            if report.invoice_id == invoice_id:
                return report
        return None
