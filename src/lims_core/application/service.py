"""LabService — application-layer orchestrator.

The service connects the outside world to the managers. Every mutating
operation runs to completion in this order:

  1. Delegate to the owning manager (cascades, reconciliation, audit,
     notifications all happen inside).
  2. Flush dirty collections to persistence (fire-and-forget).
  3. Recompute the dashboard from the updated store.

A report operation the state machine rejects (a DomainError) writes
nothing: the service logs it, keeps the reason in last_error and returns
None, the same as an unknown id. Exposed operations do not raise for
business conditions.

Single writer, synchronous: nothing else runs between steps. The service
contains no domain logic. It does not check permissions; callers (or the
CommandGateway) do that before calling in.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from lims_core.application.audit_recorder import AuditRecorder
from lims_core.application.cascade_propagator import CascadePropagator
from lims_core.application.catalog import CatalogManager
from lims_core.application.directory import DirectoryManager
from lims_core.application.invoice_lifecycle import InvoiceLifecycleManager
from lims_core.application.payment_ledger import PaymentLedger
from lims_core.application.projections.dashboard import Dashboard, aggregate
from lims_core.application.report_lifecycle import ReportLifecycleManager
from lims_core.config import Settings, get_settings
from lims_core.domain.entities import (
    Invoice,
    LabTest,
    Notification,
    PaymentRecord,
    Report,
)
from lims_core.domain.ports import EntityStore
from lims_core.domain.report_workflow import DomainError

logger = logging.getLogger(__name__)


class LabService:

    def __init__(
        self,
        store: EntityStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.recorder = AuditRecorder(store, self._settings, self._clock)
        self.propagator = CascadePropagator(store, self.recorder)
        self.catalog = CatalogManager(store, self.recorder, self.propagator, self._clock)
        self.invoices = InvoiceLifecycleManager(store, self.recorder, self._settings, self._clock)
        self.payments = PaymentLedger(store, self.recorder, self._clock)
        self.reports = ReportLifecycleManager(store, self.recorder, self._settings, self._clock)
        self.directory = DirectoryManager(store, self.recorder, self._settings, self._clock)
        self.last_error: str | None = None

        self._dashboard = self.get_dashboard()

    # -- dashboard -----------------------------------------------------------

    @property
    def dashboard(self) -> Dashboard:
        """Dashboard as of the end of the last operation."""
        return self._dashboard

    def get_dashboard(self, center_id: str | None = None) -> Dashboard:
        return aggregate(
            self.store.all("patients"),
            self.store.all("invoices"),
            self.store.all("reports"),
            self.store.all("stock"),
            self.store.all("audit_logs"),
            self.store.all("expenses"),
            center_id,
            now=self._clock(),
            recent_activity_limit=self._settings.recent_activity_limit,
            recent_window_days=self._settings.recent_window_days,
        )

    def refresh(self) -> Dashboard:
        """Flush pending writes and recompute the dashboard."""
        self.store.flush()
        self._dashboard = self.get_dashboard()
        logger.debug("Dashboard refreshed: %d invoice(s)", self._dashboard.total_invoices)
        return self._dashboard

    def _done(self, result: Any) -> Any:
        self.last_error = None
        self.refresh()
        return result

    def _attempt(self, operation: Callable[[], Any]) -> Any:
        try:
            result = operation()
        except DomainError as e:
            logger.warning("Rejected: %s", e)
            self.last_error = str(e)
            return None
        return self._done(result)

    # -- tests ---------------------------------------------------------------

    def create_test(self, draft: Mapping[str, Any], user_id: str | None = None) -> LabTest:
        return self._done(self.catalog.create(draft, user_id))

    def update_test(
        self, test_id: str, patch: Mapping[str, Any], user_id: str | None = None,
    ) -> LabTest | None:
        return self._done(self.catalog.update(test_id, patch, user_id))

    def delete_test(self, test_id: str, user_id: str | None = None) -> bool:
        return self._done(self.catalog.delete(test_id, user_id))

    # -- invoices ------------------------------------------------------------

    def create_invoice(self, draft: Mapping[str, Any], user_id: str | None = None) -> Invoice:
        return self._done(self.invoices.create(draft, user_id))

    def update_invoice(
        self, invoice_id: str, patch: Mapping[str, Any], user_id: str | None = None,
    ) -> Invoice | None:
        return self._done(self.invoices.update(invoice_id, patch, user_id))

    def delete_invoice(self, invoice_id: str, user_id: str | None = None) -> bool:
        return self._done(self.invoices.delete(invoice_id, user_id))

    def record_payment(
        self,
        invoice_id: str,
        payment: PaymentRecord | Mapping[str, Any],
        user_id: str | None = None,
    ) -> Invoice | None:
        return self._done(self.payments.record_payment(invoice_id, payment, user_id))

    # -- reports -------------------------------------------------------------

    def create_report(self, draft: Mapping[str, Any], user_id: str | None = None) -> Report | None:
        return self._attempt(lambda: self.reports.create(draft, user_id))

    def update_report(
        self, report_id: str, patch: Mapping[str, Any], user_id: str | None = None,
    ) -> Report | None:
        return self._attempt(lambda: self.reports.update(report_id, patch, user_id))

    def mark_in_progress(self, report_id: str, user_id: str | None = None) -> Report | None:
        return self._attempt(lambda: self.reports.mark_in_progress(report_id, user_id))

    def mark_completed(self, report_id: str, user_id: str | None = None) -> Report | None:
        return self._attempt(lambda: self.reports.mark_completed(report_id, user_id))

    def verify_report(self, report_id: str, user_id: str | None = None) -> Report | None:
        return self._attempt(lambda: self.reports.verify(report_id, user_id))

    def decline_report(
        self, report_id: str, reason: str, user_id: str | None = None,
    ) -> Report | None:
        return self._attempt(lambda: self.reports.decline(report_id, reason, user_id))

    def undo_report(self, report_id: str, user_id: str | None = None) -> Report | None:
        return self._attempt(lambda: self.reports.undo(report_id, user_id))

    def lock_report(self, report_id: str, user_id: str | None = None) -> Report | None:
        return self._attempt(lambda: self.reports.lock(report_id, user_id))

    def add_report_comment(
        self, report_id: str, comment: str, user_id: str | None = None,
    ) -> Report | None:
        return self._done(self.reports.add_comment(report_id, comment, user_id))

    def add_report_attachment(
        self, report_id: str, file_id: str, user_id: str | None = None,
    ) -> Report | None:
        return self._done(self.reports.add_attachment(report_id, file_id, user_id))

    # -- directory -----------------------------------------------------------

    def create_record(
        self, collection: str, draft: Mapping[str, Any], user_id: str | None = None,
    ) -> Any:
        return self._done(self.directory.create(collection, draft, user_id))

    def update_record(
        self,
        collection: str,
        record_id: str,
        patch: Mapping[str, Any],
        user_id: str | None = None,
    ) -> Any | None:
        return self._done(self.directory.update(collection, record_id, patch, user_id))

    def delete_record(self, collection: str, record_id: str, user_id: str | None = None) -> bool:
        return self._done(self.directory.delete(collection, record_id, user_id))

    # -- notifications -------------------------------------------------------

    def notifications(self, unread_only: bool = False) -> list[Notification]:
        items = self.store.all("notifications")
        return [n for n in items if not n.is_read] if unread_only else items

    def mark_notification_read(self, notification_id: str) -> Notification | None:
        return self._done(self.recorder.mark_read(notification_id))

    def mark_all_notifications_read(self) -> int:
        return self._done(self.recorder.mark_all_read())

    def delete_notification(self, notification_id: str) -> bool:
        return self._done(self.recorder.delete_notification(notification_id))
