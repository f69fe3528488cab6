"""Cascade Propagator — applies test-catalog changes to dependent records.

Invoked by the Test Catalog Manager after a test is updated or deleted.
The rewriting rules are the pure functions in domain/cascade.py; this
component loads the dependents, writes back the changed ones, and audits.

Orphaned references are prevented here rather than detected later, so the
propagator never raises a data-integrity error.
"""

from __future__ import annotations

import logging

from lims_core.application.audit_recorder import AuditRecorder
from lims_core.domain.cascade import CascadeResult, propagate_test_delete, propagate_test_update
from lims_core.domain.entities import LabTest, NotificationType
from lims_core.domain.ports import EntityStore

logger = logging.getLogger(__name__)


class CascadePropagator:

    def __init__(self, store: EntityStore, recorder: AuditRecorder) -> None:
        self._store = store
        self._recorder = recorder

    def on_test_updated(self, test: LabTest, user_id: str | None = None) -> CascadeResult:
        """Refresh name/range/unit snapshots wherever test is referenced.

        One audit entry per affected report.
        """
        result = propagate_test_update(
            test, self._store.all("invoices"), self._store.all("reports"),
        )
        for invoice in result.invoices:
            self._store.put("invoices", invoice)
        for report in result.reports:
            self._store.put("reports", report)
            self._recorder.record(
                "UPDATE", "REPORTS",
                f"Refreshed test '{test.name}' on report {report.id} after catalog update",
                user_id=user_id,
                collection_center_id=report.collection_center_id,
            )
        logger.info(
            "Test %s update cascaded to %d invoices, %d reports",
            test.id, len(result.invoices), len(result.reports),
        )
        return result

    def on_test_deleted(
        self, test_id: str, test_name: str = "", user_id: str | None = None,
    ) -> CascadeResult:
        """Remove test_id from every invoice and report that references it.

        Unaffected records are not written and not audited. One summary
        warning notification is emitted after the sweep if anything changed.
        """
        result = propagate_test_delete(
            test_id, self._store.all("invoices"), self._store.all("reports"),
        )
        label = test_name or test_id
        for invoice in result.invoices:
            self._store.put("invoices", invoice)
            self._recorder.record(
                "UPDATE", "INVOICES",
                f"Removed deleted test '{label}' from invoice {invoice.invoice_number}; "
                f"total {invoice.total_amount}, final {invoice.final_amount}",
                user_id=user_id,
                collection_center_id=invoice.collection_center_id,
            )
        for report in result.reports:
            self._store.put("reports", report)
            self._recorder.record(
                "UPDATE", "REPORTS",
                f"Removed deleted test '{label}' from report {report.id}",
                user_id=user_id,
                collection_center_id=report.collection_center_id,
            )

        if not result.is_empty:
            self._recorder.notify(
                "Dependent Records Updated",
                f"Test {label} was deleted: {len(result.invoices)} invoice(s) and "
                f"{len(result.reports)} report(s) were updated.",
                type=NotificationType.WARNING,
            )
        logger.info(
            "Test %s delete cascaded to %d invoices, %d reports",
            test_id, len(result.invoices), len(result.reports),
        )
        return result
