"""Test-catalog cascade.

When a master test changes or disappears, every invoice line item and
report entry referencing it must follow. These functions compute the
rewritten records; they return only the records that actually changed,
so callers can skip no-op writes and audit entries.

Update rules:
- Invoice line items: only the name snapshot follows. Billed prices are
  historical facts and never change retroactively.
- Report entries: name, normal range and unit follow; parameter
  sub-results are reconciled (see seeding.reconcile_parameters). Entered
  results and flags are never touched.

Delete rules:
- Matching line items are removed and invoice totals recomputed with the
  discount unchanged.
- Matching report entries are removed and critical_values recomputed.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable

from lims_core.domain.billing import with_totals
from lims_core.domain.entities import Invoice, LabTest, Report
from lims_core.domain.seeding import has_critical, reconcile_parameters


@dataclass(frozen=True)
class CascadeResult:
    """Records rewritten by a cascade (changed records only)."""
    invoices: tuple[Invoice, ...] = ()
    reports: tuple[Report, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.invoices and not self.reports


def rename_line_items(invoice: Invoice, test: LabTest) -> Invoice:
    if test.id not in invoice.test_ids:
        return invoice
    return replace(
        invoice,
        tests=tuple(
            replace(item, test_name=test.name) if item.test_id == test.id else item
            for item in invoice.tests
        ),
    )


def refresh_report_tests(report: Report, test: LabTest) -> Report:
    if test.id not in report.test_ids:
        return report
    return replace(
        report,
        tests=tuple(
            replace(
                entry,
                test_name=test.name,
                normal_range=test.reference_range,
                unit=test.unit,
                parameters=reconcile_parameters(entry.parameters, test.parameters),
            )
            if entry.test_id == test.id
            else entry
            for entry in report.tests
        ),
    )


def propagate_test_update(
    test: LabTest,
    invoices: Iterable[Invoice],
    reports: Iterable[Report],
) -> CascadeResult:
    changed_invoices = [
        updated for invoice in invoices
        if (updated := rename_line_items(invoice, test)) != invoice
    ]
    changed_reports = [
        updated for report in reports
        if (updated := refresh_report_tests(report, test)) != report
    ]
    return CascadeResult(invoices=tuple(changed_invoices), reports=tuple(changed_reports))


def remove_line_items(invoice: Invoice, test_id: str) -> Invoice:
    if test_id not in invoice.test_ids:
        return invoice
    remaining = tuple(item for item in invoice.tests if item.test_id != test_id)
    return with_totals(replace(invoice, tests=remaining))


def remove_report_tests(report: Report, test_id: str) -> Report:
    if test_id not in report.test_ids:
        return report
    remaining = tuple(entry for entry in report.tests if entry.test_id != test_id)
    return replace(report, tests=remaining, critical_values=has_critical(remaining))


def propagate_test_delete(
    test_id: str,
    invoices: Iterable[Invoice],
    reports: Iterable[Report],
) -> CascadeResult:
    changed_invoices = [
        remove_line_items(invoice, test_id)
        for invoice in invoices
        if test_id in invoice.test_ids
    ]
    changed_reports = [
        remove_report_tests(report, test_id)
        for report in reports
        if test_id in report.test_ids
    ]
    return CascadeResult(invoices=tuple(changed_invoices), reports=tuple(changed_reports))
