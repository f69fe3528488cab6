"""Tests for the pure test-catalog cascade functions.

Requirements tested:
1. Update: line-item names follow, billed prices do not.
2. Update: report entries get the new name/range/unit, results untouched.
3. Delete: line items removed, totals recomputed, discount kept.
4. Delete: report entries removed, critical_values recomputed.
5. Only changed records are returned.
"""

from __future__ import annotations

from dataclasses import replace

from lims_core.domain.billing import with_totals
from lims_core.domain.cascade import propagate_test_delete, propagate_test_update
from lims_core.domain.entities import (
    Invoice,
    InvoiceTest,
    LabTest,
    ParameterResult,
    ParameterTemplate,
    Report,
    ReportTest,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_invoice(invoice_id: str, *items: tuple[str, str, float], discount: float = 0) -> Invoice:
    return with_totals(Invoice(
        id=invoice_id,
        invoice_number=invoice_id.upper(),
        patient_id="p1",
        tests=tuple(InvoiceTest(test_id=t, test_name=n, price=p) for t, n, p in items),
        discount=discount,
    ))


def _make_report(report_id: str, invoice_id: str, *entries: ReportTest) -> Report:
    return Report(
        id=report_id,
        invoice_id=invoice_id,
        patient_id="p1",
        tests=entries,
        critical_values=any(e.is_critical for e in entries),
    )


# ---------------------------------------------------------------------------
# Tests: update
# ---------------------------------------------------------------------------

class TestPropagateUpdate:

    def test_renames_line_items_without_repricing(self) -> None:
        invoice = _make_invoice("inv-1", ("t1", "Sugar", 100), ("t2", "Lipid", 400))
        test = LabTest(id="t1", name="Glucose", price=150)

        result = propagate_test_update(test, [invoice], [])

        (updated,) = result.invoices
        assert updated.tests[0].test_name == "Glucose"
        assert updated.tests[0].price == 100
        assert updated.total_amount == 500

    def test_refreshes_report_entries_keeping_results(self) -> None:
        entry = ReportTest(
            test_id="t1", test_name="Sugar", result="92", normal_range="70-110",
            unit="mg/dL", is_abnormal=True,
            parameters=(ParameterResult(name="Fasting", result="92", normal_range="70-110"),),
        )
        report = _make_report("r1", "inv-1", entry)
        test = LabTest(
            id="t1", name="Glucose", reference_range="70-100", unit="mg/dL",
            parameters=(ParameterTemplate(name="Fasting", normal_range="70-100"),),
        )

        (updated,) = propagate_test_update(test, [], [report]).reports

        refreshed = updated.tests[0]
        assert refreshed.test_name == "Glucose"
        assert refreshed.normal_range == "70-100"
        assert refreshed.result == "92"
        assert refreshed.is_abnormal is True
        assert refreshed.parameters[0].normal_range == "70-100"
        assert refreshed.parameters[0].result == "92"

    def test_unaffected_records_not_returned(self) -> None:
        invoice = _make_invoice("inv-1", ("t2", "Lipid", 400))
        report = _make_report("r1", "inv-1", ReportTest(test_id="t2", test_name="Lipid"))
        result = propagate_test_update(LabTest(id="t1", name="Glucose"), [invoice], [report])
        assert result.is_empty

    def test_no_op_update_returns_nothing(self) -> None:
        invoice = _make_invoice("inv-1", ("t1", "Sugar", 100))
        result = propagate_test_update(LabTest(id="t1", name="Sugar"), [invoice], [])
        assert result.invoices == ()


# ---------------------------------------------------------------------------
# Tests: delete
# ---------------------------------------------------------------------------

class TestPropagateDelete:

    def test_removes_line_items_and_recomputes(self) -> None:
        invoice = _make_invoice("inv-1", ("t1", "Sugar", 100), ("t2", "Lipid", 400), discount=50)

        (updated,) = propagate_test_delete("t1", [invoice], []).invoices

        assert [t.test_id for t in updated.tests] == ["t2"]
        assert updated.total_amount == 400
        assert updated.discount == 50
        assert updated.final_amount == 350

    def test_removes_every_duplicate_line(self) -> None:
        invoice = _make_invoice("inv-1", ("t1", "Sugar", 100), ("t1", "Sugar", 100))
        (updated,) = propagate_test_delete("t1", [invoice], []).invoices
        assert updated.tests == ()
        assert updated.final_amount == 0

    def test_removes_report_entries_and_recomputes_critical(self) -> None:
        report = _make_report(
            "r1", "inv-1",
            ReportTest(test_id="t1", test_name="Potassium", result="7.1", is_critical=True),
            ReportTest(test_id="t2", test_name="Lipid"),
        )

        (updated,) = propagate_test_delete("t1", [], [report]).reports

        assert [t.test_id for t in updated.tests] == ["t2"]
        assert updated.critical_values is False

    def test_only_referencing_records_returned(self) -> None:
        a = _make_invoice("inv-a", ("t1", "Sugar", 100))
        b = _make_invoice("inv-b", ("t2", "Lipid", 400))
        result = propagate_test_delete("t1", [a, b], [])
        assert [inv.id for inv in result.invoices] == ["inv-a"]

    def test_unreferenced_delete_is_empty(self) -> None:
        invoice = _make_invoice("inv-1", ("t2", "Lipid", 400))
        report = _make_report("r1", "inv-1", ReportTest(test_id="t2", test_name="Lipid"))
        assert propagate_test_delete("t9", [invoice], [report]).is_empty

    def test_inputs_not_mutated(self) -> None:
        invoice = _make_invoice("inv-1", ("t1", "Sugar", 100))
        snapshot = replace(invoice)
        propagate_test_delete("t1", [invoice], [])
        assert invoice == snapshot
