"""End-to-end laboratory flow.

Exercises the whole stack the way a front desk would: catalog → invoice →
payments → results → verification → catalog edits → invoice edits, then a
restart from disk. After every step the cross-entity invariants must hold:

- final_amount == total_amount - discount for every invoice.
- Every invoice's report carries exactly the invoice's set of test ids.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from lims_core.application.service import LabService
from lims_core.bootstrap import create_service
from lims_core.config import Settings
from lims_core.domain.entities import InvoiceStatus, ReportStatus


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


def _make_service(tmp_path) -> LabService:
    return create_service(Settings(data_dir=tmp_path / "lims-data"), _Clock())


def _assert_invariants(service: LabService) -> None:
    for invoice in service.store.all("invoices"):
        assert invoice.final_amount == invoice.total_amount - invoice.discount, invoice.id
        report = service.invoices.report_for(invoice.id)
        assert report is not None, invoice.id
        assert report.test_ids == invoice.test_ids, invoice.id


def _scenario_a(service: LabService):
    t1 = service.create_test({"name": "T1", "price": 500})
    invoice = service.create_invoice({
        "patient_id": "p1",
        "doctor_id": "d1",
        "tests": [{"test_id": t1.id, "test_name": t1.name, "price": 500, "quantity": 2}],
        "discount": 100,
    })
    return t1, invoice


# ---------------------------------------------------------------------------
# Tests: scenarios
# ---------------------------------------------------------------------------

class TestScenarios:

    def test_a_invoice_with_report(self, tmp_path) -> None:
        service = _make_service(tmp_path)
        t1, invoice = _scenario_a(service)

        assert invoice.total_amount == 1000
        assert invoice.final_amount == 900
        report = service.invoices.report_for(invoice.id)
        assert [(t.test_id, t.result) for t in report.tests] == [(t1.id, "")]
        _assert_invariants(service)

    def test_b_full_payment(self, tmp_path) -> None:
        service = _make_service(tmp_path)
        _, invoice = _scenario_a(service)

        paid = service.record_payment(invoice.id, {"amount": 900})

        assert paid.status == InvoiceStatus.PAID
        assert paid.amount_paid == 900

    def test_c_partial_then_paid(self, tmp_path) -> None:
        service = _make_service(tmp_path)
        _, invoice = _scenario_a(service)

        first = service.record_payment(invoice.id, {"amount": 400})
        assert (first.status, first.amount_paid) == (InvoiceStatus.PARTIAL, 400)

        second = service.record_payment(invoice.id, {"amount": 500})
        assert (second.status, second.amount_paid) == (InvoiceStatus.PAID, 900)

    def test_d_verify_then_undo(self, tmp_path) -> None:
        service = _make_service(tmp_path)
        _, invoice = _scenario_a(service)
        report_id = service.invoices.report_for(invoice.id).id

        service.mark_in_progress(report_id, user_id="tech")
        service.mark_completed(report_id, user_id="tech")
        verified = service.verify_report(report_id, user_id="dr-lee")

        assert verified.status == ReportStatus.VERIFIED
        assert verified.verified_at is not None
        assert len(verified.status_history) == 4

        undone = service.undo_report(report_id, user_id="dr-lee")
        assert undone.status == ReportStatus.COMPLETED
        assert undone.verified_by == "dr-lee"

    def test_e_rename_keeps_results(self, tmp_path) -> None:
        service = _make_service(tmp_path)
        t1, invoice = _scenario_a(service)
        report_id = service.invoices.report_for(invoice.id).id
        service.update_report(report_id, {"tests": [
            {"test_id": t1.id, "test_name": "T1", "result": "4.2", "is_abnormal": True},
        ]})

        service.update_test(t1.id, {"name": "T1-Renamed", "reference_range": "3-5"})

        stored = service.store.get("invoices", invoice.id)
        report = service.store.get("reports", report_id)
        assert stored.tests[0].test_name == "T1-Renamed"
        assert report.tests[0].test_name == "T1-Renamed"
        assert report.tests[0].result == "4.2"
        assert report.tests[0].is_abnormal is True
        assert report.tests[0].normal_range == "3-5"
        _assert_invariants(service)

    def test_f_swap_tests_resets_completed_report(self, tmp_path) -> None:
        service = _make_service(tmp_path)
        t1, invoice = _scenario_a(service)
        t2 = service.create_test({"name": "T2", "price": 250, "reference_range": "1-2"})
        report_id = service.invoices.report_for(invoice.id).id
        service.mark_completed(report_id)

        updated = service.update_invoice(invoice.id, {
            "tests": [{"test_id": t2.id, "test_name": "T2", "price": 250}],
        })

        report = service.store.get("reports", report_id)
        assert [t.test_id for t in report.tests] == [t2.id]
        assert report.tests[0].result == ""
        assert report.tests[0].normal_range == "1-2"
        assert report.status == ReportStatus.PENDING
        assert updated.total_amount == 250
        assert updated.final_amount == 150
        _assert_invariants(service)


# ---------------------------------------------------------------------------
# Tests: full day, restart, idempotence
# ---------------------------------------------------------------------------

class TestFullDay:

    def test_invariants_hold_throughout(self, tmp_path) -> None:
        service = _make_service(tmp_path)
        t1, invoice = _scenario_a(service)
        t2 = service.create_test({"name": "T2", "price": 250})
        other = service.create_invoice({
            "patient_id": "p2",
            "tests": [
                {"test_id": t1.id, "test_name": "T1", "price": 500},
                {"test_id": t2.id, "test_name": "T2", "price": 250},
            ],
        })
        _assert_invariants(service)

        service.update_invoice(other.id, {"discount": 50})
        _assert_invariants(service)

        service.delete_test(t1.id)
        _assert_invariants(service)
        assert service.store.get("invoices", invoice.id).tests == ()
        assert service.store.get("invoices", other.id).final_amount == 200

        service.delete_invoice(invoice.id)
        _assert_invariants(service)
        assert len(service.store.all("reports")) == 1

    def test_dashboard_tracks_operations(self, tmp_path) -> None:
        service = _make_service(tmp_path)
        _, invoice = _scenario_a(service)
        assert service.dashboard.total_invoices == 1
        assert service.dashboard.pending_reports == 1

        service.record_payment(invoice.id, {"amount": 300})

        assert service.dashboard.collected_revenue == 300
        assert service.dashboard.outstanding_balance == 600
        assert service.dashboard.recent_activities[0].action == "PAYMENT"

    def test_restart_from_disk(self, tmp_path) -> None:
        service = _make_service(tmp_path)
        t1, invoice = _scenario_a(service)
        service.record_payment(invoice.id, {"amount": 400})
        report_id = service.invoices.report_for(invoice.id).id
        service.mark_completed(report_id)

        restarted = _make_service(tmp_path)

        assert restarted.store.get("tests", t1.id) == service.store.get("tests", t1.id)
        assert restarted.store.get("invoices", invoice.id) == service.store.get("invoices", invoice.id)
        assert restarted.store.get("reports", report_id).status == ReportStatus.COMPLETED
        assert restarted.dashboard.collected_revenue == 400
        assert restarted.create_invoice({"patient_id": "p3", "tests": []}).invoice_number == "INV0002"

    def test_repeated_update_is_idempotent(self, tmp_path) -> None:
        service = _make_service(tmp_path)
        t1, invoice = _scenario_a(service)
        lines = [{"test_id": t1.id, "test_name": "T1", "price": 500, "quantity": 2}]

        first = service.update_invoice(invoice.id, {"tests": lines, "discount": 100})
        report_before = service.invoices.report_for(invoice.id)
        second = service.update_invoice(invoice.id, {"tests": lines, "discount": 100})

        assert first == second
        assert service.invoices.report_for(invoice.id) == report_before
