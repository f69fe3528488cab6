"""Tests for the in-memory entity store and the persistence adapters.

Requirements tested:
1. Replacing a record keeps its position.
2. Every write stamps the collection revision and marks it dirty.
3. flush() saves dirty collections only; failures are logged, never raised.
4. load_all() decodes persisted records back into equal entities.
5. JsonFilePersistence round-trips through the file system.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from lims_core.domain.entities import (
    Invoice,
    InvoiceStatus,
    InvoiceTest,
    PaymentRecord,
    Report,
    ReportStatus,
    ReportTest,
    StatusChange,
)
from lims_core.infrastructure.entity_store import InMemoryEntityStore
from lims_core.infrastructure.persistence import InMemoryPersistence, JsonFilePersistence


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_T0 = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self) -> None:
        self.now = _T0

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


class _FailingPersistence:
    def load(self, collection: str) -> list[dict[str, Any]]:
        return []

    def save(self, collection: str, records: list[dict[str, Any]]) -> None:
        raise OSError("disk full")


def _make_invoice(invoice_id: str, number: str = "INV0001") -> Invoice:
    return Invoice(
        id=invoice_id,
        invoice_number=number,
        patient_id="p1",
        tests=(InvoiceTest(test_id="t1", test_name="Sugar", price=Decimal("100.00"), quantity=2),),
        total_amount=Decimal("200.00"),
        final_amount=Decimal("200.00"),
        amount_paid=Decimal("50.00"),
        due_date=_T0,
        payment_history=(PaymentRecord(amount=Decimal("50.00"), date=_T0, method="upi"),),
        status=InvoiceStatus.PARTIAL,
        created_at=_T0,
        collection_center_id="c1",
    )


def _make_report() -> Report:
    return Report(
        id="r1",
        invoice_id="inv-1",
        patient_id="p1",
        tests=(ReportTest(test_id="t1", test_name="Sugar", result="92"),),
        status=ReportStatus.VERIFIED,
        status_history=(
            StatusChange(status=ReportStatus.PENDING, changed_by="System", changed_at=_T0),
            StatusChange(status=ReportStatus.VERIFIED, changed_by="dr", changed_at=_T0, comment="ok"),
        ),
        created_at=_T0,
        verified_by="dr",
        verified_at=_T0,
    )


# ---------------------------------------------------------------------------
# Tests: store behaviour
# ---------------------------------------------------------------------------

class TestEntityStore:

    def test_replace_keeps_position(self) -> None:
        store = InMemoryEntityStore()
        for iid in ("a", "b", "c"):
            store.put("invoices", _make_invoice(iid))
        store.put("invoices", replace(_make_invoice("b"), notes="edited"))

        assert [i.id for i in store.all("invoices")] == ["a", "b", "c"]
        assert store.get("invoices", "b").notes == "edited"

    def test_remove(self) -> None:
        store = InMemoryEntityStore()
        store.put("invoices", _make_invoice("a"))
        assert store.remove("invoices", "a") is True
        assert store.remove("invoices", "a") is False
        assert store.get("invoices", "a") is None

    def test_revision_stamped_on_write(self) -> None:
        store = InMemoryEntityStore(clock=_Clock())
        assert store.revision("invoices") is None
        store.put("invoices", _make_invoice("a"))
        first = store.revision("invoices")
        store.put("invoices", _make_invoice("b"))
        assert store.revision("invoices") > first
        assert store.revision("reports") is None

    def test_unknown_collection_raises(self) -> None:
        store = InMemoryEntityStore()
        with pytest.raises(KeyError):
            store.all("widgets")

    def test_ids_are_unique(self) -> None:
        store = InMemoryEntityStore()
        assert len({store.new_id() for _ in range(100)}) == 100

    def test_invoice_numbers(self) -> None:
        store = InMemoryEntityStore()
        assert store.next_invoice_number("INV", 4) == "INV0001"
        store.put("invoices", _make_invoice("a", "INV0007"))
        store.put("invoices", _make_invoice("b", "LEGACY"))
        assert store.next_invoice_number("INV", 4) == "INV0008"


# ---------------------------------------------------------------------------
# Tests: flush and load
# ---------------------------------------------------------------------------

class TestPersistenceRoundTrip:

    def test_flush_saves_only_dirty_collections(self) -> None:
        persistence = InMemoryPersistence()
        store = InMemoryEntityStore(persistence)
        store.put("invoices", _make_invoice("a"))

        assert store.dirty_collections == {"invoices"}
        store.flush()

        assert persistence.save_count == {"invoices": 1, "revisions": 1}
        assert store.dirty_collections == set()
        store.flush()
        assert persistence.save_count == {"invoices": 1, "revisions": 1}

    def test_records_encoded_as_plain_values(self) -> None:
        persistence = InMemoryPersistence()
        store = InMemoryEntityStore(persistence)
        store.put("invoices", _make_invoice("a"))
        store.flush()

        (record,) = persistence.load("invoices")
        assert record["status"] == "partial"
        assert record["created_at"] == _T0.isoformat()
        assert record["tests"][0] == {
            "test_id": "t1", "test_name": "Sugar", "price": "100.00", "quantity": 2,
        }

    def test_load_all_restores_equal_entities(self) -> None:
        persistence = InMemoryPersistence()
        writer = InMemoryEntityStore(persistence)
        writer.put("invoices", _make_invoice("a"))
        writer.put("reports", _make_report())
        writer.flush()

        reader = InMemoryEntityStore(persistence)
        reader.load_all()

        assert reader.get("invoices", "a") == _make_invoice("a")
        assert reader.get("reports", "r1") == _make_report()
        assert reader.dirty_collections == set()

    def test_load_ignores_unknown_keys(self) -> None:
        record = {"id": "p1", "name": "Asha", "legacy_field": 1}
        store = InMemoryEntityStore(InMemoryPersistence({"patients": [record]}))
        store.load_all()
        assert store.get("patients", "p1").name == "Asha"

    def test_load_all_restores_revisions(self) -> None:
        persistence = InMemoryPersistence()
        writer = InMemoryEntityStore(persistence, clock=_Clock())
        writer.put("invoices", _make_invoice("a"))
        writer.flush()

        reader = InMemoryEntityStore(persistence, clock=_Clock())
        reader.load_all()

        assert reader.revision("invoices") == writer.revision("invoices")
        assert reader.revision("reports") is None

    def test_data_without_revision_is_stamped_at_load(self) -> None:
        record = {"id": "p1", "name": "Asha"}
        clock = _Clock()
        store = InMemoryEntityStore(InMemoryPersistence({"patients": [record]}), clock=clock)
        store.load_all()
        assert store.revision("patients") == _T0
        assert store.revision("tests") is None

    def test_date_only_and_naive_values_load_as_utc(self) -> None:
        record = {
            "id": "inv-9", "invoice_number": "INV0009", "patient_id": "p1",
            "due_date": "2024-03-01", "created_at": "2024-03-01T08:30:00",
            "final_amount": 0.3,
        }
        store = InMemoryEntityStore(InMemoryPersistence({"invoices": [record]}))
        store.load_all()

        invoice = store.get("invoices", "inv-9")
        assert invoice.due_date == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert invoice.created_at == datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc)
        assert invoice.final_amount == Decimal("0.3")

    def test_save_failure_is_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        store = InMemoryEntityStore(_FailingPersistence())
        store.put("invoices", _make_invoice("a"))

        with caplog.at_level(logging.ERROR):
            store.flush()

        assert "Failed to save collection invoices" in caplog.text
        assert store.get("invoices", "a") is not None


class TestJsonFilePersistence:

    def test_round_trip_through_files(self, tmp_path) -> None:
        persistence = JsonFilePersistence(tmp_path / "data")
        writer = InMemoryEntityStore(persistence)
        writer.put("invoices", _make_invoice("a"))
        writer.flush()

        assert (tmp_path / "data" / "invoices.json").exists()

        reader = InMemoryEntityStore(JsonFilePersistence(tmp_path / "data"))
        reader.load_all()
        assert reader.all("invoices") == [_make_invoice("a")]
        assert reader.all("reports") == []

    def test_non_list_document_ignored(self, tmp_path) -> None:
        (tmp_path / "tests.json").write_text('{"oops": true}')
        assert JsonFilePersistence(tmp_path).load("tests") == []
