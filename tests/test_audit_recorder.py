"""Tests for the audit trail, field diffs and the notification inbox."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from lims_core.application.audit_recorder import AuditRecorder, FieldChange
from lims_core.config import Settings
from lims_core.domain.entities import (
    InvoiceStatus,
    LabTest,
    NotificationType,
    Priority,
)
from lims_core.infrastructure.entity_store import InMemoryEntityStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_NOW = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)


def _make_recorder(system_user: str = "System") -> tuple[AuditRecorder, InMemoryEntityStore]:
    store = InMemoryEntityStore()
    return AuditRecorder(store, Settings(system_user=system_user), lambda: _NOW), store


# ---------------------------------------------------------------------------
# Tests: diff
# ---------------------------------------------------------------------------

class TestDiff:

    def test_only_changed_fields(self) -> None:
        before = LabTest(id="t1", name="Sugar", price=Decimal("100.00"), unit="mg/dL")
        changes = AuditRecorder.diff(before, {"name": "Glucose", "price": Decimal("100.00"), "unit": "mg/dL"})
        assert changes == [FieldChange(field="name", old="Sugar", new="Glucose")]

    def test_unknown_keys_ignored(self) -> None:
        before = LabTest(id="t1", name="Sugar")
        assert AuditRecorder.diff(before, {"colour": "red"}) == []

    def test_format(self) -> None:
        text = AuditRecorder.format_changes([
            FieldChange("price", Decimal("100.00"), Decimal("150.00")),
            FieldChange("status", InvoiceStatus.DUE, InvoiceStatus.PAID),
            FieldChange("tests", (1, 2), (1,)),
        ])
        assert text == (
            "price: '100.00' → '150.00', status: 'due' → 'paid', "
            "tests: '[2 items]' → '[1 items]'"
        )


# ---------------------------------------------------------------------------
# Tests: audit trail
# ---------------------------------------------------------------------------

class TestRecord:

    def test_appends_entry(self) -> None:
        recorder, store = _make_recorder()
        entry = recorder.record("CREATE", "TESTS", "Created test: TSH", user_id="alice")

        assert store.all("audit_logs") == [entry]
        assert entry.user_id == "alice"
        assert entry.timestamp == _NOW

    def test_system_user_fallback(self) -> None:
        recorder, _ = _make_recorder(system_user="robot")
        assert recorder.record("DELETE", "TESTS", "x").user_id == "robot"

    def test_changes_appended_to_details(self) -> None:
        recorder, _ = _make_recorder()
        entry = recorder.record(
            "UPDATE", "TESTS", "Updated test with ID: t1",
            changes=[FieldChange("name", "Sugar", "Glucose")],
        )
        assert entry.details == "Updated test with ID: t1. Changes: name: 'Sugar' → 'Glucose'"

    def test_entries_are_append_only(self) -> None:
        recorder, store = _make_recorder()
        recorder.record("A", "M", "one")
        recorder.record("B", "M", "two")
        assert [log.details for log in store.all("audit_logs")] == ["one", "two"]


# ---------------------------------------------------------------------------
# Tests: notifications
# ---------------------------------------------------------------------------

class TestNotifications:

    def test_notify_defaults(self) -> None:
        recorder, _ = _make_recorder()
        n = recorder.notify("Title", "Body")
        assert n.type == NotificationType.INFO
        assert n.priority == Priority.MEDIUM
        assert n.category == "system"
        assert n.is_read is False

    def test_mark_read_and_all(self) -> None:
        recorder, store = _make_recorder()
        first = recorder.notify("a", "a")
        recorder.notify("b", "b")
        recorder.notify("c", "c")

        assert recorder.mark_read(first.id).is_read is True
        assert recorder.mark_all_read() == 2
        assert all(n.is_read for n in store.all("notifications"))
        assert recorder.mark_all_read() == 0

    def test_mark_read_unknown(self) -> None:
        recorder, _ = _make_recorder()
        assert recorder.mark_read("missing") is None

    def test_delete(self) -> None:
        recorder, store = _make_recorder()
        n = recorder.notify("a", "a")
        assert recorder.delete_notification(n.id) is True
        assert recorder.delete_notification(n.id) is False
        assert store.all("notifications") == []
