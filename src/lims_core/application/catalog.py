"""Test Catalog Manager — CRUD on master test records.

Updates and deletes hand off to the Cascade Propagator so invoices and
reports never hold stale or dangling test references.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from lims_core.application.audit_recorder import AuditRecorder
from lims_core.application.cascade_propagator import CascadePropagator
from lims_core.domain.entities import LabTest, NotificationType
from lims_core.domain.ports import EntityStore
from lims_core.domain.records import coerce_fields

_PROTECTED = {"id", "created_at"}


class CatalogManager:

    def __init__(
        self,
        store: EntityStore,
        recorder: AuditRecorder,
        propagator: CascadePropagator,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._recorder = recorder
        self._propagator = propagator
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, test_id: str) -> LabTest | None:
        return self._store.get("tests", test_id)

    def create(self, draft: Mapping[str, Any], user_id: str | None = None) -> LabTest:
        values = coerce_fields(LabTest, draft)
        for key in _PROTECTED:
            values.pop(key, None)
        test = LabTest(id=self._store.new_id(), created_at=self._clock(), **values)
        self._store.put("tests", test)
        self._recorder.record("CREATE", "TESTS", f"Created test: {test.name}", user_id=user_id)
        self._recorder.notify("New Test Added", f"Test {test.name} was added.")
        return test

    def update(
        self, test_id: str, patch: Mapping[str, Any], user_id: str | None = None,
    ) -> LabTest | None:
        before = self._store.get("tests", test_id)
        if before is None:
            return None

        changes = coerce_fields(LabTest, patch)
        for key in _PROTECTED:
            changes.pop(key, None)
        diff = self._recorder.diff(before, changes)
        test = replace(before, **changes)
        self._store.put("tests", test)

        self._recorder.record(
            "UPDATE", "TESTS", f"Updated test with ID: {test_id}",
            user_id=user_id, changes=diff,
        )
        price_changed = any(c.field == "price" for c in diff)
        self._recorder.notify(
            "Test Updated",
            f"Test {before.name} updated. {self._recorder.format_changes(diff)}".strip(),
            type=NotificationType.WARNING if price_changed else NotificationType.INFO,
        )

        self._propagator.on_test_updated(test, user_id=user_id)
        return test

    def delete(self, test_id: str, user_id: str | None = None) -> bool:
        """Delete a test and cascade. Unknown ids are a silent no-op."""
        test = self._store.get("tests", test_id)
        if test is None:
            return False
        self._store.remove("tests", test_id)
        self._recorder.record(
            "DELETE", "TESTS", f"Deleted test with ID: {test_id}", user_id=user_id,
        )
        self._propagator.on_test_deleted(test_id, test_name=test.name, user_id=user_id)
        return True
