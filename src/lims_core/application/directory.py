"""Directory Manager — plain CRUD for patients, doctors, stock and expenses.

These collections feed the dashboard but take part in no cascade. Every
mutation is audited and announced; updates carry a field diff.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from lims_core.application.audit_recorder import AuditRecorder
from lims_core.config import Settings, get_settings
from lims_core.domain.entities import Doctor, Expense, NotificationType, Patient, StockItem
from lims_core.domain.ports import EntityStore
from lims_core.domain.records import coerce_fields

_PROTECTED = {"id", "created_at"}


@dataclass(frozen=True)
class _Kind:
    """Internal: per-collection labels and warning triggers."""
    record_type: type
    module: str
    label: str
    describe: str
    warn_on: frozenset[str] = frozenset()
    category: str = "system"


_KINDS: dict[str, _Kind] = {
    "patients": _Kind(Patient, "PATIENTS", "Patient", "name", frozenset({"contact", "address"})),
    "doctors": _Kind(Doctor, "DOCTORS", "Doctor", "name", frozenset({"commission_percent"})),
    "stock": _Kind(StockItem, "STOCK", "Stock Item", "name", frozenset({"current_stock"}), "stock"),
    "expenses": _Kind(Expense, "EXPENSES", "Expense", "description", frozenset({"amount"})),
}


class DirectoryManager:

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

    def create(
        self, collection: str, draft: Mapping[str, Any], user_id: str | None = None,
    ) -> Any:
        kind = _kind(collection)
        values = coerce_fields(kind.record_type, draft)
        for key in _PROTECTED:
            values.pop(key, None)
        record_fields = kind.record_type.__dataclass_fields__
        if "created_by" in record_fields:
            values["created_by"] = values.get("created_by") or user_id or self._settings.system_user
        if "created_at" in record_fields:
            values["created_at"] = self._clock()
        if "date" in record_fields:
            values.setdefault("date", self._clock())

        record = kind.record_type(id=self._store.new_id(), **values)
        self._store.put(collection, record)

        name = getattr(record, kind.describe)
        self._recorder.record(
            "CREATE", kind.module, f"Created {kind.label.lower()}: {name}",
            user_id=user_id,
            collection_center_id=getattr(record, "collection_center_id", None),
        )
        self._recorder.notify(
            f"New {kind.label} Added", f"{kind.label} {name} was added.",
            type=NotificationType.SUCCESS if collection == "patients" else NotificationType.INFO,
        )
        return record

    def update(
        self,
        collection: str,
        record_id: str,
        patch: Mapping[str, Any],
        user_id: str | None = None,
    ) -> Any | None:
        kind = _kind(collection)
        before = self._store.get(collection, record_id)
        if before is None:
            return None

        changes = coerce_fields(kind.record_type, patch)
        for key in _PROTECTED:
            changes.pop(key, None)
        diff = self._recorder.diff(before, changes)
        record = replace(before, **changes)
        self._store.put(collection, record)

        self._recorder.record(
            "UPDATE", kind.module, f"Updated {kind.label.lower()} with ID: {record_id}",
            user_id=user_id, changes=diff,
            collection_center_id=getattr(record, "collection_center_id", None),
        )
        warn = any(c.field in kind.warn_on for c in diff)
        self._recorder.notify(
            f"{kind.label} Updated",
            f"{kind.label} {getattr(before, kind.describe)} updated. "
            f"{self._recorder.format_changes(diff)}".strip(),
            type=NotificationType.WARNING if warn else NotificationType.INFO,
            category=kind.category,
        )
        return record

    def delete(self, collection: str, record_id: str, user_id: str | None = None) -> bool:
        kind = _kind(collection)
        record = self._store.get(collection, record_id)
        if record is None:
            return False
        self._store.remove(collection, record_id)
        self._recorder.record(
            "DELETE", kind.module, f"Deleted {kind.label.lower()} with ID: {record_id}",
            user_id=user_id,
            collection_center_id=getattr(record, "collection_center_id", None),
        )
        return True


def _kind(collection: str) -> _Kind:
    try:
        return _KINDS[collection]
    except KeyError:
        raise ValueError(f"Not a directory collection: {collection}") from None
