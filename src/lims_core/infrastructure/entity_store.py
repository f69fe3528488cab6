"""In-memory Entity Store adapter.

Implements the EntityStore protocol defined in domain/ports.py.

Holds every entity collection as an insertion-ordered dict keyed by id,
generates identities, and round-trips collections through an injected
PersistencePort. A shared-storage deployment would implement the same
protocol.

Rules enforced:
- Replacing a record keeps its position in the collection.
- Every write marks the collection dirty and stamps its revision.
- flush() saves dirty collections; persistence failures are logged and
  never propagate to business logic.
- Revisions are saved with the data (as the "revisions" document) and
  restored by load_all(), so a restarted node keeps its place in
  last-writer-wins sync.
- No business logic, no interpretation of record contents.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

from lims_core.domain.entities import COLLECTIONS
from lims_core.domain.ports import PersistencePort
from lims_core.domain.records import as_utc, from_record, to_record

logger = logging.getLogger(__name__)

_TRAILING_DIGITS = re.compile(r"(\d+)$")
_REVISIONS = "revisions"


class InMemoryEntityStore:
    """In-memory implementation of the EntityStore protocol.

    Structures:
    - _collections: collection name → {record id → record}, insertion-ordered.
    - _revisions: collection name → time of last write (None if never written).
    - _dirty: collections written since the last flush.
    """

    def __init__(
        self,
        persistence: PersistencePort | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._persistence = persistence
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collections: dict[str, dict[str, Any]] = {name: {} for name in COLLECTIONS}
        self._revisions: dict[str, datetime | None] = {name: None for name in COLLECTIONS}
        self._dirty: set[str] = set()

    # -- reads ---------------------------------------------------------------

    def all(self, collection: str) -> list[Any]:
        return list(self._collection(collection).values())

    def get(self, collection: str, record_id: str) -> Any | None:
        return self._collection(collection).get(record_id)

    def revision(self, collection: str) -> datetime | None:
        self._collection(collection)
        return self._revisions[collection]

    # -- writes --------------------------------------------------------------

    def put(self, collection: str, record: Any) -> None:
        self._collection(collection)[record.id] = record
        self._touch(collection)

    def remove(self, collection: str, record_id: str) -> bool:
        records = self._collection(collection)
        if record_id not in records:
            return False
        del records[record_id]
        self._touch(collection)
        return True

    def replace_collection(
        self,
        collection: str,
        records: list[Any],
        revision: datetime | None = None,
    ) -> None:
        """Swap in a whole collection snapshot (used by sync)."""
        self._collections[self._name(collection)] = {r.id: r for r in records}
        self._revisions[collection] = revision or self._clock()
        self._dirty.add(collection)

    # -- identity ------------------------------------------------------------

    def new_id(self) -> str:
        return str(uuid4())

    def next_invoice_number(self, prefix: str, width: int) -> str:
        highest = 0
        for invoice in self._collections["invoices"].values():
            match = _TRAILING_DIGITS.search(invoice.invoice_number or "")
            if match:
                highest = max(highest, int(match.group(1)))
        return f"{prefix}{highest + 1:0{width}d}"

    # -- persistence round trip ----------------------------------------------

    def load_all(self) -> None:
        """Populate every collection from the persistence port."""
        if self._persistence is None:
            return
        saved = {
            row["collection"]: as_utc(row.get("revision"))
            for row in self._persistence.load(_REVISIONS) or []
            if row.get("collection") in COLLECTIONS
        }
        for name, record_type in COLLECTIONS.items():
            rows = self._persistence.load(name) or []
            self._collections[name] = {
                record.id: record
                for record in (from_record(record_type, row) for row in rows)
            }
            # data saved without a revision counts as written now
            self._revisions[name] = saved.get(name) or (self._clock() if rows else None)
            logger.debug("Loaded %d %s", len(rows), name)
        self._dirty.clear()

    def flush(self) -> None:
        """Save every dirty collection, then the revisions. Failures are logged, not raised."""
        dirty, self._dirty = self._dirty, set()
        if self._persistence is None or not dirty:
            return
        for name in sorted(dirty):
            records = [to_record(r) for r in self._collections[name].values()]
            self._save(name, records)
        self._save(_REVISIONS, [
            {"collection": name, "revision": revision.isoformat()}
            for name, revision in self._revisions.items()
            if revision is not None
        ])

    def _save(self, name: str, records: list[dict[str, Any]]) -> None:
        try:
            self._persistence.save(name, records)
        except Exception:
            logger.exception("Failed to save collection %s (%d records)", name, len(records))

    @property
    def dirty_collections(self) -> set[str]:
        return set(self._dirty)

    # -- helpers -------------------------------------------------------------

    def _touch(self, collection: str) -> None:
        self._revisions[collection] = self._clock()
        self._dirty.add(collection)

    def _collection(self, collection: str) -> dict[str, Any]:
        return self._collections[self._name(collection)]

    def _name(self, collection: str) -> str:
        if collection not in self._collections:
            raise KeyError(f"Unknown collection: {collection}")
        return collection
