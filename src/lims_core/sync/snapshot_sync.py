"""Snapshot Sync — local simulation of node-to-node collection synchronization.

No networking layer. Sync is performed via direct method calls between
SyncNode instances, each wrapping an entity store.

Whole collections are the unit of transfer. Every store stamps a revision
on each collection when it is written; sync performs:
1. Exchange collection revisions.
2. Detect stale collections (source revision strictly newer than target's).
3. Transfer the source snapshot into the target store.
4. Notify the target (e.g. to recompute its dashboard).

Last writer wins per collection. All operations are idempotent — once two
nodes agree on a revision, syncing again transfers nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from lims_core.domain.entities import COLLECTIONS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    """Result of a one-directional sync (source → target)."""
    transferred: tuple[str, ...]
    skipped: tuple[str, ...]

    @property
    def transferred_count(self) -> int:
        return len(self.transferred)


@dataclass(frozen=True)
class FullSyncResult:
    """Result of a bidirectional sync between two nodes."""
    a_to_b: SyncResult
    b_to_a: SyncResult


class SyncNode:
    """A sync-capable node wrapping an entity store.

    Each node represents an independent device with its own local store.
    on_change is called once after a sync wrote at least one collection.
    """

    def __init__(
        self,
        node_id: str,
        store: Any,
        on_change: Callable[[], Any] | None = None,
    ) -> None:
        self.node_id = node_id
        self.store = store
        self.on_change = on_change

    def revisions(self) -> dict[str, datetime | None]:
        return {name: self.store.revision(name) for name in COLLECTIONS}

    def snapshot(self, collection: str) -> list[Any]:
        return self.store.all(collection)

    def receive(self, collection: str, records: list[Any], revision: datetime) -> None:
        self.store.replace_collection(collection, records, revision)


class SnapshotSync:
    """Orchestrates sync between two SyncNodes."""

    def detect_stale(self, source: SyncNode, target: SyncNode) -> list[str]:
        """Collections whose source revision is newer than the target's."""
        target_revisions = target.revisions()
        stale = []
        for name, revision in source.revisions().items():
            if revision is None:
                continue
            theirs = target_revisions[name]
            if theirs is None or revision > theirs:
                stale.append(name)
        return stale

    def sync(self, source: SyncNode, target: SyncNode) -> SyncResult:
        """One-directional sync: source → target."""
        stale = self.detect_stale(source, target)
        for name in stale:
            target.receive(name, source.snapshot(name), source.store.revision(name))

        if stale:
            logger.info(
                "Synced %s → %s: %s", source.node_id, target.node_id, ", ".join(stale),
            )
            if target.on_change is not None:
                target.on_change()

        return SyncResult(
            transferred=tuple(stale),
            skipped=tuple(name for name in COLLECTIONS if name not in stale),
        )

    def full_sync(self, node_a: SyncNode, node_b: SyncNode) -> FullSyncResult:
        """Bidirectional sync: A ↔ B.

        Syncs A → B, then B → A.
        """
        a_to_b = self.sync(source=node_a, target=node_b)
        b_to_a = self.sync(source=node_b, target=node_a)
        return FullSyncResult(a_to_b=a_to_b, b_to_a=b_to_a)
