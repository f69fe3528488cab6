"""Ports (interfaces) consumed by the laboratory core.

These are domain-layer ports — they define WHAT collaborators must do,
not HOW. Infrastructure adapters implement them; the application layer
receives them by injection.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol


class PersistencePort(Protocol):
    """Durable storage of whole entity collections.

    Both operations are fire-and-forget from the core's point of view: the
    core never waits for an acknowledgement and never branches on the result.
    """

    def load(self, collection: str) -> list[dict[str, Any]]:
        """Return every stored record of a collection (empty if none)."""
        ...

    def save(self, collection: str, records: list[dict[str, Any]]) -> None:
        """Replace the stored collection with records."""
        ...


class PermissionChecker(Protocol):
    """Capability query owned by the authentication collaborator."""

    def has_permission(self, module: str, action: str) -> bool:
        ...


class EntityStore(Protocol):
    """In-memory entity collections with identity generation.

    Implementations must satisfy:
    - Insertion order is preserved; replacing a record keeps its position.
    - Every write marks the collection dirty and bumps its revision.
    - flush() hands each dirty collection to the persistence port.
    """

    def all(self, collection: str) -> list[Any]:
        ...

    def get(self, collection: str, record_id: str) -> Any | None:
        ...

    def put(self, collection: str, record: Any) -> None:
        """Insert a record, or replace the record with the same id."""
        ...

    def remove(self, collection: str, record_id: str) -> bool:
        """Remove a record. Returns False if no record had that id."""
        ...

    def new_id(self) -> str:
        ...

    def next_invoice_number(self, prefix: str, width: int) -> str:
        ...

    def revision(self, collection: str) -> datetime | None:
        ...

    def flush(self) -> None:
        ...
