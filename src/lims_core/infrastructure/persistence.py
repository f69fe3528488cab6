"""Persistence adapters.

Implement the PersistencePort protocol defined in domain/ports.py.

- InMemoryPersistence: dict-backed, for development and testing.
- JsonFilePersistence: one JSON document per collection in a directory.

Both store whole collections (last writer wins at collection granularity).
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class InMemoryPersistence:
    """Keeps deep copies of saved collections and counts saves."""

    def __init__(self, initial: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self._data: dict[str, list[dict[str, Any]]] = copy.deepcopy(initial or {})
        self.save_count: dict[str, int] = {}

    def load(self, collection: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._data.get(collection, []))

    def save(self, collection: str, records: list[dict[str, Any]]) -> None:
        self._data[collection] = copy.deepcopy(records)
        self.save_count[collection] = self.save_count.get(collection, 0) + 1


class JsonFilePersistence:
    """Stores each collection as <directory>/<collection>.json."""

    def __init__(self, directory: Path | str) -> None:
        self._directory = Path(directory)

    def load(self, collection: str) -> list[dict[str, Any]]:
        path = self._path(collection)
        if not path.exists():
            return []
        with path.open(encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, list):
            logger.warning("Ignoring %s: expected a list, got %s", path, type(data).__name__)
            return []
        return data

    def save(self, collection: str, records: list[dict[str, Any]]) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(collection)
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(records, fh, indent=2)
        tmp.replace(path)

    def _path(self, collection: str) -> Path:
        return self._directory / f"{collection}.json"
