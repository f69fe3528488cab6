"""Composition root.

Wires settings, logging, the JSON-file persistence adapter and the entity
store into a ready LabService. The only module allowed to see every layer.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from lims_core.application.service import LabService
from lims_core.config import Settings, configure_logging, get_settings
from lims_core.infrastructure.entity_store import InMemoryEntityStore
from lims_core.infrastructure.persistence import JsonFilePersistence

logger = logging.getLogger(__name__)


def create_service(
    settings: Settings | None = None,
    clock: Callable[[], datetime] | None = None,
) -> LabService:
    settings = settings or get_settings()
    configure_logging(settings)

    store = InMemoryEntityStore(JsonFilePersistence(settings.data_dir), clock)
    store.load_all()
    logger.info("Loaded lab data from %s", settings.data_dir)
    return LabService(store, settings, clock)
