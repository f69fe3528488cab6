"""Audit & Notification Recorder.

Side-effect emitter shared by every manager. Given a mutation description it:
- Appends an immutable AuditLog entry (append-only; entries are never edited).
- Appends a user-facing Notification.
- Computes the structured field-level diff used in audit details.

Holds no business logic. The notification inbox operations (mark read,
delete) live here too because notifications are its output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping

from lims_core.config import Settings, get_settings
from lims_core.domain.entities import AuditLog, Notification, NotificationType, Priority
from lims_core.domain.ports import EntityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldChange:
    field: str
    old: Any
    new: Any


def _display(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (tuple, list)):
        return f"[{len(value)} items]"
    return str(value)


class AuditRecorder:

    def __init__(
        self,
        store: EntityStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -- diff ----------------------------------------------------------------

    @staticmethod
    def diff(before: Any, changes: Mapping[str, Any]) -> list[FieldChange]:
        """Fields of before whose value differs in changes.

        Keys that are not fields of before are ignored.
        """
        names = {f.name for f in fields(before)}
        return [
            FieldChange(field=key, old=getattr(before, key), new=value)
            for key, value in changes.items()
            if key in names and getattr(before, key) != value
        ]

    @staticmethod
    def format_changes(changes: list[FieldChange]) -> str:
        return ", ".join(
            f"{c.field}: '{_display(c.old)}' → '{_display(c.new)}'" for c in changes
        )

    # -- audit trail ---------------------------------------------------------

    def record(
        self,
        action: str,
        module: str,
        details: str,
        user_id: str | None = None,
        changes: list[FieldChange] | None = None,
        collection_center_id: str | None = None,
    ) -> AuditLog:
        if changes:
            details = f"{details}. Changes: {self.format_changes(changes)}"
        entry = AuditLog(
            id=self._store.new_id(),
            user_id=user_id or self._settings.system_user,
            action=action,
            module=module,
            details=details,
            timestamp=self._clock(),
            collection_center_id=collection_center_id,
        )
        self._store.put("audit_logs", entry)
        logger.debug("audit %s %s: %s", action, module, details)
        return entry

    # -- notifications -------------------------------------------------------

    def notify(
        self,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        category: str = "system",
        priority: Priority = Priority.MEDIUM,
    ) -> Notification:
        notification = Notification(
            id=self._store.new_id(),
            type=type,
            category=category,
            title=title,
            message=message,
            created_at=self._clock(),
            priority=priority,
        )
        self._store.put("notifications", notification)
        return notification

    def mark_read(self, notification_id: str) -> Notification | None:
        notification = self._store.get("notifications", notification_id)
        if notification is None:
            return None
        if not notification.is_read:
            notification = replace(notification, is_read=True)
            self._store.put("notifications", notification)
        return notification

    def mark_all_read(self) -> int:
        count = 0
        for notification in self._store.all("notifications"):
            if not notification.is_read:
                self._store.put("notifications", replace(notification, is_read=True))
                count += 1
        return count

    def delete_notification(self, notification_id: str) -> bool:
        return self._store.remove("notifications", notification_id)
