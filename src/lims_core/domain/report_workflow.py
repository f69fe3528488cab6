"""Report verification state machine.

States and transitions:

    pending → in_progress → completed → verified
                                  └───→ declined
    verified ─(undo)→ completed
    declined ─(undo)→ completed
    any non-locked state ─(lock)→ locked   (terminal)

Free forward moves (pending → in_progress, pending/in_progress → completed)
need no extra data. Verify and decline are only permitted from completed;
decline requires a reason. Undo keeps verified_by/declined_by as a
historical trace.

Every transition appends exactly one StatusChange. Nothing leaves locked:
the lock guard lives here so no caller has to repeat it.

All functions are pure: report in, new report out, DomainError on rejection.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any

from lims_core.domain.entities import Report, ReportStatus, StatusChange

UNDO_COMMENT = "Undo verification/decline"

_FORWARD: dict[ReportStatus, set[ReportStatus]] = {
    ReportStatus.PENDING: {ReportStatus.IN_PROGRESS, ReportStatus.COMPLETED},
    ReportStatus.IN_PROGRESS: {ReportStatus.COMPLETED},
}


class DomainError(Exception):
    """Raised when a command is rejected because it would violate a rule."""


def append_status(
    report: Report,
    status: ReportStatus,
    actor: str,
    at: datetime,
    comment: str = "",
    **changes: Any,
) -> Report:
    """Move to status and record the move in the status history."""
    entry = StatusChange(status=status, changed_by=actor, changed_at=at, comment=comment)
    return replace(
        report,
        status=status,
        status_history=report.status_history + (entry,),
        **changes,
    )


def _guard_unlocked(report: Report) -> None:
    if report.status == ReportStatus.LOCKED:
        raise DomainError(f"Report {report.id} is locked")


def advance(report: Report, target: ReportStatus, actor: str, at: datetime) -> Report:
    _guard_unlocked(report)
    if target not in _FORWARD.get(report.status, set()):
        raise DomainError(
            f"Cannot move report {report.id} from {report.status.value} to {target.value}"
        )
    return append_status(report, target, actor, at)


def verify(report: Report, actor: str, at: datetime) -> Report:
    _guard_unlocked(report)
    if report.status != ReportStatus.COMPLETED:
        raise DomainError(
            f"Only completed reports can be verified (report {report.id} is {report.status.value})"
        )
    return append_status(
        report, ReportStatus.VERIFIED, actor, at, verified_by=actor, verified_at=at,
    )


def decline(report: Report, actor: str, at: datetime, reason: str) -> Report:
    _guard_unlocked(report)
    if report.status != ReportStatus.COMPLETED:
        raise DomainError(
            f"Only completed reports can be declined (report {report.id} is {report.status.value})"
        )
    if not reason or not reason.strip():
        raise DomainError("A reason is required to decline a report")
    return append_status(
        report, ReportStatus.DECLINED, actor, at, comment=reason,
        declined_by=actor, declined_at=at, decline_reason=reason,
    )


def undo(report: Report, actor: str, at: datetime) -> Report:
    _guard_unlocked(report)
    if report.status not in (ReportStatus.VERIFIED, ReportStatus.DECLINED):
        raise DomainError(
            f"Nothing to undo: report {report.id} is {report.status.value}"
        )
    return append_status(report, ReportStatus.COMPLETED, actor, at, comment=UNDO_COMMENT)


def lock(report: Report, actor: str, at: datetime) -> Report:
    _guard_unlocked(report)
    return append_status(report, ReportStatus.LOCKED, actor, at)


def transition(
    report: Report,
    target: ReportStatus,
    actor: str,
    at: datetime,
    comment: str = "",
) -> Report:
    """Route a requested target status to the matching transition.

    comment doubles as the decline reason.
    """
    if target == ReportStatus.VERIFIED:
        return verify(report, actor, at)
    if target == ReportStatus.DECLINED:
        return decline(report, actor, at, comment)
    if target == ReportStatus.LOCKED:
        return lock(report, actor, at)
    if target == ReportStatus.COMPLETED and report.status in (
        ReportStatus.VERIFIED, ReportStatus.DECLINED,
    ):
        return undo(report, actor, at)
    return advance(report, target, actor, at)


def reset_for_test_change(report: Report, actor: str, at: datetime, comment: str) -> Report:
    """Record a test-list reconciliation in the status history.

    A changed test list invalidates prior completion or verification, so
    completed and verified reports go back to pending. Any other status,
    locked included, is kept.
    """
    status = report.status
    if status in (ReportStatus.COMPLETED, ReportStatus.VERIFIED):
        status = ReportStatus.PENDING
    return append_status(report, status, actor, at, comment=comment)
