"""Dashboard Aggregator.

A derived, read-only summary computed from a snapshot of the entity
collections. Pure: same inputs, same output; no state between calls.

Inputs:
- patients, invoices, reports, stock, audit_logs, expenses

Filtering:
- center_id given → every input is first narrowed to records whose
  collection_center_id matches.
- center summaries are always computed over ALL records.
- an input that is not a list/tuple (e.g. None during startup) counts as empty.

Produces a Dashboard with totals, today's counts, pending counts, revenue
aggregates, recent activity and per-collection-center summaries.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from lims_core.domain.entities import AuditLog, InvoiceStatus, ReportStatus

_UNPAID_EXCLUDED = {InvoiceStatus.PAID, InvoiceStatus.CANCELLED}
_REPORT_PENDING = {ReportStatus.PENDING, ReportStatus.IN_PROGRESS}


@dataclass(frozen=True)
class CenterSummary:
    center_id: str
    patients: int = 0
    invoices: int = 0
    revenue: Decimal = Decimal("0")
    collected: Decimal = Decimal("0")
    pending_reports: int = 0


@dataclass(frozen=True)
class Dashboard:
    total_patients: int = 0
    today_patients: int = 0
    recent_patients: int = 0
    total_invoices: int = 0
    today_invoices: int = 0
    recent_invoices: int = 0
    pending_invoices: int = 0
    total_revenue: Decimal = Decimal("0")
    today_revenue: Decimal = Decimal("0")
    collected_revenue: Decimal = Decimal("0")
    outstanding_balance: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    net_revenue: Decimal = Decimal("0")
    total_reports: int = 0
    today_reports: int = 0
    recent_reports: int = 0
    pending_reports: int = 0
    completed_reports: int = 0
    verified_reports: int = 0
    locked_reports: int = 0
    critical_reports: int = 0
    low_stock_items: int = 0
    recent_activities: tuple[AuditLog, ...] = ()
    center_summaries: dict[str, CenterSummary] = field(default_factory=dict)


def aggregate(
    patients: Any,
    invoices: Any,
    reports: Any,
    stock: Any,
    audit_logs: Any,
    expenses: Any,
    center_id: str | None = None,
    *,
    now: datetime | None = None,
    recent_activity_limit: int = 10,
    recent_window_days: int = 7,
) -> Dashboard:
    now = now or datetime.now(timezone.utc)
    all_patients = _as_list(patients)
    all_invoices = _as_list(invoices)
    all_reports = _as_list(reports)

    summaries = _center_summaries(all_patients, all_invoices, all_reports)

    patients_ = _for_center(all_patients, center_id)
    invoices_ = _for_center(all_invoices, center_id)
    reports_ = _for_center(all_reports, center_id)
    stock_ = _for_center(_as_list(stock), center_id)
    audit_logs_ = _for_center(_as_list(audit_logs), center_id)
    expenses_ = _for_center(_as_list(expenses), center_id)

    today = now.date()
    since = now - timedelta(days=recent_window_days)

    total_revenue = _money(inv.final_amount for inv in invoices_)
    total_expenses = _money(exp.amount for exp in expenses_)

    return Dashboard(
        total_patients=len(patients_),
        today_patients=sum(1 for p in patients_ if _on_day(p.created_at, today)),
        recent_patients=sum(1 for p in patients_ if p.created_at >= since),
        total_invoices=len(invoices_),
        today_invoices=sum(1 for inv in invoices_ if _on_day(inv.created_at, today)),
        recent_invoices=sum(1 for inv in invoices_ if inv.created_at >= since),
        pending_invoices=sum(1 for inv in invoices_ if inv.status not in _UNPAID_EXCLUDED),
        total_revenue=total_revenue,
        today_revenue=_money(
            inv.final_amount for inv in invoices_ if _on_day(inv.created_at, today)
        ),
        collected_revenue=_money(inv.amount_paid for inv in invoices_),
        outstanding_balance=_money(
            max(inv.final_amount - inv.amount_paid, Decimal("0")) for inv in invoices_
        ),
        total_expenses=total_expenses,
        net_revenue=total_revenue - total_expenses,
        total_reports=len(reports_),
        today_reports=sum(1 for r in reports_ if _on_day(r.created_at, today)),
        recent_reports=sum(1 for r in reports_ if r.created_at >= since),
        pending_reports=sum(1 for r in reports_ if r.status in _REPORT_PENDING),
        completed_reports=sum(1 for r in reports_ if r.status == ReportStatus.COMPLETED),
        verified_reports=sum(1 for r in reports_ if r.status == ReportStatus.VERIFIED),
        locked_reports=sum(1 for r in reports_ if r.status == ReportStatus.LOCKED),
        critical_reports=sum(1 for r in reports_ if r.critical_values),
        low_stock_items=sum(1 for s in stock_ if s.current_stock <= s.reorder_level),
        recent_activities=tuple(
            sorted(audit_logs_, key=lambda log: log.timestamp, reverse=True)[:recent_activity_limit]
        ),
        center_summaries=summaries,
    )


def _center_summaries(
    patients: list[Any], invoices: list[Any], reports: list[Any],
) -> dict[str, CenterSummary]:
    counts: dict[str, dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
    for p in patients:
        if p.collection_center_id:
            counts[p.collection_center_id]["patients"] += 1
    for inv in invoices:
        if inv.collection_center_id:
            bucket = counts[inv.collection_center_id]
            bucket["invoices"] += 1
            bucket["revenue"] += inv.final_amount
            bucket["collected"] += inv.amount_paid
    for r in reports:
        if r.collection_center_id and r.status in _REPORT_PENDING:
            counts[r.collection_center_id]["pending_reports"] += 1

    return {
        center: CenterSummary(
            center_id=center,
            patients=int(c["patients"]),
            invoices=int(c["invoices"]),
            revenue=c["revenue"],
            collected=c["collected"],
            pending_reports=int(c["pending_reports"]),
        )
        for center, c in sorted(counts.items())
    }


def _money(values: Any) -> Decimal:
    return sum(values, Decimal("0"))


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def _for_center(records: list[Any], center_id: str | None) -> list[Any]:
    if center_id is None:
        return records
    return [r for r in records if getattr(r, "collection_center_id", None) == center_id]


def _on_day(moment: datetime, day: Any) -> bool:
    return moment.date() == day
