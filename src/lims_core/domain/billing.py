"""Invoice arithmetic and payment status precedence.

Pure functions over Decimal money. The invariant maintained here:

    final_amount == total_amount - discount

after every change to line items or discount. Payment status is always
derived fresh from the running total, never incrementally:

    amount_paid >= final_amount  → paid
    amount_paid > 0              → partial
    now > due_date               → overdue
    otherwise                    → due

Overpayment and negative amounts are accepted; they simply drive the
status to whatever the precedence above yields.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from lims_core.domain.entities import Invoice, InvoiceStatus, InvoiceTest, PaymentRecord
from lims_core.domain.records import as_utc

# Statuses that follow the paid amount. Draft, finalized and cancelled are
# set by hand and left alone when totals move.
PAYMENT_DERIVED = frozenset({
    InvoiceStatus.DUE, InvoiceStatus.OVERDUE, InvoiceStatus.PARTIAL, InvoiceStatus.PAID,
})


def line_items_total(tests: Iterable[InvoiceTest]) -> Decimal:
    return sum((t.price * t.quantity for t in tests), Decimal("0"))


def with_totals(invoice: Invoice, total_amount: Decimal | None = None) -> Invoice:
    """Return the invoice with total and final amounts recomputed.

    If total_amount is None it is summed from the line items.
    """
    total = line_items_total(invoice.tests) if total_amount is None else total_amount
    return replace(invoice, total_amount=total, final_amount=total - invoice.discount)


def payment_status(
    amount_paid: Decimal,
    final_amount: Decimal,
    due_date: datetime | None,
    now: datetime,
) -> InvoiceStatus:
    if amount_paid >= final_amount:
        return InvoiceStatus.PAID
    if amount_paid > 0:
        return InvoiceStatus.PARTIAL
    if due_date is not None and as_utc(now) > as_utc(due_date):
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.DUE


def with_payment_status(invoice: Invoice, now: datetime) -> Invoice:
    """Re-derive a payment-driven status after the final amount moved."""
    if invoice.status not in PAYMENT_DERIVED:
        return invoice
    status = payment_status(invoice.amount_paid, invoice.final_amount, invoice.due_date, now)
    return invoice if status == invoice.status else replace(invoice, status=status)


def apply_payment(invoice: Invoice, payment: PaymentRecord, now: datetime) -> Invoice:
    """Append a payment and recompute amount_paid and status."""
    amount_paid = invoice.amount_paid + payment.amount
    return replace(
        invoice,
        amount_paid=amount_paid,
        payment_history=invoice.payment_history + (payment,),
        status=payment_status(amount_paid, invoice.final_amount, invoice.due_date, now),
    )
