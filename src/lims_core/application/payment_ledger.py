"""Payment Ledger — appends payments and re-derives invoice status."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from lims_core.application.audit_recorder import AuditRecorder
from lims_core.domain.billing import apply_payment
from lims_core.domain.entities import Invoice, NotificationType, PaymentRecord
from lims_core.domain.records import from_record
from lims_core.domain.ports import EntityStore

logger = logging.getLogger(__name__)


class PaymentLedger:

    def __init__(
        self,
        store: EntityStore,
        recorder: AuditRecorder,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._recorder = recorder
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def record_payment(
        self,
        invoice_id: str,
        payment: PaymentRecord | Mapping[str, Any],
        user_id: str | None = None,
    ) -> Invoice | None:
        """Append payment to the invoice history. Returns None for unknown ids.

        Overpayments and negative amounts are accepted as-is.
        """
        invoice = self._store.get("invoices", invoice_id)
        if invoice is None:
            return None
        now = self._clock()
        if not isinstance(payment, PaymentRecord):
            payment = from_record(PaymentRecord, {"date": now, **payment})

        updated = apply_payment(invoice, payment, now)
        self._store.put("invoices", updated)

        if updated.amount_paid > updated.final_amount:
            logger.warning(
                "Invoice %s overpaid by %.2f",
                updated.invoice_number, updated.amount_paid - updated.final_amount,
            )

        self._recorder.record(
            "PAYMENT", "INVOICES",
            f"Recorded {payment.method} payment of {payment.amount} on invoice "
            f"{updated.invoice_number}; paid {updated.amount_paid} of {updated.final_amount}, "
            f"status {invoice.status.value} → {updated.status.value}",
            user_id=user_id or payment.received_by or None,
            collection_center_id=updated.collection_center_id,
        )
        self._recorder.notify(
            "Payment Received",
            f"Payment of {payment.amount} received for invoice #{updated.invoice_number}.",
            type=NotificationType.SUCCESS,
            category="payment",
        )
        return updated
