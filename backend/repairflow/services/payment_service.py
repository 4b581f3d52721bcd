# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Ledger Service

WHY: Invoices are settled by payments, and money must reconcile to the cent.
amount_paid / amount_due on the invoice are a cache of this ledger and are
recomputed after every change, never edited directly.

DESIGN PRINCIPLES:
- Payments are separate from invoices (many-to-one relationship)
- Partial payments: a payment can be less than the amount due
- No overpayment: amount > amount_due raises ExceedsBalance (no credit balance)
- Immutable ledger: a completed payment is never edited; refunds are NEW rows
  (transaction_type=REFUND) pointing at the payment they offset
- Two-phase card flow: start_payment (pending, not counted) -> complete/fail

AMOUNT PAID:
    sum(PAYMENT rows in completed/refunded) - sum(completed REFUND rows)

INVOICE STATUS AFTER EVERY CHANGE:
- paid:      amount_due == 0 and something was paid
- partial:   0 < amount_paid < total
- refunded:  amount_paid back to 0 after refunds (closed)
- otherwise: the invoice keeps its lifecycle status (draft/sent/viewed)
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Invoice, Payment
from ..errors import ExceedsBalance, InvalidTransition, NotFound, ValidationError
from ..validation import coerce_cents, optional_text
from repairflow.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
from .lifecycle_service import require_status


# =============================================================================
# METHODS / TYPES (CONSTANTS)
# =============================================================================

METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_CHECK = "CHECK"
METHOD_OTHER = "OTHER"

VALID_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_CHECK,
    METHOD_OTHER,
]

TYPE_PAYMENT = "PAYMENT"
TYPE_REFUND = "REFUND"

PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def _validate_method(method: str) -> str:
    value = (method or "").strip().upper()
    if value not in VALID_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {VALID_METHODS}")
    return value


def _validate_amounts(amount_cents, processor_fee_cents) -> tuple[int, int]:
    amount = coerce_cents(amount_cents, "amount_cents", allow_zero=False)
    fee = coerce_cents(processor_fee_cents or 0, "processor_fee_cents")
    if fee > amount:
        raise ValidationError("processor_fee_cents cannot exceed amount_cents")
    return amount, fee


def _lock_invoice(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if not invoice:
        raise NotFound(f"Invoice {invoice_id} not found")
    if invoice.status == "void":
        raise InvalidTransition(
            f"Cannot take payment on void invoice {invoice.invoice_number}",
            details={"current_status": invoice.status},
        )
    return invoice


def _check_balance(invoice: Invoice, amount: int) -> None:
    if amount > invoice.amount_due_cents:
        raise ExceedsBalance(
            f"Payment of {amount} exceeds amount due {invoice.amount_due_cents} on {invoice.invoice_number}",
            details={"amount_cents": amount, "amount_due_cents": invoice.amount_due_cents},
        )


def apply_payment(
    invoice_id: int,
    amount_cents: int,
    method: str,
    reference: str | None = None,
    processor_fee_cents: int = 0,
    *,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Payment:
    """
    Record a completed payment against an invoice.

    Args:
        invoice_id: Invoice being paid
        amount_cents: Amount received (> 0, <= amount_due)
        method: CASH, CARD, CHECK, OTHER
        reference: Card auth code, check number, etc. (optional)
        processor_fee_cents: Card processor fee (net = amount - fee)
        performed_by: Staff identity for the audit ledger

    Returns:
        Payment record (status completed)

    Raises:
        ValidationError: bad amount, fee or method
        ExceedsBalance: amount > amount_due (invoice unchanged)
        InvalidTransition: invoice is void
    """
    now = now or utcnow()
    method = _validate_method(method)
    amount, fee = _validate_amounts(amount_cents, processor_fee_cents)

    def _op():
        invoice = _lock_invoice(invoice_id)
        _check_balance(invoice, amount)

        payment = Payment(
            invoice_id=invoice.id,
            transaction_type=TYPE_PAYMENT,
            amount_cents=amount,
            method=method,
            reference=optional_text(reference, "reference", max_length=128),
            processor_fee_cents=fee,
            status="completed",
            performed_by=performed_by,
            created_at=now,
            completed_at=now,
        )
        db.session.add(payment)
        db.session.flush()

        _update_invoice_payment_status(invoice, now)
        _log_payment_event(invoice, payment, "payment.completed", performed_by, now)

        db.session.commit()
        current_app.logger.info(
            "Payment %s of %s (%s) on invoice %s by %s; due now %s",
            payment.id, amount, method, invoice.invoice_number, performed_by, invoice.amount_due_cents,
        )
        return payment

    return run_with_retry(_op)


def start_payment(
    invoice_id: int,
    amount_cents: int,
    method: str,
    reference: str | None = None,
    processor_fee_cents: int = 0,
    *,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Payment:
    """
    Open a pending payment (e.g. card authorization in flight).

    WHY: A pending payment does not count toward amount_paid, so a card
    that is later declined never marks the invoice paid.
    """
    now = now or utcnow()
    method = _validate_method(method)
    amount, fee = _validate_amounts(amount_cents, processor_fee_cents)

    def _op():
        invoice = _lock_invoice(invoice_id)
        _check_balance(invoice, amount)

        payment = Payment(
            invoice_id=invoice.id,
            transaction_type=TYPE_PAYMENT,
            amount_cents=amount,
            method=method,
            reference=optional_text(reference, "reference", max_length=128),
            processor_fee_cents=fee,
            status="pending",
            performed_by=performed_by,
            created_at=now,
        )
        db.session.add(payment)
        db.session.flush()
        _log_payment_event(invoice, payment, "payment.started", performed_by, now)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def _lock_pending(payment_id: int) -> Payment:
    payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
    if not payment:
        raise NotFound(f"Payment {payment_id} not found")
    require_status(payment.status, ("pending",), entity="payment", action="settle", label=str(payment.id))
    return payment


def complete_payment(
    payment_id: int,
    *,
    reference: str | None = None,
    processor_fee_cents: int | None = None,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Payment:
    """pending -> completed; re-checks the balance at settlement time."""
    now = now or utcnow()

    def _op():
        payment = _lock_pending(payment_id)
        invoice = _lock_invoice(payment.invoice_id)
        _check_balance(invoice, payment.amount_cents)

        if processor_fee_cents is not None:
            _, payment.processor_fee_cents = _validate_amounts(payment.amount_cents, processor_fee_cents)
        if reference is not None:
            payment.reference = optional_text(reference, "reference", max_length=128)
        payment.status = "completed"
        payment.completed_at = now

        _update_invoice_payment_status(invoice, now)
        _log_payment_event(invoice, payment, "payment.completed", performed_by, now)
        db.session.commit()
        current_app.logger.info("Payment %s completed on invoice %s by %s", payment.id, invoice.invoice_number, performed_by)
        return payment

    return run_with_retry(_op)


def fail_payment(
    payment_id: int,
    reason: str | None = None,
    *,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Payment:
    """pending -> failed. The invoice balance is untouched."""
    now = now or utcnow()

    def _op():
        payment = _lock_pending(payment_id)
        payment.status = "failed"
        payment.failed_at = now
        payment.reason = optional_text(reason, "reason")
        invoice = db.session.get(Invoice, payment.invoice_id)
        _log_payment_event(invoice, payment, "payment.failed", performed_by, now, note=payment.reason)
        db.session.commit()
        current_app.logger.info("Payment %s failed on invoice %s: %s", payment.id, invoice.invoice_number, payment.reason)
        return payment

    return run_with_retry(_op)


# =============================================================================
# REFUNDS
# =============================================================================

def refundable_cents(payment: Payment) -> int:
    """What is left to refund on a PAYMENT row."""
    refunded = (
        db.session.query(db.func.coalesce(db.func.sum(Payment.amount_cents), 0))
        .filter(
            Payment.refund_of_payment_id == payment.id,
            Payment.transaction_type == TYPE_REFUND,
            Payment.status == "completed",
        )
        .scalar()
        or 0
    )
    return payment.amount_cents - int(refunded)


def _refund_payment_locked(
    payment: Payment,
    invoice: Invoice,
    amount_cents: int | None,
    reason: str | None,
    *,
    performed_by: str | None,
    now: datetime,
    warranty_claim_id: int | None = None,
) -> Payment:
    """
    Append a REFUND row offsetting ``payment`` (caller holds the locks and commits).

    Used by refund_payment and by warranty claim resolution.
    """
    if payment.transaction_type != TYPE_PAYMENT:
        raise InvalidTransition(f"Payment {payment.id} is a refund and cannot be refunded")
    require_status(payment.status, ("completed",), entity="payment", action="refund", label=str(payment.id))

    remaining = refundable_cents(payment)
    amount = remaining if amount_cents is None else coerce_cents(amount_cents, "amount_cents", allow_zero=False)
    if amount > remaining:
        raise ExceedsBalance(
            f"Refund of {amount} exceeds refundable {remaining} on payment {payment.id}",
            details={"amount_cents": amount, "refundable_cents": remaining},
        )

    refund = Payment(
        invoice_id=invoice.id,
        transaction_type=TYPE_REFUND,
        amount_cents=amount,
        method=payment.method,
        processor_fee_cents=0,
        status="completed",
        refund_of_payment_id=payment.id,
        warranty_claim_id=warranty_claim_id,
        reason=optional_text(reason, "reason"),
        performed_by=performed_by,
        created_at=now,
        completed_at=now,
    )
    db.session.add(refund)
    db.session.flush()

    if amount == remaining:
        payment.status = "refunded"

    _update_invoice_payment_status(invoice, now)
    _log_payment_event(invoice, refund, "payment.refunded", performed_by, now, note=refund.reason)
    return refund


def refund_payment(
    payment_id: int,
    amount_cents: int | None = None,
    reason: str | None = None,
    *,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Payment:
    """
    Refund all or part of a completed payment.

    The original row is never deleted: a new REFUND row is appended and
    amount_due goes back up. Once refunds cover the whole payment it is
    marked ``refunded``.

    Returns:
        The REFUND payment row

    Raises:
        InvalidTransition: payment is not completed (pending, failed, refunded)
        ExceedsBalance: amount > what is left to refund
    """
    now = now or utcnow()

    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise NotFound(f"Payment {payment_id} not found")
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=payment.invoice_id)).first()

        refund = _refund_payment_locked(
            payment, invoice, amount_cents, reason, performed_by=performed_by, now=now
        )
        db.session.commit()
        current_app.logger.info(
            "Refund %s of %s against payment %s on invoice %s by %s",
            refund.id, refund.amount_cents, payment.id, invoice.invoice_number, performed_by,
        )
        return refund

    return run_with_retry(_op)


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _log_payment_event(invoice: Invoice, payment: Payment, event_type: str, performed_by, now, note=None) -> None:
    append_ledger_event(
        shop_id=invoice.shop_id,
        event_type=event_type,
        event_category="payment",
        entity_type="payment",
        entity_id=payment.id,
        performed_by=performed_by,
        occurred_at=now,
        note=note,
        payload=(
            f"invoice_id={invoice.id},type={payment.transaction_type},"
            f"method={payment.method},amount_cents={payment.amount_cents}"
        ),
    )


def calculate_amount_paid(invoice_id: int) -> int:
    """Net money held against an invoice, from the ledger."""
    received = (
        db.session.query(db.func.coalesce(db.func.sum(Payment.amount_cents), 0))
        .filter(
            Payment.invoice_id == invoice_id,
            Payment.transaction_type == TYPE_PAYMENT,
            Payment.status.in_(("completed", "refunded")),
        )
        .scalar()
        or 0
    )
    returned = (
        db.session.query(db.func.coalesce(db.func.sum(Payment.amount_cents), 0))
        .filter(
            Payment.invoice_id == invoice_id,
            Payment.transaction_type == TYPE_REFUND,
            Payment.status == "completed",
        )
        .scalar()
        or 0
    )
    return int(received) - int(returned)


def _update_invoice_payment_status(invoice: Invoice, now: datetime) -> None:
    """
    Recalculate amount_paid / amount_due and the payment-derived status.

    WHY: amount_paid + amount_due == total must hold after every payment,
    completion and refund.
    """
    paid = calculate_amount_paid(invoice.id)
    has_refunds = (
        db.session.query(Payment.id)
        .filter(Payment.invoice_id == invoice.id, Payment.transaction_type == TYPE_REFUND)
        .first()
        is not None
    )

    invoice.amount_paid_cents = paid
    invoice.amount_due_cents = max(0, invoice.total_cents - paid)
    invoice.updated_at = now

    if invoice.status == "void":
        return
    if paid > 0 and invoice.amount_due_cents == 0:
        invoice.status = "paid"
        if invoice.paid_at is None:
            invoice.paid_at = now
    elif paid > 0:
        invoice.status = "partial"
        invoice.paid_at = None
    elif has_refunds:
        invoice.status = "refunded"
        invoice.paid_at = None


# =============================================================================
# REPORTING
# =============================================================================

def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise NotFound(f"Payment {payment_id} not found")
    return payment


def get_invoice_payments(invoice_id: int, include_failed: bool = False) -> list[Payment]:
    """
    All ledger rows for an invoice (payments and refunds), oldest first.

    Args:
        invoice_id: Invoice ID
        include_failed: Include failed card attempts (default: False)
    """
    query = db.session.query(Payment).filter_by(invoice_id=invoice_id)
    if not include_failed:
        query = query.filter(Payment.status != "failed")
    return query.order_by(Payment.created_at, Payment.id).all()


def get_payment_summary(invoice_id: int) -> dict:
    """
    Payment summary for an invoice.

    Returns:
        - total_cents / amount_paid_cents / amount_due_cents
        - net_received_cents: payments minus processor fees minus refunds
        - status: stored invoice status
        - payments: ledger rows
    """
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFound(f"Invoice {invoice_id} not found")

    rows = get_invoice_payments(invoice_id)
    net = sum(
        p.net_cents if p.transaction_type == TYPE_PAYMENT else -p.amount_cents
        for p in rows
        if p.status in ("completed", "refunded")
    )
    return {
        "invoice_id": invoice.id,
        "total_cents": invoice.total_cents,
        "amount_paid_cents": invoice.amount_paid_cents,
        "amount_due_cents": invoice.amount_due_cents,
        "net_received_cents": net,
        "status": invoice.status,
        "payments": [p.to_dict() for p in rows],
    }
