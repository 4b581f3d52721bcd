# Overview: Service-layer operations for invoices; encapsulates business logic and database work.

"""
Invoice Engine

================================================================================
PURPOSE: Bill the customer and track what is still owed
================================================================================

STORED STATUS (one lifecycle value):
    draft -> sent -> viewed
    partial / paid / refunded   (set by payment_service from the payment ledger)
    void                        (terminal; only before any money was taken)

DERIVED (never stored):
    overdue  = amount_due > 0 and due_date < now, unless void or refunded
    display_status = "overdue" when overdue, else the stored status

RULES:
1. Totals are recomputed from lines + tax_rate + discount (money_service)
2. amount_paid / amount_due are only written by payment_service
3. send / remind are legal from every non-void status; they never downgrade
   a payment-derived status (partial, paid, refunded)
4. Editing and deleting are draft-only
================================================================================
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Estimate, Invoice, InvoiceLine, Payment, Ticket, WarrantyClaim
from ..errors import InvalidTransition, NotFound, StillReferenced, ValidationError
from ..validation import coerce_datetime, normalize_line_items, optional_text
from repairflow.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .customer_service import require_customer_in_shop
from .document_service import next_document_number
from .ledger_service import append_ledger_event
from .lifecycle_service import require_status
from .money_service import compute_totals
from .shop_service import get_shop, resolve_tax_rate


INVOICE_STATUSES = ("draft", "sent", "viewed", "partial", "paid", "refunded", "void")

# Closed invoices never read as overdue
NEVER_OVERDUE = ("void", "refunded")

SENDABLE_FROM = ("draft", "sent", "viewed", "partial", "paid", "refunded")
VOIDABLE_FROM = ("draft", "sent", "viewed")
INVOICE_SOURCE_ESTIMATE_STATUSES = ("approved", "converted")

_UNSET = object()


def _load_locked(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise NotFound(f"Invoice {invoice_id} not found")
    return invoice


def _apply_items(invoice: Invoice, items, tax_rate, discount_cents) -> None:
    """Replace lines, recompute totals and re-derive amount_due."""
    lines = normalize_line_items(items, require_one=True)
    totals = compute_totals(lines, tax_rate, discount_cents)

    invoice.lines = [
        InvoiceLine(
            position=i,
            item_type=line.item_type,
            description=line.description,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_total_cents=line.line_total_cents,
        )
        for i, line in enumerate(lines)
    ]
    invoice.tax_rate = tax_rate
    invoice.discount_cents = totals.discount_cents
    invoice.subtotal_cents = totals.subtotal_cents
    invoice.tax_cents = totals.tax_cents
    invoice.total_cents = totals.total_cents

    paid = invoice.amount_paid_cents or 0
    invoice.amount_paid_cents = paid
    invoice.amount_due_cents = max(0, totals.total_cents - paid)


def _record(invoice: Invoice, event_type: str, performed_by, now, note=None) -> None:
    append_ledger_event(
        shop_id=invoice.shop_id,
        event_type=event_type,
        event_category="invoice",
        entity_type="invoice",
        entity_id=invoice.id,
        performed_by=performed_by,
        occurred_at=now,
        note=note,
    )


def _resolve_ticket(shop_id: int, customer_id: int, ticket_id=None, ticket_number=None) -> Ticket | None:
    if ticket_id is None and not ticket_number:
        return None
    if ticket_id is not None:
        ticket = db.session.get(Ticket, ticket_id)
    else:
        ticket = (
            db.session.query(Ticket)
            .filter_by(shop_id=shop_id, ticket_number=str(ticket_number).strip().upper())
            .first()
        )
    if ticket is None or ticket.shop_id != shop_id:
        raise NotFound(f"Ticket {ticket_id or ticket_number} not found")
    if ticket.customer_id != customer_id:
        raise ValidationError(f"Ticket {ticket.ticket_number} belongs to a different customer")
    return ticket


def build_invoice(
    *,
    shop_id: int,
    customer_id: int,
    items,
    tax_rate=None,
    discount_cents=0,
    due_date=None,
    ticket_id: int | None = None,
    ticket_number: str | None = None,
    estimate_id: int | None = None,
    notes: str | None = None,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Invoice:
    """Create a draft invoice inside the caller's transaction (no commit)."""
    now = now or utcnow()
    shop = get_shop(shop_id)
    require_customer_in_shop(customer_id, shop_id)
    ticket = _resolve_ticket(shop_id, customer_id, ticket_id, ticket_number)
    rate = resolve_tax_rate(shop, tax_rate)

    invoice = Invoice(
        shop_id=shop_id,
        customer_id=customer_id,
        ticket_id=ticket.id if ticket else None,
        ticket_number=ticket.ticket_number if ticket else None,
        estimate_id=estimate_id,
        status="draft",
        due_date=coerce_datetime(due_date, "due_date")
        or now + timedelta(days=current_app.config["INVOICE_DUE_DAYS"]),
        notes=optional_text(notes, "notes", max_length=4000),
        amount_paid_cents=0,
        send_count=0,
        created_at=now,
        created_by=performed_by,
    )
    _apply_items(invoice, items, rate, discount_cents)
    invoice.invoice_number = next_document_number(shop_id=shop_id, document_type="INVOICE")

    db.session.add(invoice)
    db.session.flush()
    _record(invoice, "invoice.created", performed_by, now, note=f"Invoice {invoice.invoice_number} created")
    return invoice


def create_invoice(**kwargs) -> Invoice:
    """
    Create and commit a draft invoice. Accepts the arguments of build_invoice.

    due_date defaults to now + INVOICE_DUE_DAYS. amount_paid starts at 0.
    """
    def _op():
        invoice = build_invoice(**kwargs)
        db.session.commit()
        current_app.logger.info(
            "Invoice %s created total=%s by %s", invoice.invoice_number, invoice.total_cents, invoice.created_by
        )
        return invoice

    return run_with_retry(_op)


def create_invoice_from_estimate(
    estimate_id: int,
    *,
    discount_cents=0,
    due_date=None,
    notes: str | None = None,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Invoice:
    """
    Bill an approved or converted estimate: copies its items and tax rate,
    and links the ticket it was converted into.
    """
    def _op():
        estimate = db.session.get(Estimate, estimate_id)
        if estimate is None:
            raise NotFound(f"Estimate {estimate_id} not found")
        require_status(
            estimate.status,
            INVOICE_SOURCE_ESTIMATE_STATUSES,
            entity="estimate",
            action="invoice",
            label=estimate.estimate_number,
        )
        invoice = build_invoice(
            shop_id=estimate.shop_id,
            customer_id=estimate.customer_id,
            items=[line.to_dict() for line in estimate.lines],
            tax_rate=estimate.tax_rate,
            discount_cents=discount_cents,
            due_date=due_date,
            ticket_id=estimate.converted_to_ticket_id,
            estimate_id=estimate.id,
            notes=notes if notes is not None else estimate.notes,
            performed_by=performed_by,
            now=now,
        )
        db.session.commit()
        current_app.logger.info(
            "Invoice %s created from estimate %s by %s", invoice.invoice_number, estimate.estimate_number, performed_by
        )
        return invoice

    return run_with_retry(_op)


# =============================================================================
# QUERIES / DERIVED STATE
# =============================================================================

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFound(f"Invoice {invoice_id} not found")
    return invoice


def lookup_invoice(shop_id: int, query: str) -> Invoice:
    """
    Find an invoice from what the customer has in hand: the invoice number,
    or failing that the ticket number of the repair it billed.

    A ticket with several invoices resolves to its newest non-void one
    (newest void one when every invoice was voided).

    Raises:
        ValidationError: blank query
        NotFound: no invoice or ticket matches, or the ticket was never billed
    """
    number = (query or "").strip().upper()
    if not number:
        raise ValidationError("q is required")

    invoice = db.session.query(Invoice).filter_by(shop_id=shop_id, invoice_number=number).first()
    if invoice is not None:
        return invoice

    ticket = db.session.query(Ticket).filter_by(shop_id=shop_id, ticket_number=number).first()
    if ticket is not None:
        invoice = (
            db.session.query(Invoice)
            .filter_by(shop_id=shop_id, ticket_id=ticket.id)
            .order_by((Invoice.status == "void").asc(), Invoice.created_at.desc(), Invoice.id.desc())
            .first()
        )
        if invoice is not None:
            return invoice

    raise NotFound(f"No matching invoice found for {number}")


def is_overdue(invoice: Invoice, now: datetime | None = None) -> bool:
    """Derived: money still owed past the due date, on an open invoice."""
    now = now or utcnow()
    if invoice.status in NEVER_OVERDUE:
        return False
    return (invoice.amount_due_cents or 0) > 0 and invoice.due_date is not None and invoice.due_date < now


def display_status(invoice: Invoice, now: datetime | None = None) -> str:
    return "overdue" if is_overdue(invoice, now) else invoice.status


def list_invoices(shop_id: int, *, status: str | None = None, limit: int = 50, offset: int = 0) -> tuple[list[Invoice], int]:
    q = db.session.query(Invoice).filter_by(shop_id=shop_id)
    if status:
        q = q.filter_by(status=status)
    total = q.count()
    invoices = q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).offset(offset).limit(limit).all()
    return invoices, total


def list_overdue_invoices(shop_id: int | None = None, *, now: datetime | None = None) -> list[Invoice]:
    """Overdue invoices, oldest due date first (same predicate as is_overdue)."""
    now = now or utcnow()
    q = db.session.query(Invoice).filter(
        Invoice.amount_due_cents > 0,
        Invoice.due_date < now,
        Invoice.status.notin_(NEVER_OVERDUE),
    )
    if shop_id is not None:
        q = q.filter(Invoice.shop_id == shop_id)
    return q.order_by(Invoice.due_date.asc(), Invoice.id.asc()).all()


# =============================================================================
# EDIT / DELETE
# =============================================================================

def update_invoice(
    invoice_id: int,
    *,
    items=_UNSET,
    tax_rate=_UNSET,
    discount_cents=_UNSET,
    due_date=_UNSET,
    notes=_UNSET,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Invoice:
    """Edit a draft invoice; totals and amount_due follow the new inputs."""
    now = now or utcnow()

    def _op():
        invoice = _load_locked(invoice_id)
        require_status(invoice.status, ("draft",), entity="invoice", action="edit", label=invoice.invoice_number)

        if items is not _UNSET or tax_rate is not _UNSET or discount_cents is not _UNSET:
            rate = invoice.tax_rate
            if tax_rate is not _UNSET:
                rate = resolve_tax_rate(get_shop(invoice.shop_id), tax_rate)
            new_items = items if items is not _UNSET else [line.to_dict() for line in invoice.lines]
            discount = discount_cents if discount_cents is not _UNSET else invoice.discount_cents
            _apply_items(invoice, new_items, rate, discount)
        if due_date is not _UNSET:
            parsed = coerce_datetime(due_date, "due_date")
            if parsed is None:
                raise ValidationError("due_date cannot be cleared")
            invoice.due_date = parsed
        if notes is not _UNSET:
            invoice.notes = optional_text(notes, "notes", max_length=4000)

        invoice.updated_at = now
        _record(invoice, "invoice.updated", performed_by, now)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def delete_invoice(invoice_id: int, *, performed_by: str | None = None) -> None:
    """
    Delete a draft invoice with no payment history.

    Raises:
        InvalidTransition: invoice is not a draft
        StillReferenced: payments or warranty claims point at it
    """
    def _op():
        invoice = _load_locked(invoice_id)
        require_status(invoice.status, ("draft",), entity="invoice", action="delete", label=invoice.invoice_number)
        references = {
            "payments": db.session.query(Payment).filter_by(invoice_id=invoice.id).count(),
            "warranty_claims": db.session.query(WarrantyClaim).filter_by(invoice_id=invoice.id).count(),
        }
        referenced = {k: v for k, v in references.items() if v}
        if referenced:
            raise StillReferenced(
                f"Invoice {invoice.invoice_number} is still referenced by {', '.join(referenced)}",
                details=referenced,
            )
        _record(invoice, "invoice.deleted", performed_by, utcnow(), note=f"Invoice {invoice.invoice_number} deleted")
        db.session.delete(invoice)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _deliver(invoice_id: int, *, reminder: bool, performed_by, now) -> Invoice:
    def _op():
        invoice = _load_locked(invoice_id)
        action = "remind" if reminder else "send"
        require_status(invoice.status, SENDABLE_FROM, entity="invoice", action=action, label=invoice.invoice_number)

        from_status = invoice.status
        if invoice.status in ("draft", "viewed"):
            invoice.status = "sent"
        invoice.sent_at = now
        invoice.send_count = (invoice.send_count or 0) + 1
        if reminder:
            invoice.last_reminded_at = now
        invoice.updated_at = now

        _record(
            invoice,
            "invoice.reminded" if reminder else "invoice.sent",
            performed_by,
            now,
            note=f"{from_status} -> {invoice.status} (#{invoice.send_count})",
        )
        db.session.commit()
        if reminder:
            current_app.logger.info(
                "Invoice %s reminder #%s sent by %s (due %s)",
                invoice.invoice_number, invoice.send_count, performed_by, invoice.amount_due_cents,
            )
        else:
            current_app.logger.info(
                "Invoice %s %s -> %s by %s", invoice.invoice_number, from_status, invoice.status, performed_by
            )
        return invoice

    return run_with_retry(_op)


def send_invoice(invoice_id: int, *, performed_by: str | None = None, now: datetime | None = None) -> Invoice:
    """Any non-void invoice -> sent (payment-derived statuses are kept)."""
    return _deliver(invoice_id, reminder=False, performed_by=performed_by, now=now or utcnow())


def remind_invoice(invoice_id: int, *, performed_by: str | None = None, now: datetime | None = None) -> Invoice:
    """A repeat send; recorded as a reminder."""
    return _deliver(invoice_id, reminder=True, performed_by=performed_by, now=now or utcnow())


def mark_invoice_viewed(invoice_id: int, *, performed_by: str | None = None, now: datetime | None = None) -> Invoice:
    now = now or utcnow()

    def _op():
        invoice = _load_locked(invoice_id)
        require_status(invoice.status, ("sent",), entity="invoice", action="mark viewed", label=invoice.invoice_number)
        invoice.status = "viewed"
        invoice.viewed_at = now
        _record(invoice, "invoice.viewed", performed_by, now)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def void_invoice(
    invoice_id: int,
    reason: str | None = None,
    *,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Invoice:
    """
    Cancel an invoice without deleting it.

    Only before any money was taken: a paid or partially paid invoice must be
    refunded instead.
    """
    now = now or utcnow()

    def _op():
        invoice = _load_locked(invoice_id)
        require_status(invoice.status, VOIDABLE_FROM, entity="invoice", action="void", label=invoice.invoice_number)
        pending = db.session.query(Payment).filter_by(invoice_id=invoice.id, status="pending").count()
        if (invoice.amount_paid_cents or 0) > 0 or pending:
            raise InvalidTransition(
                f"Cannot void invoice {invoice.invoice_number}: payments exist; refund them first",
                details={"amount_paid_cents": invoice.amount_paid_cents, "pending_payments": pending},
            )

        from_status = invoice.status
        invoice.status = "void"
        invoice.voided_at = now
        invoice.voided_by = performed_by
        invoice.void_reason = optional_text(reason, "reason")
        invoice.updated_at = now
        _record(invoice, "invoice.voided", performed_by, now, note=invoice.void_reason)
        db.session.commit()
        current_app.logger.info("Invoice %s %s -> void by %s", invoice.invoice_number, from_status, performed_by)
        return invoice

    return run_with_retry(_op)
