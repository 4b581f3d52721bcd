# Overview: Service-layer operations for warranty; encapsulates business logic and database work.

"""
Warranty Engine

================================================================================
PURPOSE: Decide whether a finished repair is still covered, and settle claims
================================================================================

WARRANTY WINDOW:
    repair_date = ticket.completed_at (stamped when the ticket hits PICKED_UP)
    period      = WARRANTY_POLICY_DAYS[repair_type] (DEFAULT_WARRANTY_DAYS if unknown)
    expires_at  = repair_date + period
    A claim may be filed while now <= expires_at (inclusive boundary).
    A period of 0 days (e.g. water damage) means the repair is not covered.

CLAIM STATE MACHINE:
    pending -> approved -> completed
    pending -> denied

RESOLUTIONS (applied by resolve_claim):
    redo            new INTAKE ticket for the same customer/device
    refund          refund everything paid on the repair's invoice
    partial-refund  refund resolution_amount_cents
    replacement     refund resolution_amount_cents if given, else no money moves

At most one open (pending/approved) claim per ticket.
================================================================================
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Customer, Invoice, Payment, Ticket, WarrantyClaim
from ..errors import ClaimInProgress, ExceedsBalance, NotEligible, NotFound, ValidationError, WarrantyExpired
from ..validation import coerce_cents, optional_text, require_text
from repairflow.time_utils import days_until, utcnow
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .ledger_service import append_ledger_event
from .lifecycle_service import require_status
from .payment_service import TYPE_PAYMENT, _refund_payment_locked, refundable_cents
from .ticket_service import build_ticket, get_ticket_by_number, is_warranty_eligible


CLAIM_STATUSES = ("pending", "approved", "denied", "completed")
OPEN_CLAIM_STATUSES = ("pending", "approved")
RESOLUTION_TYPES = ("redo", "replacement", "refund", "partial-refund")


# =============================================================================
# POLICY / WINDOW
# =============================================================================

def normalize_repair_type(repair_type: str | None) -> str | None:
    if not repair_type:
        return None
    return repair_type.strip().lower().replace(" ", "-").replace("_", "-")


def warranty_period_days(repair_type: str | None) -> int:
    """Days of coverage for a repair type (policy table, default for unknown types)."""
    policy = current_app.config["WARRANTY_POLICY_DAYS"]
    key = normalize_repair_type(repair_type)
    if key in policy:
        return int(policy[key])
    return int(current_app.config["DEFAULT_WARRANTY_DAYS"])


def warranty_window(ticket: Ticket) -> tuple[datetime | None, int, datetime | None]:
    """(repair_date, period_days, expires_at); dates are None until the ticket is picked up."""
    period = warranty_period_days(ticket.repair_type)
    repair_date = ticket.completed_at if is_warranty_eligible(ticket) else None
    if repair_date is None:
        return None, period, None
    return repair_date, period, repair_date + timedelta(days=period)


def warranty_status(ticket: Ticket, now: datetime | None = None) -> dict:
    """Coverage summary for a ticket, as shown at the counter."""
    now = now or utcnow()
    repair_date, period, expires_at = warranty_window(ticket)
    is_active = expires_at is not None and period > 0 and now <= expires_at
    return {
        "ticket_id": ticket.id,
        "ticket_number": ticket.ticket_number,
        "customer_id": ticket.customer_id,
        "repair_type": ticket.repair_type,
        "repair_date": repair_date,
        "warranty_period_days": period,
        "expires_at": expires_at,
        "is_active": is_active,
        "days_remaining": days_until(expires_at, now) if is_active else 0,
    }


def _digits(value: str | None) -> str:
    return re.sub(r"\D", "", value or "")


def lookup_warranty(shop_id: int, query: str, now: datetime | None = None) -> dict:
    """
    Find the newest ticket by ticket number, or by customer phone digits,
    and report its warranty status.

    Raises:
        ValidationError: empty query
        NotFound: nothing matches
    """
    query = require_text(query, "query", max_length=64)

    ticket = (
        db.session.query(Ticket)
        .filter_by(shop_id=shop_id, ticket_number=query.upper())
        .first()
    )
    if ticket is None:
        digits = _digits(query)
        if len(digits) >= 4:
            customer_ids = [
                c.id
                for c in db.session.query(Customer).filter(Customer.shop_id == shop_id, Customer.phone.isnot(None))
                if _digits(c.phone).endswith(digits)
            ]
            if customer_ids:
                ticket = (
                    db.session.query(Ticket)
                    .filter(Ticket.shop_id == shop_id, Ticket.customer_id.in_(customer_ids))
                    .order_by(Ticket.created_at.desc(), Ticket.id.desc())
                    .first()
                )
    if ticket is None:
        raise NotFound(f"No ticket found for '{query}'")
    return warranty_status(ticket, now)


def days_remaining(claim: WarrantyClaim, now: datetime | None = None) -> int:
    """Whole days of coverage left on the claim's repair (rounded up, never negative)."""
    return days_until(claim.warranty_expires_at, now or utcnow())


def expiring_warranties(shop_id: int | None = None, *, within_days: int = 7, now: datetime | None = None) -> list[dict]:
    """Active warranties whose window closes within ``within_days``, soonest first."""
    now = now or utcnow()
    horizon = now + timedelta(days=within_days)
    q = db.session.query(Ticket).filter(Ticket.status == "PICKED_UP", Ticket.completed_at.isnot(None))
    if shop_id is not None:
        q = q.filter(Ticket.shop_id == shop_id)

    results = []
    for ticket in q:
        status = warranty_status(ticket, now)
        if status["is_active"] and status["expires_at"] <= horizon:
            results.append(status)
    return sorted(results, key=lambda s: s["expires_at"])


# =============================================================================
# CLAIMS
# =============================================================================

def _source_invoice(ticket: Ticket) -> Invoice | None:
    """Newest non-void invoice billed for the ticket."""
    return (
        db.session.query(Invoice)
        .filter(Invoice.ticket_id == ticket.id, Invoice.status != "void")
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .first()
    )


def _record(claim: WarrantyClaim, event_type: str, performed_by, now, note=None) -> None:
    append_ledger_event(
        shop_id=claim.shop_id,
        event_type=event_type,
        event_category="warranty",
        entity_type="warranty_claim",
        entity_id=claim.id,
        performed_by=performed_by,
        occurred_at=now,
        note=note,
    )


def file_claim(
    *,
    shop_id: int,
    ticket_number: str,
    reason: str,
    description: str,
    resolution_type: str,
    resolution_amount_cents: int | None = None,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> WarrantyClaim:
    """
    File a warranty claim against a picked-up repair.

    Raises:
        NotFound: unknown ticket number
        NotEligible: ticket not PICKED_UP, or repair type carries no warranty
        WarrantyExpired: now > warranty_expires_at
        ClaimInProgress: ticket already has a pending/approved claim (claim_id attached)
    """
    now = now or utcnow()
    reason = require_text(reason, "reason")
    description = require_text(description, "description", max_length=4000)
    resolution_type = (resolution_type or "").strip().lower()
    if resolution_type not in RESOLUTION_TYPES:
        raise ValidationError(f"resolution_type must be one of {', '.join(RESOLUTION_TYPES)}")
    amount = (
        coerce_cents(resolution_amount_cents, "resolution_amount_cents", allow_zero=False)
        if resolution_amount_cents is not None
        else None
    )

    def _op():
        found = get_ticket_by_number(shop_id, ticket_number)
        ticket = lock_for_update(db.session.query(Ticket).filter_by(id=found.id)).first()

        if not is_warranty_eligible(ticket):
            raise NotEligible(
                f"Ticket {ticket.ticket_number} is {ticket.status}; only picked-up repairs carry a warranty",
                details={"ticket_status": ticket.status},
            )
        repair_date, period, expires_at = warranty_window(ticket)
        if period <= 0:
            raise NotEligible(
                f"Repair type '{ticket.repair_type}' is not covered by warranty",
                details={"repair_type": ticket.repair_type},
            )
        if now > expires_at:
            raise WarrantyExpired(
                f"Warranty for {ticket.ticket_number} expired at {expires_at.isoformat()}",
                details={"warranty_expires_at": expires_at.isoformat()},
            )

        open_claim = (
            db.session.query(WarrantyClaim)
            .filter(WarrantyClaim.ticket_id == ticket.id, WarrantyClaim.status.in_(OPEN_CLAIM_STATUSES))
            .first()
        )
        if open_claim is not None:
            raise ClaimInProgress(
                f"Ticket {ticket.ticket_number} already has open claim {open_claim.claim_number}",
                claim_id=open_claim.id,
            )

        invoice = _source_invoice(ticket)
        if invoice is not None:
            original_amount = invoice.total_cents
        else:
            original_amount = ticket.actual_cost_cents or ticket.estimated_cost_cents or 0

        claim = WarrantyClaim(
            shop_id=shop_id,
            claim_number=next_document_number(shop_id=shop_id, document_type="WARRANTY_CLAIM"),
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            customer_id=ticket.customer_id,
            invoice_id=invoice.id if invoice else None,
            original_repair_type=ticket.repair_type,
            original_repair_date=repair_date,
            original_amount_cents=original_amount,
            warranty_period_days=period,
            warranty_expires_at=expires_at,
            claim_date=now,
            claim_reason=reason,
            claim_description=description,
            status="pending",
            resolution_type=resolution_type,
            resolution_amount_cents=amount,
            created_by=performed_by,
        )
        db.session.add(claim)
        db.session.flush()
        _record(claim, "warranty.claim_filed", performed_by, now, note=f"{ticket.ticket_number}: {reason}")
        db.session.commit()
        current_app.logger.info(
            "Warranty claim %s filed on %s (%s, %s days left) by %s",
            claim.claim_number, ticket.ticket_number, resolution_type, days_until(expires_at, now), performed_by,
        )
        return claim

    return run_with_retry(_op)


def get_claim(claim_id: int) -> WarrantyClaim:
    claim = db.session.get(WarrantyClaim, claim_id)
    if claim is None:
        raise NotFound(f"Warranty claim {claim_id} not found")
    return claim


def list_claims(shop_id: int, *, status: str | None = None, limit: int = 50, offset: int = 0) -> tuple[list[WarrantyClaim], int]:
    q = db.session.query(WarrantyClaim).filter_by(shop_id=shop_id)
    if status:
        q = q.filter_by(status=status)
    total = q.count()
    claims = q.order_by(WarrantyClaim.claim_date.desc(), WarrantyClaim.id.desc()).offset(offset).limit(limit).all()
    return claims, total


def _load_locked(claim_id: int) -> WarrantyClaim:
    claim = lock_for_update(db.session.query(WarrantyClaim).filter_by(id=claim_id)).first()
    if claim is None:
        raise NotFound(f"Warranty claim {claim_id} not found")
    return claim


def approve_claim(
    claim_id: int,
    *,
    review_notes: str | None = None,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> WarrantyClaim:
    now = now or utcnow()

    def _op():
        claim = _load_locked(claim_id)
        require_status(claim.status, ("pending",), entity="warranty claim", action="approve", label=claim.claim_number)
        claim.status = "approved"
        claim.reviewed_by = performed_by
        claim.reviewed_at = now
        claim.review_notes = optional_text(review_notes, "review_notes", max_length=4000)
        _record(claim, "warranty.claim_approved", performed_by, now)
        db.session.commit()
        current_app.logger.info("Warranty claim %s approved by %s", claim.claim_number, performed_by)
        return claim

    return run_with_retry(_op)


def deny_claim(
    claim_id: int,
    reason: str,
    *,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> WarrantyClaim:
    """pending -> denied. A non-empty reason is mandatory for the audit trail."""
    now = now or utcnow()

    def _op():
        claim = _load_locked(claim_id)
        require_status(claim.status, ("pending",), entity="warranty claim", action="deny", label=claim.claim_number)
        text = optional_text(reason, "reason", max_length=4000)
        if not text:
            raise ValidationError("A reason is required to deny a warranty claim")
        claim.status = "denied"
        claim.reviewed_by = performed_by
        claim.reviewed_at = now
        claim.review_notes = text
        claim.resolution = f"Denied: {text}"
        _record(claim, "warranty.claim_denied", performed_by, now, note=text)
        db.session.commit()
        current_app.logger.info("Warranty claim %s denied by %s", claim.claim_number, performed_by)
        return claim

    return run_with_retry(_op)


def _refund_for_claim(claim: WarrantyClaim, amount: int, *, performed_by, now) -> list[Payment]:
    """Spread a refund over the invoice's completed payments, newest first."""
    invoice = (
        lock_for_update(db.session.query(Invoice).filter_by(id=claim.invoice_id)).first()
        if claim.invoice_id
        else None
    )
    if invoice is None:
        raise NotEligible(f"Claim {claim.claim_number} has no invoice to refund against")
    if amount > invoice.amount_paid_cents:
        raise ExceedsBalance(
            f"Refund of {amount} exceeds {invoice.amount_paid_cents} paid on {invoice.invoice_number}",
            details={"amount_cents": amount, "amount_paid_cents": invoice.amount_paid_cents},
        )

    payments = (
        lock_for_update(
            db.session.query(Payment).filter_by(
                invoice_id=invoice.id, transaction_type=TYPE_PAYMENT, status="completed"
            )
        )
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
    refunds = []
    remaining = amount
    for payment in payments:
        if remaining <= 0:
            break
        portion = min(remaining, refundable_cents(payment))
        if portion <= 0:
            continue
        refunds.append(
            _refund_payment_locked(
                payment,
                invoice,
                portion,
                f"Warranty claim {claim.claim_number}",
                performed_by=performed_by,
                now=now,
                warranty_claim_id=claim.id,
            )
        )
        remaining -= portion
    return refunds


def resolve_claim(
    claim_id: int,
    *,
    resolution: str | None = None,
    resolution_amount_cents: int | None = None,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> WarrantyClaim:
    """
    Carry out an approved claim and mark it completed.

    Raises:
        InvalidTransition: claim is not approved
        NotEligible: a refund was requested but nothing was paid
        ExceedsBalance: refund amount is more than was paid
    """
    now = now or utcnow()

    def _op():
        claim = _load_locked(claim_id)
        require_status(claim.status, ("approved",), entity="warranty claim", action="resolve", label=claim.claim_number)

        amount = claim.resolution_amount_cents
        if resolution_amount_cents is not None:
            amount = coerce_cents(resolution_amount_cents, "resolution_amount_cents", allow_zero=False)

        summary = optional_text(resolution, "resolution", max_length=4000)
        if claim.resolution_type == "redo":
            original = db.session.get(Ticket, claim.ticket_id)
            ticket = db.session.query(Ticket).filter_by(source_claim_id=claim.id).first()
            if ticket is None:
                ticket = build_ticket(
                    shop_id=claim.shop_id,
                    customer_id=claim.customer_id,
                    device_type=original.device_type,
                    device_brand=original.device_brand,
                    device_model=original.device_model,
                    repair_type=original.repair_type,
                    issue_description=f"Warranty redo of {original.ticket_number}: {claim.claim_reason}"[:500],
                    priority="HIGH",
                    estimated_cost_cents=0,
                    source_claim_id=claim.id,
                    performed_by=performed_by,
                    now=now,
                )
            claim.resolution_ticket_id = ticket.id
            summary = summary or f"Redo ticket {ticket.ticket_number}"
        else:
            if claim.resolution_type == "refund":
                invoice = db.session.get(Invoice, claim.invoice_id) if claim.invoice_id else None
                amount = invoice.amount_paid_cents if invoice else 0
                if amount <= 0:
                    raise NotEligible(f"Nothing was paid on the repair behind claim {claim.claim_number}")
            elif claim.resolution_type == "partial-refund" and not amount:
                raise ValidationError("resolution_amount_cents is required for a partial refund")

            if amount:
                refunds = _refund_for_claim(claim, amount, performed_by=performed_by, now=now)
                summary = summary or f"Refunded {amount} cents ({len(refunds)} payment(s))"
            else:
                summary = summary or "Replacement provided"
            claim.resolution_amount_cents = amount

        claim.resolution = summary
        claim.status = "completed"
        claim.completed_at = now
        _record(claim, "warranty.claim_resolved", performed_by, now, note=summary)
        db.session.commit()
        current_app.logger.info(
            "Warranty claim %s resolved (%s) by %s: %s", claim.claim_number, claim.resolution_type, performed_by, summary
        )
        return claim

    return run_with_retry(_op)
