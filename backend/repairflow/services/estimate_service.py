# Overview: Service-layer operations for estimates; encapsulates business logic and database work.

"""
Estimate Engine

================================================================================
PURPOSE: Quote a repair, get it approved, and turn it into exactly one ticket
================================================================================

STATE MACHINE:
    draft -> sent -> viewed -> approved -> converted
                            -> declined -> (send again)
                            -> expired

    approve / decline / expire are also legal straight from draft
    (in-person quotes are never "sent").

RULES:
1. Totals are always recomputed from lines + tax_rate (money_service)
2. Approving past valid_until (or an expired estimate) raises Expired
3. decline requires a reason
4. convert only from approved; a second convert raises AlreadyConverted
   carrying the first ticket's id so the caller can continue with it
5. duplicate works from any status and always yields a fresh draft
6. extend only while sent/viewed; days must be > 0

CONVERSION IDEMPOTENCY:
The new ticket stores source_estimate_id (unique). If a previous attempt
created the ticket but never linked it, convert finds that ticket and links
it instead of creating a second one.
================================================================================
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Estimate, EstimateLine, Invoice, Ticket
from ..errors import AlreadyConverted, Expired, NotFound, StillReferenced, ValidationError
from ..validation import coerce_datetime, coerce_int, normalize_line_items, optional_text
from repairflow.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .customer_service import require_customer_in_shop
from .document_service import next_document_number
from .ledger_service import append_ledger_event
from .lifecycle_service import require_status
from .money_service import compute_totals
from .shop_service import get_shop, resolve_tax_rate
from .ticket_service import build_ticket


ESTIMATE_STATUSES = ("draft", "sent", "viewed", "approved", "declined", "expired", "converted")

DECIDABLE_FROM = ("draft", "sent", "viewed")
SENDABLE_FROM = ("draft", "declined")
EXTENDABLE_FROM = ("sent", "viewed")
DELETABLE_FROM = ("draft", "declined", "expired")

_UNSET = object()


def _load_locked(estimate_id: int) -> Estimate:
    estimate = lock_for_update(db.session.query(Estimate).filter_by(id=estimate_id)).first()
    if estimate is None:
        raise NotFound(f"Estimate {estimate_id} not found")
    return estimate


def _apply_items(estimate: Estimate, items, tax_rate) -> None:
    """Replace lines and recompute derived totals in one step."""
    lines = normalize_line_items(items, require_one=True)
    totals = compute_totals(lines, tax_rate)

    estimate.lines = [
        EstimateLine(
            position=i,
            item_type=line.item_type,
            description=line.description,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_total_cents=line.line_total_cents,
        )
        for i, line in enumerate(lines)
    ]
    estimate.tax_rate = tax_rate
    estimate.subtotal_cents = totals.subtotal_cents
    estimate.tax_cents = totals.tax_cents
    estimate.total_cents = totals.total_cents


def _record(estimate: Estimate, event_type: str, performed_by, now, note=None) -> None:
    append_ledger_event(
        shop_id=estimate.shop_id,
        event_type=event_type,
        event_category="estimate",
        entity_type="estimate",
        entity_id=estimate.id,
        performed_by=performed_by,
        occurred_at=now,
        note=note,
    )


def is_past_valid_until(estimate: Estimate, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return estimate.valid_until is not None and estimate.valid_until < now


# =============================================================================
# CREATE / READ / EDIT
# =============================================================================

def create_estimate(
    *,
    shop_id: int,
    customer_id: int,
    items,
    tax_rate=None,
    valid_until=None,
    device_type: str | None = None,
    device_brand: str | None = None,
    device_model: str | None = None,
    device_condition: str | None = None,
    repair_type: str | None = None,
    notes: str | None = None,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Estimate:
    """
    Create a draft estimate.

    valid_until defaults to now + ESTIMATE_VALIDITY_DAYS; tax_rate defaults
    to the shop's rate, then Config.DEFAULT_TAX_RATE.

    Raises:
        ValidationError: no items, bad item, bad tax rate
        NotFound: unknown shop or customer
    """
    now = now or utcnow()

    def _op():
        shop = get_shop(shop_id)
        require_customer_in_shop(customer_id, shop_id)
        rate = resolve_tax_rate(shop, tax_rate)

        estimate = Estimate(
            shop_id=shop_id,
            customer_id=customer_id,
            device_type=optional_text(device_type, "device_type", max_length=64) or "Device",
            device_brand=optional_text(device_brand, "device_brand", max_length=64),
            device_model=optional_text(device_model, "device_model", max_length=128),
            device_condition=optional_text(device_condition, "device_condition", max_length=500),
            repair_type=optional_text(repair_type, "repair_type", max_length=64),
            notes=optional_text(notes, "notes", max_length=4000),
            status="draft",
            valid_until=coerce_datetime(valid_until, "valid_until")
            or now + timedelta(days=current_app.config["ESTIMATE_VALIDITY_DAYS"]),
            created_at=now,
            created_by=performed_by,
        )
        _apply_items(estimate, items, rate)
        estimate.estimate_number = next_document_number(shop_id=shop_id, document_type="ESTIMATE")

        db.session.add(estimate)
        db.session.flush()
        _record(estimate, "estimate.created", performed_by, now, note=f"Estimate {estimate.estimate_number} created")
        db.session.commit()
        current_app.logger.info(
            "Estimate %s created total=%s by %s", estimate.estimate_number, estimate.total_cents, performed_by
        )
        return estimate

    return run_with_retry(_op)


def get_estimate(estimate_id: int) -> Estimate:
    estimate = db.session.get(Estimate, estimate_id)
    if estimate is None:
        raise NotFound(f"Estimate {estimate_id} not found")
    return estimate


def list_estimates(shop_id: int, *, status: str | None = None, limit: int = 50, offset: int = 0) -> tuple[list[Estimate], int]:
    q = db.session.query(Estimate).filter_by(shop_id=shop_id)
    if status:
        q = q.filter_by(status=status)
    total = q.count()
    estimates = q.order_by(Estimate.created_at.desc(), Estimate.id.desc()).offset(offset).limit(limit).all()
    return estimates, total


def update_estimate(
    estimate_id: int,
    *,
    items=_UNSET,
    tax_rate=_UNSET,
    valid_until=_UNSET,
    notes=_UNSET,
    device_condition=_UNSET,
    repair_type=_UNSET,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Estimate:
    """Edit a draft estimate. Totals are recomputed whenever items or tax_rate change."""
    now = now or utcnow()

    def _op():
        estimate = _load_locked(estimate_id)
        require_status(estimate.status, ("draft",), entity="estimate", action="edit", label=estimate.estimate_number)

        if items is not _UNSET or tax_rate is not _UNSET:
            rate = estimate.tax_rate
            if tax_rate is not _UNSET:
                rate = resolve_tax_rate(get_shop(estimate.shop_id), tax_rate)
            new_items = items if items is not _UNSET else [line.to_dict() for line in estimate.lines]
            _apply_items(estimate, new_items, rate)
        if valid_until is not _UNSET:
            parsed = coerce_datetime(valid_until, "valid_until")
            if parsed is None:
                raise ValidationError("valid_until cannot be cleared")
            estimate.valid_until = parsed
        if notes is not _UNSET:
            estimate.notes = optional_text(notes, "notes", max_length=4000)
        if device_condition is not _UNSET:
            estimate.device_condition = optional_text(device_condition, "device_condition", max_length=500)
        if repair_type is not _UNSET:
            estimate.repair_type = optional_text(repair_type, "repair_type", max_length=64)

        estimate.updated_at = now
        _record(estimate, "estimate.updated", performed_by, now)
        db.session.commit()
        return estimate

    return run_with_retry(_op)


def delete_estimate(estimate_id: int, *, performed_by: str | None = None) -> None:
    """
    Delete an unconverted draft, declined or expired estimate.

    Raises:
        InvalidTransition: estimate is sent/viewed/approved/converted
        StillReferenced: an invoice was built from it
    """
    def _op():
        estimate = _load_locked(estimate_id)
        require_status(estimate.status, DELETABLE_FROM, entity="estimate", action="delete", label=estimate.estimate_number)
        invoices = db.session.query(Invoice).filter_by(estimate_id=estimate.id).count()
        if invoices:
            raise StillReferenced(
                f"Estimate {estimate.estimate_number} is referenced by {invoices} invoice(s)",
                details={"invoices": invoices},
            )
        _record(estimate, "estimate.deleted", performed_by, utcnow(), note=f"Estimate {estimate.estimate_number} deleted")
        db.session.delete(estimate)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def send_estimate(estimate_id: int, *, performed_by: str | None = None, now: datetime | None = None) -> Estimate:
    """draft/declined -> sent. Re-sending a declined estimate clears the decline."""
    now = now or utcnow()

    def _op():
        estimate = _load_locked(estimate_id)
        require_status(estimate.status, SENDABLE_FROM, entity="estimate", action="send", label=estimate.estimate_number)
        from_status = estimate.status
        estimate.status = "sent"
        estimate.sent_at = now
        estimate.updated_at = now
        _record(estimate, "estimate.sent", performed_by, now, note=f"{from_status} -> sent")
        db.session.commit()
        current_app.logger.info("Estimate %s %s -> sent by %s", estimate.estimate_number, from_status, performed_by)
        return estimate

    return run_with_retry(_op)


def mark_estimate_viewed(estimate_id: int, *, performed_by: str | None = None, now: datetime | None = None) -> Estimate:
    """sent -> viewed (customer opened the quote)."""
    now = now or utcnow()

    def _op():
        estimate = _load_locked(estimate_id)
        require_status(estimate.status, ("sent",), entity="estimate", action="mark viewed", label=estimate.estimate_number)
        estimate.status = "viewed"
        estimate.viewed_at = now
        _record(estimate, "estimate.viewed", performed_by, now)
        db.session.commit()
        return estimate

    return run_with_retry(_op)


def approve_estimate(estimate_id: int, *, performed_by: str | None = None, now: datetime | None = None) -> Estimate:
    """
    Customer accepts the quote.

    Raises:
        Expired: estimate is expired or now > valid_until
        InvalidTransition: estimate is not draft/sent/viewed
    """
    now = now or utcnow()

    def _op():
        estimate = _load_locked(estimate_id)
        if estimate.status == "expired" or (
            estimate.status in DECIDABLE_FROM and is_past_valid_until(estimate, now)
        ):
            raise Expired(
                f"Estimate {estimate.estimate_number} expired on {estimate.valid_until.isoformat()}",
                details={"valid_until": estimate.valid_until.isoformat()},
            )
        require_status(estimate.status, DECIDABLE_FROM, entity="estimate", action="approve", label=estimate.estimate_number)

        from_status = estimate.status
        estimate.status = "approved"
        estimate.approved_at = now
        estimate.updated_at = now
        _record(estimate, "estimate.approved", performed_by, now, note=f"{from_status} -> approved")
        db.session.commit()
        current_app.logger.info("Estimate %s approved by %s", estimate.estimate_number, performed_by)
        return estimate

    return run_with_retry(_op)


def decline_estimate(
    estimate_id: int,
    reason: str,
    *,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Estimate:
    now = now or utcnow()
    reason = (reason or "").strip()

    def _op():
        estimate = _load_locked(estimate_id)
        require_status(estimate.status, DECIDABLE_FROM, entity="estimate", action="decline", label=estimate.estimate_number)
        if not reason:
            raise ValidationError("A reason is required to decline an estimate")
        if len(reason) > 255:
            raise ValidationError("reason exceeds max length 255")

        estimate.status = "declined"
        estimate.declined_at = now
        estimate.decline_reason = reason
        estimate.updated_at = now
        _record(estimate, "estimate.declined", performed_by, now, note=reason)
        db.session.commit()
        current_app.logger.info("Estimate %s declined by %s", estimate.estimate_number, performed_by)
        return estimate

    return run_with_retry(_op)


def expire_estimate(estimate_id: int, *, performed_by: str | None = None, now: datetime | None = None) -> Estimate:
    now = now or utcnow()

    def _op():
        estimate = _load_locked(estimate_id)
        require_status(estimate.status, DECIDABLE_FROM, entity="estimate", action="expire", label=estimate.estimate_number)
        estimate.status = "expired"
        estimate.expired_at = now
        estimate.updated_at = now
        _record(estimate, "estimate.expired", performed_by, now)
        db.session.commit()
        return estimate

    return run_with_retry(_op)


def extend_estimate(
    estimate_id: int,
    days,
    *,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Estimate:
    """
    Push valid_until forward by ``days``.

    An already-lapsed date is extended from now, so the result always lies
    in the future.
    """
    now = now or utcnow()
    days = coerce_int(days, "days")
    if days <= 0:
        raise ValidationError("days must be > 0")

    def _op():
        estimate = _load_locked(estimate_id)
        require_status(estimate.status, EXTENDABLE_FROM, entity="estimate", action="extend", label=estimate.estimate_number)
        base = max(estimate.valid_until, now)
        estimate.valid_until = base + timedelta(days=days)
        estimate.updated_at = now
        _record(estimate, "estimate.extended", performed_by, now, note=f"+{days} days")
        db.session.commit()
        return estimate

    return run_with_retry(_op)


def duplicate_estimate(estimate_id: int, *, performed_by: str | None = None, now: datetime | None = None) -> Estimate:
    """Clone device info and items into a fresh draft (any source status)."""
    now = now or utcnow()

    def _op():
        source = get_estimate(estimate_id)
        copy = Estimate(
            shop_id=source.shop_id,
            customer_id=source.customer_id,
            device_type=source.device_type,
            device_brand=source.device_brand,
            device_model=source.device_model,
            device_condition=source.device_condition,
            repair_type=source.repair_type,
            notes=source.notes,
            status="draft",
            valid_until=now + timedelta(days=current_app.config["ESTIMATE_VALIDITY_DAYS"]),
            created_at=now,
            duplicated_from_id=source.id,
            created_by=performed_by,
        )
        _apply_items(copy, [line.to_dict() for line in source.lines], source.tax_rate)
        copy.estimate_number = next_document_number(shop_id=source.shop_id, document_type="ESTIMATE")

        db.session.add(copy)
        db.session.flush()
        _record(copy, "estimate.duplicated", performed_by, now, note=f"Copy of {source.estimate_number}")
        db.session.commit()
        return copy

    return run_with_retry(_op)


def convert_estimate(estimate_id: int, *, performed_by: str | None = None, now: datetime | None = None) -> Ticket:
    """
    Turn an approved estimate into an INTAKE ticket.

    WHY: Duplicate tickets are the worst failure here (two technicians on one
    phone). The estimate row is locked, the link is checked first, and the
    ticket carries a unique source_estimate_id so even a half-finished earlier
    attempt is found and reused.

    Raises:
        AlreadyConverted: estimate already has a ticket (ticket_id attached)
        InvalidTransition: estimate is not approved
    """
    now = now or utcnow()

    def _op():
        estimate = _load_locked(estimate_id)
        if estimate.converted_to_ticket_id is not None:
            existing = db.session.get(Ticket, estimate.converted_to_ticket_id)
            raise AlreadyConverted(
                f"Estimate {estimate.estimate_number} was already converted",
                ticket_id=estimate.converted_to_ticket_id,
                ticket_number=existing.ticket_number if existing else None,
            )
        require_status(estimate.status, ("approved",), entity="estimate", action="convert", label=estimate.estimate_number)

        ticket = db.session.query(Ticket).filter_by(source_estimate_id=estimate.id).first()
        if ticket is None:
            ticket = build_ticket(
                shop_id=estimate.shop_id,
                customer_id=estimate.customer_id,
                device_type=estimate.device_type or "Device",
                device_brand=estimate.device_brand or "Unknown",
                device_model=estimate.device_model,
                repair_type=estimate.repair_type,
                issue_description=(
                    estimate.device_condition or estimate.notes or f"Converted from estimate {estimate.estimate_number}"
                )[:500],
                estimated_cost_cents=estimate.total_cents,
                source_estimate_id=estimate.id,
                performed_by=performed_by,
                now=now,
            )
        else:
            current_app.logger.warning(
                "Estimate %s relinked to unlinked ticket %s", estimate.estimate_number, ticket.ticket_number
            )

        estimate.converted_to_ticket_id = ticket.id
        estimate.converted_at = now
        estimate.status = "converted"
        estimate.updated_at = now
        _record(estimate, "estimate.converted", performed_by, now, note=f"-> {ticket.ticket_number}")
        db.session.commit()
        current_app.logger.info(
            "Estimate %s converted to ticket %s by %s", estimate.estimate_number, ticket.ticket_number, performed_by
        )
        return ticket

    return run_with_retry(_op)
