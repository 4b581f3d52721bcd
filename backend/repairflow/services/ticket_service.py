# Overview: Service-layer operations for repair tickets; encapsulates business logic and database work.

"""
Ticket State Machine

================================================================================
PURPOSE: Track one repair job from intake to pickup, recording every stage
================================================================================

STATE MACHINE:
    INTAKE -> DIAGNOSED -> IN_PROGRESS -> READY -> PICKED_UP

RULES:
1. Forward moves go exactly one step (every stage timestamp gets recorded)
2. Backward moves to ANY earlier stage are allowed (correcting a mistake)
3. Moving to the current stage, or jumping forward 2+ stages, is rejected
4. Forward moves stamp the stage timestamp once; it is never overwritten
5. Backward moves never clear timestamps (audit history is preserved)
6. Timestamps never go backwards in time, even if the clock does

STAGE TIMESTAMPS:
    INTAKE      -> intake_at
    DIAGNOSED   -> diagnosed_at
    IN_PROGRESS -> repair_started_at
    READY       -> repaired_at
    PICKED_UP   -> picked_up_at, completed_at

Reaching PICKED_UP makes the ticket warranty-eligible (see warranty_service).
================================================================================
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Ticket, Estimate, Invoice, WarrantyClaim
from ..errors import InvalidTransition, NotFound, StillReferenced, ValidationError
from ..validation import coerce_cents, coerce_datetime, optional_text, require_text
from repairflow.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .customer_service import require_customer_in_shop
from .document_service import next_document_number
from .ledger_service import append_ledger_event
from .lifecycle_service import check_expected_status, validate_status
from .shop_service import get_shop


TICKET_STATUSES = ("INTAKE", "DIAGNOSED", "IN_PROGRESS", "READY", "PICKED_UP")

STAGE_TIMESTAMPS = {
    "INTAKE": ("intake_at",),
    "DIAGNOSED": ("diagnosed_at",),
    "IN_PROGRESS": ("repair_started_at",),
    "READY": ("repaired_at",),
    "PICKED_UP": ("picked_up_at", "completed_at"),
}

PRIORITIES = ("LOW", "NORMAL", "HIGH", "URGENT")

_UNSET = object()


def next_status(status: str) -> str | None:
    """The single legal forward step from ``status`` (None at PICKED_UP)."""
    validate_status(status, TICKET_STATUSES, entity="ticket")
    idx = TICKET_STATUSES.index(status)
    return TICKET_STATUSES[idx + 1] if idx + 1 < len(TICKET_STATUSES) else None


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check if a ticket may move from ``from_status`` to ``to_status``.

    Valid: the immediate next stage, or any earlier stage.
    Invalid: same stage, unknown stage, forward jump of 2+ stages.
    """
    validate_status(from_status, TICKET_STATUSES, entity="ticket")
    validate_status(to_status, TICKET_STATUSES, entity="ticket")
    src = TICKET_STATUSES.index(from_status)
    dst = TICKET_STATUSES.index(to_status)
    return dst == src + 1 or dst < src


def is_warranty_eligible(ticket: Ticket) -> bool:
    """Only picked-up (completed) repairs carry a warranty."""
    return ticket.status == "PICKED_UP"


# =============================================================================
# CREATION
# =============================================================================

def build_ticket(
    *,
    shop_id: int,
    customer_id: int,
    device_type: str,
    device_brand: str,
    device_model: str | None = None,
    repair_type: str | None = None,
    issue_description: str | None = None,
    priority: str = "NORMAL",
    assigned_to: str | None = None,
    due_at: datetime | None = None,
    estimated_cost_cents: int | None = None,
    source_estimate_id: int | None = None,
    source_claim_id: int | None = None,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Ticket:
    """
    Create an INTAKE ticket inside the caller's transaction (no commit).

    Used directly by estimate conversion and warranty redo so the ticket and
    the link back to its source are committed together.
    """
    now = now or utcnow()
    get_shop(shop_id)
    require_customer_in_shop(customer_id, shop_id)

    priority = (priority or "NORMAL").upper()
    if priority not in PRIORITIES:
        raise ValidationError(f"priority must be one of {', '.join(PRIORITIES)}")

    ticket = Ticket(
        shop_id=shop_id,
        customer_id=customer_id,
        ticket_number=next_document_number(shop_id=shop_id, document_type="TICKET"),
        device_type=require_text(device_type, "device_type", max_length=64),
        device_brand=require_text(device_brand, "device_brand", max_length=64),
        device_model=optional_text(device_model, "device_model", max_length=128),
        repair_type=_normalize_repair_type(repair_type),
        issue_description=optional_text(issue_description, "issue_description", max_length=500),
        priority=priority,
        assigned_to=optional_text(assigned_to, "assigned_to", max_length=128),
        status="INTAKE",
        created_at=now,
        intake_at=now,
        due_at=coerce_datetime(due_at, "due_at"),
        estimated_cost_cents=coerce_cents(estimated_cost_cents, "estimated_cost_cents") if estimated_cost_cents is not None else None,
        source_estimate_id=source_estimate_id,
        source_claim_id=source_claim_id,
        created_by=performed_by,
    )
    db.session.add(ticket)
    db.session.flush()

    append_ledger_event(
        shop_id=shop_id,
        event_type="ticket.created",
        event_category="ticket",
        entity_type="ticket",
        entity_id=ticket.id,
        performed_by=performed_by,
        occurred_at=now,
        note=f"Ticket {ticket.ticket_number} created",
    )
    return ticket


def create_ticket(**kwargs) -> Ticket:
    """Create and commit a new INTAKE ticket. Accepts the arguments of build_ticket."""
    def _op():
        ticket = build_ticket(**kwargs)
        db.session.commit()
        current_app.logger.info("Ticket %s created (INTAKE) by %s", ticket.ticket_number, ticket.created_by)
        return ticket

    return run_with_retry(_op)


def _normalize_repair_type(repair_type: str | None) -> str | None:
    value = optional_text(repair_type, "repair_type", max_length=64)
    return value.lower().replace(" ", "-") if value else None


# =============================================================================
# QUERIES
# =============================================================================

def get_ticket(ticket_id: int) -> Ticket:
    ticket = db.session.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFound(f"Ticket {ticket_id} not found")
    return ticket


def get_ticket_by_number(shop_id: int, ticket_number: str) -> Ticket:
    number = (ticket_number or "").strip().upper()
    ticket = db.session.query(Ticket).filter_by(shop_id=shop_id, ticket_number=number).first()
    if ticket is None:
        raise NotFound(f"Ticket {number} not found")
    return ticket


def list_tickets(
    shop_id: int,
    *,
    status: str | None = None,
    assigned_to: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Ticket], int]:
    """Tickets for a shop, newest first, with the total count for pagination."""
    q = db.session.query(Ticket).filter_by(shop_id=shop_id)
    if status:
        validate_status(status, TICKET_STATUSES, entity="ticket")
        q = q.filter_by(status=status)
    if assigned_to:
        q = q.filter_by(assigned_to=assigned_to.strip())
    total = q.count()
    tickets = q.order_by(Ticket.created_at.desc(), Ticket.id.desc()).offset(offset).limit(limit).all()
    return tickets, total


# =============================================================================
# TRANSITIONS
# =============================================================================

def advance_ticket(
    ticket_id: int,
    target_status: str,
    *,
    expected_status: str | None = None,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Ticket:
    """
    Move a ticket to ``target_status``.

    Args:
        ticket_id: Ticket to move
        target_status: Next stage, or any earlier stage
        expected_status: Status the caller believes the ticket is in; a
            mismatch means someone else moved it first (conflict)
        performed_by: Staff identity for the audit ledger
        now: Business time of the move (defaults to utcnow)

    Raises:
        NotFound: Ticket does not exist
        InvalidTransition: Unknown status, forward jump > 1, same stage,
            or expected_status mismatch. The ticket is left unchanged.
    """
    now = now or utcnow()
    target_status = (target_status or "").strip().upper()
    # Status seen on the first attempt; a retry must not move a ticket
    # that someone else moved in between.
    seen = {}

    def _op():
        ticket = lock_for_update(db.session.query(Ticket).filter_by(id=ticket_id)).first()
        if ticket is None:
            raise NotFound(f"Ticket {ticket_id} not found")

        validate_status(target_status, TICKET_STATUSES, entity="ticket")
        seen.setdefault("status", ticket.status)
        check_expected_status(
            ticket.status, expected_status or seen["status"], entity="ticket", label=ticket.ticket_number
        )

        from_status = ticket.status
        if not can_transition(from_status, target_status):
            raise InvalidTransition(
                f"Cannot move ticket {ticket.ticket_number} from {from_status} to {target_status}: "
                f"only the next stage ({next_status(from_status) or 'none'}) or an earlier stage is allowed",
                details={"current_status": from_status, "target_status": target_status},
            )

        forward = TICKET_STATUSES.index(target_status) > TICKET_STATUSES.index(from_status)
        if forward:
            _stamp_stage(ticket, target_status, now)
        ticket.status = target_status

        append_ledger_event(
            shop_id=ticket.shop_id,
            event_type="ticket.advanced" if forward else "ticket.reverted",
            event_category="ticket",
            entity_type="ticket",
            entity_id=ticket.id,
            performed_by=performed_by,
            occurred_at=now,
            note=f"{from_status} -> {target_status}",
        )

        db.session.commit()
        current_app.logger.info(
            "Ticket %s %s -> %s by %s", ticket.ticket_number, from_status, target_status, performed_by
        )
        return ticket

    return run_with_retry(_op)


def _stamp_stage(ticket: Ticket, status: str, now: datetime) -> None:
    """Set the stage timestamp(s) if unset, never earlier than any existing stamp."""
    existing = [
        getattr(ticket, attr)
        for attrs in STAGE_TIMESTAMPS.values()
        for attr in attrs
        if getattr(ticket, attr) is not None
    ]
    stamp = max([now, *existing])
    for attr in STAGE_TIMESTAMPS[status]:
        if getattr(ticket, attr) is None:
            setattr(ticket, attr, stamp)


def update_ticket(
    ticket_id: int,
    *,
    due_at=_UNSET,
    estimated_cost_cents=_UNSET,
    actual_cost_cents=_UNSET,
    repair_type=_UNSET,
    issue_description=_UNSET,
    priority=_UNSET,
    performed_by: str | None = None,
) -> Ticket:
    """
    Edit non-lifecycle ticket fields. Status and stage timestamps are only
    changed through advance_ticket.
    """
    def _op():
        ticket = lock_for_update(db.session.query(Ticket).filter_by(id=ticket_id)).first()
        if ticket is None:
            raise NotFound(f"Ticket {ticket_id} not found")

        patch = {}
        if due_at is not _UNSET:
            patch["due_at"] = coerce_datetime(due_at, "due_at")
        if estimated_cost_cents is not _UNSET:
            patch["estimated_cost_cents"] = (
                coerce_cents(estimated_cost_cents, "estimated_cost_cents") if estimated_cost_cents is not None else None
            )
        if actual_cost_cents is not _UNSET:
            patch["actual_cost_cents"] = (
                coerce_cents(actual_cost_cents, "actual_cost_cents") if actual_cost_cents is not None else None
            )
        if repair_type is not _UNSET:
            patch["repair_type"] = _normalize_repair_type(repair_type)
        if issue_description is not _UNSET:
            patch["issue_description"] = optional_text(issue_description, "issue_description", max_length=500)
        if priority is not _UNSET:
            value = (priority or "").upper()
            if value not in PRIORITIES:
                raise ValidationError(f"priority must be one of {', '.join(PRIORITIES)}")
            patch["priority"] = value

        for key, value in patch.items():
            setattr(ticket, key, value)

        if patch:
            append_ledger_event(
                shop_id=ticket.shop_id,
                event_type="ticket.updated",
                event_category="ticket",
                entity_type="ticket",
                entity_id=ticket.id,
                performed_by=performed_by,
                note=", ".join(sorted(patch)),
            )
        db.session.commit()
        return ticket

    return run_with_retry(_op)


def assign_ticket(
    ticket_id: int,
    assigned_to: str | None,
    *,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Ticket:
    """
    Assign a technician to a ticket, or unassign with a blank value.

    The technician is an opaque staff string (the surrounding app owns the
    staff directory). Allowed at any stage. Re-assigning the same technician
    is a no-op and records nothing.
    """
    now = now or utcnow()
    technician = optional_text(assigned_to, "assigned_to", max_length=128)

    def _op():
        ticket = lock_for_update(db.session.query(Ticket).filter_by(id=ticket_id)).first()
        if ticket is None:
            raise NotFound(f"Ticket {ticket_id} not found")

        previous = ticket.assigned_to
        if previous == technician:
            return ticket

        ticket.assigned_to = technician
        append_ledger_event(
            shop_id=ticket.shop_id,
            event_type="ticket.assigned" if technician else "ticket.unassigned",
            event_category="ticket",
            entity_type="ticket",
            entity_id=ticket.id,
            performed_by=performed_by,
            occurred_at=now,
            note=f"{previous or '-'} -> {technician or '-'}",
        )
        db.session.commit()
        current_app.logger.info(
            "Ticket %s assigned %s -> %s by %s", ticket.ticket_number, previous, technician, performed_by
        )
        return ticket

    return run_with_retry(_op)


def delete_ticket(ticket_id: int, *, performed_by: str | None = None) -> None:
    """
    Delete a ticket that nothing references.

    Raises:
        StillReferenced: An estimate, invoice or warranty claim points at it
    """
    def _op():
        ticket = lock_for_update(db.session.query(Ticket).filter_by(id=ticket_id)).first()
        if ticket is None:
            raise NotFound(f"Ticket {ticket_id} not found")

        references = {
            "estimates": db.session.query(Estimate).filter_by(converted_to_ticket_id=ticket.id).count(),
            "invoices": db.session.query(Invoice).filter_by(ticket_id=ticket.id).count(),
            "warranty_claims": db.session.query(WarrantyClaim).filter(
                db.or_(WarrantyClaim.ticket_id == ticket.id, WarrantyClaim.resolution_ticket_id == ticket.id)
            ).count(),
        }
        referenced = {k: v for k, v in references.items() if v}
        if referenced:
            raise StillReferenced(
                f"Ticket {ticket.ticket_number} is still referenced by {', '.join(referenced)}",
                details=referenced,
            )

        append_ledger_event(
            shop_id=ticket.shop_id,
            event_type="ticket.deleted",
            event_category="ticket",
            entity_type="ticket",
            entity_id=ticket.id,
            performed_by=performed_by,
            note=f"Ticket {ticket.ticket_number} deleted",
        )
        db.session.delete(ticket)
        db.session.commit()

    run_with_retry(_op)
