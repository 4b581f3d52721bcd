# Overview: Shared state-machine guards used by every lifecycle engine.

"""
Lifecycle guards

================================================================================
PURPOSE: One place that decides whether an entity may leave its current status
================================================================================

Every engine (tickets, estimates, invoices, warranty claims) keeps one stored
lifecycle status. Transitions are guarded here so the error shape is the same
everywhere:

- Unknown target status              -> InvalidTransition
- Current status not in allowed set  -> InvalidTransition
- Caller's expected_status is stale  -> InvalidTransition (lost a race)

Guards run BEFORE any mutation, so a failed transition leaves the entity
exactly as it was loaded.
================================================================================
"""

from __future__ import annotations

from typing import Iterable

from ..errors import InvalidTransition


def validate_status(status: str, valid_statuses: Iterable[str], *, entity: str) -> None:
    """
    Validate that a status value is one of the allowed states.

    Raises:
        InvalidTransition: If status is not a known state of this entity
    """
    valid = tuple(valid_statuses)
    if status not in valid:
        raise InvalidTransition(
            f"Invalid {entity} status '{status}'. Must be one of: {', '.join(valid)}"
        )


def require_status(
    current: str,
    allowed_from: Iterable[str],
    *,
    entity: str,
    action: str,
    label: str | None = None,
) -> None:
    """
    Guard a transition on the entity's current status.

    Args:
        current: Status the entity is in right now
        allowed_from: Statuses from which ``action`` is legal
        entity: Entity kind for the message ("estimate", "invoice", ...)
        action: Verb being attempted ("approve", "send", ...)
        label: Human-readable number for the message (e.g. "EST-0001")
    """
    allowed = tuple(allowed_from)
    if current not in allowed:
        name = f"{entity} {label}" if label else entity
        raise InvalidTransition(
            f"Cannot {action} {name}: current status is '{current}', "
            f"must be one of: {', '.join(allowed)}",
            details={"current_status": current, "allowed_from": list(allowed)},
        )


def check_expected_status(current: str, expected: str | None, *, entity: str, label: str | None = None) -> None:
    """
    Compare-and-set guard for callers that acted on a possibly stale view.

    WHY: Two staff members moving the same card on a board must resolve to
    one winner. The loser passes the status it saw and gets a conflict
    instead of silently overwriting the winner's move.
    """
    if expected is not None and current != expected:
        name = f"{entity} {label}" if label else entity
        raise InvalidTransition(
            f"Conflict on {name}: expected status '{expected}' but it is now '{current}'",
            details={"current_status": current, "expected_status": expected},
        )
