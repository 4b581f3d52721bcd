# Overview: Service-layer operations for ledger; encapsulates business logic and database work.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import LedgerEvent
from repairflow.time_utils import utcnow
"""
Audit Ledger Invariants (authoritative)

- Append-only audit log for lifecycle transitions.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the transition they record.
- occurred_at is business time (defaults to now); created_at is system time (DB default).
"""


def append_ledger_event(
    *,
    shop_id: int,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    performed_by: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[str] = None,
) -> LedgerEvent:
    """
    Append-only ledger event.

    - No domain logic here.
    - No deletes/updates of existing events.
    """
    ev = LedgerEvent(
        shop_id=shop_id,
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        performed_by=performed_by,
        occurred_at=occurred_at or utcnow(),
        note=note[:255] if note else None,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def get_entity_history(entity_type: str, entity_id: int) -> list[LedgerEvent]:
    """All events recorded for one entity, oldest first."""
    return (
        db.session.query(LedgerEvent)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(LedgerEvent.occurred_at, LedgerEvent.id)
        .all()
    )
