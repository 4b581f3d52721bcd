# Overview: Pytest coverage for concurrent ticket moves against a file-backed database.

"""
Two technicians acting on the same ticket.

A file-backed SQLite database lets a second engine commit a competing move
while the first technician's transition is in flight. Exactly one move wins;
the other gets InvalidTransition and leaves no trace.
"""

from datetime import timedelta

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from repairflow import create_app
from repairflow.errors import InvalidTransition
from repairflow.extensions import db
from repairflow.models import Customer, Shop, Ticket
from repairflow.services import ticket_service
from repairflow.services.ledger_service import get_entity_history
from conftest import T0


@pytest.fixture(scope='function')
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'board.sqlite3'}",
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture(scope='function')
def ready_ticket(file_app):
    shop = Shop(name="Board Shop", code="BD")
    db.session.add(shop)
    db.session.commit()
    customer = Customer(shop_id=shop.id, first_name="Grace", last_name="Hopper", phone="555-0100")
    db.session.add(customer)
    db.session.commit()

    ticket = ticket_service.create_ticket(
        shop_id=shop.id,
        customer_id=customer.id,
        device_type="Phone",
        device_brand="Google",
        repair_type="battery",
        now=T0,
    )
    for i, stage in enumerate(("DIAGNOSED", "IN_PROGRESS", "READY"), start=1):
        ticket = ticket_service.advance_ticket(ticket.id, stage, now=T0 + timedelta(hours=i))
    return ticket


@pytest.fixture(scope='function')
def other_terminal(file_app):
    """Second engine on the same database file (another staff member's request)."""
    engine = create_engine(db.engine.url)
    yield engine
    engine.dispose()


def _pick_up_elsewhere(engine, ticket_id):
    stamp = (T0 + timedelta(hours=5)).strftime("%Y-%m-%d %H:%M:%S.%f")
    with engine.begin() as conn:
        conn.execute(
            text(
                "UPDATE tickets SET status = 'PICKED_UP', picked_up_at = :at, completed_at = :at, "
                "version_id = version_id + 1 WHERE id = :id"
            ),
            {"at": stamp, "id": ticket_id},
        )


def _reload(ticket_id):
    db.session.expire_all()
    return db.session.get(Ticket, ticket_id)


class TestConcurrentAdvance:
    def test_stale_version_loses_with_conflict(self, ready_ticket, other_terminal, monkeypatch):
        """Technician B picks the ticket up while A is moving it back to IN_PROGRESS."""
        real_append = ticket_service.append_ledger_event
        calls = []

        def append_after_competing_pickup(**kwargs):
            if not calls:
                _pick_up_elsewhere(other_terminal, ready_ticket.id)
            calls.append(kwargs["event_type"])
            return real_append(**kwargs)

        monkeypatch.setattr(ticket_service, "append_ledger_event", append_after_competing_pickup)

        with pytest.raises(InvalidTransition):
            ticket_service.advance_ticket(ready_ticket.id, "IN_PROGRESS", performed_by="tech-a", now=T0 + timedelta(hours=6))

        # A's move was attempted exactly once and never replayed
        assert calls == ["ticket.reverted"]

        ticket = _reload(ready_ticket.id)
        assert ticket.status == "PICKED_UP"
        events = [e.event_type for e in get_entity_history("ticket", ticket.id)]
        assert "ticket.reverted" not in events

    def test_retry_after_lock_error_rechecks_status(self, ready_ticket, other_terminal, monkeypatch):
        """A lock error makes A retry; by then B has picked the ticket up."""
        real_append = ticket_service.append_ledger_event
        calls = []

        def locked_once(**kwargs):
            calls.append(kwargs["event_type"])
            if len(calls) == 1:
                _pick_up_elsewhere(other_terminal, ready_ticket.id)
                raise OperationalError("UPDATE tickets", {}, Exception("database is locked"))
            return real_append(**kwargs)

        monkeypatch.setattr(ticket_service, "append_ledger_event", locked_once)

        with pytest.raises(InvalidTransition) as exc:
            ticket_service.advance_ticket(ready_ticket.id, "IN_PROGRESS", performed_by="tech-a", now=T0 + timedelta(hours=6))

        assert exc.value.details["current_status"] == "PICKED_UP"
        assert exc.value.details["expected_status"] == "READY"
        assert calls == ["ticket.reverted"]
        assert _reload(ready_ticket.id).status == "PICKED_UP"

    def test_uncontended_move_still_succeeds(self, ready_ticket):
        ticket = ticket_service.advance_ticket(ready_ticket.id, "PICKED_UP", now=T0 + timedelta(hours=5))
        assert ticket.status == "PICKED_UP"
        assert _reload(ready_ticket.id).version_id == ticket.version_id
