# Overview: Pytest coverage for warranty windows, claim filing and claim resolution.

"""
Warranty engine tests.

picked_up_ticket is a screen repair completed at T0 + 4h, so its window is
90 days and closes at T0 + 4h + 90d.
"""

from datetime import timedelta

import pytest

from repairflow.errors import (
    ClaimInProgress,
    InvalidTransition,
    NotEligible,
    NotFound,
    ValidationError,
    WarrantyExpired,
)
from repairflow.models import Ticket
from repairflow.services import invoice_service, payment_service, ticket_service, warranty_service
from conftest import T0, SCREEN_ITEMS


COMPLETED = T0 + timedelta(hours=4)
EXPIRES = COMPLETED + timedelta(days=90)


@pytest.fixture
def file_claim(shop):
    def _file(ticket_number="FIX-0001", **overrides):
        kwargs = {
            "shop_id": shop.id,
            "ticket_number": ticket_number,
            "reason": "Touch stopped working",
            "description": "Lower third of the screen does not respond",
            "resolution_type": "redo",
            "performed_by": "front-desk",
            "now": COMPLETED + timedelta(days=10),
        }
        kwargs.update(overrides)
        return warranty_service.file_claim(**kwargs)
    return _file


@pytest.fixture
def paid_invoice(shop, customer, picked_up_ticket):
    invoice = invoice_service.create_invoice(
        shop_id=shop.id, customer_id=customer.id, items=SCREEN_ITEMS,
        ticket_id=picked_up_ticket.id, now=COMPLETED,
    )
    payment_service.apply_payment(invoice.id, 20000, "CARD", now=COMPLETED)
    payment_service.apply_payment(invoice.id, 3707, "CASH", now=COMPLETED + timedelta(minutes=5))
    return invoice_service.get_invoice(invoice.id)


class TestWarrantyPolicy:
    @pytest.mark.parametrize("repair_type,days", [
        ("screen", 90),
        ("battery", 30),
        ("charging-port", 60),
        ("Charging Port", 60),
        ("water-damage", 0),
        ("backlight", 90),
        (None, 90),
    ])
    def test_period_days(self, app, repair_type, days):
        assert warranty_service.warranty_period_days(repair_type) == days

    def test_status_for_picked_up_ticket(self, picked_up_ticket):
        status = warranty_service.warranty_status(picked_up_ticket, now=COMPLETED + timedelta(days=80))
        assert status["repair_date"] == COMPLETED
        assert status["expires_at"] == EXPIRES
        assert status["is_active"] is True
        assert status["days_remaining"] == 10

    def test_status_before_pickup(self, make_ticket):
        status = warranty_service.warranty_status(make_ticket(), now=T0)
        assert status["is_active"] is False
        assert status["expires_at"] is None
        assert status["days_remaining"] == 0

    def test_lookup_by_phone_digits(self, shop, picked_up_ticket):
        status = warranty_service.lookup_warranty(shop.id, "4477", now=COMPLETED)
        assert status["ticket_id"] == picked_up_ticket.id
        assert status["is_active"] is True

    def test_lookup_by_ticket_number(self, shop, picked_up_ticket):
        status = warranty_service.lookup_warranty(shop.id, "fix-0001", now=COMPLETED)
        assert status["ticket_number"] == "FIX-0001"

    def test_lookup_nothing(self, shop, picked_up_ticket):
        with pytest.raises(NotFound):
            warranty_service.lookup_warranty(shop.id, "0000", now=COMPLETED)

    def test_expiring_soon(self, shop, picked_up_ticket):
        soon = warranty_service.expiring_warranties(shop.id, within_days=7, now=EXPIRES - timedelta(days=3))
        assert [s["ticket_id"] for s in soon] == [picked_up_ticket.id]

        later = warranty_service.expiring_warranties(shop.id, within_days=7, now=COMPLETED)
        assert later == []


class TestFileClaim:
    def test_file_pending_claim(self, picked_up_ticket, file_claim):
        claim = file_claim()
        assert claim.status == "pending"
        assert claim.claim_number == "WC-0001"
        assert claim.ticket_id == picked_up_ticket.id
        assert claim.customer_id == picked_up_ticket.customer_id
        assert claim.original_repair_date == COMPLETED
        assert claim.warranty_period_days == 90
        assert claim.warranty_expires_at == EXPIRES
        assert warranty_service.days_remaining(claim, COMPLETED + timedelta(days=10)) == 80

    def test_exactly_at_expiry_is_covered(self, picked_up_ticket, file_claim):
        claim = file_claim(now=EXPIRES)
        assert claim.status == "pending"

    def test_one_millisecond_late_is_expired(self, picked_up_ticket, file_claim):
        with pytest.raises(WarrantyExpired):
            file_claim(now=EXPIRES + timedelta(milliseconds=1))

    def test_water_damage_not_eligible(self, make_ticket, pick_up, file_claim):
        pick_up(make_ticket(repair_type="water damage"))
        with pytest.raises(NotEligible):
            file_claim()

    def test_not_picked_up_not_eligible(self, make_ticket, file_claim):
        ticket = make_ticket()
        ticket_service.advance_ticket(ticket.id, "DIAGNOSED", now=T0)
        with pytest.raises(NotEligible):
            file_claim()

    def test_reverted_ticket_not_eligible(self, picked_up_ticket, file_claim):
        ticket_service.advance_ticket(picked_up_ticket.id, "READY", now=COMPLETED + timedelta(days=1))
        with pytest.raises(NotEligible):
            file_claim()

    def test_unknown_ticket(self, shop, file_claim):
        with pytest.raises(NotFound):
            file_claim("FIX-0404")

    def test_second_open_claim_rejected(self, picked_up_ticket, file_claim):
        first = file_claim()
        with pytest.raises(ClaimInProgress) as exc:
            file_claim()
        assert exc.value.claim_id == first.id

    def test_new_claim_after_denial(self, picked_up_ticket, file_claim):
        first = file_claim()
        warranty_service.deny_claim(first.id, "Physical damage", now=COMPLETED + timedelta(days=11))
        second = file_claim(now=COMPLETED + timedelta(days=12))
        assert second.claim_number == "WC-0002"

    def test_bad_resolution_type(self, picked_up_ticket, file_claim):
        with pytest.raises(ValidationError):
            file_claim(resolution_type="store-credit")

    def test_original_amount_from_invoice(self, picked_up_ticket, paid_invoice, file_claim):
        claim = file_claim()
        assert claim.invoice_id == paid_invoice.id
        assert claim.original_amount_cents == 23707


class TestReviewClaim:
    def test_approve(self, picked_up_ticket, file_claim):
        claim = file_claim()
        claim = warranty_service.approve_claim(claim.id, review_notes="Known defect", performed_by="mgr")
        assert claim.status == "approved"
        assert claim.reviewed_by == "mgr"

    def test_deny_requires_reason(self, picked_up_ticket, file_claim):
        claim = file_claim()
        with pytest.raises(ValidationError):
            warranty_service.deny_claim(claim.id, "  ")
        assert warranty_service.get_claim(claim.id).status == "pending"

    def test_denied_is_terminal(self, picked_up_ticket, file_claim):
        claim = file_claim()
        warranty_service.deny_claim(claim.id, "Drop damage")
        with pytest.raises(InvalidTransition):
            warranty_service.approve_claim(claim.id)

    def test_resolve_requires_approval(self, picked_up_ticket, file_claim):
        claim = file_claim()
        with pytest.raises(InvalidTransition):
            warranty_service.resolve_claim(claim.id)


class TestResolveClaim:
    def test_redo_creates_high_priority_ticket(self, db_session, picked_up_ticket, file_claim):
        claim = file_claim()
        warranty_service.approve_claim(claim.id)
        claim = warranty_service.resolve_claim(claim.id, now=COMPLETED + timedelta(days=11))

        assert claim.status == "completed"
        redo = db_session.get(Ticket, claim.resolution_ticket_id)
        assert redo.status == "INTAKE"
        assert redo.priority == "HIGH"
        assert redo.ticket_number == "FIX-0002"
        assert redo.customer_id == picked_up_ticket.customer_id
        assert redo.source_claim_id == claim.id
        assert redo.repair_type == "screen"

    def test_full_refund(self, picked_up_ticket, paid_invoice, file_claim):
        claim = file_claim(resolution_type="refund")
        warranty_service.approve_claim(claim.id)
        claim = warranty_service.resolve_claim(claim.id, now=COMPLETED + timedelta(days=11))

        assert claim.status == "completed"
        assert claim.resolution_amount_cents == 23707
        assert len(claim.refund_payments) == 2

        invoice = invoice_service.get_invoice(paid_invoice.id)
        assert invoice.amount_paid_cents == 0
        assert invoice.status == "refunded"

    def test_partial_refund_newest_payment_first(self, picked_up_ticket, paid_invoice, file_claim):
        claim = file_claim(resolution_type="partial-refund", resolution_amount_cents=5000)
        warranty_service.approve_claim(claim.id)
        claim = warranty_service.resolve_claim(claim.id, now=COMPLETED + timedelta(days=11))

        refunds = sorted(claim.refund_payments, key=lambda p: p.id)
        # 3707 from the newer cash payment, then 1293 from the card payment
        assert [r.amount_cents for r in refunds] == [3707, 1293]

        invoice = invoice_service.get_invoice(paid_invoice.id)
        assert invoice.amount_paid_cents == 18707
        assert invoice.amount_due_cents == 5000
        assert invoice.status == "partial"

    def test_partial_refund_needs_amount(self, picked_up_ticket, paid_invoice, file_claim):
        claim = file_claim(resolution_type="partial-refund")
        warranty_service.approve_claim(claim.id)
        with pytest.raises(ValidationError):
            warranty_service.resolve_claim(claim.id)
        assert warranty_service.get_claim(claim.id).status == "approved"

    def test_refund_with_nothing_paid(self, picked_up_ticket, file_claim):
        claim = file_claim(resolution_type="refund")
        warranty_service.approve_claim(claim.id)
        with pytest.raises(NotEligible):
            warranty_service.resolve_claim(claim.id)

    def test_replacement_without_money(self, picked_up_ticket, file_claim):
        claim = file_claim(resolution_type="replacement")
        warranty_service.approve_claim(claim.id)
        claim = warranty_service.resolve_claim(claim.id, resolution="Swapped for refurbished unit")
        assert claim.status == "completed"
        assert claim.resolution == "Swapped for refurbished unit"
        assert claim.refund_payments == []
