# Overview: Pytest coverage for the estimate engine (quote -> approval -> ticket).

from datetime import timedelta
from decimal import Decimal

import pytest

from repairflow.errors import AlreadyConverted, Expired, InvalidTransition, ValidationError
from repairflow.models import Estimate, Ticket
from repairflow.services import estimate_service, invoice_service
from conftest import T0, SCREEN_ITEMS


@pytest.fixture
def make_estimate(shop, customer):
    def _make(**overrides):
        kwargs = {
            "shop_id": shop.id,
            "customer_id": customer.id,
            "items": SCREEN_ITEMS,
            "device_type": "Phone",
            "device_brand": "Apple",
            "device_model": "iPhone 13",
            "device_condition": "Cracked screen, powers on",
            "repair_type": "screen",
            "performed_by": "front-desk",
            "now": T0,
        }
        kwargs.update(overrides)
        return estimate_service.create_estimate(**kwargs)
    return _make


class TestCreateEstimate:
    def test_draft_with_totals(self, make_estimate):
        estimate = make_estimate()
        assert estimate.status == "draft"
        assert estimate.estimate_number == "EST-0001"
        assert estimate.subtotal_cents == 21900
        assert estimate.tax_cents == 1807
        assert estimate.total_cents == 23707
        assert Decimal(estimate.tax_rate) == Decimal("0.0825")
        assert [line.position for line in estimate.lines] == [0, 1]

    def test_default_validity(self, make_estimate):
        estimate = make_estimate()
        assert estimate.valid_until == T0 + timedelta(days=7)

    def test_explicit_tax_rate(self, make_estimate):
        estimate = make_estimate(tax_rate="0")
        assert estimate.tax_cents == 0
        assert estimate.total_cents == 21900

    def test_items_required(self, make_estimate):
        with pytest.raises(ValidationError):
            make_estimate(items=[])

    def test_numbering_separate_from_tickets(self, make_estimate, make_ticket):
        make_ticket()
        assert make_estimate().estimate_number == "EST-0001"


class TestEstimateTransitions:
    def test_send_view_approve(self, make_estimate):
        estimate = make_estimate()
        estimate_service.send_estimate(estimate.id, now=T0 + timedelta(hours=1))
        estimate_service.mark_estimate_viewed(estimate.id, now=T0 + timedelta(hours=2))
        estimate = estimate_service.approve_estimate(estimate.id, now=T0 + timedelta(hours=3))
        assert estimate.status == "approved"
        assert estimate.sent_at == T0 + timedelta(hours=1)
        assert estimate.viewed_at == T0 + timedelta(hours=2)
        assert estimate.approved_at == T0 + timedelta(hours=3)

    def test_approve_straight_from_draft(self, make_estimate):
        estimate = estimate_service.approve_estimate(make_estimate().id, now=T0)
        assert estimate.status == "approved"

    def test_view_requires_sent(self, make_estimate):
        estimate = make_estimate()
        with pytest.raises(InvalidTransition):
            estimate_service.mark_estimate_viewed(estimate.id, now=T0)

    def test_approve_after_valid_until_raises_expired(self, make_estimate):
        estimate = make_estimate()
        estimate_service.send_estimate(estimate.id, now=T0)

        with pytest.raises(Expired):
            estimate_service.approve_estimate(estimate.id, now=T0 + timedelta(days=8))

        reloaded = estimate_service.get_estimate(estimate.id)
        assert reloaded.status == "sent"
        assert reloaded.approved_at is None

    def test_approve_expired_estimate(self, make_estimate):
        estimate = make_estimate()
        estimate_service.expire_estimate(estimate.id, now=T0)
        with pytest.raises(Expired):
            estimate_service.approve_estimate(estimate.id, now=T0)

    def test_decline_requires_reason(self, make_estimate):
        estimate = make_estimate()
        with pytest.raises(ValidationError):
            estimate_service.decline_estimate(estimate.id, "   ", now=T0)
        assert estimate_service.get_estimate(estimate.id).status == "draft"

    def test_declined_can_be_resent(self, make_estimate):
        estimate = make_estimate()
        estimate_service.decline_estimate(estimate.id, "Too expensive", now=T0)
        estimate = estimate_service.send_estimate(estimate.id, now=T0 + timedelta(days=1))
        assert estimate.status == "sent"
        assert estimate.decline_reason == "Too expensive"

    def test_cannot_approve_declined(self, make_estimate):
        estimate = make_estimate()
        estimate_service.decline_estimate(estimate.id, "No thanks", now=T0)
        with pytest.raises(InvalidTransition):
            estimate_service.approve_estimate(estimate.id, now=T0)


class TestExtendEstimate:
    def test_extends_from_valid_until(self, make_estimate):
        estimate = make_estimate()
        estimate_service.send_estimate(estimate.id, now=T0)
        estimate = estimate_service.extend_estimate(estimate.id, 3, now=T0 + timedelta(days=1))
        assert estimate.valid_until == T0 + timedelta(days=10)

    def test_lapsed_extends_from_now(self, make_estimate):
        estimate = make_estimate()
        estimate_service.send_estimate(estimate.id, now=T0)
        later = T0 + timedelta(days=20)
        estimate = estimate_service.extend_estimate(estimate.id, 5, now=later)
        assert estimate.valid_until == later + timedelta(days=5)

        # Now approvable again
        estimate = estimate_service.approve_estimate(estimate.id, now=later + timedelta(days=1))
        assert estimate.status == "approved"

    @pytest.mark.parametrize("days", [0, -2])
    def test_days_must_be_positive(self, make_estimate, days):
        estimate = make_estimate()
        estimate_service.send_estimate(estimate.id, now=T0)
        with pytest.raises(ValidationError):
            estimate_service.extend_estimate(estimate.id, days, now=T0)

    def test_draft_cannot_be_extended(self, make_estimate):
        estimate = make_estimate()
        with pytest.raises(InvalidTransition):
            estimate_service.extend_estimate(estimate.id, 3, now=T0)


class TestConvertEstimate:
    def test_convert_creates_intake_ticket(self, make_estimate):
        estimate = make_estimate()
        estimate_service.approve_estimate(estimate.id, now=T0)
        ticket = estimate_service.convert_estimate(estimate.id, performed_by="front-desk", now=T0)

        assert ticket.status == "INTAKE"
        assert ticket.ticket_number == "FIX-0001"
        assert ticket.device_brand == "Apple"
        assert ticket.repair_type == "screen"
        assert ticket.estimated_cost_cents == 23707
        assert ticket.source_estimate_id == estimate.id

        estimate = estimate_service.get_estimate(estimate.id)
        assert estimate.status == "converted"
        assert estimate.converted_to_ticket_id == ticket.id

    def test_second_convert_returns_same_ticket_id(self, db_session, make_estimate):
        estimate = make_estimate()
        estimate_service.approve_estimate(estimate.id, now=T0)
        ticket = estimate_service.convert_estimate(estimate.id, now=T0)

        with pytest.raises(AlreadyConverted) as exc:
            estimate_service.convert_estimate(estimate.id, now=T0)
        assert exc.value.ticket_id == ticket.id
        assert exc.value.ticket_number == ticket.ticket_number
        assert db_session.query(Ticket).count() == 1

    def test_convert_requires_approved(self, make_estimate):
        estimate = make_estimate()
        with pytest.raises(InvalidTransition):
            estimate_service.convert_estimate(estimate.id, now=T0)

    def test_convert_reuses_unlinked_ticket(self, db_session, shop, customer, make_estimate, make_ticket):
        estimate = make_estimate()
        estimate_service.approve_estimate(estimate.id, now=T0)
        # Earlier attempt created the ticket but never linked it
        orphan = make_ticket(source_estimate_id=estimate.id)

        ticket = estimate_service.convert_estimate(estimate.id, now=T0)
        assert ticket.id == orphan.id
        assert db_session.query(Ticket).count() == 1

    def test_missing_brand_defaults(self, make_estimate):
        estimate = make_estimate(device_brand=None)
        estimate_service.approve_estimate(estimate.id, now=T0)
        ticket = estimate_service.convert_estimate(estimate.id, now=T0)
        assert ticket.device_brand == "Unknown"


class TestDuplicateAndEdit:
    def test_duplicate_is_fresh_draft(self, make_estimate):
        estimate = make_estimate()
        estimate_service.decline_estimate(estimate.id, "Later", now=T0)

        copy = estimate_service.duplicate_estimate(estimate.id, now=T0 + timedelta(days=2))
        assert copy.id != estimate.id
        assert copy.status == "draft"
        assert copy.estimate_number == "EST-0002"
        assert copy.duplicated_from_id == estimate.id
        assert copy.total_cents == estimate.total_cents
        assert copy.valid_until == T0 + timedelta(days=9)

    def test_update_recomputes_totals(self, make_estimate):
        estimate = make_estimate()
        estimate = estimate_service.update_estimate(
            estimate.id,
            items=[{"type": "labor", "description": "Diagnostics", "quantity": 1, "unit_price_cents": 5000}],
            now=T0,
        )
        assert estimate.subtotal_cents == 5000
        assert estimate.tax_cents == 413  # 412.5 -> 413
        assert estimate.total_cents == 5413
        assert len(estimate.lines) == 1

    def test_update_only_in_draft(self, make_estimate):
        estimate = make_estimate()
        estimate_service.send_estimate(estimate.id, now=T0)
        with pytest.raises(InvalidTransition):
            estimate_service.update_estimate(estimate.id, notes="changed", now=T0)

    def test_delete_draft(self, db_session, make_estimate):
        estimate = make_estimate()
        estimate_service.delete_estimate(estimate.id)
        assert db_session.get(Estimate, estimate.id) is None

    def test_invoiced_estimate_not_deletable(self, make_estimate):
        estimate = make_estimate()
        estimate_service.approve_estimate(estimate.id, now=T0)
        invoice = invoice_service.create_invoice_from_estimate(estimate.id, now=T0)
        assert invoice.estimate_id == estimate.id
        with pytest.raises(InvalidTransition):
            estimate_service.delete_estimate(estimate.id)
