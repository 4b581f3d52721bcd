# Overview: End-to-end repair lifecycle, quote to warranty claim, on a pinned clock.

"""
Full lifecycle walk-through.

Screen repair quoted at 219.00 + 8.25% tax, approved, converted to a
ticket, worked through every stage, invoiced, paid in cash, then claimed
under warranty ten days after pickup.
"""

from datetime import timedelta

from repairflow.services import (
    estimate_service,
    invoice_service,
    payment_service,
    ticket_service,
    warranty_service,
)
from repairflow.services.ledger_service import get_entity_history
from repairflow.validation import cents_to_str
from conftest import T0, SCREEN_ITEMS


class TestRepairLifecycle:
    def test_quote_to_warranty_claim(self, shop, customer):
        # Quote
        estimate = estimate_service.create_estimate(
            shop_id=shop.id,
            customer_id=customer.id,
            items=SCREEN_ITEMS,
            tax_rate="0.0825",
            device_type="Phone",
            device_brand="Apple",
            device_model="iPhone 13",
            repair_type="screen",
            performed_by="front-desk",
            now=T0,
        )
        assert cents_to_str(estimate.subtotal_cents) == "219.00"
        assert cents_to_str(estimate.tax_cents) == "18.07"
        assert cents_to_str(estimate.total_cents) == "237.07"

        # Approve and convert
        estimate_service.approve_estimate(estimate.id, performed_by="front-desk", now=T0 + timedelta(minutes=10))
        ticket = estimate_service.convert_estimate(estimate.id, performed_by="front-desk", now=T0 + timedelta(minutes=11))
        assert ticket.status == "INTAKE"

        # Work the repair
        clock = T0 + timedelta(minutes=11)
        for stage in ("DIAGNOSED", "IN_PROGRESS", "READY", "PICKED_UP"):
            clock += timedelta(hours=2)
            ticket = ticket_service.advance_ticket(ticket.id, stage, performed_by="tech-1", now=clock)
        picked_up = clock
        assert ticket.status == "PICKED_UP"
        assert ticket.completed_at == picked_up

        # Bill and settle
        invoice = invoice_service.create_invoice(
            shop_id=shop.id,
            customer_id=customer.id,
            items=SCREEN_ITEMS,
            ticket_id=ticket.id,
            performed_by="front-desk",
            now=picked_up,
        )
        assert invoice.due_date == picked_up + timedelta(days=7)
        payment_service.apply_payment(invoice.id, 23707, "CASH", performed_by="front-desk", now=picked_up)

        invoice = invoice_service.get_invoice(invoice.id)
        assert invoice.status == "paid"
        assert cents_to_str(invoice.amount_due_cents) == "0.00"
        assert invoice.amount_paid_cents == invoice.total_cents

        # Warranty claim ten days later
        claim = warranty_service.file_claim(
            shop_id=shop.id,
            ticket_number=ticket.ticket_number,
            reason="Dead pixels",
            description="Cluster of dead pixels in the top corner",
            resolution_type="redo",
            performed_by="front-desk",
            now=picked_up + timedelta(days=10),
        )
        assert claim.status == "pending"
        assert claim.warranty_period_days == 90
        assert claim.invoice_id == invoice.id
        assert claim.original_amount_cents == 23707
        assert warranty_service.days_remaining(claim, picked_up + timedelta(days=10)) == 80

        # Every transition left an audit trail
        assert [e.event_type for e in get_entity_history("estimate", estimate.id)] == [
            "estimate.created",
            "estimate.approved",
            "estimate.converted",
        ]
        ticket_events = [e.event_type for e in get_entity_history("ticket", ticket.id)]
        assert ticket_events == ["ticket.created"] + ["ticket.advanced"] * 4
