# Overview: Pytest coverage for customer history and outstanding balance.

import pytest

from repairflow.errors import NotFound, ValidationError
from repairflow.services import customer_service, estimate_service, invoice_service, payment_service
from conftest import T0, SCREEN_ITEMS


class TestCustomers:
    def test_create_customer(self, shop):
        customer = customer_service.create_customer(shop.id, " Grace ", "Hopper", phone="555-0199")
        assert customer.first_name == "Grace"
        assert customer.name == "Grace Hopper"

    def test_first_name_required(self, shop):
        with pytest.raises(ValidationError):
            customer_service.create_customer(shop.id, "")

    def test_unknown_shop(self, db_session):
        with pytest.raises(NotFound):
            customer_service.create_customer(999, "Nobody")


class TestCustomerHistory:
    def test_everything_for_customer(self, shop, customer, make_ticket):
        make_ticket()
        estimate_service.create_estimate(shop_id=shop.id, customer_id=customer.id, items=SCREEN_ITEMS, now=T0)
        invoice_service.create_invoice(shop_id=shop.id, customer_id=customer.id, items=SCREEN_ITEMS, now=T0)

        history = customer_service.list_by_customer(customer.id)
        assert history["customer"].id == customer.id
        assert len(history["tickets"]) == 1
        assert len(history["estimates"]) == 1
        assert len(history["invoices"]) == 1
        assert history["claims"] == []

    def test_history_excludes_other_customers(self, shop, customer, make_ticket):
        other = customer_service.create_customer(shop.id, "Grace", "Hopper")
        make_ticket(customer_id=other.id)
        assert customer_service.list_by_customer(customer.id)["tickets"] == []


class TestOutstandingBalance:
    def test_only_open_invoices_count(self, shop, customer):
        def invoice():
            return invoice_service.create_invoice(
                shop_id=shop.id, customer_id=customer.id, items=SCREEN_ITEMS, now=T0,
            )

        draft = invoice()  # not billed yet
        sent = invoice_service.send_invoice(invoice().id, now=T0)
        partial = invoice_service.send_invoice(invoice().id, now=T0)
        payment_service.apply_payment(partial.id, 20000, "CASH", now=T0)
        voided = invoice_service.send_invoice(invoice().id, now=T0)
        invoice_service.void_invoice(voided.id, now=T0)

        assert draft.status == "draft"
        assert customer_service.outstanding_balance(customer.id) == sent.total_cents + 3707

    def test_zero_when_nothing_owed(self, customer):
        assert customer_service.outstanding_balance(customer.id) == 0
