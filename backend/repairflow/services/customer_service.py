# Overview: Service-layer operations for customers; encapsulates business logic and database work.

"""
Customer lookups

Customers are owned by the surrounding CRM. This module only creates the
minimal record the lifecycle engines need as a foreign key, and answers the
per-customer questions dashboards ask (everything for a customer, and what
they still owe).
"""

from __future__ import annotations

from ..extensions import db
from ..models import Customer, Ticket, Estimate, Invoice, WarrantyClaim
from ..errors import NotFound, ValidationError
from ..validation import require_text, optional_text
from .shop_service import get_shop

# Invoices in these states are closed and never count as owed
CLOSED_INVOICE_STATUSES = ("draft", "void", "refunded")


def create_customer(
    shop_id: int,
    first_name: str,
    last_name: str = "",
    phone: str | None = None,
    email: str | None = None,
) -> Customer:
    get_shop(shop_id)
    customer = Customer(
        shop_id=shop_id,
        first_name=require_text(first_name, "first_name", max_length=128),
        last_name=(last_name or "").strip(),
        phone=optional_text(phone, "phone", max_length=32),
        email=optional_text(email, "email"),
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFound(f"Customer {customer_id} not found")
    return customer


def require_customer_in_shop(customer_id: int, shop_id: int) -> Customer:
    """Foreign-key check used by every create call."""
    if customer_id is None:
        raise ValidationError("customer_id is required")
    customer = get_customer(customer_id)
    if customer.shop_id != shop_id:
        raise NotFound(f"Customer {customer_id} not found in shop {shop_id}")
    return customer


def list_by_customer(customer_id: int) -> dict:
    """
    Every ticket, estimate, invoice and warranty claim for a customer, newest first.
    """
    customer = get_customer(customer_id)

    def _newest(model, order_col):
        return (
            db.session.query(model)
            .filter_by(customer_id=customer.id)
            .order_by(order_col.desc(), model.id.desc())
            .all()
        )

    return {
        "customer": customer,
        "tickets": _newest(Ticket, Ticket.created_at),
        "estimates": _newest(Estimate, Estimate.created_at),
        "invoices": _newest(Invoice, Invoice.created_at),
        "claims": _newest(WarrantyClaim, WarrantyClaim.claim_date),
    }


def outstanding_balance(customer_id: int) -> int:
    """
    Total amount_due (cents) across the customer's open invoices.

    Drafts are not yet billed; void and refunded invoices are closed.
    """
    customer = get_customer(customer_id)
    total = (
        db.session.query(db.func.coalesce(db.func.sum(Invoice.amount_due_cents), 0))
        .filter(
            Invoice.customer_id == customer.id,
            Invoice.status.notin_(CLOSED_INVOICE_STATUSES),
        )
        .scalar()
    )
    return int(total or 0)
