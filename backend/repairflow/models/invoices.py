from __future__ import annotations

from ..extensions import db
from repairflow.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Binding bill, optionally derived from a ticket or an estimate.

    WHY: amount_paid_cents / amount_due_cents are a cache of the payment
    ledger, recomputed by payment_service after every payment or refund.
    ``overdue`` is never stored: it is derived from amount_due and due_date.

    STATUS: draft, sent, viewed, partial, paid, refunded, void
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "invoice_number", name="uq_invoices_shop_number"),
        db.Index("ix_invoices_shop_status_due", "shop_id", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(32), nullable=False)

    # Optional sources
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=True, index=True)
    ticket_number = db.Column(db.String(32), nullable=True)
    estimate_id = db.Column(db.Integer, db.ForeignKey("estimates.id"), nullable=True, index=True)

    # Totals (derived from lines + tax_rate + discount)
    tax_rate = db.Column(db.Numeric(8, 6), nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Payment tracking (derived from payments)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_due_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    send_count = db.Column(db.Integer, nullable=False, default=0)
    last_reminded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    viewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Void audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by = db.Column(db.String(128), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    ticket = db.relationship("Ticket", backref=db.backref("invoices", lazy=True))
    estimate = db.relationship("Estimate", backref=db.backref("invoices", lazy=True))
    lines = db.relationship(
        "InvoiceLine",
        backref="invoice",
        lazy=True,
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "ticket_id": self.ticket_id,
            "ticket_number": self.ticket_number,
            "estimate_id": self.estimate_id,
            "items": [line.to_dict() for line in self.lines],
            "tax_rate": str(self.tax_rate),
            "discount_cents": self.discount_cents,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "amount_due_cents": self.amount_due_cents,
            "status": self.status,
            "due_date": to_utc_z(self.due_date),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "sent_at": to_utc_z(self.sent_at),
            "send_count": self.send_count,
            "last_reminded_at": to_utc_z(self.last_reminded_at),
            "viewed_at": to_utc_z(self.viewed_at),
            "paid_at": to_utc_z(self.paid_at),
            "voided_at": to_utc_z(self.voided_at),
            "voided_by": self.voided_by,
            "void_reason": self.void_reason,
            "created_by": self.created_by,
            "version_id": self.version_id,
        }


class InvoiceLine(db.Model):
    """Ordered line items on an invoice; line_total_cents = quantity * unit_price_cents."""
    __tablename__ = "invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    item_type = db.Column(db.String(16), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.item_type,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    Append-only payment ledger entry against an invoice.

    TRANSACTION TYPES:
    - PAYMENT: money received (amount_cents > 0)
    - REFUND: money returned; offsets an earlier PAYMENT (refund_of_payment_id)

    IMMUTABLE: a completed PAYMENT is never edited except to be marked
    ``refunded`` once refunds against it add up to its amount. Refunds are
    new rows, never edits.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_invoice_created", "invoice_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, default="PAYMENT", index=True)  # PAYMENT, REFUND

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False, index=True)  # CASH, CARD, CHECK, OTHER
    reference = db.Column(db.String(128), nullable=True)
    processor_fee_cents = db.Column(db.Integer, nullable=False, default=0)

    # pending, completed, failed, refunded
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    refund_of_payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)
    warranty_claim_id = db.Column(db.Integer, db.ForeignKey("warranty_claims.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    performed_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    refund_of = db.relationship("Payment", remote_side=[id], backref=db.backref("refunds", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def net_cents(self) -> int:
        return self.amount_cents - (self.processor_fee_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "processor_fee_cents": self.processor_fee_cents,
            "net_cents": self.net_cents,
            "status": self.status,
            "refund_of_payment_id": self.refund_of_payment_id,
            "warranty_claim_id": self.warranty_claim_id,
            "reason": self.reason,
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "failed_at": to_utc_z(self.failed_at),
            "version_id": self.version_id,
        }
