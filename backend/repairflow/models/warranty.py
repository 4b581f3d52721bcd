from __future__ import annotations

from ..extensions import db
from repairflow.time_utils import to_utc_z


class WarrantyClaim(db.Model):
    """
    Warranty claim against a completed (picked-up) repair.

    LIFECYCLE: pending -> approved | denied, approved -> completed.

    The original repair snapshot (type, date, amount, period, expiry) is
    copied at filing time so later edits to the ticket or invoice cannot
    move the window.
    """
    __tablename__ = "warranty_claims"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "claim_number", name="uq_warranty_claims_shop_number"),
        db.Index("ix_warranty_claims_ticket_status", "ticket_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    claim_number = db.Column(db.String(32), nullable=False)

    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=False, index=True)
    ticket_number = db.Column(db.String(32), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)

    # Snapshot of the original repair
    original_repair_type = db.Column(db.String(64), nullable=True)
    original_repair_date = db.Column(db.DateTime(timezone=True), nullable=False)
    original_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    warranty_period_days = db.Column(db.Integer, nullable=False)
    warranty_expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    claim_date = db.Column(db.DateTime(timezone=True), nullable=False)
    claim_reason = db.Column(db.String(255), nullable=False)
    claim_description = db.Column(db.Text, nullable=False)

    # pending, approved, denied, completed
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    resolution_type = db.Column(db.String(16), nullable=False)  # redo, replacement, refund, partial-refund
    resolution = db.Column(db.Text, nullable=True)
    resolution_amount_cents = db.Column(db.Integer, nullable=True)
    resolution_ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=True)

    reviewed_by = db.Column(db.String(128), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    review_notes = db.Column(db.Text, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    ticket = db.relationship("Ticket", foreign_keys=[ticket_id], backref=db.backref("warranty_claims", lazy=True))
    resolution_ticket = db.relationship("Ticket", foreign_keys=[resolution_ticket_id])
    customer = db.relationship("Customer", backref=db.backref("warranty_claims", lazy=True))
    refund_payments = db.relationship("Payment", backref="warranty_claim", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "claim_number": self.claim_number,
            "ticket_id": self.ticket_id,
            "ticket_number": self.ticket_number,
            "customer_id": self.customer_id,
            "invoice_id": self.invoice_id,
            "original_repair_type": self.original_repair_type,
            "original_repair_date": to_utc_z(self.original_repair_date),
            "original_amount_cents": self.original_amount_cents,
            "warranty_period_days": self.warranty_period_days,
            "warranty_expires_at": to_utc_z(self.warranty_expires_at),
            "claim_date": to_utc_z(self.claim_date),
            "claim_reason": self.claim_reason,
            "claim_description": self.claim_description,
            "status": self.status,
            "resolution_type": self.resolution_type,
            "resolution": self.resolution,
            "resolution_amount_cents": self.resolution_amount_cents,
            "resolution_ticket_id": self.resolution_ticket_id,
            "refund_payment_ids": [p.id for p in self.refund_payments],
            "reviewed_by": self.reviewed_by,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "review_notes": self.review_notes,
            "completed_at": to_utc_z(self.completed_at),
            "created_by": self.created_by,
            "version_id": self.version_id,
        }
