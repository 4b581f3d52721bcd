from __future__ import annotations

from ..extensions import db
from repairflow.time_utils import to_utc_z


class Estimate(db.Model):
    """
    Non-binding repair quote.

    WHY: Customers approve a price before work starts. An approved estimate
    converts into at most one Ticket (``converted_to_ticket_id`` is set once).

    subtotal_cents / tax_cents / total_cents are derived from the lines,
    tax_rate and nothing else; only estimate_service writes them.
    """
    __tablename__ = "estimates"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "estimate_number", name="uq_estimates_shop_number"),
        db.Index("ix_estimates_shop_status_created", "shop_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    estimate_number = db.Column(db.String(32), nullable=False)

    # Device info (copied onto the ticket on conversion)
    device_type = db.Column(db.String(64), nullable=False, default="Device")
    device_brand = db.Column(db.String(64), nullable=True)
    device_model = db.Column(db.String(128), nullable=True)
    device_condition = db.Column(db.String(500), nullable=True)
    repair_type = db.Column(db.String(64), nullable=True)

    # Totals (derived)
    tax_rate = db.Column(db.Numeric(8, 6), nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # draft, sent, viewed, approved, declined, expired, converted
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    viewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    declined_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decline_reason = db.Column(db.String(255), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Conversion (irreversible)
    converted_to_ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=True, unique=True)
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    duplicated_from_id = db.Column(db.Integer, nullable=True)
    created_by = db.Column(db.String(128), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("estimates", lazy=True))
    converted_to_ticket = db.relationship("Ticket", foreign_keys=[converted_to_ticket_id])
    lines = db.relationship(
        "EstimateLine",
        backref="estimate",
        lazy=True,
        order_by="EstimateLine.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "estimate_number": self.estimate_number,
            "customer_id": self.customer_id,
            "device": {
                "type": self.device_type,
                "brand": self.device_brand,
                "model": self.device_model,
                "condition": self.device_condition,
            },
            "repair_type": self.repair_type,
            "items": [line.to_dict() for line in self.lines],
            "tax_rate": str(self.tax_rate),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "valid_until": to_utc_z(self.valid_until),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "sent_at": to_utc_z(self.sent_at),
            "viewed_at": to_utc_z(self.viewed_at),
            "approved_at": to_utc_z(self.approved_at),
            "declined_at": to_utc_z(self.declined_at),
            "decline_reason": self.decline_reason,
            "expired_at": to_utc_z(self.expired_at),
            "converted_to_ticket_id": self.converted_to_ticket_id,
            "converted_at": to_utc_z(self.converted_at),
            "duplicated_from_id": self.duplicated_from_id,
            "created_by": self.created_by,
            "version_id": self.version_id,
        }


class EstimateLine(db.Model):
    """Ordered line items on an estimate."""
    __tablename__ = "estimate_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    estimate_id = db.Column(db.Integer, db.ForeignKey("estimates.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    item_type = db.Column(db.String(16), nullable=False)  # labor, part, accessory, other
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
