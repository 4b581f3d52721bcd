from __future__ import annotations

from ..extensions import db
from repairflow.time_utils import to_utc_z


class Ticket(db.Model):
    """
    Repair ticket: one repair job tracked from intake to pickup.

    LIFECYCLE: INTAKE -> DIAGNOSED -> IN_PROGRESS -> READY -> PICKED_UP
    (see services/ticket_service.py). Each stage timestamp is written once,
    on the first forward move into that stage, and never cleared.
    """
    __tablename__ = "tickets"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "ticket_number", name="uq_tickets_shop_number"),
        db.Index("ix_tickets_shop_status_created", "shop_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    # Human-readable number (e.g., "FIX-0001")
    ticket_number = db.Column(db.String(32), nullable=False, index=True)

    # Device
    device_type = db.Column(db.String(64), nullable=False)
    device_brand = db.Column(db.String(64), nullable=False)
    device_model = db.Column(db.String(128), nullable=True)

    # Repair type drives the warranty policy (screen, battery, charging-port, ...)
    repair_type = db.Column(db.String(64), nullable=True, index=True)
    issue_description = db.Column(db.String(500), nullable=True)
    priority = db.Column(db.String(16), nullable=False, default="NORMAL")
    # Staff string of the technician working the job (opaque, like performed_by)
    assigned_to = db.Column(db.String(128), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="INTAKE", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    due_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Money (cents)
    estimated_cost_cents = db.Column(db.Integer, nullable=True)
    actual_cost_cents = db.Column(db.Integer, nullable=True)

    # Stage timestamps (set once, in order)
    intake_at = db.Column(db.DateTime(timezone=True), nullable=True)
    diagnosed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    repair_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    repaired_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    picked_up_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Idempotency anchors for conversions (a source materializes at most one ticket)
    source_estimate_id = db.Column(db.Integer, nullable=True, unique=True)
    source_claim_id = db.Column(db.Integer, nullable=True, unique=True)

    created_by = db.Column(db.String(128), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    shop = db.relationship("Shop", backref=db.backref("tickets", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("tickets", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "ticket_number": self.ticket_number,
            "customer_id": self.customer_id,
            "device": {
                "type": self.device_type,
                "brand": self.device_brand,
                "model": self.device_model,
            },
            "repair_type": self.repair_type,
            "issue_description": self.issue_description,
            "priority": self.priority,
            "assigned_to": self.assigned_to,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "due_at": to_utc_z(self.due_at),
            "estimated_cost_cents": self.estimated_cost_cents,
            "actual_cost_cents": self.actual_cost_cents,
            "intake_at": to_utc_z(self.intake_at),
            "diagnosed_at": to_utc_z(self.diagnosed_at),
            "repair_started_at": to_utc_z(self.repair_started_at),
            "repaired_at": to_utc_z(self.repaired_at),
            "completed_at": to_utc_z(self.completed_at),
            "picked_up_at": to_utc_z(self.picked_up_at),
            "source_estimate_id": self.source_estimate_id,
            "source_claim_id": self.source_claim_id,
            "created_by": self.created_by,
            "version_id": self.version_id,
        }
