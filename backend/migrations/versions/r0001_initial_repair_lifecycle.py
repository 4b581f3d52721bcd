"""Initial schema: shops, customers, tickets, estimates, invoices, payments, warranty claims, ledger

Revision ID: r0001
Revises:
Create Date: 2026-10-19 12:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "r0001"
down_revision = None
branch_labels = None
depends_on = None


def _line_table(name: str, parent_table: str, parent_column: str):
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(parent_column, sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("item_type", sa.String(length=16), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint([parent_column], [f"{parent_table}.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index(f"ix_{name}_{parent_column}", name, [parent_column], unique=False)


def upgrade():
    # Tenancy root
    op.create_table(
        "shops",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("default_tax_rate", sa.Numeric(8, 6), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_shops_code", "shops", ["code"], unique=True)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customers_shop_id", "customers", ["shop_id"], unique=False)
    op.create_index("ix_customers_shop_phone", "customers", ["shop_id", "phone"], unique=False)

    # Document sequences
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sa.UniqueConstraint("shop_id", "document_type", name="uq_doc_sequences_shop_type"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_document_sequences_shop_id", "document_sequences", ["shop_id"], unique=False)
    op.create_index("ix_document_sequences_document_type", "document_sequences", ["document_type"], unique=False)

    # Tickets
    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("ticket_number", sa.String(length=32), nullable=False),
        sa.Column("device_type", sa.String(length=64), nullable=False),
        sa.Column("device_brand", sa.String(length=64), nullable=False),
        sa.Column("device_model", sa.String(length=128), nullable=True),
        sa.Column("repair_type", sa.String(length=64), nullable=True),
        sa.Column("issue_description", sa.String(length=500), nullable=True),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="NORMAL"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="INTAKE"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_cost_cents", sa.Integer(), nullable=True),
        sa.Column("actual_cost_cents", sa.Integer(), nullable=True),
        sa.Column("intake_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("diagnosed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("repair_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("repaired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_estimate_id", sa.Integer(), nullable=True),
        sa.Column("source_claim_id", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.UniqueConstraint("shop_id", "ticket_number", name="uq_tickets_shop_number"),
        sa.UniqueConstraint("source_estimate_id"),
        sa.UniqueConstraint("source_claim_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_tickets_shop_id", "tickets", ["shop_id"], unique=False)
    op.create_index("ix_tickets_customer_id", "tickets", ["customer_id"], unique=False)
    op.create_index("ix_tickets_ticket_number", "tickets", ["ticket_number"], unique=False)
    op.create_index("ix_tickets_repair_type", "tickets", ["repair_type"], unique=False)
    op.create_index("ix_tickets_status", "tickets", ["status"], unique=False)
    op.create_index("ix_tickets_shop_status_created", "tickets", ["shop_id", "status", "created_at"], unique=False)

    # Estimates
    op.create_table(
        "estimates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("estimate_number", sa.String(length=32), nullable=False),
        sa.Column("device_type", sa.String(length=64), nullable=False, server_default="Device"),
        sa.Column("device_brand", sa.String(length=64), nullable=True),
        sa.Column("device_model", sa.String(length=128), nullable=True),
        sa.Column("device_condition", sa.String(length=500), nullable=True),
        sa.Column("repair_type", sa.String(length=64), nullable=True),
        sa.Column("tax_rate", sa.Numeric(8, 6), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("declined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decline_reason", sa.String(length=255), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("converted_to_ticket_id", sa.Integer(), nullable=True),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duplicated_from_id", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["converted_to_ticket_id"], ["tickets.id"]),
        sa.UniqueConstraint("shop_id", "estimate_number", name="uq_estimates_shop_number"),
        sa.UniqueConstraint("converted_to_ticket_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_estimates_shop_id", "estimates", ["shop_id"], unique=False)
    op.create_index("ix_estimates_customer_id", "estimates", ["customer_id"], unique=False)
    op.create_index("ix_estimates_status", "estimates", ["status"], unique=False)
    op.create_index("ix_estimates_shop_status_created", "estimates", ["shop_id", "status", "created_at"], unique=False)
    _line_table("estimate_lines", "estimates", "estimate_id")

    # Invoices
    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("invoice_number", sa.String(length=32), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=True),
        sa.Column("ticket_number", sa.String(length=32), nullable=True),
        sa.Column("estimate_id", sa.Integer(), nullable=True),
        sa.Column("tax_rate", sa.Numeric(8, 6), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_due_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("send_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reminded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by", sa.String(length=128), nullable=True),
        sa.Column("void_reason", sa.String(length=255), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"]),
        sa.ForeignKeyConstraint(["estimate_id"], ["estimates.id"]),
        sa.UniqueConstraint("shop_id", "invoice_number", name="uq_invoices_shop_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_invoices_shop_id", "invoices", ["shop_id"], unique=False)
    op.create_index("ix_invoices_customer_id", "invoices", ["customer_id"], unique=False)
    op.create_index("ix_invoices_ticket_id", "invoices", ["ticket_id"], unique=False)
    op.create_index("ix_invoices_estimate_id", "invoices", ["estimate_id"], unique=False)
    op.create_index("ix_invoices_status", "invoices", ["status"], unique=False)
    op.create_index("ix_invoices_shop_status_due", "invoices", ["shop_id", "status", "due_date"], unique=False)
    _line_table("invoice_lines", "invoices", "invoice_id")

    # Warranty claims
    op.create_table(
        "warranty_claims",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("claim_number", sa.String(length=32), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=False),
        sa.Column("ticket_number", sa.String(length=32), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("original_repair_type", sa.String(length=64), nullable=True),
        sa.Column("original_repair_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("warranty_period_days", sa.Integer(), nullable=False),
        sa.Column("warranty_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claim_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claim_reason", sa.String(length=255), nullable=False),
        sa.Column("claim_description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("resolution_type", sa.String(length=16), nullable=False),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("resolution_amount_cents", sa.Integer(), nullable=True),
        sa.Column("resolution_ticket_id", sa.Integer(), nullable=True),
        sa.Column("reviewed_by", sa.String(length=128), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.ForeignKeyConstraint(["resolution_ticket_id"], ["tickets.id"]),
        sa.UniqueConstraint("shop_id", "claim_number", name="uq_warranty_claims_shop_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_warranty_claims_shop_id", "warranty_claims", ["shop_id"], unique=False)
    op.create_index("ix_warranty_claims_ticket_id", "warranty_claims", ["ticket_id"], unique=False)
    op.create_index("ix_warranty_claims_customer_id", "warranty_claims", ["customer_id"], unique=False)
    op.create_index("ix_warranty_claims_status", "warranty_claims", ["status"], unique=False)
    op.create_index("ix_warranty_claims_ticket_status", "warranty_claims", ["ticket_id", "status"], unique=False)

    # Payments (ledger of PAYMENT / REFUND rows)
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(length=16), nullable=False, server_default="PAYMENT"),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(length=16), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("processor_fee_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
        sa.Column("refund_of_payment_id", sa.Integer(), nullable=True),
        sa.Column("warranty_claim_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("performed_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.ForeignKeyConstraint(["refund_of_payment_id"], ["payments.id"]),
        sa.ForeignKeyConstraint(["warranty_claim_id"], ["warranty_claims.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payments_invoice_id", "payments", ["invoice_id"], unique=False)
    op.create_index("ix_payments_transaction_type", "payments", ["transaction_type"], unique=False)
    op.create_index("ix_payments_method", "payments", ["method"], unique=False)
    op.create_index("ix_payments_status", "payments", ["status"], unique=False)
    op.create_index("ix_payments_refund_of_payment_id", "payments", ["refund_of_payment_id"], unique=False)
    op.create_index("ix_payments_warranty_claim_id", "payments", ["warranty_claim_id"], unique=False)
    op.create_index("ix_payments_created_at", "payments", ["created_at"], unique=False)
    op.create_index("ix_payments_invoice_created", "payments", ["invoice_id", "created_at"], unique=False)

    # Audit ledger
    op.create_table(
        "ledger_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("shop_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("event_category", sa.String(length=32), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("performed_by", sa.String(length=128), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_events_shop_id", "ledger_events", ["shop_id"], unique=False)
    op.create_index("ix_ledger_events_event_type", "ledger_events", ["event_type"], unique=False)
    op.create_index("ix_ledger_events_event_category", "ledger_events", ["event_category"], unique=False)
    op.create_index("ix_ledger_events_performed_by", "ledger_events", ["performed_by"], unique=False)
    op.create_index("ix_ledger_events_occurred_at", "ledger_events", ["occurred_at"], unique=False)
    op.create_index("ix_ledger_events_shop_occurred", "ledger_events", ["shop_id", "occurred_at"], unique=False)
    op.create_index("ix_ledger_events_entity", "ledger_events", ["entity_type", "entity_id"], unique=False)


def downgrade():
    op.drop_table("ledger_events")
    op.drop_table("payments")
    op.drop_table("warranty_claims")
    op.drop_table("invoice_lines")
    op.drop_table("invoices")
    op.drop_table("estimate_lines")
    op.drop_table("estimates")
    op.drop_table("tickets")
    op.drop_table("document_sequences")
    op.drop_table("customers")
    op.drop_table("shops")
