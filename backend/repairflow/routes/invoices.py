# Overview: Flask API routes for invoices operations; parses input and returns JSON responses.

"""
Invoice API Routes

DESIGN:
- POST   /api/invoices                  create draft
- GET    /api/invoices?shop_id=         list
- GET    /api/invoices/overdue          overdue invoices (derived, never stored)
- GET    /api/invoices/lookup?q=       by invoice number, or the billed ticket number
- GET    /api/invoices/<id>             one invoice with display_status / is_overdue
- PATCH  /api/invoices/<id>             edit draft
- DELETE /api/invoices/<id>             delete draft without payments
- POST   /api/invoices/<id>/send|remind|viewed|void

Every invoice body carries the stored ``status`` plus the derived
``display_status`` and ``is_overdue`` evaluated at request time.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import RepairFlowError
from ..services import invoice_service
from ..services.payment_service import get_payment_summary
from ..validation import coerce_int
from .common import error_response, internal_error, json_body, pagination, performed_by, require_shop_id


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

_EDITABLE = ("items", "tax_rate", "discount_cents", "due_date", "notes")


def serialize_invoice(invoice) -> dict:
    body = invoice.to_dict()
    body["is_overdue"] = invoice_service.is_overdue(invoice)
    body["display_status"] = invoice_service.display_status(invoice)
    return body


@invoices_bp.post("")
def create_invoice_route():
    """
    Create a draft invoice.

    Request body:
    {
        "shop_id": 1,
        "customer_id": 7,
        "ticket_number": "FIX-0001",   (optional)
        "items": [{"type": "part", "description": "Screen", "quantity": 1, "unit_price_cents": 18000}],
        "tax_rate": "0.0825",          (optional)
        "discount_cents": 0,
        "due_date": "2026-01-20T00:00:00Z"   (optional, +INVOICE_DUE_DAYS)
    }
    """
    try:
        data = json_body()
        invoice = invoice_service.create_invoice(
            shop_id=require_shop_id(data),
            customer_id=data.get("customer_id"),
            items=data.get("items"),
            tax_rate=data.get("tax_rate"),
            discount_cents=data.get("discount_cents", 0),
            due_date=data.get("due_date"),
            ticket_id=data.get("ticket_id"),
            ticket_number=data.get("ticket_number"),
            notes=data.get("notes"),
            performed_by=performed_by(data),
        )
        return jsonify({"invoice": serialize_invoice(invoice)}), 201
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return internal_error()


@invoices_bp.get("")
def list_invoices_route():
    try:
        limit, offset = pagination()
        invoices, total = invoice_service.list_invoices(
            require_shop_id(), status=request.args.get("status"), limit=limit, offset=offset
        )
        return jsonify({"invoices": [serialize_invoice(i) for i in invoices], "total": total})
    except RepairFlowError as e:
        return error_response(e)


@invoices_bp.get("/overdue")
def overdue_invoices_route():
    try:
        shop_id = request.args.get("shop_id")
        invoices = invoice_service.list_overdue_invoices(
            coerce_int(shop_id, "shop_id") if shop_id is not None else None
        )
        return jsonify({
            "invoices": [serialize_invoice(i) for i in invoices],
            "total_due_cents": sum(i.amount_due_cents for i in invoices),
        })
    except RepairFlowError as e:
        return error_response(e)


@invoices_bp.get("/lookup")
def lookup_invoice_route():
    """
    Resolve an invoice number (INV-0001) or a ticket number (FIX-0001).

    Query params: shop_id, q

    Returns:
        200: {"match": "invoice" | "ticket", "invoice": {...}}
        400: q missing
        404: nothing matches, or the ticket has no invoice
    """
    try:
        invoice = invoice_service.lookup_invoice(require_shop_id(), request.args.get("q"))
        query = (request.args.get("q") or "").strip().upper()
        return jsonify({
            "match": "invoice" if invoice.invoice_number == query else "ticket",
            "invoice": serialize_invoice(invoice),
        })
    except RepairFlowError as e:
        return error_response(e)


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"invoice": serialize_invoice(invoice), "payments": get_payment_summary(invoice.id)})
    except RepairFlowError as e:
        return error_response(e)


@invoices_bp.patch("/<int:invoice_id>")
def update_invoice_route(invoice_id: int):
    try:
        data = json_body()
        changes = {key: data[key] for key in _EDITABLE if key in data}
        invoice = invoice_service.update_invoice(invoice_id, performed_by=performed_by(data), **changes)
        return jsonify({"invoice": serialize_invoice(invoice)})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return internal_error()


@invoices_bp.delete("/<int:invoice_id>")
def delete_invoice_route(invoice_id: int):
    try:
        invoice_service.delete_invoice(invoice_id, performed_by=performed_by())
        return jsonify({"deleted": True, "invoice_id": invoice_id})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete invoice")
        return internal_error()


_TRANSITIONS = {
    "send": invoice_service.send_invoice,
    "remind": invoice_service.remind_invoice,
    "viewed": invoice_service.mark_invoice_viewed,
}


@invoices_bp.post("/<int:invoice_id>/<action>")
def transition_invoice_route(invoice_id: int, action: str):
    """
    send / remind / viewed take no body; void takes an optional {"reason": "..."}.
    """
    try:
        data = json_body()
        actor = performed_by(data)
        if action in _TRANSITIONS:
            invoice = _TRANSITIONS[action](invoice_id, performed_by=actor)
        elif action == "void":
            invoice = invoice_service.void_invoice(invoice_id, data.get("reason"), performed_by=actor)
        else:
            return jsonify({"error": f"Unknown action: {action}"}), 404
        return jsonify({"invoice": serialize_invoice(invoice)})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s invoice", action)
        return internal_error()
