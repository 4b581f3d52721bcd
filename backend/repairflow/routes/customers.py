# Overview: Flask API routes for customer records and per-customer queries.

from flask import Blueprint, jsonify, current_app

from ..errors import RepairFlowError
from ..services import customer_service
from .common import error_response, internal_error, json_body, require_shop_id
from .invoices import serialize_invoice
from .warranty import serialize_claim


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("")
def create_customer_route():
    try:
        data = json_body()
        customer = customer_service.create_customer(
            require_shop_id(data),
            data.get("first_name"),
            data.get("last_name") or "",
            phone=data.get("phone"),
            email=data.get("email"),
        )
        return jsonify({"customer": customer.to_dict()}), 201
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return internal_error()


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        return jsonify({"customer": customer_service.get_customer(customer_id).to_dict()})
    except RepairFlowError as e:
        return error_response(e)


@customers_bp.get("/<int:customer_id>/history")
def customer_history_route(customer_id: int):
    """Everything on file for a customer, newest first, with the balance owed."""
    try:
        found = customer_service.list_by_customer(customer_id)
        return jsonify({
            "customer": found["customer"].to_dict(),
            "tickets": [t.to_dict() for t in found["tickets"]],
            "estimates": [e.to_dict() for e in found["estimates"]],
            "invoices": [serialize_invoice(i) for i in found["invoices"]],
            "claims": [serialize_claim(c) for c in found["claims"]],
            "outstanding_balance_cents": customer_service.outstanding_balance(customer_id),
        })
    except RepairFlowError as e:
        return error_response(e)


@customers_bp.get("/<int:customer_id>/balance")
def customer_balance_route(customer_id: int):
    try:
        return jsonify({
            "customer_id": customer_id,
            "outstanding_balance_cents": customer_service.outstanding_balance(customer_id),
        })
    except RepairFlowError as e:
        return error_response(e)
