# Overview: Flask API routes for estimates operations; parses input and returns JSON responses.

"""
Estimate API Routes

DESIGN:
- POST   /api/estimates                  create draft
- GET    /api/estimates?shop_id=         list
- GET    /api/estimates/<id>             one estimate
- PATCH  /api/estimates/<id>             edit draft (items, tax_rate, ...)
- DELETE /api/estimates/<id>             delete draft/declined/expired
- POST   /api/estimates/<id>/send|viewed|approve|decline|expire|extend
- POST   /api/estimates/<id>/duplicate   re-quote as a new draft
- POST   /api/estimates/<id>/convert     -> ticket (idempotent)
- POST   /api/estimates/<id>/invoice     -> draft invoice with the same items

CONVERSION RETRIES:
A repeated convert answers 200 with the ticket created the first time and
``already_converted: true``, so a client retrying after a timeout never
ends up with two tickets.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import AlreadyConverted, RepairFlowError
from ..services import estimate_service, invoice_service, ticket_service
from .common import error_response, internal_error, json_body, pagination, performed_by, require_shop_id


estimates_bp = Blueprint("estimates", __name__, url_prefix="/api/estimates")

_EDITABLE = ("items", "tax_rate", "valid_until", "notes", "device_condition", "repair_type")


@estimates_bp.post("")
def create_estimate_route():
    """
    Create a draft estimate.

    Request body:
    {
        "shop_id": 1,
        "customer_id": 7,
        "device": {"type": "Phone", "brand": "Apple", "model": "iPhone 13", "condition": "Cracked"},
        "repair_type": "screen",
        "items": [
            {"type": "part", "description": "Screen", "quantity": 1, "unit_price": "180.00"},
            {"type": "labor", "description": "Install", "quantity": 1, "unit_price_cents": 3900}
        ],
        "tax_rate": "0.0825",          (optional, shop default otherwise)
        "valid_until": "2026-01-20T00:00:00Z",  (optional)
        "notes": "..."
    }
    """
    try:
        data = json_body()
        device = data.get("device") or {}
        estimate = estimate_service.create_estimate(
            shop_id=require_shop_id(data),
            customer_id=data.get("customer_id"),
            items=data.get("items"),
            tax_rate=data.get("tax_rate"),
            valid_until=data.get("valid_until"),
            device_type=device.get("type"),
            device_brand=device.get("brand"),
            device_model=device.get("model"),
            device_condition=device.get("condition"),
            repair_type=data.get("repair_type"),
            notes=data.get("notes"),
            performed_by=performed_by(data),
        )
        return jsonify({"estimate": estimate.to_dict()}), 201
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create estimate")
        return internal_error()


@estimates_bp.get("")
def list_estimates_route():
    try:
        limit, offset = pagination()
        estimates, total = estimate_service.list_estimates(
            require_shop_id(), status=request.args.get("status"), limit=limit, offset=offset
        )
        return jsonify({"estimates": [e.to_dict() for e in estimates], "total": total})
    except RepairFlowError as e:
        return error_response(e)


@estimates_bp.get("/<int:estimate_id>")
def get_estimate_route(estimate_id: int):
    try:
        return jsonify({"estimate": estimate_service.get_estimate(estimate_id).to_dict()})
    except RepairFlowError as e:
        return error_response(e)


@estimates_bp.patch("/<int:estimate_id>")
def update_estimate_route(estimate_id: int):
    try:
        data = json_body()
        changes = {key: data[key] for key in _EDITABLE if key in data}
        estimate = estimate_service.update_estimate(estimate_id, performed_by=performed_by(data), **changes)
        return jsonify({"estimate": estimate.to_dict()})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update estimate")
        return internal_error()


@estimates_bp.delete("/<int:estimate_id>")
def delete_estimate_route(estimate_id: int):
    try:
        estimate_service.delete_estimate(estimate_id, performed_by=performed_by())
        return jsonify({"deleted": True, "estimate_id": estimate_id})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete estimate")
        return internal_error()


# =============================================================================
# TRANSITIONS
# =============================================================================

_SIMPLE_TRANSITIONS = {
    "send": estimate_service.send_estimate,
    "viewed": estimate_service.mark_estimate_viewed,
    "approve": estimate_service.approve_estimate,
    "expire": estimate_service.expire_estimate,
}


@estimates_bp.post("/<int:estimate_id>/<action>")
def transition_estimate_route(estimate_id: int, action: str):
    """
    send / viewed / approve / expire take no body.
    decline needs {"reason": "..."}; extend needs {"days": 7}.

    Returns:
        200: Updated estimate
        404: Estimate not found
        409: Not allowed from the current status
        422: Approving an expired estimate
    """
    try:
        data = json_body()
        actor = performed_by(data)
        if action in _SIMPLE_TRANSITIONS:
            estimate = _SIMPLE_TRANSITIONS[action](estimate_id, performed_by=actor)
        elif action == "decline":
            estimate = estimate_service.decline_estimate(estimate_id, data.get("reason"), performed_by=actor)
        elif action == "extend":
            estimate = estimate_service.extend_estimate(estimate_id, data.get("days"), performed_by=actor)
        elif action == "duplicate":
            estimate = estimate_service.duplicate_estimate(estimate_id, performed_by=actor)
            return jsonify({"estimate": estimate.to_dict()}), 201
        else:
            return jsonify({"error": f"Unknown action: {action}"}), 404
        return jsonify({"estimate": estimate.to_dict()})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s estimate", action)
        return internal_error()


@estimates_bp.post("/<int:estimate_id>/convert")
def convert_estimate_route(estimate_id: int):
    """
    Convert an approved estimate into a ticket.

    Returns:
        201: New ticket
        200: Already converted; the existing ticket
        409: Estimate not approved
    """
    try:
        data = json_body()
        ticket = estimate_service.convert_estimate(estimate_id, performed_by=performed_by(data))
        return jsonify({"ticket": ticket.to_dict(), "already_converted": False}), 201
    except AlreadyConverted as e:
        ticket = ticket_service.get_ticket(e.ticket_id)
        return jsonify({"ticket": ticket.to_dict(), "already_converted": True})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to convert estimate")
        return internal_error()


@estimates_bp.post("/<int:estimate_id>/invoice")
def invoice_estimate_route(estimate_id: int):
    try:
        data = json_body()
        invoice = invoice_service.create_invoice_from_estimate(
            estimate_id,
            discount_cents=data.get("discount_cents", 0),
            due_date=data.get("due_date"),
            notes=data.get("notes"),
            performed_by=performed_by(data),
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to invoice estimate")
        return internal_error()
