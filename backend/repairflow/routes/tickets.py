# Overview: Flask API routes for repair tickets; parses input and returns JSON responses.

"""
Ticket API Routes

DESIGN:
- POST   /api/tickets                 create (INTAKE)
- GET    /api/tickets?shop_id=        board listing (optional status, assigned_to filters)
- GET    /api/tickets/<id>            one ticket
- GET    /api/tickets/number/<number> lookup by FIX-xxxx
- PATCH  /api/tickets/<id>            edit due date, costs, repair details
- POST   /api/tickets/<id>/advance    move to next/earlier stage
- PATCH  /api/tickets/<id>/assign     assign or unassign a technician
- DELETE /api/tickets/<id>            delete an unreferenced ticket
- GET    /api/tickets/<id>/history    audit ledger
- GET    /api/tickets/<id>/warranty   warranty window for the repair

Board clients pass ``expected_status`` with advance: a 409 means another
user moved the card first and the client must reload the ticket.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import RepairFlowError
from ..services import ticket_service, warranty_service
from ..services.ledger_service import get_entity_history
from repairflow.time_utils import to_utc_z
from .common import error_response, internal_error, json_body, pagination, performed_by, require_shop_id


tickets_bp = Blueprint("tickets", __name__, url_prefix="/api/tickets")

_EDITABLE = ("due_at", "estimated_cost_cents", "actual_cost_cents", "repair_type", "issue_description", "priority")


def serialize_warranty(status: dict) -> dict:
    return {
        **status,
        "repair_date": to_utc_z(status["repair_date"]),
        "expires_at": to_utc_z(status["expires_at"]),
    }


@tickets_bp.post("")
def create_ticket_route():
    """
    Create a ticket at INTAKE.

    Request body:
    {
        "shop_id": 1,
        "customer_id": 7,
        "device": {"type": "Phone", "brand": "Apple", "model": "iPhone 13"},
        "repair_type": "screen",
        "issue_description": "Cracked screen",
        "priority": "NORMAL",
        "assigned_to": "Sam",
        "due_at": "2026-01-20T17:00:00Z",
        "estimated_cost_cents": 21900
    }
    """
    try:
        data = json_body()
        device = data.get("device") or {}
        ticket = ticket_service.create_ticket(
            shop_id=require_shop_id(data),
            customer_id=data.get("customer_id"),
            device_type=device.get("type") or data.get("device_type"),
            device_brand=device.get("brand") or data.get("device_brand"),
            device_model=device.get("model") or data.get("device_model"),
            repair_type=data.get("repair_type"),
            issue_description=data.get("issue_description"),
            priority=data.get("priority") or "NORMAL",
            assigned_to=data.get("assigned_to"),
            due_at=data.get("due_at"),
            estimated_cost_cents=data.get("estimated_cost_cents"),
            performed_by=performed_by(data),
        )
        return jsonify({"ticket": ticket.to_dict()}), 201
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create ticket")
        return internal_error()


@tickets_bp.get("")
def list_tickets_route():
    try:
        limit, offset = pagination()
        tickets, total = ticket_service.list_tickets(
            require_shop_id(),
            status=request.args.get("status"),
            assigned_to=request.args.get("assigned_to"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "tickets": [t.to_dict() for t in tickets],
            "total": total,
            "limit": limit,
            "offset": offset,
        })
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list tickets")
        return internal_error()


@tickets_bp.get("/<int:ticket_id>")
def get_ticket_route(ticket_id: int):
    try:
        return jsonify({"ticket": ticket_service.get_ticket(ticket_id).to_dict()})
    except RepairFlowError as e:
        return error_response(e)


@tickets_bp.get("/number/<ticket_number>")
def get_ticket_by_number_route(ticket_number: str):
    try:
        ticket = ticket_service.get_ticket_by_number(require_shop_id(), ticket_number)
        return jsonify({"ticket": ticket.to_dict()})
    except RepairFlowError as e:
        return error_response(e)


@tickets_bp.patch("/<int:ticket_id>")
def update_ticket_route(ticket_id: int):
    try:
        data = json_body()
        changes = {key: data[key] for key in _EDITABLE if key in data}
        ticket = ticket_service.update_ticket(ticket_id, performed_by=performed_by(data), **changes)
        return jsonify({"ticket": ticket.to_dict()})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update ticket")
        return internal_error()


@tickets_bp.post("/<int:ticket_id>/advance")
def advance_ticket_route(ticket_id: int):
    """
    Move a ticket to another stage.

    Request body:
    {
        "status": "DIAGNOSED",
        "expected_status": "INTAKE"   (optional compare-and-set)
    }

    Returns:
        200: Updated ticket
        404: Ticket not found
        409: Illegal move or lost race (body carries current_status)
    """
    try:
        data = json_body()
        ticket = ticket_service.advance_ticket(
            ticket_id,
            data.get("status"),
            expected_status=data.get("expected_status"),
            performed_by=performed_by(data),
        )
        return jsonify({"ticket": ticket.to_dict()})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to advance ticket")
        return internal_error()


@tickets_bp.patch("/<int:ticket_id>/assign")
def assign_ticket_route(ticket_id: int):
    """
    Assign a technician.

    Request body:
    {
        "assigned_to": "Sam"     (blank or null unassigns)
    }
    """
    try:
        data = json_body()
        ticket = ticket_service.assign_ticket(
            ticket_id,
            data.get("assigned_to"),
            performed_by=performed_by(data),
        )
        return jsonify({"ticket": ticket.to_dict()})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign ticket")
        return internal_error()


@tickets_bp.delete("/<int:ticket_id>")
def delete_ticket_route(ticket_id: int):
    try:
        ticket_service.delete_ticket(ticket_id, performed_by=performed_by())
        return jsonify({"deleted": True, "ticket_id": ticket_id})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete ticket")
        return internal_error()


@tickets_bp.get("/<int:ticket_id>/history")
def ticket_history_route(ticket_id: int):
    try:
        ticket = ticket_service.get_ticket(ticket_id)
        events = get_entity_history("ticket", ticket.id)
        return jsonify({"ticket_id": ticket.id, "events": [e.to_dict() for e in events]})
    except RepairFlowError as e:
        return error_response(e)


@tickets_bp.get("/<int:ticket_id>/warranty")
def ticket_warranty_route(ticket_id: int):
    try:
        ticket = ticket_service.get_ticket(ticket_id)
        return jsonify({"warranty": serialize_warranty(warranty_service.warranty_status(ticket))})
    except RepairFlowError as e:
        return error_response(e)
