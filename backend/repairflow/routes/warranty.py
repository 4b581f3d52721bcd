# Overview: Flask API routes for warranty lookups and claims; parses input and returns JSON responses.

"""
Warranty API Routes

DESIGN:
- GET  /api/warranty/lookup?shop_id=&q=      coverage by ticket number or phone
- GET  /api/warranty/expiring?shop_id=&days= windows closing soon
- POST /api/warranty/claims                  file a claim
- GET  /api/warranty/claims?shop_id=         list claims
- GET  /api/warranty/claims/<id>             one claim with days_remaining
- POST /api/warranty/claims/<id>/approve|deny|resolve
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import ClaimInProgress, RepairFlowError
from ..services import warranty_service
from ..validation import coerce_int
from .common import error_response, internal_error, json_body, pagination, performed_by, require_shop_id
from .tickets import serialize_warranty


warranty_bp = Blueprint("warranty", __name__, url_prefix="/api/warranty")


def serialize_claim(claim) -> dict:
    body = claim.to_dict()
    body["days_remaining"] = warranty_service.days_remaining(claim)
    return body


@warranty_bp.get("/lookup")
def lookup_route():
    try:
        status = warranty_service.lookup_warranty(require_shop_id(), request.args.get("q"))
        return jsonify({"warranty": serialize_warranty(status)})
    except RepairFlowError as e:
        return error_response(e)


@warranty_bp.get("/expiring")
def expiring_route():
    try:
        shop_id = request.args.get("shop_id")
        days = coerce_int(request.args.get("days", "7"), "days")
        results = warranty_service.expiring_warranties(
            coerce_int(shop_id, "shop_id") if shop_id is not None else None,
            within_days=days,
        )
        return jsonify({"warranties": [serialize_warranty(s) for s in results], "within_days": days})
    except RepairFlowError as e:
        return error_response(e)


@warranty_bp.post("/claims")
def file_claim_route():
    """
    File a warranty claim.

    Request body:
    {
        "shop_id": 1,
        "ticket_number": "FIX-0001",
        "reason": "Screen flickering",
        "description": "Flickers after 5 minutes of use",
        "resolution_type": "redo",          (redo, replacement, refund, partial-refund)
        "resolution_amount_cents": 5000     (partial-refund / replacement)
    }

    Returns:
        201: Claim (status pending)
        200: Ticket already has an open claim; that claim (claim_in_progress true)
        404: Ticket not found
        422: Not eligible or warranty expired
    """
    try:
        data = json_body()
        claim = warranty_service.file_claim(
            shop_id=require_shop_id(data),
            ticket_number=data.get("ticket_number"),
            reason=data.get("reason"),
            description=data.get("description"),
            resolution_type=data.get("resolution_type"),
            resolution_amount_cents=data.get("resolution_amount_cents"),
            performed_by=performed_by(data),
        )
        return jsonify({"claim": serialize_claim(claim), "claim_in_progress": False}), 201
    except ClaimInProgress as e:
        claim = warranty_service.get_claim(e.claim_id)
        return jsonify({"claim": serialize_claim(claim), "claim_in_progress": True})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to file warranty claim")
        return internal_error()


@warranty_bp.get("/claims")
def list_claims_route():
    try:
        limit, offset = pagination()
        claims, total = warranty_service.list_claims(
            require_shop_id(), status=request.args.get("status"), limit=limit, offset=offset
        )
        return jsonify({"claims": [serialize_claim(c) for c in claims], "total": total})
    except RepairFlowError as e:
        return error_response(e)


@warranty_bp.get("/claims/<int:claim_id>")
def get_claim_route(claim_id: int):
    try:
        return jsonify({"claim": serialize_claim(warranty_service.get_claim(claim_id))})
    except RepairFlowError as e:
        return error_response(e)


@warranty_bp.post("/claims/<int:claim_id>/<action>")
def transition_claim_route(claim_id: int, action: str):
    """
    approve: {"review_notes": "..."} (optional)
    deny:    {"reason": "..."} (required)
    resolve: {"resolution": "...", "resolution_amount_cents": 5000} (optional)
    """
    try:
        data = json_body()
        actor = performed_by(data)
        if action == "approve":
            claim = warranty_service.approve_claim(claim_id, review_notes=data.get("review_notes"), performed_by=actor)
        elif action == "deny":
            claim = warranty_service.deny_claim(claim_id, data.get("reason"), performed_by=actor)
        elif action == "resolve":
            claim = warranty_service.resolve_claim(
                claim_id,
                resolution=data.get("resolution"),
                resolution_amount_cents=data.get("resolution_amount_cents"),
                performed_by=actor,
            )
        else:
            return jsonify({"error": f"Unknown action: {action}"}), 404
        return jsonify({"claim": serialize_claim(claim)})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s warranty claim", action)
        return internal_error()
