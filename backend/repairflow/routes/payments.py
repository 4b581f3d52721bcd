# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

"""
Payment API Routes

WHY: Settle invoices via REST API: cash/check at the counter, card payments
in two phases, and refunds.

DESIGN:
- POST /api/payments                       completed payment
- POST /api/payments/start                 pending payment (card in flight)
- POST /api/payments/<id>/complete         pending -> completed
- POST /api/payments/<id>/fail             pending -> failed
- POST /api/payments/<id>/refund           full or partial refund (new row)
- GET  /api/payments/<id>                  one ledger row
- GET  /api/payments/invoices/<invoice_id> payment summary for an invoice

Amounts are integer cents (``amount_cents``) or decimal strings (``amount``);
JSON floats are rejected.
"""

from flask import Blueprint, jsonify, current_app

from ..errors import RepairFlowError
from ..services import payment_service
from .common import amount_cents, error_response, internal_error, json_body, performed_by


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _payment_args(data: dict) -> dict:
    return {
        "amount_cents": amount_cents(data),
        "method": data.get("method"),
        "reference": data.get("reference"),
        "processor_fee_cents": amount_cents(data, "processor_fee", required=False) or 0,
    }


@payments_bp.post("")
def apply_payment_route():
    """
    Apply a completed payment to an invoice.

    Request body:
    {
        "invoice_id": 12,
        "method": "CASH",
        "amount": "237.07",            (or "amount_cents": 23707)
        "reference": "AUTH-12345",     (optional)
        "processor_fee_cents": 0       (optional)
    }

    Returns:
        201: Payment plus updated invoice summary
        409: Invoice is void
        422: Amount exceeds amount due
    """
    try:
        data = json_body()
        payment = payment_service.apply_payment(
            data.get("invoice_id"),
            performed_by=performed_by(data),
            **_payment_args(data),
        )
        return jsonify({
            "payment": payment.to_dict(),
            "summary": payment_service.get_payment_summary(payment.invoice_id),
        }), 201
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply payment")
        return internal_error()


@payments_bp.post("/start")
def start_payment_route():
    try:
        data = json_body()
        payment = payment_service.start_payment(
            data.get("invoice_id"),
            performed_by=performed_by(data),
            **_payment_args(data),
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start payment")
        return internal_error()


@payments_bp.post("/<int:payment_id>/complete")
def complete_payment_route(payment_id: int):
    try:
        data = json_body()
        payment = payment_service.complete_payment(
            payment_id,
            reference=data.get("reference"),
            processor_fee_cents=data.get("processor_fee_cents"),
            performed_by=performed_by(data),
        )
        return jsonify({
            "payment": payment.to_dict(),
            "summary": payment_service.get_payment_summary(payment.invoice_id),
        })
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete payment")
        return internal_error()


@payments_bp.post("/<int:payment_id>/fail")
def fail_payment_route(payment_id: int):
    try:
        data = json_body()
        payment = payment_service.fail_payment(payment_id, data.get("reason"), performed_by=performed_by(data))
        return jsonify({"payment": payment.to_dict()})
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to fail payment")
        return internal_error()


@payments_bp.post("/<int:payment_id>/refund")
def refund_payment_route(payment_id: int):
    """
    Refund a completed payment.

    Request body (all optional):
    {
        "amount_cents": 5000,    (default: everything still refundable)
        "reason": "Customer changed mind"
    }
    """
    try:
        data = json_body()
        refund = payment_service.refund_payment(
            payment_id,
            amount_cents(data, required=False),
            data.get("reason"),
            performed_by=performed_by(data),
        )
        return jsonify({
            "refund": refund.to_dict(),
            "summary": payment_service.get_payment_summary(refund.invoice_id),
        }), 201
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund payment")
        return internal_error()


@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    try:
        return jsonify({"payment": payment_service.get_payment(payment_id).to_dict()})
    except RepairFlowError as e:
        return error_response(e)


@payments_bp.get("/invoices/<int:invoice_id>")
def invoice_payments_route(invoice_id: int):
    try:
        return jsonify(payment_service.get_payment_summary(invoice_id))
    except RepairFlowError as e:
        return error_response(e)
