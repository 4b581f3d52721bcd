# Overview: Shared request parsing and error translation for the JSON API.

from __future__ import annotations

from flask import jsonify, request

from ..errors import RepairFlowError, ValidationError
from ..validation import coerce_int, money_to_cents


def error_response(exc: RepairFlowError):
    """Typed domain error -> JSON body with its kind and HTTP status."""
    return jsonify(exc.to_dict()), exc.http_status


def internal_error():
    return jsonify({"error": "Internal server error", "kind": "internal_error"}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def performed_by(data: dict | None = None) -> str | None:
    """
    Staff identity for the audit trail.

    The surrounding app authenticates; it forwards the identity in the
    X-Performed-By header (or a performed_by body field for scripts).
    """
    value = request.headers.get("X-Performed-By")
    if not value and data:
        value = data.get("performed_by")
    return str(value).strip()[:128] if value else None


def require_shop_id(data: dict | None = None) -> int:
    raw = (data or {}).get("shop_id")
    if raw is None:
        raw = request.args.get("shop_id")
    if raw is None:
        raise ValidationError("shop_id is required")
    return coerce_int(raw, "shop_id")


def amount_cents(data: dict, field: str = "amount", *, required: bool = True) -> int | None:
    """
    Read a money amount as integer ``<field>_cents`` or decimal string ``<field>``.
    """
    if data.get(f"{field}_cents") is not None:
        return coerce_int(data[f"{field}_cents"], f"{field}_cents")
    if data.get(field) is not None:
        return money_to_cents(data[field], field)
    if required:
        raise ValidationError(f"{field}_cents is required")
    return None


def pagination() -> tuple[int, int]:
    limit = coerce_int(request.args.get("limit", "50"), "limit")
    offset = coerce_int(request.args.get("offset", "0"), "offset")
    if limit < 1 or limit > 200:
        raise ValidationError("limit must be between 1 and 200")
    if offset < 0:
        raise ValidationError("offset must be >= 0")
    return limit, offset
