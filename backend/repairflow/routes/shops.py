# Overview: Flask API routes for shops; parses input and returns JSON responses.

from flask import Blueprint, jsonify, current_app

from ..errors import RepairFlowError
from ..services import shop_service
from .common import error_response, internal_error, json_body


shops_bp = Blueprint("shops", __name__, url_prefix="/api/shops")


@shops_bp.post("")
def create_shop_route():
    try:
        data = json_body()
        shop = shop_service.create_shop(data.get("name"), data.get("code"), data.get("default_tax_rate"))
        return jsonify({"shop": shop.to_dict()}), 201
    except RepairFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create shop")
        return internal_error()


@shops_bp.get("/<int:shop_id>")
def get_shop_route(shop_id: int):
    try:
        return jsonify({"shop": shop_service.get_shop(shop_id).to_dict()})
    except RepairFlowError as e:
        return error_response(e)
