# Overview: Service-layer operations for shops; encapsulates business logic and database work.

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Shop
from ..errors import NotFound
from ..validation import parse_tax_rate, require_text, optional_text


def create_shop(name: str, code: str | None = None, default_tax_rate=None) -> Shop:
    """Create a shop. default_tax_rate falls back to Config.DEFAULT_TAX_RATE when omitted."""
    shop = Shop(
        name=require_text(name, "name"),
        code=optional_text(code, "code", max_length=32),
        default_tax_rate=parse_tax_rate(default_tax_rate) if default_tax_rate is not None else None,
    )
    db.session.add(shop)
    db.session.commit()
    return shop


def get_shop(shop_id: int) -> Shop:
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        raise NotFound(f"Shop {shop_id} not found")
    return shop


def resolve_tax_rate(shop: Shop, tax_rate=None) -> Decimal:
    """
    Tax rate for a new document.

    Priority: explicit value > shop default > Config.DEFAULT_TAX_RATE
    """
    if tax_rate is not None:
        return parse_tax_rate(tax_rate)
    if shop.default_tax_rate is not None:
        return parse_tax_rate(shop.default_tax_rate)
    return parse_tax_rate(current_app.config["DEFAULT_TAX_RATE"])
