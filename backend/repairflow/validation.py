from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from repairflow.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from .errors import ValidationError


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999
MAX_QUANTITY = 9_999

ITEM_TYPES = ("labor", "part", "accessory", "other")

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class LineItemInput:
    """One normalized line item (estimate or invoice)."""
    item_type: str
    description: str
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "type": self.item_type,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.line_total_cents,
        }


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects floats, bools, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_cents(value: Any, field: str, *, allow_zero: bool = True) -> int:
    cents = coerce_int(value, field)
    if cents < 0 or (cents == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")
    return cents


def money_to_cents(value: Any, field: str) -> int:
    """
    Convert a decimal money string ("180.00") to integer cents.

    Binary floats are refused so a JSON layer cannot reintroduce drift.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be a decimal string or integer cents")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a decimal amount")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a decimal amount")
    # Bound first: quantize overflows the decimal context on huge exponents ("1e30")
    if abs(amount) > Decimal(MAX_PRICE_CENTS) / 100:
        raise ValidationError(f"{field} cannot exceed ${MAX_PRICE_CENTS / 100:,.2f}")
    if amount != amount.quantize(_CENT):
        raise ValidationError(f"{field} cannot have more than 2 decimal places")
    return int(amount * 100)


def cents_to_str(cents: int | None) -> str | None:
    """Format integer cents as a 2-decimal string for display/boundary use."""
    if cents is None:
        return None
    return str((Decimal(cents) / 100).quantize(_CENT))


def parse_tax_rate(value: Any) -> Decimal:
    """Tax rate as a Decimal in [0, 1]. Accepts Decimal, int, str; floats via their repr."""
    if value is None or isinstance(value, bool):
        raise ValidationError("tax_rate is required")
    try:
        rate = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except InvalidOperation:
        raise ValidationError("tax_rate must be a decimal between 0 and 1")
    if not rate.is_finite() or rate < 0 or rate > 1:
        raise ValidationError("tax_rate must be between 0 and 1")
    if rate != rate.quantize(Decimal("0.000001")):
        raise ValidationError("tax_rate supports at most 6 decimal places")
    return rate


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"{field} is required")
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def coerce_datetime(value: Any, field: str) -> datetime | None:
    """Datetimes (accept ISO-8601 strings; normalize to UTC)."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field} must be a datetime")


def normalize_line_item(raw: Any, index: int = 0) -> LineItemInput:
    """
    Validate one incoming item.

    Accepts either an existing LineItemInput or a dict with
    type/description/quantity and unit_price_cents (int) or unit_price
    (decimal string).
    """
    if isinstance(raw, LineItemInput):
        raw = {
            "type": raw.item_type,
            "description": raw.description,
            "quantity": raw.quantity,
            "unit_price_cents": raw.unit_price_cents,
        }
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")

    item_type = str(raw.get("type") or "part").strip().lower()
    if item_type not in ITEM_TYPES:
        raise ValidationError(f"items[{index}].type must be one of {', '.join(ITEM_TYPES)}")

    description = require_text(raw.get("description"), f"items[{index}].description")

    quantity = coerce_int(raw.get("quantity", 1), f"items[{index}].quantity")
    if quantity <= 0:
        raise ValidationError(f"items[{index}].quantity must be > 0")
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"items[{index}].quantity cannot exceed {MAX_QUANTITY}")

    if raw.get("unit_price_cents") is not None:
        unit_price_cents = coerce_int(raw["unit_price_cents"], f"items[{index}].unit_price_cents")
    elif raw.get("unit_price") is not None:
        unit_price_cents = money_to_cents(raw["unit_price"], f"items[{index}].unit_price")
    else:
        raise ValidationError(f"items[{index}].unit_price_cents is required")

    if unit_price_cents < 0:
        raise ValidationError(f"items[{index}].unit_price_cents must be >= 0")
    if unit_price_cents > MAX_PRICE_CENTS:
        raise ValidationError(f"items[{index}].unit_price_cents cannot exceed {MAX_PRICE_CENTS}")

    return LineItemInput(
        item_type=item_type,
        description=description,
        quantity=quantity,
        unit_price_cents=unit_price_cents,
    )


def normalize_line_items(raw_items: Any, *, require_one: bool = False) -> list[LineItemInput]:
    if raw_items is None:
        raw_items = []
    if not isinstance(raw_items, (list, tuple)):
        raise ValidationError("items must be a list")
    items = [normalize_line_item(raw, i) for i, raw in enumerate(raw_items)]
    if require_one and not items:
        raise ValidationError("At least one line item is required")
    return items
