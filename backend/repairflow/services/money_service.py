# Overview: Pure money/tax arithmetic shared by estimates and invoices.

"""
Money/Tax Calculator

WHY: Estimates and invoices must agree to the cent. Every total in the
system goes through compute_totals; nothing else rounds money.

RULES:
- All amounts are integer cents; tax rates are Decimal in [0, 1]
- subtotal = sum(quantity * unit_price) per line (exact in cents)
- discount is applied before tax
- tax = round_half_up((subtotal - discount) * tax_rate) to the cent
- total = subtotal - discount + tax
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from ..errors import ValidationError
from ..validation import LineItemInput, normalize_line_item, parse_tax_rate, coerce_int


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


def round_cents(value: Decimal) -> int:
    """Round a fractional cent amount half-up to whole cents."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_totals(
    items: Iterable[LineItemInput | dict],
    tax_rate,
    discount_cents: int = 0,
) -> Totals:
    """
    Turn line items + tax rate + discount into subtotal/tax/total.

    Pure and deterministic: no database access, no clock.

    Raises:
        ValidationError: negative or zero quantity, negative unit price,
            tax rate outside [0, 1], negative discount, discount > subtotal
    """
    lines = [normalize_line_item(item, i) for i, item in enumerate(items)]
    rate = parse_tax_rate(tax_rate)

    discount = coerce_int(discount_cents if discount_cents is not None else 0, "discount_cents")
    if discount < 0:
        raise ValidationError("discount_cents must be >= 0")

    subtotal = sum(line.line_total_cents for line in lines)
    if discount > subtotal:
        raise ValidationError(
            f"discount_cents ({discount}) cannot exceed subtotal ({subtotal})"
        )

    taxable = subtotal - discount
    tax = round_cents(Decimal(taxable) * rate)

    return Totals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        tax_cents=tax,
        total_cents=taxable + tax,
    )
