# Overview: Quote and invoice money math over integer cents.

"""
Monetary computation for priced documents (quotes and invoices).

FORMULA:
    subtotal      = sum(price_cents * quantity)
    discount      = round(subtotal * discount_percent / 100)
                    or min(discount_amount_cents, subtotal) for a fixed amount
    taxable_base  = subtotal - discount
    vat           = round(taxable_base * vat_percent / 100)
    total         = taxable_base + vat

RULES:
- All amounts are integer cents; rounding is half-up at the point where a
  Decimal becomes cents.
- Percentages are Decimals quantized to two places. For a fixed-amount
  discount the amount is authoritative and the percent is display only.
- The five money columns are always written together by apply_totals so
  total == subtotal - discount + vat holds after every write.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from ..errors import ValidationError
from ..validation import TWO_PLACES, MAX_AMOUNT_CENTS, coerce_cents, coerce_decimal, coerce_int, coerce_percent


HUNDRED = Decimal("100")


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    discount_percent: Decimal
    discount_amount_cents: int
    vat_percent: Decimal
    vat_amount_cents: int
    total_cents: int


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(value: Any, *, key: str = "price") -> int:
    """Currency units ("12.345", 12.5) to cents, half-up."""
    return round_half_up(coerce_decimal(key, value) * HUNDRED)


def clamp_percent(value: Any, *, key: str = "discount_percent") -> Decimal:
    pct = coerce_decimal(key, value)
    if pct < 0:
        pct = Decimal("0")
    elif pct > HUNDRED:
        pct = HUNDRED
    return pct.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def normalize_items(raw_items: Any) -> list[dict]:
    """
    Validate and normalize line items.

    Each item needs a name, a quantity >= 1 (integer) and either price_cents
    (integer) or price (currency units). Returns the frozen snapshot stored in
    the document's items column.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one item is required")

    items = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")

        name = str(raw.get("name") or "").strip()
        if not name:
            raise ValidationError(f"items[{idx}].name is required")

        if raw.get("price_cents") is not None:
            price_cents = coerce_int(f"items[{idx}].price_cents", raw["price_cents"])
        elif raw.get("price") is not None:
            price_cents = to_cents(raw["price"], key=f"items[{idx}].price")
        else:
            raise ValidationError(f"items[{idx}].price_cents is required")
        if price_cents < 0:
            raise ValidationError(f"items[{idx}] price must be >= 0")
        if price_cents > MAX_AMOUNT_CENTS:
            raise ValidationError(f"items[{idx}] price exceeds maximum")

        quantity = coerce_int(f"items[{idx}].quantity", raw.get("quantity", 1))
        if quantity < 1:
            raise ValidationError(f"items[{idx}].quantity must be >= 1")

        items.append({
            "name": name,
            "description": str(raw.get("description") or ""),
            "price_cents": price_cents,
            "quantity": quantity,
        })
    return items


def subtotal_of(items: list[dict]) -> int:
    return sum(item["price_cents"] * item["quantity"] for item in items)


def compute_totals(
    items: list[dict],
    discount_percent: Any = 0,
    vat_percent: Any = 0,
    *,
    discount_amount_cents: int | None = None,
) -> Totals:
    """
    Totals for already-normalized items.

    discount_percent is clamped to [0, 100]; vat_percent outside [0, 100] is
    rejected. When discount_amount_cents is given it wins over
    discount_percent: the discount is exactly that amount (capped at the
    subtotal) and the stored percent is derived from it.
    """
    vat = coerce_percent("vat_percent", vat_percent if vat_percent is not None else 0)
    subtotal = subtotal_of(items)

    if discount_amount_cents is not None:
        discount_amount = min(coerce_cents("discount_amount_cents", discount_amount_cents), subtotal)
        discount = amount_to_percent(discount_amount, subtotal)
    else:
        discount = clamp_percent(discount_percent if discount_percent is not None else 0)
        discount_amount = round_half_up(Decimal(subtotal) * discount / HUNDRED)
    taxable = subtotal - discount_amount
    vat_amount = round_half_up(Decimal(taxable) * vat / HUNDRED)

    return Totals(
        subtotal_cents=subtotal,
        discount_percent=discount,
        discount_amount_cents=discount_amount,
        vat_percent=vat,
        vat_amount_cents=vat_amount,
        total_cents=taxable + vat_amount,
    )


def amount_to_percent(amount_cents: int, subtotal_cents: int) -> Decimal:
    """
    Equivalent percent for a fixed discount amount, capped at the subtotal.

    A zero subtotal has no meaningful percent; it maps to 0.
    """
    if amount_cents < 0:
        raise ValidationError("discount_amount_cents must be >= 0")
    if subtotal_cents <= 0:
        return Decimal("0.00")
    capped = min(amount_cents, subtotal_cents)
    return (Decimal(capped) * HUNDRED / Decimal(subtotal_cents)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def apply_totals(doc, totals: Totals) -> None:
    """Write all money columns of a Quote/Invoice in one step."""
    doc.subtotal_cents = totals.subtotal_cents
    doc.discount_percent = totals.discount_percent
    doc.discount_amount_cents = totals.discount_amount_cents
    doc.vat_percent = totals.vat_percent
    doc.vat_amount_cents = totals.vat_amount_cents
    doc.total_cents = totals.total_cents


def recompute(
    doc,
    *,
    discount_percent: Any = None,
    vat_percent: Any = None,
    discount_amount_cents: int | None = None,
) -> Totals:
    """
    Recompute a document's totals from its stored items.

    Unspecified percents keep the document's current values. A fixed
    discount_amount_cents replaces the percent entirely.
    """
    totals = compute_totals(
        list(doc.items or []),
        doc.discount_percent if discount_percent is None else discount_percent,
        doc.vat_percent if vat_percent is None else vat_percent,
        discount_amount_cents=discount_amount_cents,
    )
    apply_totals(doc, totals)
    return totals
