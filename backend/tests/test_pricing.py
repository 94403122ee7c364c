"""
Money math for quotes and invoices.

All amounts are integer cents, rounding is half-up and the stored totals
always satisfy total = subtotal - discount + vat.
"""

from decimal import Decimal

import pytest

from billdesk.errors import ValidationError
from billdesk.services import pricing_service


ITEMS = [{"name": "Consulting", "price_cents": 10000, "quantity": 1}]


class TestComputeTotals:
    def test_discount_then_vat(self):
        totals = pricing_service.compute_totals(ITEMS, Decimal("10"), Decimal("5"))
        assert totals.subtotal_cents == 10000
        assert totals.discount_amount_cents == 1000
        assert totals.vat_amount_cents == 450
        assert totals.total_cents == 9450

    def test_total_identity_holds_with_rounding(self):
        items = [{"name": "Widget", "price_cents": 333, "quantity": 3}]
        totals = pricing_service.compute_totals(items, Decimal("12.5"), Decimal("7.25"))
        assert totals.subtotal_cents == 999
        # 999 * 12.5% = 124.875 -> 125
        assert totals.discount_amount_cents == 125
        # 874 * 7.25% = 63.365 -> 63
        assert totals.vat_amount_cents == 63
        assert totals.total_cents == totals.subtotal_cents - totals.discount_amount_cents + totals.vat_amount_cents

    def test_half_cent_rounds_up(self):
        items = [{"name": "Half", "price_cents": 10, "quantity": 1}]
        totals = pricing_service.compute_totals(items, Decimal("5"), 0)
        assert totals.discount_amount_cents == 1

    def test_discount_is_clamped(self):
        assert pricing_service.compute_totals(ITEMS, 150, 0).discount_percent == Decimal("100.00")
        assert pricing_service.compute_totals(ITEMS, -5, 0).discount_percent == Decimal("0.00")
        assert pricing_service.compute_totals(ITEMS, 150, 0).total_cents == 0

    def test_vat_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            pricing_service.compute_totals(ITEMS, 0, 101)

    def test_fixed_amount_is_exact(self):
        items = [{"name": "Retainer", "price_cents": 30001, "quantity": 1}]
        totals = pricing_service.compute_totals(items, vat_percent=0, discount_amount_cents=10000)
        assert totals.discount_amount_cents == 10000
        assert totals.discount_percent == Decimal("33.33")
        assert totals.total_cents == 20001

    def test_fixed_amount_capped_at_subtotal(self):
        items = [{"name": "Retainer", "price_cents": 3000, "quantity": 1}]
        totals = pricing_service.compute_totals(items, 50, 5, discount_amount_cents=5000)
        assert totals.discount_amount_cents == 3000
        assert totals.discount_percent == Decimal("100.00")
        assert totals.total_cents == 0

    def test_negative_fixed_amount_rejected(self):
        with pytest.raises(ValidationError):
            pricing_service.compute_totals([], discount_amount_cents=-1)


class TestNormalizeItems:
    def test_price_in_currency_units(self):
        items = pricing_service.normalize_items([{"name": "A", "price": "12.345", "quantity": 2}])
        assert items[0]["price_cents"] == 1235
        assert pricing_service.subtotal_of(items) == 2470

    def test_quantity_defaults_to_one(self):
        items = pricing_service.normalize_items([{"name": "A", "price_cents": 500}])
        assert items[0]["quantity"] == 1

    @pytest.mark.parametrize(
        "raw",
        [
            [],
            None,
            [{"price_cents": 100}],
            [{"name": "A"}],
            [{"name": "A", "price_cents": -1}],
            [{"name": "A", "price_cents": 100, "quantity": 0}],
            [{"name": "A", "price_cents": 1.5}],
        ],
    )
    def test_invalid_items_rejected(self, raw):
        with pytest.raises(ValidationError):
            pricing_service.normalize_items(raw)


class TestAmountToPercent:
    def test_fixed_amount_as_percent(self):
        assert pricing_service.amount_to_percent(1500, 10000) == Decimal("15.00")

    def test_amount_capped_at_subtotal(self):
        assert pricing_service.amount_to_percent(20000, 10000) == Decimal("100.00")

    def test_zero_subtotal(self):
        assert pricing_service.amount_to_percent(500, 0) == Decimal("0.00")
