# Overview: Pytest coverage for the order amount computation engine.

"""
Amount Computation Tests

Covers the delivery method x order type matrix, rounding, input coercion
and legacy field names. The engine is pure, so no database is needed.
"""

from decimal import Decimal

import pytest

from logistics.services.amounts import (
    DisplayedAmounts,
    compute_displayed_amounts,
    is_instant,
    normalize_delivery_method,
)


BASE = {
    "total_usd": 10,
    "total_lbp": 1000,
    "delivery_fee_usd": 2,
    "delivery_fee_lbp": 200,
    "driver_fee_usd": 1,
    "driver_fee_lbp": 100,
}


class TestMethodTypeMatrix:
    """Concrete figures for each delivery method / order type pair."""

    def test_in_house_ecommerce(self):
        """Raw total; delivery fee shown separately."""
        result = compute_displayed_amounts({**BASE, "deliver_method": "in_house", "type": "ecommerce"})
        assert result.computed_total_usd == Decimal("10.00")
        assert result.computed_total_lbp == 1000
        assert result.show_delivery_fees is True
        assert result.delivery_fees_usd_shown == Decimal("2.00")
        assert result.delivery_fees_lbp_shown == 200

    def test_in_house_instant(self):
        """Driver fee folded into the total; fees hidden."""
        result = compute_displayed_amounts({**BASE, "deliver_method": "in_house", "type": "instant"})
        assert result.computed_total_usd == Decimal("11.00")
        assert result.computed_total_lbp == 1100
        assert result.show_delivery_fees is False
        assert result.delivery_fees_usd_shown == Decimal("0.00")
        assert result.delivery_fees_lbp_shown == 0

    def test_third_party_ecommerce(self):
        """Delivery and third-party fees both added and shown."""
        order = {
            **BASE,
            "third_party_fee_usd": 3,
            "third_party_fee_lbp": 300,
            "deliver_method": "third_party",
            "type": "ecommerce",
        }
        result = compute_displayed_amounts(order)
        assert result.computed_total_usd == Decimal("15.00")
        assert result.computed_total_lbp == 1500
        assert result.show_delivery_fees is True
        assert result.delivery_fees_usd_shown == Decimal("5.00")
        assert result.delivery_fees_lbp_shown == 500

    def test_third_party_instant(self):
        """Driver and third-party fees folded in; fees hidden."""
        order = {
            "total_usd": 10,
            "driver_fee_usd": 1,
            "third_party_fee_usd": 3,
            "deliver_method": "third_party",
            "type": "instant",
        }
        result = compute_displayed_amounts(order)
        assert result.computed_total_usd == Decimal("14.00")
        assert result.computed_total_lbp == 0
        assert result.show_delivery_fees is False

    def test_go_to_market_is_not_instant(self):
        """Only the literal instant type changes the formula."""
        result = compute_displayed_amounts({**BASE, "type": "go_to_market"})
        assert result.computed_total_usd == Decimal("10.00")
        assert result.show_delivery_fees is True


class TestNormalization:
    """Delivery method and type parsing."""

    @pytest.mark.parametrize("raw", ["third_party", "Third Party", "third-party", "THIRD_PARTY", " thirdparty "])
    def test_third_party_aliases(self, raw):
        assert normalize_delivery_method(raw) == "third_party"

    @pytest.mark.parametrize("raw", ["in_house", "In House", "in-house", None, "", "drone", 42])
    def test_unrecognized_falls_back_to_in_house(self, raw):
        assert normalize_delivery_method(raw) == "in_house"

    def test_unrecognized_method_uses_in_house_formula(self):
        """A bogus method behaves exactly like in_house."""
        bogus = compute_displayed_amounts({**BASE, "deliver_method": "pigeon", "type": "instant"})
        in_house = compute_displayed_amounts({**BASE, "deliver_method": "in_house", "type": "instant"})
        assert bogus == in_house

    def test_is_instant(self):
        assert is_instant("instant")
        assert is_instant(" Instant ")
        assert not is_instant("ecommerce")
        assert not is_instant(None)

    def test_delivery_mode_takes_precedence(self):
        """delivery_mode wins over deliver_method when both are present."""
        order = {**BASE, "third_party_fee_usd": 3, "delivery_mode": "third_party", "deliver_method": "in_house"}
        assert compute_displayed_amounts(order).computed_total_usd == Decimal("15.00")

    def test_legacy_delivery_fees_key(self):
        """delivery_fees_* is read when delivery_fee_* is absent."""
        order = {"total_usd": 10, "delivery_fees_usd": 4, "delivery_fees_lbp": 400}
        result = compute_displayed_amounts(order)
        assert result.delivery_fees_usd_shown == Decimal("4.00")
        assert result.delivery_fees_lbp_shown == 400


class TestRoundingAndCoercion:
    """Never raises; USD to cents, LBP to whole pounds."""

    def test_usd_rounds_half_up(self):
        result = compute_displayed_amounts({"total_usd": "10.005", "type": "instant", "driver_fee_usd": "0.004"})
        assert result.computed_total_usd == Decimal("10.01")
        assert result.computed_total_usd.as_tuple().exponent == -2

    def test_lbp_is_integer(self):
        result = compute_displayed_amounts({"total_lbp": "1500.6", "delivery_fee_lbp": 99.5})
        assert result.computed_total_lbp == 1501
        assert isinstance(result.computed_total_lbp, int)
        assert result.delivery_fees_lbp_shown == 100

    @pytest.mark.parametrize("bad", [None, "", "abc", "NaN", "Infinity", [], {}, True, "1e30", 1e30])
    def test_bad_inputs_count_as_zero(self, bad):
        result = compute_displayed_amounts({"total_usd": bad, "total_lbp": bad, "driver_fee_usd": bad})
        assert result.computed_total_usd == Decimal("0.00")
        assert result.computed_total_lbp == 0

    def test_thousands_separators(self):
        result = compute_displayed_amounts({"total_usd": "1,250.50", "total_lbp": "1,500,000"})
        assert result.computed_total_usd == Decimal("1250.50")
        assert result.computed_total_lbp == 1_500_000

    def test_empty_input(self):
        result = compute_displayed_amounts({})
        assert result == DisplayedAmounts(Decimal("0.00"), 0, Decimal("0.00"), 0, True)

    def test_pure_and_repeatable(self):
        """Same input, same output; the input is not modified."""
        order = {**BASE, "third_party_fee_usd": "3.333", "deliver_method": "Third Party", "type": "instant"}
        snapshot = dict(order)
        assert compute_displayed_amounts(order) == compute_displayed_amounts(order)
        assert order == snapshot

    def test_camel_case_contract(self):
        payload = compute_displayed_amounts({**BASE, "type": "instant"}).to_dict()
        assert payload == {
            "computedTotalUSD": 11.0,
            "computedTotalLBP": 1100,
            "deliveryFeesUSDShown": 0.0,
            "deliveryFeesLBPShown": 0,
            "showDeliveryFees": False,
        }

    def test_accepts_objects(self):
        """Attributes are read the same way as mapping keys."""
        class Row:
            total_usd = Decimal("7.50")
            total_lbp = 0
            driver_fee_usd = Decimal("1.25")
            deliver_method = "in_house"
            type = "instant"

        assert compute_displayed_amounts(Row()).computed_total_usd == Decimal("8.75")
