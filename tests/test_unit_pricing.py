from __future__ import annotations

from decimal import Decimal

import pytest

from mup_app.services.unit_pricing import (
    alcohol_units,
    floor_price,
    format_money,
    round_up_to_currency_unit,
    shortfall,
    to_decimal,
)


def test_floor_price_multiplies_units_by_minimum_unit_price():
    assert floor_price(Decimal("2.0"), Decimal("0.65")) == Decimal("1.30")
    assert floor_price(Decimal("10.5"), Decimal("0.65")) == Decimal("6.825")


UNIT_STEPS = [Decimal("0.5"), Decimal("1.0"), Decimal("2.0"), Decimal("10.5"), Decimal("28")]
PRICE_STEPS = [Decimal("0.50"), Decimal("0.65"), Decimal("0.651"), Decimal("1.00")]


@pytest.mark.parametrize("minimum_unit_price", PRICE_STEPS)
def test_floor_price_increases_with_units(minimum_unit_price):
    floors = [floor_price(units, minimum_unit_price) for units in UNIT_STEPS]
    assert all(lower < higher for lower, higher in zip(floors, floors[1:]))


@pytest.mark.parametrize("units", UNIT_STEPS)
def test_floor_price_increases_with_minimum_unit_price(units):
    floors = [floor_price(units, price) for price in PRICE_STEPS]
    assert all(lower < higher for lower, higher in zip(floors, floors[1:]))


@pytest.mark.parametrize("units", [Decimal("0"), Decimal("-1")])
def test_floor_price_is_zero_without_units(units):
    assert floor_price(units, Decimal("0.65")) == Decimal("0")


def test_shortfall_never_negative():
    assert shortfall(Decimal("1.00"), Decimal("1.30")) == Decimal("0.30")
    assert shortfall(Decimal("2.00"), Decimal("1.30")) == Decimal("0")


def test_rounding_only_goes_up_to_the_next_penny():
    assert round_up_to_currency_unit(Decimal("0.301")) == Decimal("0.31")
    assert round_up_to_currency_unit(Decimal("6.825")) == Decimal("6.83")
    assert round_up_to_currency_unit(Decimal("0.30")) == Decimal("0.30")


def test_format_money_uses_two_decimal_places():
    assert format_money(Decimal("0.3")) == "0.30"
    assert format_money(Decimal("12")) == "12.00"


def test_to_decimal_rejects_garbage():
    assert to_decimal("1.5") == Decimal("1.5")
    assert to_decimal(2) == Decimal("2")
    assert to_decimal("abc") is None
    assert to_decimal(None) is None
    assert to_decimal("") is None


def test_total_units_take_precedence_over_abv_and_volume():
    units = alcohol_units(total_units="2.1", abv_percentage="40", volume_ml="700")
    assert units == Decimal("2.1")


def test_units_derived_from_abv_and_volume():
    assert alcohol_units(abv_percentage="40", volume_ml="700") == Decimal("28")
    assert alcohol_units(abv_percentage="5", volume_ml="440") == Decimal("2.2")


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"abv_percentage": "40"},
        {"volume_ml": "700"},
        {"total_units": "-3"},
        {"abv_percentage": "-5", "volume_ml": "500"},
        {"abv_percentage": "not-a-number", "volume_ml": "500"},
    ],
)
def test_missing_or_invalid_data_means_exempt(kwargs):
    assert alcohol_units(**kwargs) == Decimal("0")


def test_unparsable_total_units_falls_back_to_abv_and_volume():
    assert alcohol_units(total_units="n/a", abv_percentage="12", volume_ml="750") == Decimal("9")
