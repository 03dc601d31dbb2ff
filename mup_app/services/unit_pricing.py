"""Minimum Unit Pricing arithmetic.

Prices are kept as full-precision ``Decimal`` values until the point of
charging; only ``round_up_to_currency_unit`` reduces them to pence, and it
always rounds towards the customer paying more, never less.
"""

from __future__ import annotations

import logging
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MINIMUM_UNIT_PRICE = Decimal("0.65")
CURRENCY_UNIT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal | None:
    """Parse a money/units value coming off the wire, ``None`` when unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return None
    if not parsed.is_finite():
        return None
    return parsed


def floor_price(units: Decimal, minimum_unit_price: Decimal) -> Decimal:
    """Legal floor for one item carrying ``units`` alcohol units."""
    if units <= ZERO:
        return ZERO
    return units * minimum_unit_price


def shortfall(current_price: Decimal, floor: Decimal) -> Decimal:
    return max(ZERO, floor - current_price)


def round_up_to_currency_unit(amount: Decimal) -> Decimal:
    return amount.quantize(CURRENCY_UNIT, rounding=ROUND_CEILING)


def format_money(amount: Decimal) -> str:
    return str(amount.quantize(CURRENCY_UNIT))


def alcohol_units(
    *,
    total_units: Any = None,
    abv_percentage: Any = None,
    volume_ml: Any = None,
) -> Decimal:
    """Resolve a variant's alcohol units.

    ``total_units`` wins when present; otherwise units are derived as
    ABV% x volume(ml) / 1000. Missing, zero, negative or unparsable data
    means the variant is exempt and yields zero.
    """
    direct = to_decimal(total_units)
    if direct is not None:
        if direct < ZERO:
            logger.warning("mup.units.negative_total_units", extra={"total_units": str(total_units)})
            return ZERO
        return direct
    if total_units not in (None, ""):
        logger.warning("mup.units.unparsable_total_units", extra={"total_units": str(total_units)})

    abv = to_decimal(abv_percentage)
    volume = to_decimal(volume_ml)
    if abv is None or volume is None:
        return ZERO
    if abv <= ZERO or volume <= ZERO:
        return ZERO
    return abv * volume / Decimal(1000)
