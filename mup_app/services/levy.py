"""Levy line planning for carts declared as Scottish.

Every evaluation re-derives each levy price from its parent line, so running
the calculator on its own output is a no-op and concurrent evaluations
converge on the same cart.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from mup_app.services.cart import CartLine
from mup_app.services.mup_config import ShopMupConfig
from mup_app.services.regions import Region
from mup_app.services.unit_pricing import ZERO, floor_price, round_up_to_currency_unit, shortfall

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LevyBreakdown:
    units_per_item: Decimal
    minimum_unit_price: Decimal
    current_price_per_item: Decimal
    floor_per_item: Decimal


@dataclass(frozen=True)
class AddLevyLine:
    parent_line_id: str
    merchandise_id: str
    quantity: int
    unit_price: Decimal
    breakdown: LevyBreakdown | None = None


@dataclass(frozen=True)
class UpdateLevyPrice:
    line_id: str
    unit_price: Decimal


@dataclass(frozen=True)
class ZeroLevyPrice:
    line_id: str


LevyOperation = Union[AddLevyLine, UpdateLevyPrice, ZeroLevyPrice]


@dataclass(frozen=True)
class LevyResult:
    operations: tuple[LevyOperation, ...] = ()
    skipped_reason: str | None = None

    @classmethod
    def noop(cls, reason: str) -> "LevyResult":
        return cls(operations=(), skipped_reason=reason)


def required_levy(line: CartLine, minimum_unit_price: Decimal) -> Decimal | None:
    """Per-item levy a parent line needs, ``None`` when it already meets the floor."""
    if not line.is_alcoholic:
        return None
    floor = floor_price(line.alcohol_units, minimum_unit_price)
    if line.cost_per_item >= floor:
        return None
    return round_up_to_currency_unit(shortfall(line.cost_per_item, floor))


def _pick_active_levy(levy_lines: list[CartLine], parent: CartLine, price: Decimal) -> CartLine | None:
    matching = [line for line in levy_lines if line.quantity == parent.quantity]
    if not matching:
        return None
    for line in matching:
        if line.cost_per_item == price:
            return line
    return matching[0]


def calculate_levy(
    lines: Sequence[CartLine],
    *,
    region: Region,
    config: ShopMupConfig,
) -> LevyResult:
    if region is not Region.SCOTLAND:
        return LevyResult.noop("region_not_scotland")
    if not config.enforcement_enabled:
        return LevyResult.noop("enforcement_disabled")
    if config.levy_variant_id is None:
        logger.warning("mup.levy.levy_product_missing")
        return LevyResult.noop("levy_product_missing")

    parents: dict[str, CartLine] = {}
    required: dict[str, Decimal] = {}
    levies_by_parent: dict[str | None, list[CartLine]] = {}
    for line in lines:
        if line.is_levy:
            levies_by_parent.setdefault(line.levy_parent_id, []).append(line)
            continue
        if not line.is_product_variant:
            continue
        parents[line.id] = line
        price = required_levy(line, config.minimum_unit_price)
        if price is not None:
            required[line.id] = price

    operations: list[LevyOperation] = []
    parents_with_levy: set[str] = set()
    for parent_id, levy_lines in levies_by_parent.items():
        parent = parents.get(parent_id) if parent_id else None
        price = required.get(parent_id) if parent_id else None
        active = None
        if parent is not None and price is not None:
            active = _pick_active_levy(levy_lines, parent, price)
        if active is not None:
            parents_with_levy.add(parent_id)

        for levy_line in levy_lines:
            if levy_line is active:
                if levy_line.cost_per_item != price:
                    operations.append(UpdateLevyPrice(line_id=levy_line.id, unit_price=price))
            elif levy_line.cost_per_item != ZERO:
                logger.info(
                    "mup.levy.neutralize",
                    extra={"line_id": levy_line.id, "parent_line_id": parent_id},
                )
                operations.append(ZeroLevyPrice(line_id=levy_line.id))

    for parent_id, price in required.items():
        if parent_id in parents_with_levy:
            continue
        parent = parents[parent_id]
        breakdown = None
        if config.debug:
            breakdown = LevyBreakdown(
                units_per_item=parent.alcohol_units,
                minimum_unit_price=config.minimum_unit_price,
                current_price_per_item=parent.cost_per_item,
                floor_per_item=floor_price(parent.alcohol_units, config.minimum_unit_price),
            )
        operations.append(
            AddLevyLine(
                parent_line_id=parent_id,
                merchandise_id=config.levy_variant_id,
                quantity=parent.quantity,
                unit_price=price,
                breakdown=breakdown,
            )
        )

    logger.debug(
        "mup.levy.calculated",
        extra={"operations": len(operations), "levy_parents": len(required)},
    )
    return LevyResult(operations=tuple(operations))
