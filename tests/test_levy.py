from __future__ import annotations

from decimal import Decimal

from mup_app.services.cart import CartLine
from mup_app.services.levy import (
    AddLevyLine,
    UpdateLevyPrice,
    ZeroLevyPrice,
    calculate_levy,
)
from mup_app.services.mup_config import ShopMupConfig
from mup_app.services.regions import Region

LEVY_VARIANT = "gid://shopify/ProductVariant/999"
CONFIG = ShopMupConfig(enforcement_enabled=True, levy_variant_id=LEVY_VARIANT)


def _line(line_id: str, price: str, *, units: str = "2.0", quantity: int = 1, total: str | None = None) -> CartLine:
    cost = Decimal(price)
    return CartLine(
        id=line_id,
        quantity=quantity,
        cost_per_item=cost,
        total_cost=Decimal(total) if total is not None else cost * quantity,
        merchandise_id=f"gid://shopify/ProductVariant/{line_id}",
        alcohol_units=Decimal(units),
    )


def _levy(line_id: str, parent_id: str | None, price: str, *, quantity: int = 1) -> CartLine:
    cost = Decimal(price)
    return CartLine(
        id=line_id,
        quantity=quantity,
        cost_per_item=cost,
        total_cost=cost * quantity,
        merchandise_id=LEVY_VARIANT,
        is_levy=True,
        levy_parent_id=parent_id,
    )


def _apply(lines: list[CartLine], operations) -> list[CartLine]:
    """Simulate the platform applying levy operations to a cart."""
    by_id = {line.id: line for line in lines}
    result = list(lines)
    for operation in operations:
        if isinstance(operation, AddLevyLine):
            result.append(
                _levy(
                    f"levy-{operation.parent_line_id}",
                    operation.parent_line_id,
                    str(operation.unit_price),
                    quantity=operation.quantity,
                )
            )
        else:
            line_id = operation.line_id
            price = operation.unit_price if isinstance(operation, UpdateLevyPrice) else Decimal("0")
            old = by_id[line_id]
            index = result.index(old)
            result[index] = _levy(line_id, old.levy_parent_id, str(price), quantity=old.quantity)
    return result


def test_adds_levy_for_item_below_floor():
    result = calculate_levy([_line("a", "1.00")], region=Region.SCOTLAND, config=CONFIG)

    assert result.skipped_reason is None
    assert result.operations == (
        AddLevyLine(
            parent_line_id="a",
            merchandise_id=LEVY_VARIANT,
            quantity=1,
            unit_price=Decimal("0.30"),
        ),
    )


def test_levy_quantity_matches_parent_and_rounds_up():
    result = calculate_levy(
        [_line("a", "5.00", units="10.5", quantity=3)],
        region=Region.SCOTLAND,
        config=CONFIG,
    )
    (operation,) = result.operations
    assert isinstance(operation, AddLevyLine)
    assert operation.quantity == 3
    # floor 6.825 - 5.00 = 1.825, charged as 1.83
    assert operation.unit_price == Decimal("1.83")


def test_items_at_or_above_floor_and_exempt_items_get_nothing():
    lines = [
        _line("at-floor", "1.30"),
        _line("above", "2.00"),
        _line("exempt", "0.10", units="0"),
    ]
    result = calculate_levy(lines, region=Region.SCOTLAND, config=CONFIG)
    assert result.operations == ()


def test_parent_plus_levy_meets_floor():
    parent = _line("a", "1.00", units="3", quantity=2)
    result = calculate_levy([parent], region=Region.SCOTLAND, config=CONFIG)
    (operation,) = result.operations
    floor = Decimal("3") * Decimal("0.65")
    assert parent.cost_per_item + operation.unit_price >= floor


def test_running_on_own_output_is_a_no_op():
    lines = [_line("a", "1.00"), _line("b", "0.50", units="1.5", quantity=2), _line("c", "9.00")]
    first = calculate_levy(lines, region=Region.SCOTLAND, config=CONFIG)
    after = _apply(lines, first.operations)

    second = calculate_levy(after, region=Region.SCOTLAND, config=CONFIG)
    assert second.operations == ()


def test_stale_levy_price_is_updated():
    lines = [_line("a", "1.00"), _levy("levy-a", "a", "0.10")]
    result = calculate_levy(lines, region=Region.SCOTLAND, config=CONFIG)
    assert result.operations == (UpdateLevyPrice(line_id="levy-a", unit_price=Decimal("0.30")),)


def test_levy_for_parent_no_longer_needing_it_is_zeroed():
    lines = [_line("a", "2.00"), _levy("levy-a", "a", "0.30")]
    result = calculate_levy(lines, region=Region.SCOTLAND, config=CONFIG)
    assert result.operations == (ZeroLevyPrice(line_id="levy-a"),)


def test_orphan_levy_is_zeroed_and_already_zero_orphan_left_alone():
    lines = [_levy("orphan", "gone", "0.30"), _levy("zeroed", "gone-too", "0.00")]
    result = calculate_levy(lines, region=Region.SCOTLAND, config=CONFIG)
    assert result.operations == (ZeroLevyPrice(line_id="orphan"),)


def test_quantity_mismatch_zeroes_old_levy_and_adds_fresh_one():
    lines = [_line("a", "1.00", quantity=3), _levy("levy-a", "a", "0.30", quantity=1)]
    result = calculate_levy(lines, region=Region.SCOTLAND, config=CONFIG)
    assert result.operations == (
        ZeroLevyPrice(line_id="levy-a"),
        AddLevyLine(parent_line_id="a", merchandise_id=LEVY_VARIANT, quantity=3, unit_price=Decimal("0.30")),
    )


def test_duplicate_levies_for_one_parent_collapse_to_one():
    lines = [
        _line("a", "1.00"),
        _levy("levy-1", "a", "0.30"),
        _levy("levy-2", "a", "0.30"),
    ]
    result = calculate_levy(lines, region=Region.SCOTLAND, config=CONFIG)
    assert result.operations == (ZeroLevyPrice(line_id="levy-2"),)


def test_non_scottish_region_is_a_no_op():
    for region in (Region.ENGLAND, Region.WALES, Region.NORTHERN_IRELAND, Region.UNSET):
        result = calculate_levy([_line("a", "1.00")], region=region, config=CONFIG)
        assert result.operations == ()
        assert result.skipped_reason == "region_not_scotland"


def test_disabled_enforcement_is_a_no_op():
    config = ShopMupConfig(enforcement_enabled=False, levy_variant_id=LEVY_VARIANT)
    result = calculate_levy([_line("a", "1.00")], region=Region.SCOTLAND, config=config)
    assert result.skipped_reason == "enforcement_disabled"
    assert result.operations == ()


def test_missing_levy_product_is_a_no_op():
    config = ShopMupConfig(enforcement_enabled=True)
    result = calculate_levy([_line("a", "1.00")], region=Region.SCOTLAND, config=config)
    assert result.skipped_reason == "levy_product_missing"


def test_debug_flag_attaches_breakdown():
    config = ShopMupConfig(enforcement_enabled=True, levy_variant_id=LEVY_VARIANT, debug=True)
    (operation,) = calculate_levy([_line("a", "1.00")], region=Region.SCOTLAND, config=config).operations
    assert operation.breakdown is not None
    assert operation.breakdown.floor_per_item == Decimal("1.30")
    assert operation.breakdown.current_price_per_item == Decimal("1.00")


def test_levy_uses_pre_discount_price():
    discounted = _line("a", "1.00", total="0.50")
    (operation,) = calculate_levy([discounted], region=Region.SCOTLAND, config=CONFIG).operations
    assert operation.unit_price == Decimal("0.30")
