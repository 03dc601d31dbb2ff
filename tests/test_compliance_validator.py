from __future__ import annotations

from decimal import Decimal

from mup_app.services.cart import CartLine, CartSnapshot
from mup_app.services.compliance_validator import (
    ValidationTarget,
    ViolationKind,
    validate_cart,
)
from mup_app.services.mup_config import ShopMupConfig
from mup_app.services.regions import Region

CONFIG = ShopMupConfig(
    enforcement_enabled=True,
    levy_variant_id="gid://shopify/ProductVariant/999",
    override_codes=("STAFF50",),
)


def _line(price: str, total: str, *, units: str = "2.0", quantity: int = 1, line_id: str = "line-1") -> CartLine:
    return CartLine(
        id=line_id,
        quantity=quantity,
        cost_per_item=Decimal(price),
        total_cost=Decimal(total),
        alcohol_units=Decimal(units),
    )


def _cart(*lines: CartLine, region: Region = Region.SCOTLAND, **kwargs) -> CartSnapshot:
    return CartSnapshot(lines=tuple(lines), region=region, **kwargs)


def test_undiscounted_line_below_floor_passes():
    result = validate_cart(_cart(_line("1.00", "1.00")), CONFIG)
    assert result.passed


def test_discount_taking_price_below_floor_blocks_checkout():
    # 50% off a 2-unit item priced at the 1.30 floor.
    result = validate_cart(_cart(_line("1.30", "0.65")), CONFIG)

    assert not result.passed
    (violation,) = result.violations
    assert violation.kind is ViolationKind.DISCOUNT_BELOW_FLOOR
    assert violation.target is ValidationTarget.CHECKOUT
    assert violation.current_price == Decimal("0.65")
    assert violation.floor == Decimal("1.30")
    assert violation.shortfall == Decimal("0.65")


def test_violation_message_reports_current_floor_and_shortfall():
    # 20% off 12.00 on a 16-unit item with a 10.40 floor.
    result = validate_cart(_cart(_line("12.00", "9.60", units="16")), CONFIG)

    (violation,) = result.violations
    assert violation.shortfall == Decimal("0.80")
    assert "Current price: £9.60" in violation.message
    assert "Minimum required: £10.40" in violation.message
    assert "Shortfall: £0.80" in violation.message
    assert "remove or reduce your discount code" in violation.message


def test_discount_that_stays_above_floor_passes():
    result = validate_cart(_cart(_line("3.00", "2.40")), CONFIG)
    assert result.passed


def test_per_item_price_is_total_divided_by_quantity():
    line = _line("1.30", "2.60", quantity=4)
    result = validate_cart(_cart(line), CONFIG)
    (violation,) = result.violations
    assert violation.current_price == Decimal("0.65")


def test_override_code_bypasses_checks_in_any_case():
    cart = _cart(_line("1.30", "0.65"), discount_codes=("staff50",))
    result = validate_cart(cart, CONFIG)
    assert result.passed
    assert result.skipped_reason == "override_active"


def test_override_attribute_bypasses_region_mismatch():
    cart = _cart(
        _line("1.30", "0.65"),
        region=Region.ENGLAND,
        delivery_postcodes=("EH1 1AA",),
        override_code="Staff50",
    )
    assert validate_cart(cart, CONFIG).passed


def test_unknown_code_does_not_bypass():
    cart = _cart(_line("1.30", "0.65"), discount_codes=("SUMMER10",))
    assert not validate_cart(cart, CONFIG).passed


def test_scottish_delivery_with_other_region_blocks_cart():
    cart = _cart(_line("5.00", "5.00"), region=Region.ENGLAND, delivery_postcodes=("EH1 1AA",))
    result = validate_cart(cart, CONFIG)

    (violation,) = result.violations
    assert violation.kind is ViolationKind.REGION_MISMATCH
    assert violation.target is ValidationTarget.CART
    assert "EH1 1AA" in violation.message
    assert '"Scotland"' in violation.message


def test_region_mismatch_is_checked_even_when_enforcement_disabled():
    cart = _cart(_line("5.00", "5.00"), region=Region.UNSET, delivery_postcodes=("G2 1AA",))
    result = validate_cart(cart, ShopMupConfig.disabled())
    assert result.violations[0].kind is ViolationKind.REGION_MISMATCH


def test_non_scottish_cart_without_scottish_address_passes():
    cart = _cart(_line("1.30", "0.65"), region=Region.ENGLAND, delivery_postcodes=("GU1 1AA",))
    result = validate_cart(cart, CONFIG)
    assert result.passed
    assert result.skipped_reason == "region_not_scotland"


def test_disabled_enforcement_passes_discounted_scottish_cart():
    result = validate_cart(_cart(_line("1.30", "0.65")), ShopMupConfig.disabled())
    assert result.passed
    assert result.skipped_reason == "enforcement_disabled"


def test_missing_levy_product_passes_discounted_scottish_cart():
    config = ShopMupConfig(enforcement_enabled=True, levy_variant_id=None)
    result = validate_cart(_cart(_line("1.30", "0.65")), config)
    assert result.passed
    assert result.skipped_reason == "levy_product_missing"


def test_region_mismatch_is_checked_without_levy_product():
    config = ShopMupConfig(enforcement_enabled=True, levy_variant_id=None)
    cart = _cart(_line("5.00", "5.00"), region=Region.ENGLAND, delivery_postcodes=("EH1 1AA",))
    result = validate_cart(cart, config)
    assert result.violations[0].kind is ViolationKind.REGION_MISMATCH


def test_empty_cart_and_non_alcoholic_cart_pass():
    assert validate_cart(_cart(), CONFIG).skipped_reason == "empty_cart"
    result = validate_cart(_cart(_line("1.00", "0.10", units="0")), CONFIG)
    assert result.passed
    assert result.skipped_reason == "no_alcoholic_lines"


def test_levy_lines_are_not_validated():
    levy = CartLine(
        id="levy",
        quantity=1,
        cost_per_item=Decimal("0.30"),
        total_cost=Decimal("0.00"),
        is_levy=True,
        levy_parent_id="line-1",
    )
    assert validate_cart(_cart(levy), CONFIG).passed
