"""Checkout gate for Minimum Unit Pricing.

Runs against final line totals, after discounts. Violations are returned as
data; nothing here raises on a non-compliant cart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from mup_app.services.cart import CartSnapshot
from mup_app.services.mup_config import ShopMupConfig
from mup_app.services.regions import Region, first_scottish_postcode
from mup_app.services.unit_pricing import floor_price, format_money, shortfall

logger = logging.getLogger(__name__)


class ValidationTarget(str, Enum):
    CART = "cart"
    CHECKOUT = "checkout"


class ViolationKind(str, Enum):
    REGION_MISMATCH = "region_mismatch"
    DISCOUNT_BELOW_FLOOR = "discount_below_floor"


@dataclass(frozen=True)
class ComplianceViolation:
    kind: ViolationKind
    message: str
    target: ValidationTarget
    line_id: str | None = None
    current_price: Decimal | None = None
    floor: Decimal | None = None
    shortfall: Decimal | None = None


@dataclass(frozen=True)
class ValidationResult:
    violations: tuple[ComplianceViolation, ...] = ()
    skipped_reason: str | None = None

    @property
    def passed(self) -> bool:
        return not self.violations

    @classmethod
    def skip(cls, reason: str) -> "ValidationResult":
        return cls(violations=(), skipped_reason=reason)


def active_override_code(cart: CartSnapshot, config: ShopMupConfig) -> str | None:
    candidates = [cart.override_code, *cart.discount_codes]
    for code in candidates:
        if config.is_override_code(code):
            return code.strip().upper() if code else None
    return None


def region_mismatch_message(postcode: str) -> str:
    return (
        f"Scottish address detected ({postcode}). Please return to your cart and select "
        '"Scotland" as your region to ensure correct pricing and MUP compliance before '
        "completing your order."
    )


def discount_violation_message(*, current_price: Decimal, floor: Decimal, missing: Decimal) -> str:
    return (
        "Discounts cannot reduce the price below the Minimum Unit Pricing requirement. "
        f"Current price: £{format_money(current_price)}, "
        f"Minimum required: £{format_money(floor)}, "
        f"Shortfall: £{format_money(missing)}. "
        "Please remove or reduce your discount code."
    )


def validate_cart(cart: CartSnapshot, config: ShopMupConfig) -> ValidationResult:
    if not cart.lines:
        return ValidationResult.skip("empty_cart")

    override = active_override_code(cart, config)
    if override:
        logger.info("mup.validation.override_active", extra={"code": override})
        return ValidationResult.skip("override_active")

    if cart.region is not Region.SCOTLAND:
        postcode = first_scottish_postcode(list(cart.delivery_postcodes))
        if postcode:
            logger.info(
                "mup.validation.region_mismatch",
                extra={"region": cart.region.value, "postcode": postcode},
            )
            return ValidationResult(
                violations=(
                    ComplianceViolation(
                        kind=ViolationKind.REGION_MISMATCH,
                        message=region_mismatch_message(postcode),
                        target=ValidationTarget.CART,
                    ),
                )
            )
        return ValidationResult.skip("region_not_scotland")

    if not config.enforcement_enabled:
        return ValidationResult.skip("enforcement_disabled")
    if not config.is_active:
        return ValidationResult.skip("levy_product_missing")

    alcoholic_lines = [line for line in cart.lines if line.is_alcoholic]
    if not alcoholic_lines:
        return ValidationResult.skip("no_alcoholic_lines")

    violations: list[ComplianceViolation] = []
    for line in alcoholic_lines:
        floor = floor_price(line.alcohol_units, config.minimum_unit_price)
        current_price = line.current_price_per_item
        if current_price >= floor:
            continue
        if not line.is_discounted:
            # Pre-levy state; the cart transform adds the levy on its own pass.
            logger.debug("mup.validation.pre_levy_line", extra={"line_id": line.id})
            continue
        missing = shortfall(current_price, floor)
        violations.append(
            ComplianceViolation(
                kind=ViolationKind.DISCOUNT_BELOW_FLOOR,
                message=discount_violation_message(
                    current_price=current_price,
                    floor=floor,
                    missing=missing,
                ),
                target=ValidationTarget.CHECKOUT,
                line_id=line.id,
                current_price=current_price,
                floor=floor,
                shortfall=missing,
            )
        )

    if violations:
        logger.info("mup.validation.blocked", extra={"violations": len(violations)})
    return ValidationResult(violations=tuple(violations))
