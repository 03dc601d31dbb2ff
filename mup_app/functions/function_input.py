"""Decoding of Shopify Function input JSON into engine types.

Levy provenance travels on the wire as the ``mup`` and ``parent_line_id``
line attributes; this module is the only place that knows that encoding.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from mup_app.services.cart import CartLine, CartSnapshot
from mup_app.services.mup_config import (
    DEBUG_KEY,
    ENFORCEMENT_ENABLED_KEY,
    LEVY_PRODUCT_KEY,
    MINIMUM_UNIT_PRICE_KEY,
    OVERRIDE_CODES_KEY,
    ShopMupConfig,
)
from mup_app.services.regions import Region
from mup_app.services.unit_pricing import ZERO, alcohol_units, to_decimal

LEVY_MARKER_ATTRIBUTE = "mup"
PARENT_LINE_ATTRIBUTE = "parent_line_id"
OVERRIDE_CODE_ATTRIBUTE = "mup_override_code"

# Aliases used by the function input queries for the shop metafields.
SHOP_METAFIELD_ALIASES: dict[str, str] = {
    "levyProduct": LEVY_PRODUCT_KEY,
    "minimumUnitPrice": MINIMUM_UNIT_PRICE_KEY,
    "enforcementEnabled": ENFORCEMENT_ENABLED_KEY,
    "debugFlag": DEBUG_KEY,
    "overrideCodes": OVERRIDE_CODES_KEY,
}


class MalformedFunctionInput(ValueError):
    pass


def _value(node: Any) -> str | None:
    if isinstance(node, dict):
        value = node.get("value")
        if value is not None:
            return str(value)
    return None


def _amount(cost: dict[str, Any], key: str) -> Decimal | None:
    node = cost.get(key)
    if not isinstance(node, dict):
        return None
    return to_decimal(node.get("amount"))


def config_from_function_input(payload: dict[str, Any]) -> ShopMupConfig:
    shop = payload.get("shop")
    if not isinstance(shop, dict):
        return ShopMupConfig.disabled()
    values = {key: _value(shop.get(alias)) for alias, key in SHOP_METAFIELD_ALIASES.items()}
    return ShopMupConfig.from_metafields(values)


def _line_attributes(line: dict[str, Any]) -> dict[str, str]:
    attributes: dict[str, str] = {}
    for item in line.get("attributes") or []:
        if isinstance(item, dict) and isinstance(item.get("key"), str) and item.get("value") is not None:
            attributes[item["key"]] = str(item["value"])
    marker = _value(line.get("mupAttribute"))
    if marker is not None:
        attributes[LEVY_MARKER_ATTRIBUTE] = marker
    parent = _value(line.get("parentLineIdAttribute"))
    if parent is not None:
        attributes[PARENT_LINE_ATTRIBUTE] = parent
    return attributes


def _merchandise_units(merchandise: dict[str, Any]) -> Decimal:
    total_units = _value(merchandise.get("totalUnits"))
    if total_units is None:
        total_units = _value(merchandise.get("metafield"))
    return alcohol_units(
        total_units=total_units,
        abv_percentage=_value(merchandise.get("abvPercentage")),
        volume_ml=_value(merchandise.get("volumeMl")),
    )


def parse_cart_line(line: dict[str, Any]) -> CartLine:
    line_id = line.get("id")
    if not isinstance(line_id, str) or not line_id:
        raise MalformedFunctionInput("Cart line is missing id")
    quantity = line.get("quantity")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise MalformedFunctionInput(f"Cart line {line_id} has an invalid quantity")

    cost = line.get("cost") if isinstance(line.get("cost"), dict) else {}
    cost_per_item = _amount(cost, "amountPerQuantity")
    total_cost = _amount(cost, "totalAmount")
    if cost_per_item is None and total_cost is None:
        raise MalformedFunctionInput(f"Cart line {line_id} is missing cost")
    if cost_per_item is None:
        cost_per_item = total_cost / Decimal(quantity)
    if total_cost is None:
        total_cost = cost_per_item * Decimal(quantity)

    merchandise = line.get("merchandise") if isinstance(line.get("merchandise"), dict) else {}
    is_variant = merchandise.get("__typename") == "ProductVariant"
    attributes = _line_attributes(line)
    is_levy = attributes.get(LEVY_MARKER_ATTRIBUTE, "").strip().lower() == "true"
    parent_id = attributes.get(PARENT_LINE_ATTRIBUTE) or None

    return CartLine(
        id=line_id,
        quantity=quantity,
        cost_per_item=cost_per_item,
        total_cost=total_cost,
        merchandise_id=merchandise.get("id") if isinstance(merchandise.get("id"), str) else None,
        is_product_variant=is_variant,
        alcohol_units=_merchandise_units(merchandise) if is_variant and not is_levy else ZERO,
        is_levy=is_levy,
        levy_parent_id=parent_id if is_levy else None,
        attributes=attributes,
    )


def _delivery_postcodes(cart: dict[str, Any]) -> tuple[str, ...]:
    postcodes: list[str] = []
    groups = cart.get("deliveryGroups")
    if not isinstance(groups, list):
        return ()
    for group in groups:
        address = group.get("deliveryAddress") if isinstance(group, dict) else None
        if isinstance(address, dict) and isinstance(address.get("zip"), str) and address["zip"].strip():
            postcodes.append(address["zip"])
    return tuple(postcodes)


def _discount_codes(cart: dict[str, Any]) -> tuple[str, ...]:
    codes: list[str] = []
    raw_codes = cart.get("discountCodes")
    if not isinstance(raw_codes, list):
        return ()
    for item in raw_codes:
        code = item.get("code") if isinstance(item, dict) else item
        if isinstance(code, str) and code.strip():
            codes.append(code.strip())
    return tuple(codes)


def parse_cart(payload: dict[str, Any]) -> CartSnapshot:
    cart = payload.get("cart")
    if not isinstance(cart, dict):
        raise MalformedFunctionInput("Function input is missing cart")
    raw_lines = cart.get("lines") or []
    if not isinstance(raw_lines, list):
        raise MalformedFunctionInput("cart.lines must be a list")

    return CartSnapshot(
        lines=tuple(parse_cart_line(line) for line in raw_lines if isinstance(line, dict)),
        region=Region.parse(_value(cart.get("attribute"))),
        delivery_postcodes=_delivery_postcodes(cart),
        discount_codes=_discount_codes(cart),
        override_code=_value(cart.get("overrideAttribute")),
    )
