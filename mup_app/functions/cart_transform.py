from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from mup_app.functions.function_input import (
    LEVY_MARKER_ATTRIBUTE,
    PARENT_LINE_ATTRIBUTE,
    MalformedFunctionInput,
    config_from_function_input,
    parse_cart,
)
from mup_app.services.levy import AddLevyLine, LevyOperation, UpdateLevyPrice, ZeroLevyPrice, calculate_levy
from mup_app.services.unit_pricing import ZERO, format_money

logger = logging.getLogger(__name__)


def _fixed_price(amount: Decimal) -> dict[str, Any]:
    return {"adjustment": {"fixedPricePerUnit": {"amount": format_money(amount)}}}


def _levy_attributes(operation: AddLevyLine) -> list[dict[str, str]]:
    attributes = [
        {"key": LEVY_MARKER_ATTRIBUTE, "value": "true"},
        {"key": PARENT_LINE_ATTRIBUTE, "value": operation.parent_line_id},
    ]
    breakdown = operation.breakdown
    if breakdown is not None:
        attributes.extend(
            [
                {"key": "mup_debug", "value": "true"},
                {"key": "mup_total_units", "value": str(breakdown.units_per_item)},
                {"key": "mup_minimum_unit_price", "value": str(breakdown.minimum_unit_price)},
                {"key": "mup_current_price_per_unit", "value": str(breakdown.current_price_per_item)},
                {"key": "mup_floor", "value": str(breakdown.floor_per_item)},
                {"key": "mup_levy_per_unit", "value": format_money(operation.unit_price)},
                {"key": "mup_levy_variant_id", "value": operation.merchandise_id},
            ]
        )
    return attributes


def serialize_operation(operation: LevyOperation) -> dict[str, Any]:
    if isinstance(operation, AddLevyLine):
        return {
            "expand": {
                "cartLineId": operation.parent_line_id,
                "expandedCartItems": [
                    {
                        "merchandiseId": operation.merchandise_id,
                        "quantity": operation.quantity,
                        "price": _fixed_price(operation.unit_price),
                        "attributes": _levy_attributes(operation),
                    }
                ],
            }
        }
    if isinstance(operation, UpdateLevyPrice):
        return {"update": {"cartLineId": operation.line_id, "price": _fixed_price(operation.unit_price)}}
    if isinstance(operation, ZeroLevyPrice):
        return {"update": {"cartLineId": operation.line_id, "price": _fixed_price(ZERO)}}
    raise TypeError(f"Unsupported levy operation: {operation!r}")


def run_cart_transform(payload: dict[str, Any]) -> dict[str, Any]:
    try:
        cart = parse_cart(payload)
        config = config_from_function_input(payload)
        result = calculate_levy(cart.lines, region=cart.region, config=config)
        operations = [serialize_operation(operation) for operation in result.operations]
    except MalformedFunctionInput as exc:
        logger.warning("mup.cart_transform.malformed_input", extra={"error": str(exc)})
        return {"operations": []}
    except Exception:
        logger.warning("mup.cart_transform.internal_error", exc_info=True)
        return {"operations": []}
    if result.skipped_reason:
        logger.debug("mup.cart_transform.skipped", extra={"reason": result.skipped_reason})
    return {"operations": operations}
