from __future__ import annotations

import logging
from typing import Any

from mup_app.functions.function_input import MalformedFunctionInput, config_from_function_input, parse_cart
from mup_app.services.compliance_validator import ValidationResult, ValidationTarget, validate_cart

logger = logging.getLogger(__name__)

_TARGETS = {
    ValidationTarget.CART: "$.cart",
    ValidationTarget.CHECKOUT: "$.checkout",
}


def serialize_validation(result: ValidationResult) -> dict[str, Any]:
    errors = [
        {"message": violation.message, "target": _TARGETS[violation.target]}
        for violation in result.violations
    ]
    return {"operations": [{"validationAdd": {"errors": errors}}]}


def run_cart_validation(payload: dict[str, Any]) -> dict[str, Any]:
    try:
        cart = parse_cart(payload)
        result = validate_cart(cart, config_from_function_input(payload))
    except MalformedFunctionInput as exc:
        logger.warning("mup.cart_validation.malformed_input", extra={"error": str(exc)})
        return serialize_validation(ValidationResult.skip("malformed_input"))
    except Exception:
        # Internal faults fail open: the checkout gets no errors.
        logger.warning("mup.cart_validation.internal_error", exc_info=True)
        return serialize_validation(ValidationResult.skip("internal_error"))
    return serialize_validation(result)
