"""Order-level MUP watchdog.

An order moves ``UNCHECKED -> COMPLIANT`` or ``UNCHECKED -> FLAGGED_PENDING_HOLD``
when it is first observed, and a flagged order moves to ``HOLD_APPLIED`` or
``HOLD_FAILED_MANUAL_REQUIRED`` once the hold step has run. The
``MUP_HOLD_ATTEMPTED`` tag records that the hold step already reached a
terminal state, so later observations of the order never repeat it.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from mup_app.services.mup_config import ShopMupConfig
from mup_app.services.regions import Region, is_scottish_postcode

TAG_ENFORCED = "MUP_ENFORCED"
TAG_NON_COMPLIANCE = "MUP_NON_COMPLIANCE"
TAG_HOLD_ATTEMPTED = "MUP_HOLD_ATTEMPTED"

NON_COMPLIANCE_TAGS: tuple[str, ...] = (TAG_ENFORCED, TAG_NON_COMPLIANCE)

HOLD_REASON_NOTES = (
    "MUP COMPLIANCE REVIEW REQUIRED: Order flagged for manual MUP verification. "
    "Do not fulfill until compliance is confirmed."
)

FULFILLMENT_ORDER_OPEN = "OPEN"


class OrderComplianceState(str, Enum):
    UNCHECKED = "unchecked"
    COMPLIANT = "compliant"
    FLAGGED_PENDING_HOLD = "flagged_pending_hold"
    HOLD_APPLIED = "hold_applied"
    HOLD_FAILED_MANUAL_REQUIRED = "hold_failed_manual_required"


class HoldTrigger(str, Enum):
    SCHEDULED = "scheduled"
    ORDER_UPDATED = "order_updated"


@dataclass(frozen=True)
class OrderSnapshot:
    order_id: str
    billing_postcode: str | None
    declared_region: Region
    tags: tuple[str, ...] = ()
    note: str | None = None


@dataclass(frozen=True)
class OrderComplianceDecision:
    state: OrderComplianceState
    reason: str
    tags_to_add: tuple[str, ...] = ()
    note: str | None = None
    schedule_hold: bool = False


@dataclass(frozen=True)
class FulfillmentUnit:
    id: str
    status: str


@dataclass(frozen=True)
class HoldAttempt:
    fulfillment_order_id: str
    success: bool
    status: str | None = None
    error: str | None = None


class HoldStatus(str, Enum):
    APPLIED = "applied"
    MANUAL_REQUIRED = "manual_required"
    DEFERRED = "deferred"
    NOT_REQUIRED = "not_required"
    ALREADY_ATTEMPTED = "already_attempted"


@dataclass(frozen=True)
class HoldOutcome:
    status: HoldStatus
    reason: str
    attempts: tuple[HoldAttempt, ...] = ()
    skipped: tuple[FulfillmentUnit, ...] = ()

    @property
    def success_count(self) -> int:
        return sum(1 for attempt in self.attempts if attempt.success)

    @property
    def manual_required(self) -> bool:
        return self.status is HoldStatus.MANUAL_REQUIRED

    @property
    def state(self) -> OrderComplianceState:
        if self.status is HoldStatus.APPLIED:
            return OrderComplianceState.HOLD_APPLIED
        if self.status is HoldStatus.MANUAL_REQUIRED:
            return OrderComplianceState.HOLD_FAILED_MANUAL_REQUIRED
        return OrderComplianceState.FLAGGED_PENDING_HOLD


def missing_tags(existing: Iterable[str], wanted: Iterable[str]) -> tuple[str, ...]:
    present = {tag.strip() for tag in existing}
    result: list[str] = []
    for tag in wanted:
        if tag not in present and tag not in result:
            result.append(tag)
    return tuple(result)


def compliance_note(order: OrderSnapshot) -> str:
    return (
        f"MUP COMPLIANCE: billing postcode {order.billing_postcode} is in Scotland but the "
        f"checkout region was declared as '{order.declared_region.value}'. "
        "Order held for manual Minimum Unit Pricing review."
    )


def evaluate_order(order: OrderSnapshot, config: ShopMupConfig) -> OrderComplianceDecision:
    if not config.enforcement_enabled:
        return OrderComplianceDecision(state=OrderComplianceState.COMPLIANT, reason="enforcement_disabled")
    if not config.is_active:
        return OrderComplianceDecision(state=OrderComplianceState.COMPLIANT, reason="levy_product_missing")
    if not is_scottish_postcode(order.billing_postcode):
        return OrderComplianceDecision(state=OrderComplianceState.COMPLIANT, reason="billing_not_scottish")
    if order.declared_region is Region.SCOTLAND:
        return OrderComplianceDecision(state=OrderComplianceState.COMPLIANT, reason="region_consistent")

    return OrderComplianceDecision(
        state=OrderComplianceState.FLAGGED_PENDING_HOLD,
        reason="scottish_billing_region_mismatch",
        tags_to_add=missing_tags(order.tags, NON_COMPLIANCE_TAGS),
        note=compliance_note(order),
        schedule_hold=TAG_HOLD_ATTEMPTED not in order.tags,
    )


def hold_pending(tags: Iterable[str]) -> bool:
    tag_set = {tag.strip() for tag in tags}
    return TAG_NON_COMPLIANCE in tag_set and TAG_HOLD_ATTEMPTED not in tag_set


def open_units(units: Sequence[FulfillmentUnit]) -> tuple[list[FulfillmentUnit], list[FulfillmentUnit]]:
    to_hold = [unit for unit in units if unit.status == FULFILLMENT_ORDER_OPEN]
    skipped = [unit for unit in units if unit.status != FULFILLMENT_ORDER_OPEN]
    return to_hold, skipped


def preflight_hold(
    *,
    tags: Iterable[str],
    units: Sequence[FulfillmentUnit],
    trigger: HoldTrigger,
) -> HoldOutcome | None:
    """Decide whether the hold step should stop before placing any hold.

    Returns ``None`` when holds should be placed on the open units.
    """
    tag_set = {tag.strip() for tag in tags}
    if TAG_NON_COMPLIANCE not in tag_set:
        return HoldOutcome(status=HoldStatus.NOT_REQUIRED, reason="order_not_flagged")
    if TAG_HOLD_ATTEMPTED in tag_set:
        return HoldOutcome(status=HoldStatus.ALREADY_ATTEMPTED, reason="hold_already_attempted")
    if not units:
        if trigger is HoldTrigger.ORDER_UPDATED:
            # The scheduled attempt owns the manual fallback.
            return HoldOutcome(status=HoldStatus.DEFERRED, reason="no_fulfillment_orders_yet")
        return HoldOutcome(status=HoldStatus.MANUAL_REQUIRED, reason="no_fulfillment_orders")
    return None


def resolve_hold_outcome(
    *,
    attempts: Sequence[HoldAttempt],
    skipped: Sequence[FulfillmentUnit],
) -> HoldOutcome:
    if any(attempt.success for attempt in attempts):
        return HoldOutcome(
            status=HoldStatus.APPLIED,
            reason="hold_placed",
            attempts=tuple(attempts),
            skipped=tuple(skipped),
        )
    reason = "all_holds_failed" if attempts else "no_open_fulfillment_orders"
    return HoldOutcome(
        status=HoldStatus.MANUAL_REQUIRED,
        reason=reason,
        attempts=tuple(attempts),
        skipped=tuple(skipped),
    )
