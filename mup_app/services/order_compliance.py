from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from mup_app.services.compliance_monitor import (
    HOLD_REASON_NOTES,
    TAG_HOLD_ATTEMPTED,
    FulfillmentUnit,
    HoldAttempt,
    HoldOutcome,
    HoldStatus,
    HoldTrigger,
    OrderComplianceDecision,
    OrderComplianceState,
    OrderSnapshot,
    evaluate_order,
    hold_pending,
    open_units,
    preflight_hold,
    resolve_hold_outcome,
)
from mup_app.services.regions import Region
from mup_app.services.settings_resolver import SettingsResolver
from mup_app.shopify_api import ShopifyApiClient, ShopifyApiError

logger = logging.getLogger(__name__)

REGION_ATTRIBUTE = "uk_region"
_ORDER_GID_PREFIX = "gid://shopify/Order/"


class HoldScheduler(Protocol):
    async def schedule(self, *, delay_seconds: int, shop_domain: str, order_gid: str) -> None: ...


def order_gid_from_payload(payload: dict[str, Any]) -> str:
    admin_gid = payload.get("admin_graphql_api_id")
    if isinstance(admin_gid, str) and admin_gid.startswith(_ORDER_GID_PREFIX):
        return admin_gid
    order_id = payload.get("id")
    if order_id is None or str(order_id).strip() == "":
        raise ValueError("Order payload is missing id")
    return f"{_ORDER_GID_PREFIX}{order_id}"


def parse_order_tags(raw: Any) -> tuple[str, ...]:
    if isinstance(raw, list):
        items = [str(item) for item in raw]
    elif isinstance(raw, str):
        items = raw.split(",")
    else:
        return ()
    return tuple(tag.strip() for tag in items if tag.strip())


def _note_attribute(payload: dict[str, Any], name: str) -> str | None:
    for item in payload.get("note_attributes") or []:
        if isinstance(item, dict) and item.get("name") == name:
            value = item.get("value")
            return None if value is None else str(value)
    return None


def order_snapshot_from_webhook(payload: dict[str, Any]) -> OrderSnapshot:
    billing = payload.get("billing_address")
    billing_postcode = billing.get("zip") if isinstance(billing, dict) else None
    return OrderSnapshot(
        order_id=order_gid_from_payload(payload),
        billing_postcode=billing_postcode if isinstance(billing_postcode, str) else None,
        declared_region=Region.parse(_note_attribute(payload, REGION_ATTRIBUTE)),
        tags=parse_order_tags(payload.get("tags")),
        note=payload.get("note") if isinstance(payload.get("note"), str) else None,
    )


def _merge_note(existing: str | None, addition: str) -> str:
    if not existing:
        return addition
    if addition in existing:
        return existing
    return f"{existing.rstrip()}\n\n{addition}"


class FulfillmentHoldService:
    """Places MUP holds on an order's open fulfillment orders, once per order."""

    def __init__(
        self,
        *,
        shopify_api: ShopifyApiClient,
        hold_reason: str,
        alert_webhook_url: str | None = None,
        request_timeout_seconds: float = 10.0,
    ) -> None:
        self._shopify_api = shopify_api
        self._hold_reason = hold_reason
        self._alert_webhook_url = alert_webhook_url
        self._request_timeout_seconds = request_timeout_seconds

    async def place_hold(
        self,
        *,
        shop_domain: str,
        access_token: str,
        order_gid: str,
        trigger: HoldTrigger,
    ) -> HoldOutcome:
        context = await self._shopify_api.get_order_hold_context(
            shop_domain=shop_domain,
            access_token=access_token,
            order_gid=order_gid,
        )
        units = [
            FulfillmentUnit(id=item["id"], status=item["status"])
            for item in context["fulfillmentOrders"]
        ]
        outcome = preflight_hold(tags=context["tags"], units=units, trigger=trigger)
        if outcome is not None and outcome.status in (
            HoldStatus.NOT_REQUIRED,
            HoldStatus.ALREADY_ATTEMPTED,
            HoldStatus.DEFERRED,
        ):
            logger.info(
                "mup.hold.skipped",
                extra={"order_id": order_gid, "trigger": trigger.value, "reason": outcome.reason},
            )
            return outcome

        # Claim the attempt before touching fulfillment orders so a racing trigger backs off.
        await self._shopify_api.add_tags(
            shop_domain=shop_domain,
            access_token=access_token,
            resource_gid=order_gid,
            tags=[TAG_HOLD_ATTEMPTED],
        )

        if outcome is None:
            to_hold, skipped = open_units(units)
            attempts = [
                await self._hold_unit(shop_domain=shop_domain, access_token=access_token, unit=unit)
                for unit in to_hold
            ]
            outcome = resolve_hold_outcome(attempts=attempts, skipped=skipped)

        if outcome.manual_required:
            await self.report_manual_hold(shop_domain=shop_domain, order_gid=order_gid, outcome=outcome)
        else:
            logger.info(
                "mup.hold.applied",
                extra={
                    "order_id": order_gid,
                    "trigger": trigger.value,
                    "held": outcome.success_count,
                    "total": len(units),
                },
            )
        return outcome

    async def _hold_unit(self, *, shop_domain: str, access_token: str, unit: FulfillmentUnit) -> HoldAttempt:
        try:
            new_status = await self._shopify_api.hold_fulfillment_order(
                shop_domain=shop_domain,
                access_token=access_token,
                fulfillment_order_id=unit.id,
                reason=self._hold_reason,
                reason_notes=HOLD_REASON_NOTES,
            )
        except ShopifyApiError as exc:
            logger.error(
                "mup.hold.unit_failed",
                extra={"fulfillment_order_id": unit.id, "error": str(exc)},
            )
            return HoldAttempt(fulfillment_order_id=unit.id, success=False, error=str(exc))
        return HoldAttempt(fulfillment_order_id=unit.id, success=True, status=new_status)

    async def report_manual_hold(self, *, shop_domain: str, order_gid: str, outcome: HoldOutcome) -> None:
        logger.error(
            "mup.hold.manual_required",
            extra={"shop_domain": shop_domain, "order_id": order_gid, "reason": outcome.reason},
        )
        if not self._alert_webhook_url:
            return
        alert = {
            "event": "mup.hold.manual_required",
            "shopDomain": shop_domain,
            "orderId": order_gid,
            "reason": outcome.reason,
            "attempts": [
                {
                    "fulfillmentOrderId": attempt.fulfillment_order_id,
                    "success": attempt.success,
                    "error": attempt.error,
                }
                for attempt in outcome.attempts
            ],
        }
        try:
            async with httpx.AsyncClient(timeout=self._request_timeout_seconds) as client:
                response = await client.post(self._alert_webhook_url, json=alert)
        except httpx.RequestError as exc:
            logger.error("mup.hold.alert_failed", extra={"order_id": order_gid, "error": str(exc)})
            return
        if response.status_code >= 400:
            logger.error(
                "mup.hold.alert_failed",
                extra={"order_id": order_gid, "status_code": response.status_code},
            )


class OrderComplianceService:
    def __init__(
        self,
        *,
        shopify_api: ShopifyApiClient,
        settings_resolver: SettingsResolver,
        scheduler: HoldScheduler,
        hold_service: FulfillmentHoldService,
        hold_delay_seconds: int,
    ) -> None:
        self._shopify_api = shopify_api
        self._settings_resolver = settings_resolver
        self._scheduler = scheduler
        self._hold_service = hold_service
        self._hold_delay_seconds = hold_delay_seconds

    async def handle_order_created(
        self,
        *,
        shop_domain: str,
        access_token: str,
        payload: dict[str, Any],
    ) -> OrderComplianceDecision:
        order = order_snapshot_from_webhook(payload)
        config = await self._settings_resolver.get(shop_domain)
        decision = evaluate_order(order, config)
        logger.info(
            "mup.order.evaluated",
            extra={
                "shop_domain": shop_domain,
                "order_id": order.order_id,
                "state": decision.state.value,
                "reason": decision.reason,
            },
        )
        if decision.state is not OrderComplianceState.FLAGGED_PENDING_HOLD:
            return decision

        if decision.tags_to_add:
            await self._shopify_api.add_tags(
                shop_domain=shop_domain,
                access_token=access_token,
                resource_gid=order.order_id,
                tags=list(decision.tags_to_add),
            )
        if decision.note:
            await self._shopify_api.update_order_note(
                shop_domain=shop_domain,
                access_token=access_token,
                order_gid=order.order_id,
                note=_merge_note(order.note, decision.note),
            )
        if decision.schedule_hold:
            await self._scheduler.schedule(
                delay_seconds=self._hold_delay_seconds,
                shop_domain=shop_domain,
                order_gid=order.order_id,
            )
        return decision

    async def handle_order_updated(
        self,
        *,
        shop_domain: str,
        access_token: str,
        payload: dict[str, Any],
    ) -> HoldOutcome | None:
        tags = parse_order_tags(payload.get("tags"))
        if not hold_pending(tags):
            return None
        return await self._hold_service.place_hold(
            shop_domain=shop_domain,
            access_token=access_token,
            order_gid=order_gid_from_payload(payload),
            trigger=HoldTrigger.ORDER_UPDATED,
        )

