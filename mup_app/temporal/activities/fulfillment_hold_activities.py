from __future__ import annotations

from typing import Any, Dict

import httpx
from temporalio import activity

from mup_app.config import settings
from mup_app.installations import lookup_admin_access_token
from mup_app.services.compliance_monitor import HoldOutcome, HoldStatus, HoldTrigger
from mup_app.services.order_compliance import FulfillmentHoldService
from mup_app.shopify_api import ShopifyApiClient, ShopifyApiError


def build_hold_service() -> FulfillmentHoldService:
    alert_url = settings.MUP_OPS_ALERT_WEBHOOK_URL
    return FulfillmentHoldService(
        shopify_api=ShopifyApiClient(),
        hold_reason=settings.MUP_HOLD_REASON,
        alert_webhook_url=str(alert_url) if alert_url else None,
        request_timeout_seconds=settings.SHOPIFY_REQUEST_TIMEOUT_SECONDS,
    )


def _serialize_outcome(outcome: HoldOutcome) -> Dict[str, Any]:
    return {
        "status": outcome.status.value,
        "reason": outcome.reason,
        "held": outcome.success_count,
    }


@activity.defn
async def place_mup_fulfillment_hold_activity(params: Dict[str, Any]) -> Dict[str, Any]:
    shop_domain = params["shop_domain"]
    order_gid = params["order_gid"]
    hold_service = build_hold_service()

    access_token = lookup_admin_access_token(shop_domain)
    if not access_token:
        outcome = HoldOutcome(status=HoldStatus.MANUAL_REQUIRED, reason="no_active_installation")
        await hold_service.report_manual_hold(shop_domain=shop_domain, order_gid=order_gid, outcome=outcome)
        return _serialize_outcome(outcome)

    try:
        outcome = await hold_service.place_hold(
            shop_domain=shop_domain,
            access_token=access_token,
            order_gid=order_gid,
            trigger=HoldTrigger.SCHEDULED,
        )
    except (ShopifyApiError, httpx.HTTPError) as exc:
        outcome = HoldOutcome(status=HoldStatus.MANUAL_REQUIRED, reason=str(exc))
        await hold_service.report_manual_hold(shop_domain=shop_domain, order_gid=order_gid, outcome=outcome)

    return _serialize_outcome(outcome)
