from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import ORJSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session
from temporalio.service import RPCError

from mup_app.config import settings
from mup_app.db import get_session, init_db
from mup_app.functions.cart_transform import run_cart_transform
from mup_app.functions.cart_validation import run_cart_validation
from mup_app.installations import find_active_installation, lookup_admin_access_token
from mup_app.models import ProcessedWebhookEvent, ShopInstallation
from mup_app.schemas import (
    HealthCheckRequest,
    HealthCheckResponse,
    InstallationResponse,
    LevyProductRequest,
    LevyProductResponse,
    MupSettingsRequest,
    MupSettingsResponse,
    OverrideCodesResponse,
    ProductHealthResponse,
    UpsertInstallationRequest,
    VariantDataItem,
    VariantDataResponse,
    VariantHealthResponse,
)
from mup_app.security import normalize_shop_domain, require_internal_api_token, verify_webhook_hmac
from mup_app.services.health_check import build_health_report
from mup_app.services.mup_config import LEVY_PRODUCT_KEY, METAFIELD_NAMESPACE, ShopMupConfig, normalize_variant_gid
from mup_app.services.order_compliance import FulfillmentHoldService, OrderComplianceService
from mup_app.services.settings_resolver import (
    MupSettingsUpdate,
    SettingsSaveError,
    ShopifySettingsResolver,
)
from mup_app.services.unit_pricing import alcohol_units, format_money
from mup_app.shopify_api import ShopifyApiClient, ShopifyApiError
from mup_app.temporal.scheduler import TemporalHoldScheduler

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Scotland MUP Compliance App", default_response_class=ORJSONResponse)
shopify_api = ShopifyApiClient()
settings_resolver = ShopifySettingsResolver(
    shopify_api=shopify_api,
    access_token_lookup=lookup_admin_access_token,
    cache_ttl_seconds=settings.MUP_SETTINGS_CACHE_TTL_SECONDS,
)
hold_scheduler = TemporalHoldScheduler(task_queue=settings.TEMPORAL_TASK_QUEUE)
hold_service = FulfillmentHoldService(
    shopify_api=shopify_api,
    hold_reason=settings.MUP_HOLD_REASON,
    alert_webhook_url=str(settings.MUP_OPS_ALERT_WEBHOOK_URL) if settings.MUP_OPS_ALERT_WEBHOOK_URL else None,
    request_timeout_seconds=settings.SHOPIFY_REQUEST_TIMEOUT_SECONDS,
)
order_compliance_service = OrderComplianceService(
    shopify_api=shopify_api,
    settings_resolver=settings_resolver,
    scheduler=hold_scheduler,
    hold_service=hold_service,
    hold_delay_seconds=settings.MUP_HOLD_DELAY_SECONDS,
)

REQUIRED_WEBHOOKS: tuple[tuple[str, str], ...] = (
    ("ORDERS_CREATE", "/webhooks/orders/create"),
    ("ORDERS_UPDATED", "/webhooks/orders/updated"),
    ("APP_UNINSTALLED", "/webhooks/app/uninstalled"),
)

# Storefront-facing routes are called from theme JavaScript on any origin.
PUBLIC_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Cache-Control": "no-cache, no-store, must-revalidate",
}


@app.on_event("startup")
def startup() -> None:
    init_db()


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.exception("mup.request.unhandled_error", extra={"path": request.url.path})
    return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})


@app.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


def _serialize_installation(installation: ShopInstallation) -> InstallationResponse:
    return InstallationResponse(
        shopDomain=installation.shop_domain,
        active=installation.uninstalled_at is None and bool(installation.admin_access_token),
        installedAt=installation.installed_at,
        updatedAt=installation.updated_at,
        uninstalledAt=installation.uninstalled_at,
    )


def _serialize_settings(
    shop_domain: str,
    config: ShopMupConfig,
    warnings: tuple[str, ...] = (),
) -> MupSettingsResponse:
    return MupSettingsResponse(
        shopDomain=shop_domain,
        levyVariantId=config.levy_variant_id,
        minimumUnitPrice=format_money(config.minimum_unit_price),
        enforcementEnabled=config.enforcement_enabled,
        active=config.is_active,
        geoipEnabled=config.geoip_enabled,
        hasGeoipCredentials=config.geoip_credentials is not None,
        debug=config.debug,
        overrideCodes=list(config.override_codes),
        warnings=list(warnings),
    )


async def _register_required_webhooks(*, shop_domain: str, admin_access_token: str) -> None:
    for topic, path in REQUIRED_WEBHOOKS:
        await shopify_api.register_webhook(
            shop_domain=shop_domain,
            access_token=admin_access_token,
            topic=topic,
            callback_url=f"{settings.app_base_url}{path}",
        )


def _resolve_active_installation(*, shop_domain: str, session: Session) -> ShopInstallation:
    normalized_shop = normalize_shop_domain(shop_domain)
    installation = find_active_installation(session, normalized_shop)
    if not installation or not installation.admin_access_token:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active Shopify installation found for shopDomain={normalized_shop}",
        )
    return installation


@app.get("/admin/installations", dependencies=[Depends(require_internal_api_token)])
def list_installations(session: Session = Depends(get_session)):
    installations = session.scalars(select(ShopInstallation).order_by(ShopInstallation.updated_at.desc())).all()
    return [_serialize_installation(installation) for installation in installations]


@app.put(
    "/admin/installations/{shop_domain}",
    response_model=InstallationResponse,
    dependencies=[Depends(require_internal_api_token)],
)
async def upsert_installation(
    shop_domain: str,
    payload: UpsertInstallationRequest,
    session: Session = Depends(get_session),
):
    normalized_shop = normalize_shop_domain(shop_domain)
    installation = session.scalars(
        select(ShopInstallation).where(ShopInstallation.shop_domain == normalized_shop)
    ).first()
    now = datetime.now(timezone.utc)
    if installation is None:
        installation = ShopInstallation(shop_domain=normalized_shop, admin_access_token=payload.adminAccessToken)
    else:
        installation.admin_access_token = payload.adminAccessToken
        installation.uninstalled_at = None
        installation.updated_at = now
    session.add(installation)
    session.commit()
    session.refresh(installation)
    settings_resolver.invalidate(normalized_shop)

    if payload.registerWebhooks:
        try:
            await _register_required_webhooks(
                shop_domain=normalized_shop,
                admin_access_token=payload.adminAccessToken,
            )
        except ShopifyApiError as exc:
            raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    logger.info("mup.installation.upserted", extra={"shop_domain": normalized_shop})
    return _serialize_installation(installation)


@app.get(
    "/v1/mup/settings",
    response_model=MupSettingsResponse,
    dependencies=[Depends(require_internal_api_token)],
)
async def get_mup_settings(shopDomain: str, session: Session = Depends(get_session)):
    installation = _resolve_active_installation(shop_domain=shopDomain, session=session)
    try:
        _, values = await shopify_api.get_mup_metafields(
            shop_domain=installation.shop_domain,
            access_token=installation.admin_access_token,
        )
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    return _serialize_settings(installation.shop_domain, ShopMupConfig.from_metafields(values))


@app.put(
    "/v1/mup/settings",
    response_model=MupSettingsResponse,
    dependencies=[Depends(require_internal_api_token)],
)
async def save_mup_settings(payload: MupSettingsRequest, session: Session = Depends(get_session)):
    installation = _resolve_active_installation(shop_domain=payload.shopDomain, session=session)
    update = MupSettingsUpdate(
        levy_variant_id=payload.levyVariantId,
        minimum_unit_price=payload.minimumUnitPrice,
        enforcement_enabled=payload.enforcementEnabled,
        geoip_enabled=payload.geoipEnabled,
        debug=payload.debug,
        maxmind_account_id=payload.maxmindAccountId,
        maxmind_license_key=payload.maxmindLicenseKey,
        override_codes=payload.overrideCodes,
    )
    try:
        result = await settings_resolver.save(installation.shop_domain, update)
    except SettingsSaveError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    return _serialize_settings(installation.shop_domain, result.config, result.warnings)


@app.post(
    "/v1/mup/levy-product",
    response_model=LevyProductResponse,
    dependencies=[Depends(require_internal_api_token)],
)
async def create_levy_product(payload: LevyProductRequest, session: Session = Depends(get_session)):
    installation = _resolve_active_installation(shop_domain=payload.shopDomain, session=session)
    shop_domain = installation.shop_domain
    access_token = installation.admin_access_token
    try:
        product = await shopify_api.create_levy_product(shop_domain=shop_domain, access_token=access_token)
        shop_id, _ = await shopify_api.get_mup_metafields(shop_domain=shop_domain, access_token=access_token)
        _, user_errors = await shopify_api.set_shop_metafields(
            shop_domain=shop_domain,
            access_token=access_token,
            metafields=[
                {
                    "ownerId": shop_id,
                    "namespace": METAFIELD_NAMESPACE,
                    "key": LEVY_PRODUCT_KEY,
                    "type": "single_line_text_field",
                    "value": product["variantGid"],
                }
            ],
        )
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    finally:
        settings_resolver.invalidate(shop_domain)

    if user_errors:
        messages = "; ".join(str(error.get("message")) for error in user_errors)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Levy product created but saving {LEVY_PRODUCT_KEY} failed: {messages}",
        )

    logger.info(
        "mup.levy_product.created",
        extra={"shop_domain": shop_domain, "variant_id": product["variantGid"]},
    )
    return LevyProductResponse(shopDomain=shop_domain, **product)


@app.post(
    "/v1/mup/health-check",
    response_model=HealthCheckResponse,
    dependencies=[Depends(require_internal_api_token)],
)
async def run_health_check(payload: HealthCheckRequest, session: Session = Depends(get_session)):
    installation = _resolve_active_installation(shop_domain=payload.shopDomain, session=session)
    try:
        page = await shopify_api.list_products_alcohol_data(
            shop_domain=installation.shop_domain,
            access_token=installation.admin_access_token,
            limit=payload.limit,
            cursor=payload.cursor,
        )
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    report = build_health_report(page)
    return HealthCheckResponse(
        shopDomain=installation.shop_domain,
        totalProducts=report.total_products,
        complete=report.complete,
        partial=report.partial,
        missing=report.missing,
        productsNeedingAttention=[
            ProductHealthResponse(
                id=product.product_id,
                title=product.title,
                handle=product.handle,
                status=product.status.value,
                issues=list(product.issues),
                variants=[
                    VariantHealthResponse(
                        id=variant.variant_id,
                        title=variant.title,
                        sku=variant.sku,
                        status=variant.status.value,
                        units=None if variant.units is None else str(variant.units),
                        issues=list(variant.issues),
                    )
                    for variant in product.variants
                ],
            )
            for product in report.products_needing_attention
        ],
        hasNextPage=report.has_next_page,
        endCursor=report.end_cursor,
    )


def _public_response(content: dict[str, Any], status_code: int = 200) -> ORJSONResponse:
    return ORJSONResponse(status_code=status_code, content=content, headers=PUBLIC_HEADERS)


@app.options("/apps/mup/override-codes.json")
@app.options("/apps/mup/variant-data")
def public_preflight() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=PUBLIC_HEADERS)


@app.get("/apps/mup/override-codes.json")
async def public_override_codes(shop: str = ""):
    try:
        shop_domain = normalize_shop_domain(shop)
    except HTTPException:
        return _public_response(OverrideCodesResponse(success=False).model_dump())

    if not lookup_admin_access_token(shop_domain):
        return _public_response(OverrideCodesResponse(success=False).model_dump())

    config = await settings_resolver.get(shop_domain)
    return _public_response(OverrideCodesResponse(success=True, codes=list(config.override_codes)).model_dump())


@app.get("/apps/mup/variant-data")
async def public_variant_data(shop: str = "", variantId: str = ""):
    variant_gid = normalize_variant_gid(variantId)
    if not variant_gid:
        return _public_response(VariantDataResponse(success=False).model_dump(), status_code=400)
    try:
        shop_domain = normalize_shop_domain(shop)
    except HTTPException:
        return _public_response(VariantDataResponse(success=False).model_dump(), status_code=400)

    access_token = lookup_admin_access_token(shop_domain)
    if not access_token:
        return _public_response(VariantDataResponse(success=False).model_dump(), status_code=404)

    try:
        variant = await shopify_api.get_variant_alcohol_data(
            shop_domain=shop_domain,
            access_token=access_token,
            variant_gid=variant_gid,
        )
    except (ShopifyApiError, httpx.HTTPError) as exc:
        logger.warning(
            "mup.variant_data.fetch_failed",
            extra={"shop_domain": shop_domain, "variant_id": variant_gid, "error": str(exc)},
        )
        return _public_response(VariantDataResponse(success=False).model_dump(), status_code=502)
    if variant is None:
        return _public_response(VariantDataResponse(success=False).model_dump(), status_code=404)

    units = alcohol_units(
        total_units=variant.get("totalUnits"),
        abv_percentage=variant.get("abvPercentage"),
        volume_ml=variant.get("volumeMl"),
    )
    item = VariantDataItem(id=str(variant.get("id") or variant_gid), price=variant.get("price"), units=str(units))
    return _public_response(VariantDataResponse(success=True, variant=item).model_dump())


async def _read_function_input(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Function input must be a JSON object",
        )
    return payload


@app.post("/functions/cart-transform", dependencies=[Depends(require_internal_api_token)])
async def cart_transform_function(request: Request):
    return run_cart_transform(await _read_function_input(request))


@app.post("/functions/cart-validation", dependencies=[Depends(require_internal_api_token)])
async def cart_validation_function(request: Request):
    return run_cart_validation(await _read_function_input(request))


def _verified_webhook_shop(request: Request, body: bytes) -> str:
    if not verify_webhook_hmac(body=body, supplied_hmac=request.headers.get("x-shopify-hmac-sha256")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook HMAC")

    shop_header = request.headers.get("x-shopify-shop-domain")
    if not shop_header:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing x-shopify-shop-domain header",
        )
    return normalize_shop_domain(shop_header)


def _webhook_event_id(request: Request) -> str:
    event_id = request.headers.get("x-shopify-event-id")
    if not event_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing x-shopify-event-id header",
        )
    return event_id


def _is_duplicate_event(*, session: Session, shop_domain: str, topic: str, event_id: str) -> bool:
    existing = session.scalars(
        select(ProcessedWebhookEvent).where(
            ProcessedWebhookEvent.shop_domain == shop_domain,
            ProcessedWebhookEvent.topic == topic,
            ProcessedWebhookEvent.event_id == event_id,
        )
    ).first()
    return existing is not None


def _record_event(*, session: Session, shop_domain: str, topic: str, event_id: str, event_status: str) -> None:
    session.add(
        ProcessedWebhookEvent(
            shop_domain=shop_domain,
            topic=topic,
            event_id=event_id,
            status=event_status,
        )
    )
    session.commit()


async def _webhook_json(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook payload must be a JSON object",
        )
    return payload


@app.post("/webhooks/orders/create")
async def orders_create_webhook(request: Request, session: Session = Depends(get_session)):
    body = await request.body()
    shop_domain = _verified_webhook_shop(request, body)
    event_id = _webhook_event_id(request)
    topic = "ORDERS_CREATE"
    if _is_duplicate_event(session=session, shop_domain=shop_domain, topic=topic, event_id=event_id):
        return {"received": True, "duplicate": True}

    payload = await _webhook_json(request)
    installation = find_active_installation(session, shop_domain)
    if not installation or not installation.admin_access_token:
        _record_event(
            session=session,
            shop_domain=shop_domain,
            topic=topic,
            event_id=event_id,
            event_status="ignored_no_installation",
        )
        return {"received": True, "ignored": True, "reason": "No active installation for shop"}

    try:
        decision = await order_compliance_service.handle_order_created(
            shop_domain=shop_domain,
            access_token=installation.admin_access_token,
            payload=payload,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (ShopifyApiError, httpx.HTTPError, RPCError) as exc:
        # Leave the event unrecorded so Shopify redelivers it.
        logger.warning(
            "mup.order.create_side_effect_failed",
            extra={"shop_domain": shop_domain, "event_id": event_id, "error": str(exc)},
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to apply order compliance actions",
        ) from exc

    _record_event(
        session=session,
        shop_domain=shop_domain,
        topic=topic,
        event_id=event_id,
        event_status=decision.state.value,
    )
    return {"received": True, "state": decision.state.value, "reason": decision.reason}


@app.post("/webhooks/orders/updated")
async def orders_updated_webhook(request: Request, session: Session = Depends(get_session)):
    body = await request.body()
    shop_domain = _verified_webhook_shop(request, body)
    event_id = _webhook_event_id(request)
    topic = "ORDERS_UPDATED"
    if _is_duplicate_event(session=session, shop_domain=shop_domain, topic=topic, event_id=event_id):
        return {"received": True, "duplicate": True}

    payload = await _webhook_json(request)
    installation = find_active_installation(session, shop_domain)
    if not installation or not installation.admin_access_token:
        _record_event(
            session=session,
            shop_domain=shop_domain,
            topic=topic,
            event_id=event_id,
            event_status="ignored_no_installation",
        )
        return {"received": True, "ignored": True, "reason": "No active installation for shop"}

    try:
        outcome = await order_compliance_service.handle_order_updated(
            shop_domain=shop_domain,
            access_token=installation.admin_access_token,
            payload=payload,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (ShopifyApiError, httpx.HTTPError) as exc:
        # The scheduled hold still runs; this trigger only gets there sooner.
        logger.warning(
            "mup.order.update_hold_failed",
            extra={"shop_domain": shop_domain, "event_id": event_id, "error": str(exc)},
        )
        _record_event(
            session=session,
            shop_domain=shop_domain,
            topic=topic,
            event_id=event_id,
            event_status="hold_error",
        )
        return {"received": True, "hold": "error"}

    hold_status = "not_pending" if outcome is None else outcome.status.value
    _record_event(
        session=session,
        shop_domain=shop_domain,
        topic=topic,
        event_id=event_id,
        event_status=hold_status,
    )
    return {"received": True, "hold": hold_status}


@app.post("/webhooks/app/uninstalled")
async def app_uninstalled_webhook(request: Request, session: Session = Depends(get_session)):
    body = await request.body()
    shop_domain = _verified_webhook_shop(request, body)

    installation = session.scalars(
        select(ShopInstallation).where(ShopInstallation.shop_domain == shop_domain)
    ).first()
    if installation:
        installation.uninstalled_at = datetime.now(timezone.utc)
        installation.admin_access_token = ""
        installation.updated_at = datetime.now(timezone.utc)
        session.add(installation)
        session.commit()
    settings_resolver.invalidate(shop_domain)

    logger.info("mup.installation.uninstalled", extra={"shop_domain": shop_domain})
    return {"received": True}
