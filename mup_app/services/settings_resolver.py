from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from mup_app.services.mup_config import (
    DEBUG_KEY,
    ENFORCEMENT_ENABLED_KEY,
    GEOIP_ENABLED_KEY,
    LEVY_PRODUCT_KEY,
    MAXMIND_ACCOUNT_ID_KEY,
    MAXMIND_LICENSE_KEY_KEY,
    METAFIELD_NAMESPACE,
    MINIMUM_UNIT_PRICE_KEY,
    OVERRIDE_CODES_KEY,
    ShopMupConfig,
    normalize_variant_gid,
    parse_override_codes,
)
from mup_app.shopify_api import ShopifyApiClient, ShopifyApiError

logger = logging.getLogger(__name__)

# Keys whose save failure aborts the whole save; the rest only warn.
CRITICAL_METAFIELD_KEYS = frozenset(
    {LEVY_PRODUCT_KEY, MINIMUM_UNIT_PRICE_KEY, ENFORCEMENT_ENABLED_KEY, GEOIP_ENABLED_KEY}
)

AccessTokenLookup = Callable[[str], str | None]


class SettingsResolver(Protocol):
    async def get(self, shop_domain: str) -> ShopMupConfig: ...


@dataclass(frozen=True)
class MupSettingsUpdate:
    levy_variant_id: str
    minimum_unit_price: str
    enforcement_enabled: bool = True
    geoip_enabled: bool = False
    debug: bool = False
    maxmind_account_id: str = ""
    maxmind_license_key: str = ""
    override_codes: str = ""


@dataclass(frozen=True)
class SaveSettingsResult:
    config: ShopMupConfig
    warnings: tuple[str, ...] = ()


class SettingsSaveError(RuntimeError):
    pass


def _metafield(owner_id: str, key: str, type_: str, value: str) -> dict[str, str]:
    return {
        "ownerId": owner_id,
        "namespace": METAFIELD_NAMESPACE,
        "key": key,
        "type": type_,
        "value": value,
    }


def build_settings_metafields(owner_id: str, update: MupSettingsUpdate) -> list[dict[str, str]]:
    levy_variant_id = normalize_variant_gid(update.levy_variant_id) or ""
    metafields = [
        _metafield(owner_id, LEVY_PRODUCT_KEY, "single_line_text_field", levy_variant_id),
        _metafield(owner_id, MINIMUM_UNIT_PRICE_KEY, "number_decimal", update.minimum_unit_price.strip()),
        _metafield(owner_id, ENFORCEMENT_ENABLED_KEY, "boolean", str(update.enforcement_enabled).lower()),
        _metafield(owner_id, GEOIP_ENABLED_KEY, "boolean", str(update.geoip_enabled).lower()),
        _metafield(owner_id, DEBUG_KEY, "boolean", str(update.debug).lower()),
    ]
    if update.maxmind_account_id.strip():
        metafields.append(
            _metafield(owner_id, MAXMIND_ACCOUNT_ID_KEY, "single_line_text_field", update.maxmind_account_id.strip())
        )
    if update.maxmind_license_key.strip():
        metafields.append(
            _metafield(owner_id, MAXMIND_LICENSE_KEY_KEY, "single_line_text_field", update.maxmind_license_key.strip())
        )
    codes = parse_override_codes(update.override_codes)
    if codes:
        metafields.append(_metafield(owner_id, OVERRIDE_CODES_KEY, "multi_line_text_field", "\n".join(codes)))
    return metafields


def _error_metafield_key(error: dict[str, Any], metafields: list[dict[str, str]]) -> str | None:
    # userErrors report fields as ["metafields", "<index>", "value"].
    field = error.get("field") or []
    if len(field) < 2:
        return None
    try:
        index = int(field[1])
    except (TypeError, ValueError):
        return None
    if 0 <= index < len(metafields):
        return metafields[index]["key"]
    return None


class ShopifySettingsResolver:
    """Reads ShopMupConfig from shop metafields, with a short per-shop cache.

    Saving through this resolver drops the cached entry so the next read
    reflects the save. Any failure to read falls back to the disabled
    configuration.
    """

    def __init__(
        self,
        *,
        shopify_api: ShopifyApiClient,
        access_token_lookup: AccessTokenLookup,
        cache_ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._shopify_api = shopify_api
        self._access_token_lookup = access_token_lookup
        self._cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[float, ShopMupConfig]] = {}

    def invalidate(self, shop_domain: str | None = None) -> None:
        if shop_domain is None:
            self._cache.clear()
            return
        self._cache.pop(shop_domain, None)

    async def get(self, shop_domain: str) -> ShopMupConfig:
        cached = self._cache.get(shop_domain)
        now = self._clock()
        if cached is not None and now - cached[0] < self._cache_ttl_seconds:
            return cached[1]

        access_token = self._access_token_lookup(shop_domain)
        if not access_token:
            logger.warning("mup.settings.no_installation", extra={"shop_domain": shop_domain})
            return ShopMupConfig.disabled()

        try:
            _, values = await self._shopify_api.get_mup_metafields(
                shop_domain=shop_domain,
                access_token=access_token,
            )
        except (ShopifyApiError, httpx.HTTPError) as exc:
            logger.warning(
                "mup.settings.fetch_failed",
                extra={"shop_domain": shop_domain, "error": str(exc)},
            )
            return ShopMupConfig.disabled()

        config = ShopMupConfig.from_metafields(values)
        if self._cache_ttl_seconds > 0:
            self._cache[shop_domain] = (now, config)
        return config

    async def save(self, shop_domain: str, update: MupSettingsUpdate) -> SaveSettingsResult:
        access_token = self._access_token_lookup(shop_domain)
        if not access_token:
            raise SettingsSaveError(f"No active installation for {shop_domain}")

        shop_id, _ = await self._shopify_api.get_mup_metafields(
            shop_domain=shop_domain,
            access_token=access_token,
        )
        metafields = build_settings_metafields(shop_id, update)
        saved, user_errors = await self._shopify_api.set_shop_metafields(
            shop_domain=shop_domain,
            access_token=access_token,
            metafields=metafields,
        )
        self.invalidate(shop_domain)

        critical: list[str] = []
        warnings: list[str] = []
        for error in user_errors:
            key = _error_metafield_key(error, metafields)
            message = f"{key or 'metafield'}: {error.get('message')}"
            if key is None or key in CRITICAL_METAFIELD_KEYS:
                critical.append(message)
            else:
                warnings.append(message)

        if warnings:
            logger.warning(
                "mup.settings.optional_save_failed",
                extra={"shop_domain": shop_domain, "errors": warnings},
            )
        if critical:
            logger.error(
                "mup.settings.critical_save_failed",
                extra={"shop_domain": shop_domain, "errors": critical},
            )
            raise SettingsSaveError("Failed to save critical settings: " + "; ".join(critical))

        logger.info("mup.settings.saved", extra={"shop_domain": shop_domain, "metafields": len(saved)})
        values = {item["key"]: item["value"] for item in metafields}
        return SaveSettingsResult(config=ShopMupConfig.from_metafields(values), warnings=tuple(warnings))
