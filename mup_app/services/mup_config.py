from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal

from mup_app.services.unit_pricing import DEFAULT_MINIMUM_UNIT_PRICE, ZERO, to_decimal

logger = logging.getLogger(__name__)

METAFIELD_NAMESPACE = "custom"

LEVY_PRODUCT_KEY = "mup_levy_product"
MINIMUM_UNIT_PRICE_KEY = "minimum_unit_price"
ENFORCEMENT_ENABLED_KEY = "mup_enforcement_enabled"
DEBUG_KEY = "mup_debug"
GEOIP_ENABLED_KEY = "mup_geoip_enabled"
MAXMIND_ACCOUNT_ID_KEY = "mup_maxmind_account_id"
MAXMIND_LICENSE_KEY_KEY = "mup_maxmind_license_key"
OVERRIDE_CODES_KEY = "mup_override_codes"

MUP_METAFIELD_KEYS: tuple[str, ...] = (
    LEVY_PRODUCT_KEY,
    MINIMUM_UNIT_PRICE_KEY,
    ENFORCEMENT_ENABLED_KEY,
    DEBUG_KEY,
    GEOIP_ENABLED_KEY,
    MAXMIND_ACCOUNT_ID_KEY,
    MAXMIND_LICENSE_KEY_KEY,
    OVERRIDE_CODES_KEY,
)

_VARIANT_GID_PREFIX = "gid://shopify/ProductVariant/"
_OVERRIDE_CODE_SPLIT_RE = re.compile(r"[,\n]+")


def parse_override_codes(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    codes: list[str] = []
    for item in _OVERRIDE_CODE_SPLIT_RE.split(raw):
        code = item.strip().upper()
        if code and code not in codes:
            codes.append(code)
    return tuple(codes)


def normalize_variant_gid(variant_id: str | None) -> str | None:
    if variant_id is None:
        return None
    cleaned = variant_id.strip()
    if not cleaned:
        return None
    if cleaned.startswith("gid://"):
        return cleaned
    return f"{_VARIANT_GID_PREFIX}{cleaned}"


def _parse_flag(raw: str | None) -> bool:
    return (raw or "").strip().lower() in {"true", "1"}


@dataclass(frozen=True)
class GeoIpCredentials:
    account_id: str
    license_key: str


@dataclass(frozen=True)
class ShopMupConfig:
    minimum_unit_price: Decimal = DEFAULT_MINIMUM_UNIT_PRICE
    enforcement_enabled: bool = False
    levy_variant_id: str | None = None
    debug: bool = False
    override_codes: tuple[str, ...] = ()
    geoip_enabled: bool = False
    geoip_credentials: GeoIpCredentials | None = field(default=None, repr=False)

    @classmethod
    def disabled(cls) -> "ShopMupConfig":
        return cls()

    @property
    def is_active(self) -> bool:
        """Levy and price enforcement only run with enforcement on and a levy product set."""
        return self.enforcement_enabled and self.levy_variant_id is not None

    def is_override_code(self, code: str | None) -> bool:
        if not code:
            return False
        return code.strip().upper() in self.override_codes

    @classmethod
    def from_metafields(cls, values: Mapping[str, str | None]) -> "ShopMupConfig":
        """Build configuration from ``custom.*`` shop metafield values keyed by metafield key."""
        minimum_unit_price = DEFAULT_MINIMUM_UNIT_PRICE
        raw_price = values.get(MINIMUM_UNIT_PRICE_KEY)
        if raw_price not in (None, ""):
            parsed = to_decimal(raw_price)
            if parsed is None or parsed <= ZERO:
                logger.warning(
                    "mup.config.invalid_minimum_unit_price",
                    extra={"minimum_unit_price": raw_price},
                )
            else:
                minimum_unit_price = parsed

        account_id = (values.get(MAXMIND_ACCOUNT_ID_KEY) or "").strip()
        license_key = (values.get(MAXMIND_LICENSE_KEY_KEY) or "").strip()
        credentials = None
        if account_id and license_key:
            credentials = GeoIpCredentials(account_id=account_id, license_key=license_key)

        return cls(
            minimum_unit_price=minimum_unit_price,
            enforcement_enabled=_parse_flag(values.get(ENFORCEMENT_ENABLED_KEY)),
            levy_variant_id=normalize_variant_gid(values.get(LEVY_PRODUCT_KEY)),
            debug=_parse_flag(values.get(DEBUG_KEY)),
            override_codes=parse_override_codes(values.get(OVERRIDE_CODES_KEY)),
            geoip_enabled=_parse_flag(values.get(GEOIP_ENABLED_KEY)),
            geoip_credentials=credentials,
        )
