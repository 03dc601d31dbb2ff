from __future__ import annotations

from decimal import Decimal

from mup_app.services.mup_config import (
    ShopMupConfig,
    normalize_variant_gid,
    parse_override_codes,
)


def test_missing_configuration_is_disabled():
    config = ShopMupConfig.from_metafields({})
    assert config == ShopMupConfig.disabled()
    assert config.enforcement_enabled is False
    assert config.levy_variant_id is None
    assert config.minimum_unit_price == Decimal("0.65")
    assert config.is_active is False


def test_full_configuration_is_parsed():
    config = ShopMupConfig.from_metafields(
        {
            "mup_levy_product": "4455",
            "minimum_unit_price": "0.70",
            "mup_enforcement_enabled": "true",
            "mup_debug": "1",
            "mup_geoip_enabled": "false",
            "mup_maxmind_account_id": "123",
            "mup_maxmind_license_key": "secret",
            "mup_override_codes": "staff50, vip\nStaff50",
        }
    )
    assert config.levy_variant_id == "gid://shopify/ProductVariant/4455"
    assert config.minimum_unit_price == Decimal("0.70")
    assert config.enforcement_enabled is True
    assert config.debug is True
    assert config.geoip_enabled is False
    assert config.geoip_credentials is not None
    assert config.override_codes == ("STAFF50", "VIP")
    assert config.is_active is True


def test_invalid_minimum_unit_price_falls_back_to_default():
    for raw in ("abc", "0", "-0.5"):
        config = ShopMupConfig.from_metafields({"minimum_unit_price": raw})
        assert config.minimum_unit_price == Decimal("0.65")


def test_enforcement_requires_explicit_true():
    assert ShopMupConfig.from_metafields({"mup_enforcement_enabled": "yes"}).enforcement_enabled is False
    assert ShopMupConfig.from_metafields({"mup_enforcement_enabled": "TRUE"}).enforcement_enabled is True


def test_override_code_match_is_case_insensitive():
    config = ShopMupConfig(override_codes=("STAFF50",))
    assert config.is_override_code("staff50")
    assert config.is_override_code(" Staff50 ")
    assert not config.is_override_code("STAFF5")
    assert not config.is_override_code(None)


def test_parse_override_codes_dedupes_and_uppercases():
    assert parse_override_codes("a,b\n\nA, c") == ("A", "B", "C")
    assert parse_override_codes(None) == ()


def test_normalize_variant_gid():
    assert normalize_variant_gid("12") == "gid://shopify/ProductVariant/12"
    assert normalize_variant_gid("gid://shopify/ProductVariant/12") == "gid://shopify/ProductVariant/12"
    assert normalize_variant_gid("  ") is None
    assert normalize_variant_gid(None) is None
