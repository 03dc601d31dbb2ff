"""Catalog scan for variants missing the alcohol data MUP needs."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from mup_app.services.unit_pricing import alcohol_units, to_decimal


class DataStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    MISSING = "missing"


@dataclass(frozen=True)
class VariantHealth:
    variant_id: str
    title: str | None
    sku: str | None
    status: DataStatus
    units: Decimal | None
    issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProductHealth:
    product_id: str
    title: str | None
    handle: str | None
    status: DataStatus
    variants: tuple[VariantHealth, ...]
    issues: tuple[str, ...] = ()


@dataclass
class HealthReport:
    total_products: int = 0
    complete: int = 0
    partial: int = 0
    missing: int = 0
    products_needing_attention: list[ProductHealth] = field(default_factory=list)
    has_next_page: bool = False
    end_cursor: str | None = None


def analyze_variant(variant: dict[str, Any]) -> VariantHealth:
    variant_id = str(variant.get("id") or "")
    title = variant.get("title")
    sku = variant.get("sku")
    if to_decimal(variant.get("totalUnits")) is not None:
        return VariantHealth(
            variant_id=variant_id,
            title=title,
            sku=sku,
            status=DataStatus.COMPLETE,
            units=alcohol_units(total_units=variant.get("totalUnits")),
        )

    has_abv = to_decimal(variant.get("abvPercentage")) is not None
    has_volume = to_decimal(variant.get("volumeMl")) is not None
    if has_abv and has_volume:
        return VariantHealth(
            variant_id=variant_id,
            title=title,
            sku=sku,
            status=DataStatus.COMPLETE,
            units=alcohol_units(
                abv_percentage=variant.get("abvPercentage"),
                volume_ml=variant.get("volumeMl"),
            ),
        )
    if has_abv or has_volume:
        return VariantHealth(
            variant_id=variant_id,
            title=title,
            sku=sku,
            status=DataStatus.PARTIAL,
            units=None,
            issues=("Missing ABV% or volume data for unit calculation",),
        )
    return VariantHealth(
        variant_id=variant_id,
        title=title,
        sku=sku,
        status=DataStatus.MISSING,
        units=None,
        issues=("No alcohol unit data found",),
    )


def analyze_product(product: dict[str, Any]) -> ProductHealth:
    variants = tuple(analyze_variant(variant) for variant in product.get("variants") or [])
    statuses = {variant.status for variant in variants}
    if statuses == {DataStatus.COMPLETE}:
        status = DataStatus.COMPLETE
        issues: tuple[str, ...] = ()
    elif not statuses or statuses == {DataStatus.MISSING}:
        status = DataStatus.MISSING
        issues = ("No alcohol unit data found for any variants",)
    else:
        status = DataStatus.PARTIAL
        issues = ("Some variants missing alcohol unit data",)
    return ProductHealth(
        product_id=str(product.get("id") or ""),
        title=product.get("title"),
        handle=product.get("handle"),
        status=status,
        variants=variants,
        issues=issues,
    )


def build_health_report(page: dict[str, Any]) -> HealthReport:
    report = HealthReport(
        has_next_page=bool(page.get("hasNextPage")),
        end_cursor=page.get("endCursor"),
    )
    for product in page.get("products") or []:
        health = analyze_product(product)
        report.total_products += 1
        if health.status is DataStatus.COMPLETE:
            report.complete += 1
            continue
        if health.status is DataStatus.PARTIAL:
            report.partial += 1
        else:
            report.missing += 1
        report.products_needing_attention.append(health)
    return report
