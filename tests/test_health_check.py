from __future__ import annotations

from decimal import Decimal

from mup_app.services.health_check import DataStatus, analyze_product, analyze_variant, build_health_report


def test_variant_with_total_units_is_complete():
    health = analyze_variant({"id": "v1", "totalUnits": "2.1"})
    assert health.status is DataStatus.COMPLETE
    assert health.units == Decimal("2.1")


def test_variant_with_abv_and_volume_is_complete():
    health = analyze_variant({"id": "v1", "abvPercentage": "40", "volumeMl": "700"})
    assert health.status is DataStatus.COMPLETE
    assert health.units == Decimal("28")


def test_variant_with_only_one_of_abv_or_volume_is_partial():
    assert analyze_variant({"id": "v1", "abvPercentage": "40"}).status is DataStatus.PARTIAL
    assert analyze_variant({"id": "v1", "volumeMl": "700"}).status is DataStatus.PARTIAL


def test_variant_without_data_is_missing():
    health = analyze_variant({"id": "v1"})
    assert health.status is DataStatus.MISSING
    assert health.issues


def test_product_status_aggregates_variants():
    complete = {"id": "a", "totalUnits": "1"}
    missing = {"id": "b"}
    assert analyze_product({"id": "p", "variants": [complete]}).status is DataStatus.COMPLETE
    assert analyze_product({"id": "p", "variants": [missing]}).status is DataStatus.MISSING
    assert analyze_product({"id": "p", "variants": [complete, missing]}).status is DataStatus.PARTIAL
    assert analyze_product({"id": "p", "variants": []}).status is DataStatus.MISSING


def test_report_counts_and_lists_products_needing_attention():
    page = {
        "products": [
            {"id": "p1", "variants": [{"id": "v1", "totalUnits": "2"}]},
            {"id": "p2", "variants": [{"id": "v2", "abvPercentage": "5"}]},
            {"id": "p3", "variants": [{"id": "v3"}]},
        ],
        "hasNextPage": True,
        "endCursor": "cursor-1",
    }

    report = build_health_report(page)

    assert (report.total_products, report.complete, report.partial, report.missing) == (3, 1, 1, 1)
    assert [product.product_id for product in report.products_needing_attention] == ["p2", "p3"]
    assert report.has_next_page is True
    assert report.end_cursor == "cursor-1"
