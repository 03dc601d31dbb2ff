from __future__ import annotations

import pytest

from mup_app.services.regions import (
    SCOTTISH_POSTCODE_AREAS,
    Region,
    first_scottish_postcode,
    is_scottish_postcode,
    normalize_postcode,
)


@pytest.mark.parametrize("area", sorted(SCOTTISH_POSTCODE_AREAS))
def test_every_scottish_area_is_recognized(area):
    assert is_scottish_postcode(f"{area}1 1AA")


@pytest.mark.parametrize("district", range(1, 10))
def test_every_single_digit_glasgow_district_is_scottish(district):
    assert is_scottish_postcode(f"G{district} 1AA")
    assert is_scottish_postcode(f"g{district}1aa")


@pytest.mark.parametrize("postcode", ["G12 8QQ", "g2 4ab", " G40  1AT ", "G81 1AA"])
def test_glasgow_district_numbers_are_scottish(postcode):
    assert is_scottish_postcode(postcode)


@pytest.mark.parametrize(
    "postcode",
    ["GU1 1AA", "GL50 1AA", "GY1 1AA", "gu21 4xx", "GX1 1AA", "GA1 1AA", "GG1 1AA", "GB", "G-1 1AA"],
)
def test_g_not_followed_by_a_district_number_is_not_scottish(postcode):
    assert not is_scottish_postcode(postcode)


@pytest.mark.parametrize("postcode", ["SW1A 1AA", "M1 1AE", "CF10 1AA", "BT1 1AA", "", None, "G"])
def test_non_scottish_and_empty_postcodes(postcode):
    assert not is_scottish_postcode(postcode)


def test_postcodes_are_case_and_whitespace_insensitive():
    assert normalize_postcode(" eh1  1aa ") == "EH11AA"
    assert is_scottish_postcode("eh11aa")


def test_first_scottish_postcode_skips_non_scottish_entries():
    assert first_scottish_postcode(["SW1A 1AA", None, " KY16 9AJ "]) == "KY16 9AJ"
    assert first_scottish_postcode(["SW1A 1AA", "GU1 1AA"]) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("scotland", Region.SCOTLAND),
        ("Scotland", Region.SCOTLAND),
        ("england", Region.ENGLAND),
        ("wales", Region.WALES),
        ("northern-ireland", Region.NORTHERN_IRELAND),
        ("Northern Ireland", Region.NORTHERN_IRELAND),
        ("", Region.UNSET),
        (None, Region.UNSET),
        ("atlantis", Region.UNSET),
    ],
)
def test_region_parse(raw, expected):
    assert Region.parse(raw) is expected
