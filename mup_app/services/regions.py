from __future__ import annotations

import re
from enum import Enum

SCOTTISH_POSTCODE_AREAS = frozenset(
    {"AB", "DD", "DG", "EH", "FK", "HS", "IV", "KA", "KW", "KY", "ML", "PA", "PH", "TD", "ZE"}
)
# Guildford, Gloucester and Guernsey share Glasgow's leading "G".
NON_SCOTTISH_G_AREAS = frozenset({"GU", "GL", "GY"})

_WHITESPACE_RE = re.compile(r"\s+")


class Region(str, Enum):
    SCOTLAND = "scotland"
    ENGLAND = "england"
    WALES = "wales"
    NORTHERN_IRELAND = "northern-ireland"
    UNSET = "unset"

    @classmethod
    def parse(cls, value: str | None) -> "Region":
        if not value:
            return cls.UNSET
        normalized = value.strip().lower().replace("_", "-").replace(" ", "-")
        for region in cls:
            if region.value == normalized:
                return region
        return cls.UNSET


def normalize_postcode(postcode: str | None) -> str:
    if not postcode:
        return ""
    return _WHITESPACE_RE.sub("", postcode).upper()


def is_scottish_postcode(postcode: str | None) -> bool:
    normalized = normalize_postcode(postcode)
    if not normalized:
        return False
    if normalized[:2] in SCOTTISH_POSTCODE_AREAS:
        return True
    if normalized[:2] in NON_SCOTTISH_G_AREAS:
        return False
    # Glasgow: a bare "G" area followed by the district number.
    return len(normalized) >= 2 and normalized[0] == "G" and normalized[1].isdigit()


def first_scottish_postcode(postcodes: list[str | None]) -> str | None:
    for postcode in postcodes:
        if is_scottish_postcode(postcode):
            return postcode.strip() if postcode else postcode
    return None
