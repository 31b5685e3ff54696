"""
Unit of measure normalization

Bids spell the same unit many ways ("SF", "sq. ft.", "square feet").
Matching and variance math compare canonical tokens only.
"""
from typing import Optional

DEFAULT_UNIT = "ea"

UNIT_SYNONYMS = {
    # Area
    "sq ft": "sq ft",
    "sqft": "sq ft",
    "sq.ft": "sq ft",
    "sq.ft.": "sq ft",
    "sq. ft.": "sq ft",
    "sq. ft": "sq ft",
    "square feet": "sq ft",
    "square foot": "sq ft",
    "sf": "sq ft",
    "sq": "sq ft",
    "sy": "sq yd",
    "sq yd": "sq yd",
    "sq. yd.": "sq yd",
    "square yards": "sq yd",
    # Length
    "lf": "lf",
    "l.f.": "lf",
    "linear feet": "lf",
    "linear foot": "lf",
    "linear ft": "lf",
    "lin ft": "lf",
    "ln ft": "lf",
    "ln. ft.": "lf",
    # Count
    "ea": "ea",
    "each": "ea",
    "ea.": "ea",
    "eaches": "ea",
    "unit": "ea",
    "units": "ea",
    "pc": "ea",
    "pcs": "ea",
    # Volume
    "cy": "cy",
    "cubic yards": "cy",
    "cubic yard": "cy",
    "cu yd": "cy",
    "cu. yd.": "cy",
    "cf": "cf",
    "cubic feet": "cf",
    "cubic foot": "cf",
    "cu ft": "cf",
    "cu. ft.": "cf",
    # Lump sum / time
    "ls": "ls",
    "lump sum": "ls",
    "lot": "ls",
    "hr": "hr",
    "hrs": "hr",
    "hour": "hr",
    "hours": "hr",
}


def normalize_unit(unit: Optional[str]) -> str:
    """
    Map a free-text unit to its canonical token.

    Unknown units come back lower-cased and trimmed; None maps to "ea".
    Idempotent: every canonical token maps to itself.
    """
    if unit is None:
        return DEFAULT_UNIT

    normalized = " ".join(unit.lower().split())
    return UNIT_SYNONYMS.get(normalized, normalized)


def units_compatible(*units: Optional[str]) -> bool:
    """True when all given units normalize to the same token"""
    return len({normalize_unit(u) for u in units}) <= 1
