import pytest

from packages.domain.bid_comparison.units import UNIT_SYNONYMS, normalize_unit, units_compatible


@pytest.mark.parametrize("raw", ["sqft", "SF", "sq. ft.", "Square Feet", "sq ft", "  sq.ft  "])
def test_square_feet_synonyms_share_one_token(raw):
    assert normalize_unit(raw) == "sq ft"


@pytest.mark.parametrize("raw", ["each", "ea.", "unit", "EA", "pcs"])
def test_each_synonyms(raw):
    assert normalize_unit(raw) == "ea"


def test_none_maps_to_each():
    assert normalize_unit(None) == "ea"


def test_unknown_unit_is_lowercased_and_trimmed():
    assert normalize_unit("  Pallets ") == "pallets"
    assert normalize_unit("Bundle  of   10") == "bundle of 10"


@pytest.mark.parametrize("raw", list(UNIT_SYNONYMS) + ["Pallets", "", "  X  ", "sq. ft."])
def test_normalization_is_idempotent(raw):
    once = normalize_unit(raw)
    assert normalize_unit(once) == once


def test_units_compatible():
    assert units_compatible("LF", "linear feet", "lin ft")
    assert units_compatible(None, "each")
    assert not units_compatible("LF", "SF")
    assert units_compatible()
