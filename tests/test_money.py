"""Tests for preset amount normalization."""

from decimal import Decimal

import pytest

from onramp.errors import InvalidSessionParametersError
from onramp.money import format_amount, normalize_amount, parse_amount


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("25", "25"),
        ("25.00", "25"),
        (25, "25"),
        (0.5, "0.5"),
        ("1E+2", "100"),
        (" 12.340 ", "12.34"),
        (Decimal("0.000001"), "0.000001"),
    ],
)
def test_normalize_amount(raw, expected):
    assert normalize_amount(raw, "preset_fiat_amount") == expected


@pytest.mark.parametrize("raw", ["abc", "", "0", "-1", "NaN", "Infinity", True])
def test_rejects_invalid_amounts(raw):
    with pytest.raises(InvalidSessionParametersError) as exc_info:
        parse_amount(raw, "preset_crypto_amount")
    assert exc_info.value.field == "preset_crypto_amount"


def test_rejects_excess_precision():
    with pytest.raises(InvalidSessionParametersError, match="fractional digits"):
        parse_amount("0." + "1" * 19, "preset_crypto_amount")


def test_format_keeps_integers_intact():
    assert format_amount(Decimal("1000")) == "1000"
