"""Preset amount helpers using Decimal precision."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from .errors import InvalidSessionParametersError


MAX_FRACTION_DIGITS = 18


def parse_amount(value: Decimal | float | int | str, field_name: str) -> Decimal:
    """Parse a preset amount, rejecting non-numeric and non-positive input."""
    if isinstance(value, bool):
        raise InvalidSessionParametersError(field_name, "must be a number")
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidSessionParametersError(field_name, f"not a number: {value!r}") from None
    if not dec.is_finite():
        raise InvalidSessionParametersError(field_name, "must be finite")
    if dec <= 0:
        raise InvalidSessionParametersError(field_name, "must be positive")
    if -dec.as_tuple().exponent > MAX_FRACTION_DIGITS:
        raise InvalidSessionParametersError(
            field_name, f"more than {MAX_FRACTION_DIGITS} fractional digits"
        )
    return dec


def format_amount(value: Decimal) -> str:
    """Render an amount without exponent or trailing zeros ("25.00" -> "25")."""
    text = format(value.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def normalize_amount(value: Decimal | float | int | str, field_name: str) -> str:
    """Parse and render a preset amount in its canonical query form."""
    return format_amount(parse_amount(value, field_name))
