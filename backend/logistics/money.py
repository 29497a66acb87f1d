"""
Money parsing and rounding for the two order currencies.

USD amounts are Decimals rounded half-up to cents. LBP amounts are whole
pounds (int). Two families of helpers exist:

- parse_usd / parse_lbp: strict, used at the request boundary. Bad input
  raises ValidationError naming the field.
- coerce_usd / coerce_lbp: lenient, used by the amount computation engine.
  Bad input becomes zero; these never raise.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .validation import ValidationError

CENT = Decimal("0.01")
ZERO_USD = Decimal("0.00")

# Largest amount accepted at the boundary (per field, per currency)
MAX_USD = Decimal("99999999.99")
MAX_LBP = 999_999_999_999


def round_usd(value: Decimal | int | float) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_lbp(value: Decimal | int | float) -> int:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _to_decimal(value: Any) -> Decimal | None:
    """Best-effort conversion; None when the value is not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, (int, float)):
        dec = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        if not cleaned:
            return None
        try:
            dec = Decimal(cleaned)
        except InvalidOperation:
            return None
    else:
        return None

    if not dec.is_finite():
        return None
    return dec


def coerce_usd(value: Any) -> Decimal:
    dec = _to_decimal(value)
    if dec is None or abs(dec) > MAX_USD:
        return ZERO_USD
    return round_usd(dec)


def coerce_lbp(value: Any) -> int:
    dec = _to_decimal(value)
    if dec is None or abs(dec) > MAX_LBP:
        return 0
    return round_lbp(dec)


def _parse(value: Any, field: str, limit: Decimal | int) -> Decimal:
    if value is None or (isinstance(value, str) and not value.strip()):
        return Decimal("0")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    dec = _to_decimal(value)
    if dec is None:
        raise ValidationError(f"{field} must be a number")
    if dec < 0:
        raise ValidationError(f"{field} must be >= 0")
    if dec > limit:
        raise ValidationError(f"{field} cannot exceed {limit}")
    return dec


def parse_usd(value: Any, field: str) -> Decimal:
    return round_usd(_parse(value, field, MAX_USD))


def parse_lbp(value: Any, field: str) -> int:
    return round_lbp(_parse(value, field, MAX_LBP))


def usd_to_json(value: Decimal | None) -> float:
    """JSON rendering for USD figures (2 dp float)."""
    if value is None:
        return 0.0
    return float(round_usd(value))
