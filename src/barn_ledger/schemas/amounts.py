"""
Monetary amount helpers (SSOT for rounding).

Every persisted amount goes through round2(): quantized to CURRENCY_PRECISION
with ROUND_HALF_UP, which on Decimal rounds half away from zero for both
signs. A tiny epsilon toward the sign absorbs binary float noise from
upstream JSON (e.g. 1.005 arriving as 1.00499999...).

Splitting Strategy (SSOT):
- split_evenly() divides in whole cents, the last part absorbs the remainder,
  so the parts always sum exactly to the input.
"""

from __future__ import annotations

import math
import re
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CURRENCY_PRECISION = Decimal("0.01")
ROUNDING_EPSILON = Decimal("0.0000001")
ZERO = Decimal("0.00")

_NUMERIC_NOISE = re.compile(r"[\s$€£¥,]|USD|EUR|GBP|CAD", re.IGNORECASE)


class AmountValidationError(ValueError):
    """Raised when a value cannot be used as a monetary amount."""

    pass


def to_decimal(value: Any) -> Decimal | None:
    """Coerce a raw payload value to Decimal.

    Accepts Decimal, int, float and numeric-looking strings ("$1,200.50",
    "320.27 GBP"). Booleans, non-numeric strings, NaN and infinities
    return None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return Decimal(str(value))
    if isinstance(value, str):
        cleaned = _NUMERIC_NOISE.sub("", value.strip())
        if not cleaned:
            return None
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            return None
        return result if result.is_finite() else None
    return None


def round2(value: Decimal | float | int | str) -> Decimal:
    """Round to 2 decimals, half away from zero.

    round2(round2(x)) == round2(x) for every x.

    Raises:
        AmountValidationError: If value is not numeric
    """
    amount = to_decimal(value)
    if amount is None:
        raise AmountValidationError(f"Invalid amount: {value!r}")
    nudged = amount + ROUNDING_EPSILON if amount >= 0 else amount - ROUNDING_EPSILON
    result = nudged.quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)
    # Normalize -0.00
    return result if result != 0 else ZERO


def non_negative_usd(value: Decimal | float | int | str | None) -> Decimal:
    """Persistable line-item amount: finite, rounded, never negative."""
    amount = to_decimal(value)
    if amount is None:
        return ZERO
    rounded = round2(amount)
    return rounded if rounded > 0 else ZERO


def sum_amounts(amounts: list[Decimal]) -> Decimal:
    """Rounded sum of already-rounded amounts."""
    return round2(sum(amounts, ZERO))


def split_evenly(amount: Decimal, parts: int) -> list[Decimal]:
    """Split an amount into equal cent shares; the last share takes the remainder.

    >>> split_evenly(Decimal("100.01"), 2)
    [Decimal('50.00'), Decimal('50.01')]
    """
    if parts < 1:
        raise AmountValidationError(f"Cannot split into {parts} parts")
    total = round2(amount)
    share = (total / parts).quantize(CURRENCY_PRECISION, rounding=ROUND_DOWN)
    shares = [share] * (parts - 1)
    shares.append(total - share * (parts - 1))
    return shares


def to_json_number(value: Decimal | None) -> float | None:
    """Serialize an amount for the extracted-data JSON blob."""
    if value is None:
        return None
    return float(value)
