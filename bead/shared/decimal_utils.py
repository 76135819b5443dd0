"""Exact arithmetic helpers for amounts, rates and ratios.

Ledger quantities are integers in minor units. Rates (BEAD per ADA, payout
multipliers, selection efficiency) are ``Decimal`` and are rounded with
ROUND_HALF_EVEN so every caller reports the same figure for the same input.
Floating point never enters an amount computation.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

DECIMAL_PLACES = 8
LOVELACE_PER_ADA = 1_000_000


class AmountError(ValueError):
    """Raised when a value cannot be used as an exact amount or rate."""


def to_decimal(value: Any, name: str = "value") -> Decimal:
    """Convert a value to Decimal, rejecting NaN and infinities."""
    if value is None:
        raise AmountError(f"{name} is None")
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise AmountError(f"Cannot convert {name}={value!r} to Decimal: {e}")
    if d.is_nan():
        raise AmountError(f"{name} is NaN")
    if d.is_infinite():
        raise AmountError(f"{name} is infinite")
    return d


def round_decimal(value: Decimal, places: int = DECIMAL_PLACES) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN)


def safe_divide(numerator: Decimal, denominator: Decimal, default: Decimal = Decimal("0")) -> Decimal:
    """Divide two Decimals, returning ``default`` on a zero or invalid divisor."""
    if not denominator or denominator.is_nan() or numerator.is_nan():
        return default
    result = numerator / denominator
    return result if result.is_finite() else default


def floor_int(value: Decimal) -> int:
    """Round toward negative infinity and return an int."""
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def floor_mul_div(amount: int, numerator: int, denominator: int) -> int:
    """``floor(amount * numerator / denominator)`` on integers only."""
    if denominator <= 0:
        raise AmountError("denominator must be positive")
    return (amount * numerator) // denominator


def lovelace_to_ada(lovelace: int) -> Decimal:
    return Decimal(lovelace) / Decimal(LOVELACE_PER_ADA)


def ada_to_lovelace(ada: Any) -> int:
    d = to_decimal(ada, "ada") * LOVELACE_PER_ADA
    if d != d.to_integral_value():
        raise AmountError(f"{ada} ADA is not a whole number of lovelace")
    return int(d)


__all__ = [
    "DECIMAL_PLACES",
    "LOVELACE_PER_ADA",
    "AmountError",
    "to_decimal",
    "round_decimal",
    "safe_divide",
    "floor_int",
    "floor_mul_div",
    "lovelace_to_ada",
    "ada_to_lovelace",
]
