"""
Float comparisons for weight and money arithmetic.

Scale readings and per-kg prices are floats; sums of many line items drift by
tiny amounts, so every comparison that matters goes through a fixed tolerance.
"""
import math
from decimal import Decimal, ROUND_HALF_UP

# 1 gram at kilogram scale.
TOLERANCE = 0.001
CENTS = Decimal("0.01")
_ROUND3_LIMIT = 2.0 ** 50


def is_equal(a: float, b: float) -> bool:
    return abs(a - b) <= TOLERANCE


def is_greater_than(a: float, b: float) -> bool:
    return a > b + TOLERANCE


def is_greater_or_equal(a: float, b: float) -> bool:
    return a > b - TOLERANCE


def is_less_than(a: float, b: float) -> bool:
    return a < b - TOLERANCE


def round3(x: float) -> float:
    # Halves round up (toward +inf), not to even. Past _ROUND3_LIMIT a float can
    # no longer hold x*1000 to a quarter unit, so the value is returned as is.
    scaled = x * 1000
    if not math.isfinite(scaled) or abs(scaled) >= _ROUND3_LIMIT:
        return x
    return math.floor(scaled + 0.5) / 1000


def format_weight(weight: float) -> str:
    return f"{round3(weight):.3f}"


def money(x) -> Decimal:
    # Display/persisted currency value; str() avoids binary float artifacts.
    return Decimal(str(x or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)
