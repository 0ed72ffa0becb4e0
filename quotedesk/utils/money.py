"""Fixed-point money helpers.

Every discount and tax computation goes through these helpers so that
values stay on Decimal and are rounded half-up to cents, never through
binary floats.
"""
from decimal import Decimal, ROUND_HALF_UP, ROUND_DOWN

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
HUNDRED = Decimal('100')


def to_decimal(value) -> Decimal:
    """Convert int/str/float/Decimal/None to Decimal (None -> 0)."""
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    # str() keeps the shortest repr of floats (0.1 -> '0.1')
    return Decimal(str(value))


def round2(value) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def floor2(value) -> Decimal:
    """Truncate to 2 decimal places (towards zero)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_DOWN)


def clamp_non_negative(value) -> Decimal:
    """max(0, value)."""
    value = to_decimal(value)
    return value if value > 0 else ZERO


def clamp(value, low, high) -> Decimal:
    """Bound value to [low, high]."""
    value = to_decimal(value)
    low = to_decimal(low)
    high = to_decimal(high)
    if value < low:
        return low
    if value > high:
        return high
    return value


def percent_of(base, percent) -> Decimal:
    """base * percent / 100, unrounded."""
    return to_decimal(base) * to_decimal(percent) / HUNDRED


def money_str(value) -> str:
    """Serialize a money amount for JSON storage ('20.00')."""
    return str(round2(value))
