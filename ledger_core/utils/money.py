"""Money rounding and time helpers"""

from datetime import datetime, timezone
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Hashable, Mapping, TypeVar

K = TypeVar("K", bound=Hashable)

WHOLE_UNIT = Decimal("1")


def round_whole(value: Decimal, unit: Decimal = WHOLE_UNIT) -> Decimal:
    """Round half-up to the smallest currency unit"""
    return (value / unit).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP) * unit


def round_zero_sum(values: Mapping[K, Decimal], unit: Decimal = WHOLE_UNIT) -> dict[K, Decimal]:
    """
    Round every value to whole units so the rounded values still sum to zero.

    Largest-remainder method: floor everything, then hand the missing units
    to the entries with the biggest fractional parts (ties broken by key).
    If the input overshoots zero (a split within tolerance but not exact),
    the surplus is taken back from the entries with the smallest parts.
    """
    floors: dict[K, Decimal] = {}
    remainders: dict[K, Decimal] = {}
    for key, value in values.items():
        scaled = value / unit
        floored = scaled.to_integral_value(rounding=ROUND_FLOOR)
        floors[key] = floored
        remainders[key] = scaled - floored

    missing = int(-sum(floors.values(), Decimal("0")))
    if missing >= 0:
        ranked = sorted(remainders, key=lambda k: (-remainders[k], str(k)))
        for key in ranked[:missing]:
            floors[key] += 1
    else:
        ranked = sorted(remainders, key=lambda k: (remainders[k], str(k)))
        for key in ranked[:-missing]:
            floors[key] -= 1

    return {key: floors[key] * unit for key in values}


def percent(part: Decimal, whole: Decimal) -> float:
    """part / whole as a percentage, 0 when whole is 0"""
    if not whole:
        return 0.0
    return round(float(part / whole * 100), 1)


def utc_now() -> datetime:
    """Timezone-aware current time"""
    return datetime.now(timezone.utc)
