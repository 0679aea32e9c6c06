"""
Exchange tick-size rounding for limit and trigger prices.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

# (upper price bound inclusive, tick size)
TICK_SIZE_BANDS = (
    (Decimal("250"), Decimal("0.01")),
    (Decimal("1000"), Decimal("0.05")),
    (Decimal("5000"), Decimal("0.1")),
    (Decimal("10000"), Decimal("0.5")),
    (Decimal("20000"), Decimal("1.0")),
)
MAX_TICK_SIZE = Decimal("5.0")


def tick_size_for(price: float) -> Decimal:
    value = Decimal(str(price))
    for upper, tick in TICK_SIZE_BANDS:
        if value <= upper:
            return tick
    return MAX_TICK_SIZE


def round_to_tick(price: float) -> float:
    """Round a price to the nearest valid tick and return it with 2 decimals."""
    value = Decimal(str(price))
    tick = tick_size_for(price)
    ticks = (value / tick).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return float((ticks * tick).quantize(Decimal("0.01")))
