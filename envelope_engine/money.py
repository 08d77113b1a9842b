"""Rounding helpers shared by the engine.

Money crosses every boundary as dollars rounded to two places, while the
deposit router works internally in integer cents and integer basis points.
Rounding is half-up (ties away from zero) everywhere, never banker's rounding.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[int, float]

BPS_TOTAL = 10_000
CENT = Decimal("0.01")


def round_half_up(value: Number, places: int = 0) -> float:
    """Round ``value`` to ``places`` decimals with ties going away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def round_int(value: Number) -> int:
    return int(round_half_up(value, 0))


def round2(value: Number) -> float:
    return round_half_up(value, 2)


def clamp_int(value: Number, lower: int, upper: int) -> int:
    """Truncate ``value`` toward zero and clamp it into ``[lower, upper]``."""
    return min(max(int(value), lower), upper)


def cents_from_dollars(dollars: Number) -> int:
    return round_int(dollars * 100)


def dollars_from_cents(cents: int) -> Decimal:
    """Exact dollar amount for ``cents``, quantized to the cent."""
    return (Decimal(cents) / 100).quantize(CENT)
