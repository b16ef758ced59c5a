"""Tiered refill calculator.

The n-th request (0-based) asks for a multiple of the weekly rate, capped by
an absolute ceiling, and never for more than what is left of the client's
total request:

    index 0   min(weekly / 2, 5% of total)
    index 1   min(weekly,     0.5 PiB)
    index 2   min(2 * weekly, 1 PiB)
    index 3+  min(4 * weekly, 2 PiB)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Sequence

from core.units import best_fit, parse_bytes
from datacap.models import Case

HALF_PIB = 2**49
ONE_PIB = 2**50
TWO_PIB = 2**51


@dataclass(frozen=True)
class RequestAmount:
    amount: str
    unit: str
    amount_bytes: int

    @property
    def is_zero(self) -> bool:
        return self.amount_bytes == 0

    def __str__(self) -> str:
        return f"{self.amount}{self.unit}"


ZERO = RequestAmount("0", "B", 0)


def _tier(index: int, weekly: int, total: int) -> Fraction:
    if index < 0:
        raise ValueError("request index must be >= 0")
    if index == 0:
        return min(Fraction(weekly, 2), Fraction(total * 5, 100))
    if index == 1:
        return Fraction(min(weekly, HALF_PIB))
    if index == 2:
        return Fraction(min(weekly * 2, ONE_PIB))
    return Fraction(min(weekly * 4, TWO_PIB))


def calculate_next_request(
    granted: Sequence[int], total_requested: int, weekly_rate: int, index: int
) -> RequestAmount:
    """Return the amount for request ``index`` given the amounts granted so far."""

    remaining = total_requested - sum(granted)
    if remaining <= 0:
        return ZERO
    next_bytes = math.floor(_tier(index, weekly_rate, total_requested))
    if next_bytes > remaining:
        next_bytes = remaining
    if next_bytes <= 0:
        return ZERO
    amount, unit = best_fit(next_bytes)
    return RequestAmount(amount, unit, next_bytes)


def next_request_for_case(case: Case) -> RequestAmount:
    """Next refill for ``case`` using its allocation history."""

    history = [r.amount_bytes for r in case.allocation_requests]
    return calculate_next_request(
        history,
        parse_bytes(case.total_requested),
        parse_bytes(case.weekly_allocation),
        len(history),
    )
