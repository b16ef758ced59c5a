"""Byte quantity parsing and formatting.

Amounts travel as unit-suffixed strings ("5TiB", "0.5 PiB", "1048576B") and
are compared as exact integers of bytes.
"""

from __future__ import annotations

import re
from decimal import ROUND_DOWN, Decimal
from typing import Optional, Tuple

UNIT_SIZES = {
    "B": 1,
    "KB": 10**3,
    "MB": 10**6,
    "GB": 10**9,
    "TB": 10**12,
    "PB": 10**15,
    "EB": 10**18,
    "KIB": 2**10,
    "MIB": 2**20,
    "GIB": 2**30,
    "TIB": 2**40,
    "PIB": 2**50,
    "EIB": 2**60,
}

# canonical spelling for formatting
BINARY_UNITS = ("B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB")

# units an allocation amount may be expressed in
ALLOCATION_UNITS = ("B", "GiB", "TiB", "PiB")

_AMOUNT_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s?([KMGTPE]i?B|B)?\s*$", re.IGNORECASE)
_SPLIT_RE = re.compile(r"^(\d+(?:\.\d+)?)\s?([A-Za-z]?iB|B)$")


def unit_size(unit: str) -> int:
    try:
        return UNIT_SIZES[unit.upper()]
    except KeyError:
        raise ValueError(f"unknown unit {unit!r}") from None


def parse_bytes(value: str | int) -> int:
    """Return the byte count for ``value``; fractional bytes are truncated.

    >>> parse_bytes("5TiB")
    5497558138880
    """

    if isinstance(value, int):
        return value
    match = _AMOUNT_RE.match(value)
    if match is None:
        raise ValueError(f"invalid byte quantity {value!r}")
    number, unit = match.group(1), match.group(2) or "B"
    total = Decimal(number) * unit_size(unit)
    return int(total.to_integral_value(rounding=ROUND_DOWN))


def split_amount(value: str) -> Tuple[str, str]:
    """Split "0.5 TiB" into ("0.5", "TiB"); unparseable input gives ("0", "B")."""

    match = _SPLIT_RE.match(value.strip())
    if match is None:
        return "0", "B"
    return match.group(1), match.group(2)


def _render(value: Decimal) -> str:
    text = format(value.normalize(), "f")
    return text


def format_bytes(amount: int, unit: Optional[str] = None, decimals: int = 2) -> str:
    """Format ``amount`` with a binary unit, the largest that keeps it >= 1."""

    if unit is None:
        unit = "B"
        for candidate in reversed(BINARY_UNITS):
            if abs(amount) >= unit_size(candidate):
                unit = candidate
                break
    size = unit_size(unit)
    quantum = Decimal(1).scaleb(-decimals)
    value = (Decimal(amount) / size).quantize(quantum)
    canonical = next((u for u in BINARY_UNITS if u.upper() == unit.upper()), unit)
    return f"{_render(value)}{canonical}"


def best_fit(amount: int, units: Tuple[str, ...] = ALLOCATION_UNITS) -> Tuple[str, str]:
    """Return (number, unit) using the largest unit whose string parses back to ``amount``."""

    for unit in sorted(units, key=unit_size, reverse=True):
        size = unit_size(unit)
        if amount < size:
            continue
        number = (Decimal(amount) / size).quantize(Decimal("0.01"))
        if int(number * size) == amount:
            return _render(number), unit
    return str(amount), "B"
