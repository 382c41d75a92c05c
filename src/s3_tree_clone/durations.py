"""Parsing and formatting of Go-style duration strings such as ``60s``, ``1m30s`` or ``1500ns``."""

import re
from fractions import Fraction

NANOSECONDS_PER_SECOND = 1_000_000_000

UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,  # micro sign
    "μs": 1_000,  # greek mu
    "ms": 1_000_000,
    "s": NANOSECONDS_PER_SECOND,
    "m": 60 * NANOSECONDS_PER_SECOND,
    "h": 3600 * NANOSECONDS_PER_SECOND,
}

_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]+)")


def parse_duration(text: str) -> int:
    """Parse a duration string into integer nanoseconds.

    Raises ValueError for anything that is not a sequence of decimal numbers
    each followed by a unit. A bare ``0`` is accepted.
    """
    if not isinstance(text, str) or not text:
        raise ValueError(f"invalid duration: {text!r}")

    remainder = text
    sign = 1
    if remainder[0] in "+-":
        sign = -1 if remainder[0] == "-" else 1
        remainder = remainder[1:]

    if remainder == "0":
        return 0
    if not remainder:
        raise ValueError(f"invalid duration: {text!r}")

    total = Fraction(0)
    pos = 0
    while pos < len(remainder):
        match = _COMPONENT.match(remainder, pos)
        if match is None:
            raise ValueError(f"invalid duration: {text!r}")
        whole, frac, unit = match.groups()
        if not whole and not frac:
            raise ValueError(f"invalid duration: {text!r}")
        if unit not in UNITS:
            raise ValueError(f"unknown unit {unit!r} in duration {text!r}")
        value = Fraction(int(whole or "0"))
        if frac:
            value += Fraction(int(frac), 10 ** len(frac))
        total += value * UNITS[unit]
        pos = match.end()

    return sign * int(total)


def parse_duration_seconds(text: str) -> float:
    return parse_duration(text) / NANOSECONDS_PER_SECOND


def format_nanoseconds(value: int) -> str:
    """Format an integer nanosecond count the way File Gateway stores timestamps."""
    return f"{int(value)}ns"
