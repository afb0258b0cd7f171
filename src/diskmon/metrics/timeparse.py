"""
Compact relative-time expressions such as ``30m``, ``2h`` or ``7d``.

An expression is a non-negative integer followed by exactly one unit letter
(case-insensitive): ``m`` minutes, ``h`` hours, ``d`` days of 24 hours.
Surrounding whitespace is ignored. Compound (``1h30m``) and fractional
(``1.5h``) expressions are rejected.
"""

from __future__ import annotations

from datetime import timedelta

from diskmon.errors import FormatError

UNITS = {
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


def parse_relative_time(expr: str) -> timedelta:
    """
    Parse a relative-time expression into a duration.

    Args:
        expr: Expression such as ``"30m"``.

    Returns:
        The duration the expression denotes.

    Raises:
        FormatError: If the expression is empty, its number is not a
            non-negative integer, its unit is not m, h or d, or the
            duration is too large to represent.

    Example:
        >>> parse_relative_time(" 2H ")
        datetime.timedelta(seconds=7200)
    """
    text = expr.strip()
    if not text:
        raise FormatError("empty time string", details={"expression": expr})

    number, unit = text[:-1], text[-1].lower()

    # isdecimal() rejects signs, spaces and fractions that int() would accept
    if not number.isdecimal():
        raise FormatError(
            f"invalid number format: {number!r}",
            details={"expression": expr},
        )

    if unit not in UNITS:
        raise FormatError(
            f"unsupported time unit: {text[-1]!r}",
            details={"expression": expr, "supported": sorted(UNITS)},
        )

    # timedelta tops out at 999999999 days; int() caps the digit count
    try:
        return int(number) * UNITS[unit]
    except (OverflowError, ValueError) as e:
        raise FormatError(
            f"time value out of range: {number!r}",
            details={"expression": expr},
        ) from e


def relative_range(expr: str, now_ms: int) -> tuple[int, int]:
    """
    Resolve an expression into a ``(from_ms, to_ms)`` interval ending at now.

    Args:
        expr: Relative-time expression.
        now_ms: Current time as a millisecond epoch.

    Returns:
        Millisecond epoch bounds ``(now_ms - duration, now_ms)``.

    Raises:
        FormatError: If the expression is malformed.
    """
    duration = parse_relative_time(expr)
    return now_ms - duration // timedelta(milliseconds=1), now_ms
