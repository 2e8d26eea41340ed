"""Billable amount for a single time entry.

An entry is billed on its worked minutes, the span between ``start`` and
``end`` minus the break. Entries whose span is empty or inverted, or whose
break swallows the whole span, are rejected instead of billed at zero.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

CENTS = Decimal("0.01")
MINUTES_PER_HOUR = Decimal(60)


class InvalidTimeRange(ValueError):
    def __init__(self, message: str = "Invalid time range") -> None:
        super().__init__(message)


def parse_hhmm(raw: Any) -> int:
    """Convert ``HH:MM`` to minutes since midnight.

    Raises ``ValueError`` for anything that is not two integer parts.
    """
    text = str(raw if raw is not None else "").strip()
    if ":" not in text:
        raise ValueError(f"not a HH:MM time: {raw!r}")
    h_s, m_s = (part.strip() for part in text.split(":", 1))
    if not (h_s.isdigit() and m_s.isdigit()) or int(m_s) >= 60:
        raise ValueError(f"not a HH:MM time: {raw!r}")
    return int(h_s) * 60 + int(m_s)


def worked_minutes(start: Any, end: Any, break_minutes: Any) -> int:
    """Raw ``end - start - break``; may be zero or negative."""
    return parse_hhmm(end) - parse_hhmm(start) - int(break_minutes or 0)


def compute_billable_amount(start: Any, end: Any, break_minutes: Any, rate_per_hour: Any) -> Decimal:
    try:
        start_m = parse_hhmm(start)
        end_m = parse_hhmm(end)
        brk = int(break_minutes or 0)
        rate = Decimal(str(rate_per_hour if rate_per_hour not in (None, "") else 0))
    except (ArithmeticError, TypeError, ValueError) as e:
        raise InvalidTimeRange() from e

    if not rate.is_finite() or rate < 0 or brk < 0:
        raise InvalidTimeRange()
    if end_m <= start_m:
        raise InvalidTimeRange()
    worked = end_m - start_m - brk
    if worked <= 0:
        raise InvalidTimeRange()

    # multiply first so an exact half cent stays exact before rounding
    try:
        return (Decimal(worked) * rate / MINUTES_PER_HOUR).quantize(CENTS, rounding=ROUND_HALF_UP)
    except ArithmeticError as e:
        raise InvalidTimeRange("Rate out of range") from e
