"""
Duration, elapsed-time and money formatting shared by the timer and approvals.

Money is only rounded here, at display time; totals are accumulated unrounded.
"""
from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")


def format_elapsed(seconds: int) -> str:
    """Format running-timer seconds as HH:MM:SS."""
    seconds = max(int(seconds), 0)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_duration(minutes: Optional[int]) -> str:
    """Format whole minutes as '1h 30m', '45m' or '2h'; empty durations render as '-'."""
    if not minutes:
        return "-"
    hours, mins = divmod(int(minutes), 60)
    if hours == 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def format_clock_minutes(minutes: float) -> str:
    """Format minutes as H:MM, rounding to the nearest whole minute."""
    total = int(Decimal(str(minutes)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    hours, mins = divmod(total, 60)
    return f"{hours}:{mins:02d}"


def round_money(amount: float) -> Decimal:
    """Round an accumulated amount half-up to cents."""
    return Decimal(repr(float(amount))).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(amount: float) -> str:
    return f"{round_money(amount):.2f}"
