"""
Clock port for the running timer. Elapsed time is always derived from the
server-issued start timestamp, never accumulated locally.
"""
from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]

ONE_SECOND = timedelta(seconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def elapsed_seconds(started_at: datetime, now: datetime) -> int:
    """Whole seconds between ``started_at`` and ``now``, floored, never negative."""
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max((now - started_at) // ONE_SECOND, 0)


class ManualClock:
    """Settable clock for simulations and tests."""

    def __init__(self, start: datetime):
        self.now = start if start.tzinfo else start.replace(tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now
