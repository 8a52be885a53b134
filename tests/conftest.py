"""
Shared fixtures: an in-memory fake of the time-tracking API and model builders.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from timeops.models import (
    EntryStatus,
    Invoice,
    RunningTimerSession,
    TimeEntry,
    Timesheet,
    UserRef,
)
from timeops.timer.clock import ManualClock

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def make_session(session_id: int = 1, project_id: int = 7, started_at: datetime = T0, **kw) -> RunningTimerSession:
    return RunningTimerSession(id=session_id, project_id=project_id, started_at=started_at, **kw)


def make_entry(
    entry_id: int,
    minutes: Optional[int] = 60,
    status: EntryStatus = EntryStatus.SUBMITTED,
    rate: Optional[float] = None,
    user_id: int = 5,
    started_at: datetime = T0,
    **kw,
) -> TimeEntry:
    return TimeEntry(
        id=entry_id,
        user_id=user_id,
        project_id=7,
        duration_minutes=minutes,
        status=status,
        hourly_rate_override=rate,
        started_at=started_at,
        timesheet_id=kw.pop("timesheet_id", 100),
        **kw,
    )


def make_timesheet(entries: List[TimeEntry], user_rate: Optional[float] = None, timesheet_id: int = 100) -> Timesheet:
    return Timesheet(
        id=timesheet_id,
        user_id=5,
        week_number=10,
        year=2026,
        status="submitted",
        user=UserRef(id=5, name="Dev", hourly_rate=user_rate),
        entries=entries,
    )


class FakeTimeApi:
    """
    Stand-in for TimeTrackingClient. Each result attribute holds either a value
    to return or an exception to raise; ``gates`` holds asyncio.Events a call
    waits on before answering, to control interleavings.
    """

    def __init__(self):
        self.current: Any = None
        self.start_result: Any = None
        self.stop_result: Any = None
        self.discard_result: Any = True
        self.entries_result: Any = []
        self.timesheets: Dict[int, Any] = {}
        self.pending_result: Any = []
        self.approve_result: Any = None
        self.reject_result: Any = None
        self.invoices_result: Any = []
        self.invoice_result: Any = None
        self.calls: List[tuple] = []
        self.gates: Dict[str, asyncio.Event] = {}

    def gate(self, name: str) -> asyncio.Event:
        self.gates[name] = asyncio.Event()
        return self.gates[name]

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)

    async def _answer(self, name: str, result: Any, *args):
        self.calls.append((name, *args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if isinstance(result, Exception):
            raise result
        return result

    async def get_current_timer(self):
        return await self._answer("get_current_timer", self.current)

    async def start_timer(self, body):
        return await self._answer("start_timer", self.start_result, body)

    async def stop_timer(self, body=None):
        return await self._answer("stop_timer", self.stop_result, body)

    async def discard_timer(self):
        return await self._answer("discard_timer", self.discard_result)

    async def list_time_entries(self, filters=None):
        return await self._answer("list_time_entries", self.entries_result, filters)

    async def get_timesheet(self, timesheet_id):
        return await self._answer("get_timesheet", self.timesheets.get(timesheet_id), timesheet_id)

    async def list_pending_timesheets(self):
        return await self._answer("list_pending_timesheets", self.pending_result)

    async def approve_entries(self, body):
        return await self._answer("approve_entries", self.approve_result, body)

    async def reject_entries(self, body):
        return await self._answer("reject_entries", self.reject_result, body)

    async def list_invoices(self, status=None):
        return await self._answer("list_invoices", self.invoices_result, status)

    async def create_invoice_from_timesheet(self, body):
        return await self._answer("create_invoice_from_timesheet", self.invoice_result, body)

    async def approve_invoice(self, invoice_id):
        return await self._answer("approve_invoice", self.invoice_result, invoice_id)

    async def decline_invoice(self, invoice_id):
        return await self._answer("decline_invoice", self.invoice_result, invoice_id)

    async def mark_invoice_paid(self, invoice_id):
        return await self._answer("mark_invoice_paid", self.invoice_result, invoice_id)


@pytest.fixture
def fake_api():
    return FakeTimeApi()


@pytest.fixture
def clock():
    return ManualClock(T0)


def make_invoice(invoice_id: int = 900, status: str = "pending", entries=None) -> Invoice:
    return Invoice(
        id=invoice_id,
        user_id=5,
        timesheet_id=100,
        invoice_number=f"INV-{invoice_id}",
        total_hours=1.5,
        total_amount=40.0,
        status=status,
        entries=entries or [],
    )
