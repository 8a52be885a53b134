"""
Pydantic request bodies for the time-tracking API.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict


class StartTimerRequest(BaseModel):
    """Request body for starting the running timer."""
    project_id: int
    todo_id: Optional[int] = None
    description: Optional[str] = None
    is_billable: bool = True


class StopTimerRequest(BaseModel):
    """Request body for stopping the running timer."""
    description: Optional[str] = None


class TimeEntryFilters(BaseModel):
    """Query filters for listing time entries."""
    project_id: Optional[int] = None
    todo_id: Optional[int] = None
    status: Optional[str] = None
    date_from: Optional[str] = None  # YYYY-MM-DD
    date_to: Optional[str] = None
    week: Optional[int] = None
    year: Optional[int] = None
    per_page: Optional[int] = None
    page: Optional[int] = None


class ApproveEntriesRequest(BaseModel):
    """Bulk approval; only explicitly overridden rates are sent."""
    entry_ids: List[int] = Field(min_length=1)
    rate_overrides: Optional[Dict[int, float]] = None


class RejectEntriesRequest(BaseModel):
    """Bulk rejection with a mandatory reason."""
    entry_ids: List[int] = Field(min_length=1)
    reason: str

    @field_validator("reason")
    @classmethod
    def _reason_present(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("reason must not be blank")
        return value


class InvoiceFromTimesheetRequest(BaseModel):
    """Request body for invoicing a timesheet's approved entries."""
    timesheet_id: int
    notes: Optional[str] = None
