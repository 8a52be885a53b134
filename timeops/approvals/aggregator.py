"""
Review of a single timesheet: entry selection, per-entry rate overrides,
derived totals and bulk approve/reject.

Totals use the same rate hierarchy the server applies when approving, so the
numbers shown before approval match the invoice produced afterwards. Only
entries in ``submitted`` status can be selected; approve and reject are one
bulk call each, and any ambiguous outcome is resolved by refetching.
"""
from __future__ import annotations
import inspect
import logging
import math
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import BaseModel, Field, ValidationError, computed_field

from timeops.formatting import format_clock_minutes, format_money
from timeops.integrations.api_client import TimeTrackingAPIError
from timeops.integrations.api_types import ApproveEntriesRequest, RejectEntriesRequest
from timeops.models import ApiError, ApiResponse, EntryStatus, TimeEntry, Timesheet
from timeops.observability.metrics import review_actions_total

logger = logging.getLogger(__name__)


class ReviewValidationError(ValueError):
    """Input refused before any network call."""
    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class ReviewSelection(BaseModel):
    """Ephemeral selection state of one open review."""
    timesheet_id: int
    selected_entry_ids: Set[int] = Field(default_factory=set)
    rate_overrides: Dict[int, float] = Field(default_factory=dict)


class ReviewTotals(BaseModel):
    minutes: int = 0
    cost: float = 0.0

    @computed_field
    @property
    def formatted_duration(self) -> str:
        return format_clock_minutes(self.minutes)

    @computed_field
    @property
    def formatted_cost(self) -> str:
        return format_money(self.cost)


def parse_rate(rate: Any) -> float:
    """Validate an hourly rate: a finite, non-negative number."""
    if isinstance(rate, bool):
        raise ReviewValidationError("invalid_rate", "Rate must be a number")
    if isinstance(rate, (int, float, Decimal)):
        value = float(rate)
    elif isinstance(rate, str):
        try:
            value = float(rate.strip())
        except ValueError:
            raise ReviewValidationError("invalid_rate", f"Rate must be a number, got {rate!r}")
    else:
        raise ReviewValidationError("invalid_rate", "Rate must be a number")
    if not math.isfinite(value):
        raise ReviewValidationError("invalid_rate", "Rate must be a finite number")
    if value < 0:
        raise ReviewValidationError("invalid_rate", "Rate cannot be negative")
    return value


class ApprovalAggregator:
    """Selection, rate overrides and bulk review actions for one timesheet."""

    def __init__(self, api, timesheet: Timesheet, preselect: bool = True):
        self.api = api
        self.timesheet = timesheet
        self.selection = ReviewSelection(timesheet_id=timesheet.id)
        self.pending_action: Optional[str] = None
        self.last_error: Optional[ApiError] = None
        self.stale = False
        self._notices: List[str] = []
        self._listeners: List[Callable[[], Any]] = []
        if preselect:
            self.toggle_all(True)

    @classmethod
    async def open(cls, api, timesheet_id: int, preselect: bool = True) -> "ApprovalAggregator":
        """Fetch a timesheet and start a fresh review of it."""
        timesheet = await api.get_timesheet(timesheet_id)
        logger.info(
            f"Opened review of timesheet {timesheet.id} ({len(timesheet.entries)} entries)",
            extra={"timesheet_id": timesheet.id},
        )
        return cls(api, timesheet, preselect=preselect)

    def on_reviewed(self, callback: Callable[[], Any]) -> None:
        """Register a callback (sync or async) run after a successful approve/reject."""
        self._listeners.append(callback)

    def drain_notices(self) -> List[str]:
        notices, self._notices = self._notices, []
        return notices

    @property
    def selected_ids(self) -> Set[int]:
        return set(self.selection.selected_entry_ids)

    def reviewable_entries(self) -> List[TimeEntry]:
        return self.timesheet.entries_with_status(EntryStatus.SUBMITTED)

    def _require_entry(self, entry_id: int) -> TimeEntry:
        entry = self.timesheet.entry(entry_id)
        if entry is None:
            raise ReviewValidationError(
                "unknown_entry", f"Entry {entry_id} is not part of timesheet {self.timesheet.id}"
            )
        return entry

    # Selection
    def toggle_entry(self, entry_id: int) -> bool:
        """Flip one entry's selection; returns whether it is now selected."""
        selected = self.selection.selected_entry_ids
        if entry_id in selected:
            selected.discard(entry_id)
            return False
        entry = self._require_entry(entry_id)
        if entry.status != EntryStatus.SUBMITTED:
            raise ReviewValidationError(
                "invalid_status",
                f"Entry {entry_id} is {entry.status.value}; only submitted entries can be reviewed",
            )
        selected.add(entry_id)
        return True

    def toggle_all(self, checked: bool) -> Set[int]:
        if checked:
            self.selection.selected_entry_ids = {e.id for e in self.reviewable_entries()}
        else:
            self.selection.selected_entry_ids = set()
        return self.selected_ids

    # Rates
    def set_rate_override(self, entry_id: int, rate: Any) -> Optional[float]:
        """Set or (with None) remove the override for one entry."""
        self._require_entry(entry_id)
        if rate is None:
            self.selection.rate_overrides.pop(entry_id, None)
            return None
        value = parse_rate(rate)
        self.selection.rate_overrides[entry_id] = value
        return value

    def effective_rate(self, entry: TimeEntry) -> float:
        """Override for this review, then the entry's stored rate, then the user's, then 0."""
        override = self.selection.rate_overrides.get(entry.id)
        if override is not None:
            return override
        if entry.hourly_rate_override is not None:
            return entry.hourly_rate_override
        user = self.timesheet.user
        if user is not None and user.hourly_rate is not None:
            return user.hourly_rate
        return 0.0

    def compute_totals(self, selected_only: bool = True) -> ReviewTotals:
        """Minutes and unrounded cost over the selected (or all reviewable) entries."""
        entries = self.reviewable_entries()
        if selected_only:
            selected = self.selection.selected_entry_ids
            entries = [e for e in entries if e.id in selected]
        minutes = sum(e.minutes for e in entries)
        cost = math.fsum((e.minutes / 60) * self.effective_rate(e) for e in entries)
        return ReviewTotals(minutes=minutes, cost=cost)

    # Bulk actions
    def _check_selection(self) -> Optional[ApiResponse]:
        if self.pending_action:
            return ApiResponse.failure(
                "busy", f"A {self.pending_action} request is already in flight"
            )
        ids = self.selection.selected_entry_ids
        if not ids:
            return ApiResponse.failure("empty_selection", "Select at least one entry")
        not_reviewable = sorted(
            i for i in ids
            if (self.timesheet.entry(i) is None
                or self.timesheet.entry(i).status != EntryStatus.SUBMITTED)
        )
        if not_reviewable:
            return ApiResponse.failure(
                "invalid_status",
                "Only submitted entries can be approved or rejected",
                details={"entry_ids": not_reviewable},
            )
        return None

    async def approve_selected(self) -> ApiResponse:
        refused = self._check_selection()
        if refused:
            return refused
        ids = sorted(self.selection.selected_entry_ids)
        overrides = {i: r for i, r in self.selection.rate_overrides.items() if i in ids}
        body = ApproveEntriesRequest(entry_ids=ids, rate_overrides=overrides or None)
        return await self._submit("approve", ids, EntryStatus.APPROVED, body, {})

    async def reject_selected(self, reason: Optional[str]) -> ApiResponse:
        refused = self._check_selection()
        if refused:
            return refused
        if not isinstance(reason, str) or not reason.strip():
            return ApiResponse.failure("reason_required", "A rejection reason is required")
        ids = sorted(self.selection.selected_entry_ids)
        reason = reason.strip()
        body = RejectEntriesRequest(entry_ids=ids, reason=reason)
        return await self._submit(
            "reject", ids, EntryStatus.REJECTED, body, {"rejection_reason": reason}
        )

    async def _submit(
        self,
        action: str,
        ids: List[int],
        target: EntryStatus,
        body: BaseModel,
        changes: Dict[str, Any],
    ) -> ApiResponse:
        log_extra = {"timesheet_id": self.timesheet.id}
        self.pending_action = action
        try:
            if action == "approve":
                result = await self.api.approve_entries(body)
            else:
                result = await self.api.reject_entries(body)
        except TimeTrackingAPIError as e:
            review_actions_total.labels(action, "failed").inc()
            self.last_error = ApiError(code=e.code, message=e.message)
            logger.warning(
                f"Bulk {action} of {len(ids)} entries failed ({e.code}): {e.message}",
                extra=log_extra,
            )
            if e.is_ambiguous or e.code == "conflict":
                await self.refresh()
            return ApiResponse.failure(e.code, e.message)
        except (ValidationError, ValueError) as e:
            review_actions_total.labels(action, "failed").inc()
            logger.error(f"Unreadable {action} response: {e}", exc_info=True)
            await self.refresh()
            return ApiResponse.failure("internal_error", f"Unreadable {action} response from server")
        finally:
            self.pending_action = None

        known = []
        if result is not None:
            known = [result.entry(i) for i in ids if result.entry(i) is not None]
        if known:
            moved = [e.id for e in known if e.status == target]
            if len(moved) != len(ids):
                review_actions_total.labels(action, "partial").inc()
                logger.error(
                    f"Bulk {action} reported {len(moved)}/{len(ids)} entries moved; refetching",
                    extra=log_extra,
                )
                self._notices.append(
                    f"The server reported an incomplete {action}; the timesheet was reloaded."
                )
                await self.refresh()
                return ApiResponse.failure(
                    "partial_result",
                    f"Server marked only part of the selection {target.value}",
                    details={"entry_ids": ids, "moved": moved},
                )
            self.timesheet = result
        else:
            self.timesheet = self.timesheet.model_copy(update={
                "entries": [
                    e.transition(target, **changes) if e.id in ids else e
                    for e in self.timesheet.entries
                ]
            })

        self.selection.selected_entry_ids -= set(ids)
        for i in ids:
            self.selection.rate_overrides.pop(i, None)
        self.last_error = None
        review_actions_total.labels(action, "ok").inc()
        logger.info(f"Bulk {action} of {len(ids)} entries accepted", extra=log_extra)

        await self.refresh()
        await self._notify_reviewed()
        return ApiResponse.success(data=self.timesheet)

    async def refresh(self) -> ApiResponse:
        """Refetch the timesheet; selections that are no longer reviewable are dropped."""
        try:
            timesheet = await self.api.get_timesheet(self.timesheet.id)
        except TimeTrackingAPIError as e:
            self.stale = True
            logger.warning(
                f"Timesheet refresh failed ({e.code}): {e.message}",
                extra={"timesheet_id": self.timesheet.id},
            )
            return ApiResponse.failure(e.code, e.message)
        except (ValidationError, ValueError) as e:
            self.stale = True
            logger.error(
                f"Timesheet refresh returned an unreadable payload: {e}",
                extra={"timesheet_id": self.timesheet.id},
                exc_info=True,
            )
            return ApiResponse.failure("internal_error", "Server returned an invalid timesheet")

        dropped = sorted(
            i for i in self.selection.selected_entry_ids
            if timesheet.entry(i) is None or timesheet.entry(i).status != EntryStatus.SUBMITTED
        )
        if dropped:
            self.selection.selected_entry_ids -= set(dropped)
            self._notices.append(
                f"{len(dropped)} selected entries were already reviewed elsewhere and were deselected."
            )
            logger.info(
                f"Deselected entries reviewed elsewhere: {dropped}",
                extra={"timesheet_id": timesheet.id},
            )
        known_ids = {e.id for e in timesheet.entries}
        for entry_id in list(self.selection.rate_overrides):
            if entry_id not in known_ids:
                del self.selection.rate_overrides[entry_id]

        self.timesheet = timesheet
        self.stale = False
        return ApiResponse.success(data=timesheet)

    async def _notify_reviewed(self) -> None:
        for callback in list(self._listeners):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Refresh after review action failed")
