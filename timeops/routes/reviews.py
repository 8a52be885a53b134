"""
Timesheet review routes: open a review, select entries, override rates,
read totals and approve or reject the selection.
"""
from typing import Any, Dict, Optional
import logging
from fastapi import APIRouter, Request
from pydantic import BaseModel, ValidationError
from timeops.approvals.aggregator import ApprovalAggregator, ReviewValidationError
from timeops.integrations.api_client import TimeTrackingAPIError
from timeops.models import ApiResponse
from timeops.utils.ids import request_id as get_request_id

logger = logging.getLogger(__name__)
router = APIRouter(tags=["reviews"])


class ToggleAllBody(BaseModel):
    checked: bool


class RateBody(BaseModel):
    rate: Optional[Any] = None


class RejectBody(BaseModel):
    reason: str = ""


def _review_view(review: ApprovalAggregator) -> Dict[str, Any]:
    ts = review.timesheet
    return {
        "timesheet": ts.model_dump(mode="json"),
        "total_minutes": ts.total_minutes,
        "selected_entry_ids": sorted(review.selection.selected_entry_ids),
        "rate_overrides": {str(k): v for k, v in review.selection.rate_overrides.items()},
        "effective_rates": {str(e.id): review.effective_rate(e) for e in ts.entries},
        "selected_totals": review.compute_totals(True).model_dump(),
        "all_totals": review.compute_totals(False).model_dump(),
        "notices": review.drain_notices(),
    }


def _not_open(timesheet_id: int, req_id: str) -> ApiResponse:
    return ApiResponse.failure(
        code="not_found",
        message=f"No open review for timesheet {timesheet_id}",
        request_id=req_id,
    )


@router.get("/timesheets/pending")
async def pending_timesheets(request: Request):
    """Timesheets awaiting review."""
    req_id = get_request_id(request.headers.get("x-request-id"))
    try:
        timesheets = await request.app.state.engine.api.list_pending_timesheets()
    except TimeTrackingAPIError as e:
        return ApiResponse.failure(code=e.code, message=e.message, request_id=req_id)
    return ApiResponse.success(
        data=[{**t.model_dump(mode="json"), "total_minutes": t.total_minutes} for t in timesheets],
        request_id=req_id,
    )


@router.post("/reviews/{timesheet_id}")
async def open_review(request: Request, timesheet_id: int):
    req_id = get_request_id(request.headers.get("x-request-id"))
    try:
        review = await request.app.state.engine.open_review(timesheet_id)
    except TimeTrackingAPIError as e:
        return ApiResponse.failure(code=e.code, message=e.message, request_id=req_id)
    except (ValidationError, ValueError) as e:
        logger.error(f"Timesheet {timesheet_id} failed validation: {e}", exc_info=True)
        return ApiResponse.failure(
            code="internal_error", message="Server returned an invalid timesheet", request_id=req_id
        )
    return ApiResponse.success(data=_review_view(review), request_id=req_id)


@router.get("/reviews/{timesheet_id}")
async def get_review(request: Request, timesheet_id: int):
    req_id = get_request_id(request.headers.get("x-request-id"))
    review = request.app.state.engine.reviews.get(timesheet_id)
    if review is None:
        return _not_open(timesheet_id, req_id)
    return ApiResponse.success(data=_review_view(review), request_id=req_id)


@router.delete("/reviews/{timesheet_id}")
async def close_review(request: Request, timesheet_id: int):
    req_id = get_request_id(request.headers.get("x-request-id"))
    closed = request.app.state.engine.close_review(timesheet_id)
    return ApiResponse.success(data={"closed": closed}, request_id=req_id)


@router.post("/reviews/{timesheet_id}/entries/{entry_id}/toggle")
async def toggle_entry(request: Request, timesheet_id: int, entry_id: int):
    req_id = get_request_id(request.headers.get("x-request-id"))
    review = request.app.state.engine.reviews.get(timesheet_id)
    if review is None:
        return _not_open(timesheet_id, req_id)
    try:
        selected = review.toggle_entry(entry_id)
    except ReviewValidationError as e:
        return ApiResponse.failure(code=e.code, message=e.message, request_id=req_id)
    return ApiResponse.success(
        data={"entry_id": entry_id, "selected": selected, "totals": review.compute_totals().model_dump()},
        request_id=req_id,
    )


@router.post("/reviews/{timesheet_id}/toggle-all")
async def toggle_all(request: Request, timesheet_id: int, body: ToggleAllBody):
    req_id = get_request_id(request.headers.get("x-request-id"))
    review = request.app.state.engine.reviews.get(timesheet_id)
    if review is None:
        return _not_open(timesheet_id, req_id)
    selected = review.toggle_all(body.checked)
    return ApiResponse.success(
        data={"selected_entry_ids": sorted(selected), "totals": review.compute_totals().model_dump()},
        request_id=req_id,
    )


@router.put("/reviews/{timesheet_id}/rates/{entry_id}")
async def set_rate(request: Request, timesheet_id: int, entry_id: int, body: RateBody):
    req_id = get_request_id(request.headers.get("x-request-id"))
    review = request.app.state.engine.reviews.get(timesheet_id)
    if review is None:
        return _not_open(timesheet_id, req_id)
    try:
        rate = review.set_rate_override(entry_id, body.rate)
    except ReviewValidationError as e:
        return ApiResponse.failure(code=e.code, message=e.message, request_id=req_id)
    entry = review.timesheet.entry(entry_id)
    return ApiResponse.success(
        data={
            "entry_id": entry_id,
            "override": rate,
            "effective_rate": review.effective_rate(entry),
            "totals": review.compute_totals().model_dump(),
        },
        request_id=req_id,
    )


@router.get("/reviews/{timesheet_id}/totals")
async def totals(request: Request, timesheet_id: int, selected_only: bool = True):
    req_id = get_request_id(request.headers.get("x-request-id"))
    review = request.app.state.engine.reviews.get(timesheet_id)
    if review is None:
        return _not_open(timesheet_id, req_id)
    return ApiResponse.success(
        data=review.compute_totals(selected_only).model_dump(), request_id=req_id
    )


@router.post("/reviews/{timesheet_id}/approve")
async def approve(request: Request, timesheet_id: int):
    req_id = get_request_id(request.headers.get("x-request-id"))
    review = request.app.state.engine.reviews.get(timesheet_id)
    if review is None:
        return _not_open(timesheet_id, req_id)
    result = await review.approve_selected()
    result.requestId = req_id
    if result.ok:
        result.data = _review_view(review)
    return result


@router.post("/reviews/{timesheet_id}/reject")
async def reject(request: Request, timesheet_id: int, body: RejectBody):
    req_id = get_request_id(request.headers.get("x-request-id"))
    review = request.app.state.engine.reviews.get(timesheet_id)
    if review is None:
        return _not_open(timesheet_id, req_id)
    result = await review.reject_selected(body.reason)
    result.requestId = req_id
    if result.ok:
        result.data = _review_view(review)
    return result
