
from typing import Optional
from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, ValidationError
from timeops.integrations.api_client import TimeTrackingAPIError
from timeops.models import ApiResponse
from timeops.utils.ids import request_id as get_request_id

router = APIRouter(prefix="/invoices", tags=["invoices"])


class FromTimesheetBody(BaseModel):
    timesheet_id: int
    notes: Optional[str] = None


@router.get("")
async def list_invoices(request: Request, status: Optional[str] = Query(None)):
    req_id = get_request_id(request.headers.get("x-request-id"))
    result = await request.app.state.engine.invoices.refresh(status)
    result.requestId = req_id
    return result


@router.post("/from-timesheet")
async def from_timesheet(request: Request, body: FromTimesheetBody):
    """Invoice the approved entries of a timesheet."""
    req_id = get_request_id(request.headers.get("x-request-id"))
    engine = request.app.state.engine
    review = engine.reviews.get(body.timesheet_id)
    if review is not None:
        timesheet = review.timesheet
    else:
        try:
            timesheet = await engine.api.get_timesheet(body.timesheet_id)
        except TimeTrackingAPIError as e:
            return ApiResponse.failure(code=e.code, message=e.message, request_id=req_id)
        except (ValidationError, ValueError):
            return ApiResponse.failure(
                code="internal_error", message="Server returned an invalid timesheet", request_id=req_id
            )
    result = await engine.invoices.create_from_timesheet(timesheet, body.notes)
    result.requestId = req_id
    return result


async def _advance(request: Request, invoice_id: int, action: str) -> ApiResponse:
    req_id = get_request_id(request.headers.get("x-request-id"))
    desk = request.app.state.engine.invoices
    invoice = desk.get(invoice_id)
    if invoice is None:
        await desk.refresh()
        invoice = desk.get(invoice_id)
    if invoice is None:
        return ApiResponse.failure(
            code="not_found", message=f"Invoice {invoice_id} not found", request_id=req_id
        )
    result = await getattr(desk, action)(invoice)
    result.requestId = req_id
    return result


@router.post("/{invoice_id}/approve")
async def approve(request: Request, invoice_id: int):
    return await _advance(request, invoice_id, "approve")


@router.post("/{invoice_id}/decline")
async def decline(request: Request, invoice_id: int):
    return await _advance(request, invoice_id, "decline")


@router.post("/{invoice_id}/mark-paid")
async def mark_paid(request: Request, invoice_id: int):
    return await _advance(request, invoice_id, "mark_paid")
