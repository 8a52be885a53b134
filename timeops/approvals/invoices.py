"""
Invoices derived from approved entries, with local lifecycle checks
before each status change is requested.
"""
from __future__ import annotations
import logging
from typing import Awaitable, Callable, List, Optional

from pydantic import ValidationError

from timeops.integrations.api_client import TimeTrackingAPIError
from timeops.integrations.api_types import InvoiceFromTimesheetRequest
from timeops.models import (
    ApiResponse,
    EntryStatus,
    Invoice,
    InvoiceStatus,
    Timesheet,
    can_transition,
)

logger = logging.getLogger(__name__)


class InvoiceDesk:
    def __init__(self, api):
        self.api = api
        self.invoices: List[Invoice] = []
        self.status_filter: Optional[str] = None

    def get(self, invoice_id: int) -> Optional[Invoice]:
        for invoice in self.invoices:
            if invoice.id == invoice_id:
                return invoice
        return None

    def _upsert(self, invoice: Invoice) -> None:
        self.invoices = [i for i in self.invoices if i.id != invoice.id] + [invoice]

    async def refresh(self, status: Optional[str] = None) -> ApiResponse:
        if status is not None:
            self.status_filter = status
        try:
            self.invoices = await self.api.list_invoices(self.status_filter)
        except TimeTrackingAPIError as e:
            logger.warning(f"Invoice refresh failed ({e.code}): {e.message}")
            return ApiResponse.failure(e.code, e.message)
        except ValidationError as e:
            logger.error(f"Invoice list failed validation: {e}", exc_info=True)
            return ApiResponse.failure("internal_error", "Server returned an invalid invoice")
        return ApiResponse.success(data=self.invoices)

    async def create_from_timesheet(
        self, timesheet: Timesheet, notes: Optional[str] = None
    ) -> ApiResponse:
        """Invoice a timesheet; refused unless it holds approved entries."""
        if not timesheet.entries_with_status(EntryStatus.APPROVED):
            return ApiResponse.failure(
                "invalid_status",
                f"Timesheet {timesheet.id} has no approved entries to invoice",
            )
        body = InvoiceFromTimesheetRequest(timesheet_id=timesheet.id, notes=notes)
        try:
            invoice = await self.api.create_invoice_from_timesheet(body)
        except TimeTrackingAPIError as e:
            logger.warning(
                f"Invoice creation failed ({e.code}): {e.message}",
                extra={"timesheet_id": timesheet.id},
            )
            return ApiResponse.failure(e.code, e.message)
        except ValidationError as e:
            logger.error(f"Invoice for timesheet {timesheet.id} failed validation: {e}", exc_info=True)
            return ApiResponse.failure("internal_error", "Server returned an invalid invoice")
        self._upsert(invoice)
        logger.info(
            f"Created invoice {invoice.invoice_number or invoice.id} from timesheet {timesheet.id}",
            extra={"timesheet_id": timesheet.id},
        )
        return ApiResponse.success(data=invoice)

    async def approve(self, invoice: Invoice) -> ApiResponse:
        return await self._advance(invoice, InvoiceStatus.APPROVED, self.api.approve_invoice)

    async def decline(self, invoice: Invoice) -> ApiResponse:
        return await self._advance(invoice, InvoiceStatus.DECLINED, self.api.decline_invoice)

    async def mark_paid(self, invoice: Invoice) -> ApiResponse:
        return await self._advance(invoice, InvoiceStatus.PAID, self.api.mark_invoice_paid)

    async def _advance(
        self,
        invoice: Invoice,
        target: InvoiceStatus,
        call: Callable[[int], Awaitable[Invoice]],
    ) -> ApiResponse:
        if not can_transition(invoice.status, target):
            return ApiResponse.failure(
                "invalid_transition",
                f"Invoice {invoice.id} is {invoice.status.value} and cannot become {target.value}",
            )
        try:
            updated = await call(invoice.id)
        except TimeTrackingAPIError as e:
            logger.warning(f"Invoice {invoice.id} -> {target.value} failed ({e.code}): {e.message}")
            return ApiResponse.failure(e.code, e.message)
        except ValidationError as e:
            logger.error(f"Invoice {invoice.id} response failed validation: {e}", exc_info=True)
            return ApiResponse.failure("internal_error", "Server returned an invalid invoice")
        self._upsert(updated)
        logger.info(f"Invoice {invoice.id} is now {updated.status.value}")
        return ApiResponse.success(data=updated)
