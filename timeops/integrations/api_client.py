"""
Async time-tracking API client with retry logic and error mapping.
"""
import logging
import asyncio
from typing import Dict, Any, List, Optional
import httpx
from timeops.utils.http import create_http_client
from timeops.utils.ids import new_request_id
from timeops.integrations.api_types import (
    StartTimerRequest,
    StopTimerRequest,
    TimeEntryFilters,
    ApproveEntriesRequest,
    RejectEntriesRequest,
    InvoiceFromTimesheetRequest,
)
from timeops.models import RunningTimerSession, TimeEntry, Timesheet, Invoice
from timeops.config import settings

logger = logging.getLogger(__name__)

STATUS_CODES = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    422: "validation_error",
}


class TimeTrackingAPIError(Exception):
    """Base exception for time-tracking API errors."""
    def __init__(self, code: str, message: str, status_code: int = 500):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_ambiguous(self) -> bool:
        """True when the server may or may not have applied the request."""
        return self.code in ("upstream_error", "network_error")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"


class TimeTrackingClient:
    """Async client for the timer, time-entry, timesheet and invoice endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.token = token or settings.API_TOKEN
        self.timeout = settings.HTTP_TIMEOUT if timeout is None else timeout
        self.max_retries = settings.HTTP_MAX_RETRIES if max_retries is None else max_retries

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        idempotent: bool = True,
    ) -> Any:
        """
        Make HTTP request, retrying idempotent calls on 429/5xx/timeouts.
        Maps errors to TimeTrackingAPIError with appropriate codes.
        """
        url = f"{self.base_url}{path}"
        req_id = new_request_id()
        headers = {"Content-Type": "application/json", "X-Request-ID": req_id}
        attempts = max(self.max_retries, 1) if idempotent else 1

        last_exception = None
        for attempt in range(attempts):
            try:
                async with create_http_client(timeout=self.timeout, token=self.token) as client:
                    response = await client.request(
                        method.upper(),
                        url,
                        headers=headers,
                        params=params,
                        json=json_body,
                    )

                    if response.status_code == 429 or response.status_code >= 500:
                        delay = (2 ** attempt) * 0.5
                        logger.warning(
                            f"API {method} {path} returned {response.status_code} (attempt {attempt + 1}/{attempts})",
                            extra={"request_id": req_id},
                        )
                        if attempt < attempts - 1:
                            await asyncio.sleep(delay)
                            continue
                        if response.status_code == 429:
                            raise TimeTrackingAPIError(
                                "rate_limited",
                                "Time-tracking API rate limit exceeded",
                                429,
                            )
                        raise TimeTrackingAPIError(
                            "upstream_error",
                            f"Time-tracking server error: {response.status_code}",
                            response.status_code,
                        )

                    if response.status_code >= 400:
                        code = STATUS_CODES.get(response.status_code, "request_failed")
                        raise TimeTrackingAPIError(
                            code,
                            _error_message(response),
                            response.status_code,
                        )

                    if response.status_code == 204 or not response.content:
                        return None

                    try:
                        body = response.json()
                    except ValueError:
                        raise TimeTrackingAPIError(
                            "request_failed",
                            f"Unreadable response from {method.upper()} {path}",
                            response.status_code,
                        )
                    if isinstance(body, dict) and body.get("success") is False:
                        raise TimeTrackingAPIError(
                            "request_failed",
                            body.get("message") or "API request failed",
                            response.status_code,
                        )
                    return body

            except TimeTrackingAPIError:
                raise
            except httpx.TimeoutException as e:
                last_exception = e
                logger.warning(
                    f"API {method} {path} timed out (attempt {attempt + 1}/{attempts})",
                    extra={"request_id": req_id},
                )
                if attempt < attempts - 1:
                    await asyncio.sleep((2 ** attempt) * 0.5)
                    continue
            except httpx.HTTPError as e:
                last_exception = e
                logger.error(f"API {method} {path} failed: {e}", extra={"request_id": req_id})
                if attempt < attempts - 1:
                    await asyncio.sleep((2 ** attempt) * 0.5)
                    continue

        raise TimeTrackingAPIError(
            "network_error",
            f"Request failed after {attempts} attempt(s)",
            503,
        ) from last_exception

    @staticmethod
    def _data(body: Any) -> Any:
        if isinstance(body, dict):
            return body.get("data")
        return body

    @staticmethod
    def _record(body: Any, what: str) -> Dict[str, Any]:
        # A success status with no object in `data` is a failed call, not an empty one
        data = TimeTrackingClient._data(body)
        if not isinstance(data, dict):
            raise TimeTrackingAPIError(
                "request_failed", f"Server returned no {what}", 502
            )
        return data

    @staticmethod
    def _items(body: Any) -> List[Dict[str, Any]]:
        # Lists arrive bare, as {data: [...]} or paginated as {data: {data: [...]}}
        data = body
        while isinstance(data, dict):
            data = data.get("data")
        return list(data or [])

    # Timer
    async def get_current_timer(self) -> Optional[RunningTimerSession]:
        """Fetch the running timer, or None when nothing is running."""
        data = self._data(await self._request("GET", "/timer/current"))
        if not data:
            return None
        return RunningTimerSession.model_validate(data)

    async def start_timer(self, body: StartTimerRequest) -> RunningTimerSession:
        """Start a timer; a 409 means one is already running."""
        data = self._record(await self._request(
            "POST",
            "/timer/start",
            json_body=body.model_dump(exclude_none=True),
            idempotent=False,
        ), "running timer")
        return RunningTimerSession(**data)

    async def stop_timer(self, body: Optional[StopTimerRequest] = None) -> TimeEntry:
        """Stop the running timer and return the persisted entry."""
        body = body or StopTimerRequest()
        data = self._record(await self._request(
            "POST",
            "/timer/stop",
            json_body=body.model_dump(exclude_none=True),
        ), "stopped entry")
        return TimeEntry(**data)

    async def discard_timer(self) -> bool:
        """Delete the running timer without creating an entry."""
        body = await self._request("POST", "/timer/discard", idempotent=False)
        if isinstance(body, dict):
            return bool(body.get("success", True))
        return True

    # Time entries
    async def list_time_entries(
        self, filters: Optional[TimeEntryFilters] = None
    ) -> List[TimeEntry]:
        params = filters.model_dump(exclude_none=True) if filters else None
        body = await self._request("GET", "/time-entries", params=params)
        return [TimeEntry.model_validate(e) for e in self._items(body)]

    async def approve_entries(self, body: ApproveEntriesRequest) -> Optional[Timesheet]:
        """Approve entries in one bulk call."""
        data = self._data(await self._request(
            "POST",
            "/time-entries/approve",
            json_body=body.model_dump(exclude_none=True),
            idempotent=False,
        ))
        return Timesheet.model_validate(data) if data else None

    async def reject_entries(self, body: RejectEntriesRequest) -> Optional[Timesheet]:
        """Reject entries in one bulk call."""
        data = self._data(await self._request(
            "POST",
            "/time-entries/reject",
            json_body=body.model_dump(),
            idempotent=False,
        ))
        return Timesheet.model_validate(data) if data else None

    # Timesheets
    async def get_timesheet(self, timesheet_id: int) -> Timesheet:
        data = self._record(await self._request("GET", f"/timesheets/{timesheet_id}"), "timesheet")
        return Timesheet(**data)

    async def list_pending_timesheets(self) -> List[Timesheet]:
        body = await self._request("GET", "/timesheets/pending")
        return [Timesheet.model_validate(t) for t in self._items(body)]

    # Invoices
    async def list_invoices(self, status: Optional[str] = None) -> List[Invoice]:
        params = {"status": status} if status else None
        body = await self._request("GET", "/invoices", params=params)
        return [Invoice.model_validate(i) for i in self._items(body)]

    async def create_invoice_from_timesheet(
        self, body: InvoiceFromTimesheetRequest
    ) -> Invoice:
        data = self._record(await self._request(
            "POST",
            "/invoices/from-timesheet",
            json_body=body.model_dump(exclude_none=True),
            idempotent=False,
        ), "invoice")
        return Invoice(**data)

    async def approve_invoice(self, invoice_id: int) -> Invoice:
        data = self._record(await self._request(
            "POST", f"/invoices/{invoice_id}/approve", idempotent=False
        ), "invoice")
        return Invoice(**data)

    async def decline_invoice(self, invoice_id: int) -> Invoice:
        data = self._record(await self._request(
            "POST", f"/invoices/{invoice_id}/decline", idempotent=False
        ), "invoice")
        return Invoice(**data)

    async def mark_invoice_paid(self, invoice_id: int) -> Invoice:
        data = self._record(await self._request(
            "POST", f"/invoices/{invoice_id}/mark-paid", idempotent=False
        ), "invoice")
        return Invoice(**data)
