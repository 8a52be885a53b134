"""
Tests for invoice creation and status changes.
"""
import pytest
from pydantic import ValidationError

from conftest import make_entry, make_invoice, make_timesheet
from timeops.approvals.invoices import InvoiceDesk
from timeops.integrations.api_client import TimeTrackingAPIError
from timeops.models import EntryStatus, Invoice, InvoiceStatus


@pytest.mark.asyncio
async def test_create_refused_without_approved_entries(fake_api):
    desk = InvoiceDesk(fake_api)
    timesheet = make_timesheet([make_entry(1), make_entry(2, status=EntryStatus.REJECTED)])

    result = await desk.create_from_timesheet(timesheet)

    assert result.error.code == "invalid_status"
    assert fake_api.calls == []


@pytest.mark.asyncio
async def test_create_from_approved_timesheet(fake_api):
    desk = InvoiceDesk(fake_api)
    approved = make_entry(1, status=EntryStatus.APPROVED)
    timesheet = make_timesheet([approved, make_entry(2)])
    fake_api.invoice_result = make_invoice(status="draft", entries=[approved])

    result = await desk.create_from_timesheet(timesheet, notes="March")

    assert result.ok
    body = fake_api.calls[0][1]
    assert body.timesheet_id == 100
    assert body.notes == "March"
    assert desk.get(900).status == InvoiceStatus.DRAFT


def test_invoice_cannot_reference_unapproved_entries():
    with pytest.raises(ValidationError):
        make_invoice(entries=[make_entry(1, status=EntryStatus.SUBMITTED)])


@pytest.mark.asyncio
async def test_approve_pending_invoice(fake_api):
    desk = InvoiceDesk(fake_api)
    fake_api.invoice_result = make_invoice(status="approved")

    result = await desk.approve(make_invoice(status="pending"))

    assert result.ok
    assert fake_api.calls == [("approve_invoice", 900)]
    assert desk.get(900).status == InvoiceStatus.APPROVED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, action",
    [
        ("draft", "approve"),
        ("declined", "approve"),
        ("paid", "decline"),
        ("pending", "mark_paid"),
        ("paid", "mark_paid"),
    ],
)
async def test_illegal_invoice_transitions_are_refused(fake_api, status, action):
    desk = InvoiceDesk(fake_api)

    result = await getattr(desk, action)(make_invoice(status=status))

    assert result.error.code == "invalid_transition"
    assert fake_api.calls == []


@pytest.mark.asyncio
async def test_refresh_keeps_list_on_failure(fake_api):
    desk = InvoiceDesk(fake_api)
    fake_api.invoices_result = [make_invoice()]
    await desk.refresh("pending")

    fake_api.invoices_result = TimeTrackingAPIError("network_error", "down", 503)
    result = await desk.refresh()

    assert not result.ok
    assert [i.id for i in desk.invoices] == [900]
    assert fake_api.calls[-1] == ("list_invoices", "pending")


def test_invoice_paid_entries_allowed():
    invoice = Invoice(id=1, user_id=5, status="paid", entries=[make_entry(1, status=EntryStatus.PAID)])
    assert invoice.status == InvoiceStatus.PAID
