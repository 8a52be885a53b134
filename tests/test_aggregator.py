"""
Tests for timesheet review selection, rates, totals and bulk actions.
"""
import pytest
from pydantic import ValidationError

from conftest import make_entry, make_timesheet
from timeops.approvals.aggregator import ApprovalAggregator, ReviewValidationError, parse_rate
from timeops.integrations.api_client import TimeTrackingAPIError
from timeops.models import EntryStatus, Timesheet


def scenario_timesheet():
    # 30/45/60 minutes at $20/$25/$30
    return make_timesheet([
        make_entry(1, minutes=30, rate=20),
        make_entry(2, minutes=45, rate=25),
        make_entry(3, minutes=60, rate=30),
    ])


def mixed_timesheet():
    return make_timesheet(
        [
            make_entry(1, minutes=30),
            make_entry(2, minutes=45, status=EntryStatus.DRAFT),
            make_entry(3, minutes=60, status=EntryStatus.APPROVED),
            make_entry(4, minutes=15, status=EntryStatus.REJECTED, rejection_reason="dup"),
            make_entry(5, minutes=90, status=EntryStatus.PAID),
            make_entry(6, minutes=20),
        ],
        user_rate=50,
    )


@pytest.fixture
def review(fake_api):
    fake_api.timesheets[100] = scenario_timesheet()
    return ApprovalAggregator(fake_api, scenario_timesheet())


def test_scenario_b_all_selected(review):
    totals = review.compute_totals(True)

    assert totals.minutes == 135
    assert totals.cost == pytest.approx(58.75)
    assert totals.formatted_cost == "58.75"
    assert totals.formatted_duration == "2:15"


def test_scenario_c_deselect_one(review):
    assert review.toggle_entry(2) is False

    totals = review.compute_totals(True)

    assert totals.minutes == 90
    assert totals.cost == pytest.approx(40.00)


def test_selected_totals_match_all_when_everything_selected(review):
    assert review.compute_totals(True) == review.compute_totals(False)
    review.toggle_entry(1)
    assert review.compute_totals(True) != review.compute_totals(False)
    review.toggle_entry(1)
    assert review.compute_totals(True) == review.compute_totals(False)


def test_toggle_all_selects_only_submitted(fake_api):
    review = ApprovalAggregator(fake_api, mixed_timesheet(), preselect=False)
    assert review.selected_ids == set()

    assert review.toggle_all(True) == {1, 6}
    assert review.toggle_all(False) == set()


@pytest.mark.parametrize("entry_id", [2, 3, 4, 5])
def test_cannot_select_non_submitted(fake_api, entry_id):
    review = ApprovalAggregator(fake_api, mixed_timesheet(), preselect=False)

    with pytest.raises(ReviewValidationError) as exc_info:
        review.toggle_entry(entry_id)

    assert exc_info.value.code == "invalid_status"
    assert review.selected_ids == set()


def test_unknown_entry_rejected(review):
    with pytest.raises(ReviewValidationError) as exc_info:
        review.toggle_entry(999)
    assert exc_info.value.code == "unknown_entry"


def test_effective_rate_hierarchy(fake_api):
    timesheet = make_timesheet(
        [make_entry(1, rate=40), make_entry(2), make_entry(3)],
        user_rate=25,
    )
    review = ApprovalAggregator(fake_api, timesheet)
    e1, e2, e3 = timesheet.entries

    assert review.effective_rate(e1) == 40
    assert review.effective_rate(e2) == 25

    review.set_rate_override(1, 55)
    review.set_rate_override(3, 0)
    assert review.effective_rate(e1) == 55
    assert review.effective_rate(e3) == 0

    review.set_rate_override(1, None)
    assert review.effective_rate(e1) == 40
    assert review.effective_rate(e1) == review.effective_rate(e1)


def test_effective_rate_falls_back_to_zero(fake_api):
    timesheet = make_timesheet([make_entry(1)])
    timesheet.user = None
    review = ApprovalAggregator(fake_api, timesheet)

    assert review.effective_rate(timesheet.entries[0]) == 0.0
    assert review.compute_totals().cost == 0.0


@pytest.mark.parametrize("bad", [-1, -0.01, "abc", "", float("nan"), float("inf"), True, [5]])
def test_invalid_rates_are_not_stored(review, bad):
    with pytest.raises(ReviewValidationError):
        review.set_rate_override(1, bad)
    assert 1 not in review.selection.rate_overrides


def test_numeric_strings_are_accepted():
    assert parse_rate("42.5") == 42.5
    assert parse_rate(0) == 0.0


def test_override_changes_totals(review):
    review.set_rate_override(3, 60)

    assert review.compute_totals().cost == pytest.approx(10.0 + 18.75 + 60.0)


def test_cost_is_not_rounded_per_entry(fake_api):
    # 7 minutes at $10 is 1.1666.. each; rounding per entry would give 3.51
    timesheet = make_timesheet([make_entry(i, minutes=7, rate=10) for i in (1, 2, 3)])
    review = ApprovalAggregator(fake_api, timesheet)

    totals = review.compute_totals()

    assert totals.cost == pytest.approx(3.5)
    assert totals.formatted_cost == "3.50"


@pytest.mark.asyncio
async def test_empty_selection_is_a_no_op(review, fake_api):
    review.toggle_all(False)
    before = review.timesheet

    approve = await review.approve_selected()
    reject = await review.reject_selected("wrong project")

    assert approve.error.code == "empty_selection"
    assert reject.error.code == "empty_selection"
    assert fake_api.calls == []
    assert review.timesheet is before


@pytest.mark.asyncio
@pytest.mark.parametrize("reason", ["", "   ", "\n\t", None])
async def test_reject_requires_reason(review, fake_api, reason):
    result = await review.reject_selected(reason)

    assert result.error.code == "reason_required"
    assert fake_api.calls == []
    assert all(e.status == EntryStatus.SUBMITTED for e in review.timesheet.entries)


@pytest.mark.asyncio
async def test_approve_sends_one_bulk_request(review, fake_api):
    review.toggle_entry(2)
    review.set_rate_override(1, 35)
    review.set_rate_override(2, 99)  # not selected, must not be sent
    approved = scenario_timesheet()
    approved.entries[0].status = EntryStatus.APPROVED
    approved.entries[2].status = EntryStatus.APPROVED
    fake_api.timesheets[100] = approved
    invoices_refreshed = []
    review.on_reviewed(lambda: invoices_refreshed.append(True))

    result = await review.approve_selected()

    assert result.ok
    assert fake_api.count("approve_entries") == 1
    body = fake_api.calls[0][1]
    assert body.entry_ids == [1, 3]
    assert body.rate_overrides == {1: 35.0}
    assert fake_api.count("get_timesheet") == 1
    assert review.timesheet.entry(1).status == EntryStatus.APPROVED
    assert review.timesheet.entry(2).status == EntryStatus.SUBMITTED
    assert review.selected_ids == set()
    assert review.selection.rate_overrides == {2: 99.0}
    assert invoices_refreshed == [True]


@pytest.mark.asyncio
async def test_approve_is_optimistic_when_refetch_fails(review, fake_api):
    fake_api.timesheets[100] = TimeTrackingAPIError("network_error", "down", 503)

    result = await review.approve_selected()

    assert result.ok
    assert review.stale is True
    assert all(e.status == EntryStatus.APPROVED for e in review.timesheet.entries)


@pytest.mark.asyncio
async def test_approve_without_overrides_omits_map(review, fake_api):
    await review.approve_selected()

    assert fake_api.calls[0][1].rate_overrides is None


@pytest.mark.asyncio
async def test_ambiguous_failure_refetches(review, fake_api):
    fake_api.approve_result = TimeTrackingAPIError("network_error", "Request failed", 503)
    server_view = scenario_timesheet()
    for e in server_view.entries:
        e.status = EntryStatus.APPROVED
    fake_api.timesheets[100] = server_view

    result = await review.approve_selected()

    assert not result.ok
    assert fake_api.count("get_timesheet") == 1
    assert review.selected_ids == set()
    assert review.drain_notices()


@pytest.mark.asyncio
async def test_definite_failure_keeps_selection(review, fake_api):
    fake_api.approve_result = TimeTrackingAPIError("forbidden", "Not a manager", 403)

    result = await review.approve_selected()

    assert result.error.code == "forbidden"
    assert fake_api.count("get_timesheet") == 0
    assert review.selected_ids == {1, 2, 3}
    assert review.last_error.code == "forbidden"


@pytest.mark.asyncio
async def test_partial_bulk_result_is_not_trusted(review, fake_api):
    partial = scenario_timesheet()
    partial.entries[0].status = EntryStatus.APPROVED
    fake_api.approve_result = partial
    fake_api.timesheets[100] = scenario_timesheet()

    result = await review.approve_selected()

    assert result.error.code == "partial_result"
    assert fake_api.count("get_timesheet") == 1
    assert all(e.status == EntryStatus.SUBMITTED for e in review.timesheet.entries)


@pytest.mark.asyncio
async def test_approve_uses_returned_timesheet(review, fake_api):
    returned = scenario_timesheet()
    for e in returned.entries:
        e.status = EntryStatus.APPROVED
    fake_api.approve_result = returned
    fake_api.timesheets[100] = returned

    result = await review.approve_selected()

    assert result.ok
    assert review.compute_totals(False).minutes == 0


@pytest.mark.asyncio
async def test_reject_records_reason(review, fake_api):
    fake_api.timesheets[100] = TimeTrackingAPIError("network_error", "down", 503)
    review.toggle_entry(1)

    result = await review.reject_selected("  hours look doubled  ")

    assert result.ok
    body = fake_api.calls[0][1]
    assert body.entry_ids == [2, 3]
    assert body.reason == "hours look doubled"
    rejected = review.timesheet.entry(2)
    assert rejected.status == EntryStatus.REJECTED
    assert rejected.rejection_reason == "hours look doubled"
    assert review.timesheet.entry(1).status == EntryStatus.SUBMITTED


@pytest.mark.asyncio
async def test_refresh_drops_entries_reviewed_elsewhere(review, fake_api):
    elsewhere = scenario_timesheet()
    elsewhere.entries[1].status = EntryStatus.APPROVED
    fake_api.timesheets[100] = elsewhere
    review.set_rate_override(2, 30)

    await review.refresh()

    assert review.selected_ids == {1, 3}
    assert review.drain_notices()
    assert review.compute_totals().minutes == 90


@pytest.mark.asyncio
async def test_selection_revalidated_before_sending(review, fake_api):
    review.timesheet.entries[0].status = EntryStatus.APPROVED

    result = await review.approve_selected()

    assert result.error.code == "invalid_status"
    assert result.error.details == {"entry_ids": [1]}
    assert fake_api.calls == []


@pytest.mark.asyncio
async def test_open_fetches_and_preselects(fake_api):
    fake_api.timesheets[100] = mixed_timesheet()

    review = await ApprovalAggregator.open(fake_api, 100)

    assert review.selected_ids == {1, 6}
    assert review.selection.rate_overrides == {}
    assert review.compute_totals().cost == pytest.approx(50 * 50 / 60)


def invalid_timesheet_error():
    with pytest.raises(ValidationError) as exc_info:
        Timesheet.model_validate({"id": 100, "entries": "not a list"})
    return exc_info.value


@pytest.mark.asyncio
async def test_unreadable_refetch_after_approve_is_contained(review, fake_api):
    fake_api.timesheets[100] = invalid_timesheet_error()

    result = await review.approve_selected()

    assert result.ok
    assert review.stale is True
    assert all(e.status == EntryStatus.APPROVED for e in review.timesheet.entries)


@pytest.mark.asyncio
async def test_unreadable_refetch_after_ambiguous_reject(review, fake_api):
    fake_api.reject_result = TimeTrackingAPIError("upstream_error", "Time-tracking server error: 502", 502)
    fake_api.timesheets[100] = invalid_timesheet_error()

    result = await review.reject_selected("duplicate")

    assert result.error.code == "upstream_error"
    assert review.stale is True


@pytest.mark.asyncio
async def test_refresh_reports_unreadable_timesheet(review, fake_api):
    fake_api.timesheets[100] = invalid_timesheet_error()

    result = await review.refresh()

    assert result.error.code == "internal_error"
    assert review.stale is True
    assert review.selected_ids == {1, 2, 3}
