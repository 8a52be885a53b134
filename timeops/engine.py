"""
One engine instance: API client, timer controller and its scheduler,
entry/invoice caches and the currently open reviews.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from timeops.approvals.aggregator import ApprovalAggregator
from timeops.approvals.invoices import InvoiceDesk
from timeops.config import Settings, settings as default_settings
from timeops.integrations.api_client import TimeTrackingClient
from timeops.scheduler import TimerScheduler
from timeops.timer.entries import TimeEntryList
from timeops.timer.session import TimerSessionController
from timeops.timer.store import JsonFileSessionStore

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    api: object
    timer: TimerSessionController
    entries: TimeEntryList
    invoices: InvoiceDesk
    scheduler: Optional[TimerScheduler] = None
    reviews: Dict[int, ApprovalAggregator] = field(default_factory=dict)

    def __post_init__(self):
        self.timer.on_entries_changed(self.entries.refresh)

    async def open_review(self, timesheet_id: int) -> ApprovalAggregator:
        """Start a fresh review; any earlier review of the same timesheet is dropped."""
        review = await ApprovalAggregator.open(self.api, timesheet_id)
        review.on_reviewed(self.invoices.refresh)
        review.on_reviewed(self.entries.invalidate)
        self.reviews[timesheet_id] = review
        return review

    def close_review(self, timesheet_id: int) -> bool:
        return self.reviews.pop(timesheet_id, None) is not None


def build_engine(config: Optional[Settings] = None, api=None) -> Engine:
    config = config or default_settings
    api = api or TimeTrackingClient(
        base_url=config.API_BASE_URL,
        token=config.API_TOKEN,
        timeout=config.HTTP_TIMEOUT,
        max_retries=config.HTTP_MAX_RETRIES,
    )
    timer = TimerSessionController(api, store=JsonFileSessionStore(config.TIMER_CACHE_PATH))
    engine = Engine(
        api=api,
        timer=timer,
        entries=TimeEntryList(api),
        invoices=InvoiceDesk(api),
        scheduler=TimerScheduler(
            timer,
            tick_seconds=config.TIMER_TICK_SECONDS,
            resync_seconds=config.TIMER_RESYNC_SECONDS,
        ),
    )
    logger.info(f"Engine built against {config.API_BASE_URL}")
    return engine
