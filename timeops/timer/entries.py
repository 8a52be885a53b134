"""
Cached list of the user's time entries, refetched whenever a mutation
invalidates it (e.g. a timer stop committing a new draft entry).
"""
from __future__ import annotations
import logging
from typing import Dict, List, Optional, Tuple

from timeops.integrations.api_client import TimeTrackingAPIError
from timeops.integrations.api_types import TimeEntryFilters
from timeops.models import ApiResponse, TimeEntry, group_by_week

logger = logging.getLogger(__name__)


class TimeEntryList:
    def __init__(self, api, filters: Optional[TimeEntryFilters] = None):
        self.api = api
        self.filters = filters or TimeEntryFilters()
        self.entries: List[TimeEntry] = []
        self.stale = True

    def invalidate(self) -> None:
        self.stale = True

    async def refresh(self, filters: Optional[TimeEntryFilters] = None) -> ApiResponse:
        """Refetch entries; on failure the previous list is kept and stays stale."""
        if filters is not None:
            self.filters = filters
        try:
            self.entries = await self.api.list_time_entries(self.filters)
        except TimeTrackingAPIError as e:
            self.stale = True
            logger.warning(f"Time entry refresh failed ({e.code}): {e.message}")
            return ApiResponse.failure(e.code, e.message)
        self.stale = False
        logger.debug(f"Loaded {len(self.entries)} time entries")
        return ApiResponse.success(data=self.entries)

    @property
    def total_minutes(self) -> int:
        return sum(e.minutes for e in self.entries)

    def week_totals(self) -> Dict[Tuple[int, int, int], int]:
        """Minutes per (user_id, iso_year, iso_week), the way timesheets group entries."""
        return {
            key: sum(e.minutes for e in entries)
            for key, entries in group_by_week(self.entries).items()
        }
