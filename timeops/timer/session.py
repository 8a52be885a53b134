"""
Running-timer session controller.

Holds the one timer the current user may have running, derives its elapsed
time from the server's ``started_at`` and reconciles with the server on every
resync. Mutations (start/stop/discard) are mutually exclusive; a resync that
overlaps a mutation is discarded so the mutation's result always wins.
"""
from __future__ import annotations
import inspect
import logging
from enum import Enum
from typing import Any, Callable, List, Optional, Set

from pydantic import BaseModel, ValidationError

from timeops.formatting import format_elapsed
from timeops.integrations.api_client import TimeTrackingAPIError
from timeops.integrations.api_types import StartTimerRequest, StopTimerRequest
from timeops.models import ApiError, ApiResponse, RunningTimerSession
from timeops.observability.metrics import (
    timer_conflicts_total,
    timer_mutations_total,
    timer_resyncs_total,
)
from timeops.timer.clock import Clock, elapsed_seconds, utc_now
from timeops.timer.store import MemorySessionStore, SessionStore

logger = logging.getLogger(__name__)


class TimerPhase(str, Enum):
    ABSENT = "absent"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    DISCARDING = "discarding"


PENDING_PHASES = frozenset({TimerPhase.STARTING, TimerPhase.STOPPING, TimerPhase.DISCARDING})


class TimerSnapshot(BaseModel):
    """Read-only view of the controller for display."""
    phase: TimerPhase
    session: Optional[RunningTimerSession] = None
    elapsed_seconds: int = 0
    elapsed: str = "00:00:00"
    synced: bool = False


class TimerSessionController:
    """Lifecycle of the current user's running timer."""

    def __init__(
        self,
        api,
        store: Optional[SessionStore] = None,
        clock: Optional[Clock] = None,
    ):
        self.api = api
        self.store = store if store is not None else MemorySessionStore()
        self.clock = clock or utc_now
        self.session: Optional[RunningTimerSession] = None
        self.phase = TimerPhase.ABSENT
        self.elapsed_seconds = 0
        self.synced = False
        self.last_error: Optional[ApiError] = None
        self._generation = 0
        self._ended_ids: Set[int] = set()
        self._notices: List[str] = []
        self._listeners: List[Callable[[], Any]] = []

        cached = self.store.load()
        if cached is not None:
            # Shown until the first resync confirms or replaces it
            self.session = cached
            self.phase = TimerPhase.RUNNING
            self.tick()
            logger.info(
                f"Restored cached timer {cached.id} started at {cached.started_at.isoformat()}",
                extra={"session_id": cached.id},
            )

    # Observers
    def on_entries_changed(self, callback: Callable[[], Any]) -> None:
        """Register a callback (sync or async) run after a stop commits an entry."""
        self._listeners.append(callback)

    def drain_notices(self) -> List[str]:
        notices, self._notices = self._notices, []
        return notices

    @property
    def is_pending(self) -> bool:
        return self.phase in PENDING_PHASES

    @property
    def is_running(self) -> bool:
        return self.session is not None

    def snapshot(self) -> TimerSnapshot:
        return TimerSnapshot(
            phase=self.phase,
            session=self.session,
            elapsed_seconds=self.elapsed_seconds,
            elapsed=format_elapsed(self.elapsed_seconds),
            synced=self.synced,
        )

    # Clock
    def tick(self) -> int:
        """Recompute elapsed seconds from started_at; safe after any suspension."""
        if self.session is None:
            self.elapsed_seconds = 0
        else:
            self.elapsed_seconds = elapsed_seconds(self.session.started_at, self.clock())
        return self.elapsed_seconds

    # Server truth
    async def resync(self) -> ApiResponse:
        """Pull the authoritative running timer and overwrite local state with it."""
        generation = self._generation
        try:
            current = await self.api.get_current_timer()
        except TimeTrackingAPIError as e:
            timer_resyncs_total.labels("failed").inc()
            logger.warning(f"Timer resync failed ({e.code}): {e.message}")
            return ApiResponse.failure(e.code, e.message)
        except (ValidationError, ValueError) as e:
            timer_resyncs_total.labels("failed").inc()
            logger.error(f"Timer resync returned an unreadable payload: {e}", exc_info=True)
            return ApiResponse.failure("internal_error", "Unreadable timer payload from server")

        if self.is_pending or generation != self._generation:
            timer_resyncs_total.labels("ignored").inc()
            logger.debug(
                "Discarding resync result that overlapped a timer mutation",
                extra={"phase": self.phase.value},
            )
            return ApiResponse.success(data=self.snapshot())

        if current is not None and current.id in self._ended_ids:
            timer_resyncs_total.labels("ignored").inc()
            logger.warning(
                f"Server still reports ended timer {current.id}; ignoring",
                extra={"session_id": current.id},
            )
            return ApiResponse.success(data=self.snapshot())

        self._apply_server_state(current)
        timer_resyncs_total.labels("applied").inc()
        return ApiResponse.success(data=self.snapshot())

    def _apply_server_state(self, current: Optional[RunningTimerSession]) -> None:
        local = self.session
        if current is None:
            if local is not None:
                logger.info(
                    f"Timer {local.id} ended elsewhere; clearing local state",
                    extra={"session_id": local.id},
                )
                self._notices.append("The running timer was stopped or discarded in another session.")
                self._clear_local()
        else:
            if local is None:
                logger.info(
                    f"Adopting running timer {current.id} from server",
                    extra={"session_id": current.id},
                )
            elif local.id != current.id:
                logger.warning(
                    f"Server timer {current.id} replaces local timer {local.id}",
                    extra={"session_id": current.id},
                )
                self._notices.append("A different timer is running on the server; switched to it.")
            self.session = current
            self.phase = TimerPhase.RUNNING
            self.store.save(current)
        self.synced = True
        self.tick()

    def _clear_local(self) -> None:
        self.session = None
        self.phase = TimerPhase.ABSENT
        self.elapsed_seconds = 0
        self.store.clear()

    def _fail(self, operation: str, code: str, message: str) -> ApiResponse:
        self.last_error = ApiError(code=code, message=message)
        timer_mutations_total.labels(operation, "failed").inc()
        logger.warning(f"Timer {operation} failed ({code}): {message}")
        return ApiResponse.failure(code, message)

    def _refuse(self, operation: str) -> Optional[ApiResponse]:
        if self.is_pending:
            return ApiResponse.failure(
                "busy", f"Cannot {operation} while a timer {self.phase.value} request is in flight"
            )
        return None

    # Mutations
    async def start(
        self,
        project_id: int,
        todo_id: Optional[int] = None,
        description: Optional[str] = None,
        is_billable: bool = True,
    ) -> ApiResponse:
        """Start a timer. A conflict means one already runs server-side: resync instead."""
        refused = self._refuse("start")
        if refused:
            return refused
        if self.session is not None:
            return ApiResponse.failure("already_running", "A timer is already running")
        try:
            body = StartTimerRequest(
                project_id=project_id,
                todo_id=todo_id,
                description=description,
                is_billable=is_billable,
            )
        except ValidationError as e:
            return ApiResponse.failure("validation_error", str(e))

        self.phase = TimerPhase.STARTING
        try:
            session = await self.api.start_timer(body)
        except TimeTrackingAPIError as e:
            self.phase = TimerPhase.ABSENT
            if e.code == "conflict":
                timer_conflicts_total.inc()
                logger.info("Start rejected: a timer is already running; resyncing")
                await self.resync()
                return ApiResponse.failure(
                    "conflict",
                    "A timer is already running; synchronized with the server",
                    details={"snapshot": self.snapshot().model_dump(mode="json")},
                )
            return self._fail("start", e.code, e.message)
        except (ValidationError, ValueError) as e:
            self.phase = TimerPhase.ABSENT
            logger.error(f"Unreadable start response: {e}", exc_info=True)
            return self._fail("start", "internal_error", "Unreadable start response from server")
        except BaseException:
            # Unexpected errors propagate, but never leave a mutation pending
            self.phase = TimerPhase.ABSENT
            raise

        self.session = session
        self.phase = TimerPhase.RUNNING
        self.elapsed_seconds = 0
        self.synced = True
        self.last_error = None
        self._generation += 1
        self.store.save(session)
        timer_mutations_total.labels("start", "ok").inc()
        logger.info(
            f"Timer {session.id} started for project {session.project_id}",
            extra={"session_id": session.id},
        )
        return ApiResponse.success(data=session)

    async def stop(self, description: Optional[str] = None) -> ApiResponse:
        """Commit the running timer as a draft entry; on failure the timer is kept."""
        refused = self._refuse("stop")
        if refused:
            return refused
        if self.session is None:
            return ApiResponse.failure("no_session", "No timer is running")

        session = self.session
        self.phase = TimerPhase.STOPPING
        try:
            entry = await self.api.stop_timer(StopTimerRequest(description=description))
        except TimeTrackingAPIError as e:
            self.phase = TimerPhase.RUNNING
            self._generation += 1
            if e.code in ("conflict", "not_found"):
                # Another tab most likely stopped it first
                await self.resync()
            return self._fail("stop", e.code, e.message)
        except (ValidationError, ValueError) as e:
            self.phase = TimerPhase.RUNNING
            self._generation += 1
            logger.error(f"Unreadable stop response: {e}", exc_info=True)
            return self._fail("stop", "internal_error", "Unreadable stop response from server")
        except BaseException:
            self.phase = TimerPhase.RUNNING
            self._generation += 1
            raise

        self._ended_ids.add(session.id)
        self._clear_local()
        self._generation += 1
        self.last_error = None
        timer_mutations_total.labels("stop", "ok").inc()
        logger.info(
            f"Timer {session.id} stopped as entry {entry.id} ({entry.duration_minutes} min)",
            extra={"session_id": session.id},
        )
        await self._notify_entries_changed()
        return ApiResponse.success(data=entry)

    async def discard(self, confirmed: bool = False) -> ApiResponse:
        """Delete the running timer without creating an entry. Requires confirmation."""
        if not confirmed:
            return ApiResponse.failure(
                "confirmation_required", "Discarding a timer cannot be undone; confirm first"
            )
        refused = self._refuse("discard")
        if refused:
            return refused
        if self.session is None:
            return ApiResponse.failure("no_session", "No timer is running")

        session = self.session
        self.phase = TimerPhase.DISCARDING
        try:
            discarded = await self.api.discard_timer()
        except TimeTrackingAPIError as e:
            self.phase = TimerPhase.RUNNING
            self._generation += 1
            return self._fail("discard", e.code, e.message)
        except (ValidationError, ValueError) as e:
            self.phase = TimerPhase.RUNNING
            self._generation += 1
            logger.error(f"Unreadable discard response: {e}", exc_info=True)
            return self._fail("discard", "internal_error", "Unreadable discard response from server")
        except BaseException:
            self.phase = TimerPhase.RUNNING
            self._generation += 1
            raise
        if not discarded:
            self.phase = TimerPhase.RUNNING
            self._generation += 1
            return self._fail("discard", "request_failed", "Server refused to discard the timer")

        self._ended_ids.add(session.id)
        self._clear_local()
        self._generation += 1
        self.last_error = None
        timer_mutations_total.labels("discard", "ok").inc()
        logger.info(f"Timer {session.id} discarded", extra={"session_id": session.id})
        return ApiResponse.success(data=None)

    async def _notify_entries_changed(self) -> None:
        for callback in list(self._listeners):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Entry refresh after timer stop failed")
