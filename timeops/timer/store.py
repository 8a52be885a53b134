"""
Persistence slot for the running timer.

Only the session record is cached so a reload can show the timer immediately;
the elapsed counter is never stored and the cache stops mattering after the
first resync.
"""
from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from timeops.models import RunningTimerSession

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def load(self) -> Optional[RunningTimerSession]: ...

    def save(self, session: RunningTimerSession) -> None: ...

    def clear(self) -> None: ...


class MemorySessionStore:
    """In-process slot, used by tests and short-lived engines."""

    def __init__(self, session: Optional[RunningTimerSession] = None):
        self.session = session

    def load(self) -> Optional[RunningTimerSession]:
        return self.session

    def save(self, session: RunningTimerSession) -> None:
        self.session = session

    def clear(self) -> None:
        self.session = None


class JsonFileSessionStore:
    """Single JSON file holding the running session, written atomically."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def load(self) -> Optional[RunningTimerSession]:
        if not self.path.exists():
            return None
        try:
            return RunningTimerSession.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable timer cache {self.path}: {e}")
            return None

    def save(self, session: RunningTimerSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(session.model_dump_json(), encoding="utf-8")
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
