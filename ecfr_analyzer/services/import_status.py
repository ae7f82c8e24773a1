"""
eCFR Analyzer - Import Status Store

ImportStatus is an immutable snapshot. StatusStore swaps in a new
snapshot for every change while holding a lock, so readers (the status
endpoint) take the current reference without locking and never observe
a half-applied update. The same lock guards the active-run slot, which
is the compare-and-swap that keeps two pipeline runs from overlapping.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Callable, Iterable, Optional

from pydantic import ConfigDict, Field

from ..core.errors import ImportCancelled
from ..models import CamelModel

TOTAL_STEPS = 4


class ImportStep(IntEnum):
    AGENCIES = 1
    TITLES = 2
    CONTENT = 3
    HISTORICAL = 4

    @property
    def flag(self) -> str:
        return f"{self.name.lower()}_done"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ImportStatus(CamelModel):
    model_config = ConfigDict(frozen=True)

    is_loading: bool = False
    current_step: str = "Ready"
    progress: int = 0
    last_updated: datetime = Field(default_factory=_now)
    error: Optional[str] = None
    total_titles: int = 0
    current_title: int = 0
    overall_step: int = 0
    total_steps: int = TOTAL_STEPS
    agencies_done: bool = False
    titles_done: bool = False
    content_done: bool = False
    historical_done: bool = False
    run_id: Optional[str] = None
    cancel_requested: bool = False

    @property
    def completed_steps(self) -> int:
        return sum(getattr(self, step.flag) for step in ImportStep)


class CancelToken:
    """Per-run cancellation flag checked between units of work."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ImportCancelled("Import cancelled")

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True early if cancelled."""
        return self._event.wait(seconds)


class StatusStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status = ImportStatus()
        self._active_run: Optional[str] = None

    def get(self) -> ImportStatus:
        return self._status

    @property
    def active_run(self) -> Optional[str]:
        return self._active_run

    def update(self, **changes: Any) -> ImportStatus:
        return self.mutate(lambda _: changes)

    def mutate(self, fn: Callable[[ImportStatus], dict[str, Any]]) -> ImportStatus:
        """Apply changes computed from the current snapshot atomically."""
        with self._lock:
            changes = dict(fn(self._status))
            changes.setdefault("last_updated", _now())
            self._status = self._status.model_copy(update=changes)
            return self._status

    def try_begin_run(self, run_id: str, steps: Iterable[ImportStep]) -> bool:
        """Claim the run slot; False if another run holds it."""
        with self._lock:
            if self._active_run is not None:
                return False
            self._active_run = run_id
            changes: dict[str, Any] = {
                "is_loading": True,
                "run_id": run_id,
                "error": None,
                "cancel_requested": False,
                "progress": 0,
                "last_updated": _now(),
            }
            for step in steps:
                changes[step.flag] = False
            self._status = self._status.model_copy(update=changes)
            return True

    def end_run(self, run_id: str, **changes: Any) -> None:
        with self._lock:
            if self._active_run != run_id:
                return
            self._active_run = None
            changes.update(is_loading=False, cancel_requested=False, last_updated=_now())
            self._status = self._status.model_copy(update=changes)

    def mark_step_complete(self, step: ImportStep) -> ImportStatus:
        def _apply(status: ImportStatus) -> dict[str, Any]:
            done = status.model_copy(update={step.flag: True}).completed_steps
            changes: dict[str, Any] = {step.flag: True, "progress": done * 100 // TOTAL_STEPS}
            if done == TOTAL_STEPS:
                changes.update(is_loading=False, current_step="All imports completed")
            return changes

        return self.mutate(_apply)
