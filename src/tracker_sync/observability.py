"""Observer interface for stage transitions and progress.

Core components report through a :class:`SyncObserver` instead of logging
progress directly, so tests can record what happened without capturing
log output.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from tracker_sync.models import SyncStage

logger = logging.getLogger(__name__)


@runtime_checkable
class SyncObserver(Protocol):
    """Receives lifecycle and progress notifications from a sync pass."""

    def stage_changed(self, stage: SyncStage) -> None: ...

    def progress(self, stage: SyncStage, done: int, total: int) -> None: ...


class LoggingObserver:
    """Default observer; writes everything to the module logger."""

    def stage_changed(self, stage: SyncStage) -> None:
        logger.info("Sync stage → %s", stage.value)

    def progress(self, stage: SyncStage, done: int, total: int) -> None:
        pct = (done / total * 100) if total else 100.0
        logger.info("  %s: %d / %d (%.0f%%)", stage.value, done, total, pct)


class NullObserver:
    """Observer that ignores every notification."""

    def stage_changed(self, stage: SyncStage) -> None:
        pass

    def progress(self, stage: SyncStage, done: int, total: int) -> None:
        pass
