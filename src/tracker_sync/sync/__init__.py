"""
Sync: change detection and the end-to-end orchestrator.

Public surface
--------------
- :func:`classify` / :class:`ChangeDetector`: Added / Updated / Unchanged.
- :class:`SyncOrchestrator`: runs one pass and returns a job record.
- :func:`build_orchestrator`: wires the default components from settings.
"""

from tracker_sync.sync.change_detector import ChangeDetector, classify
from tracker_sync.sync.orchestrator import SyncOrchestrator, build_orchestrator

__all__ = ["ChangeDetector", "SyncOrchestrator", "build_orchestrator", "classify"]
