"""KFP v2 components; each file exports one @dsl.component."""

from pipelines.components.sync import run_tracker_sync

__all__ = ["run_tracker_sync"]
