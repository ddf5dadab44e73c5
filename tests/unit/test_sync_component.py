"""Unit tests for the KFP sync component.

The test exercises the *Python function* behind ``@dsl.component``
(``component.python_func``) with the orchestrator factory patched, so
neither a Kubeflow cluster nor a tracker is needed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from tracker_sync.models import SyncJobRecord, SyncTotals


class _FakeArtifact:
    """Minimal stand-in for ``dsl.Metrics``."""

    def __init__(self, path: str = "") -> None:
        self.path = path
        self.metadata: dict = {}
        self._metrics: dict = {}

    def log_metric(self, name: str, value) -> None:
        self._metrics[name] = value


class _FakeOrchestrator:
    def __init__(self, record: SyncJobRecord) -> None:
        self.record = record
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.closed = True

    async def run(self) -> SyncJobRecord:
        return self.record


@pytest.fixture()
def credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRACKER_USER_EMAIL", "bot@example.com")
    monkeypatch.setenv("TRACKER_API_TOKEN", "secret-token")


class TestRunTrackerSync:
    def test_logs_metrics_and_returns_summary(self, credentials) -> None:
        from pipelines.components.sync import run_tracker_sync

        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        record = SyncJobRecord(
            started_at=now,
            finished_at=now,
            totals=SyncTotals(total=5, added=2, updated=1, unchanged=1, skipped=1, vector_records_written=7),
            project_key="PROJ",
        )
        fake = _FakeOrchestrator(record)
        metrics = _FakeArtifact()

        with patch("tracker_sync.sync.orchestrator.build_orchestrator", return_value=fake) as build:
            result = run_tracker_sync.python_func(
                tracker_base_url="https://tracker.example.com/api",
                project_key="PROJ",
                chroma_host="localhost",
                chroma_port=8000,
                metrics=metrics,
                max_records=10,
            )

        settings = build.call_args.args[0]
        assert settings.tracker_project_key == "PROJ"
        assert settings.max_records == 10
        assert fake.closed is True
        assert metrics._metrics["records_added"] == 2
        assert metrics._metrics["vector_records_written"] == 7
        assert "Synced 5 records" in result
        assert "7 vector rows" in result

    def test_propagates_sync_errors(self, credentials) -> None:
        from pipelines.components.sync import run_tracker_sync
        from tracker_sync.errors import AuthFailure

        class _Failing(_FakeOrchestrator):
            async def run(self):
                raise AuthFailure("401")

        with patch("tracker_sync.sync.orchestrator.build_orchestrator", return_value=_Failing(None)):
            with pytest.raises(AuthFailure):
                run_tracker_sync.python_func(
                    tracker_base_url="https://tracker.example.com/api",
                    project_key="PROJ",
                    chroma_host="localhost",
                    chroma_port=8000,
                    metrics=_FakeArtifact(),
                )
