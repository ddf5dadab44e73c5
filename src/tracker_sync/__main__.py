"""Run one sync pass locally.

Usage
-----
    python -m tracker_sync                    # settings from env / .env
    python -m tracker_sync --max-records 50 --project PROJ
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from tracker_sync.config import Settings
from tracker_sync.errors import SyncError
from tracker_sync.models import SyncJobRecord
from tracker_sync.sync.orchestrator import build_orchestrator

logger = logging.getLogger("tracker_sync")


async def _run(settings: Settings) -> SyncJobRecord:
    async with build_orchestrator(settings) as orchestrator:
        return await orchestrator.run()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Sync an issue-tracker project into the vector store")
    parser.add_argument("--project", help="Override TRACKER_PROJECT_KEY")
    parser.add_argument("--max-records", type=int, help="Stop after this many records (0 = unlimited)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {}
    if args.project:
        overrides["tracker_project_key"] = args.project
    if args.max_records is not None:
        overrides["max_records"] = args.max_records
    settings = Settings(**overrides)

    try:
        record = asyncio.run(_run(settings))
    except SyncError as exc:
        logger.error("Sync failed: %s", exc)
        return 1

    totals = record.totals
    print(
        f"Synced {totals.total} records → {totals.added} added, {totals.updated} updated, "
        f"{totals.unchanged} unchanged, {totals.skipped} skipped; "
        f"{totals.vector_records_written} vector rows written"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
