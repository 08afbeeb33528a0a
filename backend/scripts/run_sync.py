#!/usr/bin/env python
"""
Run data syncs from the command line or a scheduler.

Usage:
    python -m scripts.run_sync players                      # Sync players
    python -m scripts.run_sync player-stats --week 5        # Stats for week 5
    python -m scripts.run_sync all --season 2025 --week 5   # Every sync type in order
    python -m scripts.run_sync normalize --week 5           # Only renormalize metrics
    python -m scripts.run_sync enqueue daily --week 5       # Queue jobs for the worker
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment before settings are read
load_dotenv(".env.local")
load_dotenv(".env")

from app.config import get_settings  # noqa: E402
from app.db import close_pool, init_pool  # noqa: E402
from app.services.jobs import SCHEDULES, JobQueueService  # noqa: E402
from app.services.normalization import MetricNormalizer  # noqa: E402
from app.services.store import PostgresStore  # noqa: E402
from app.services.sync import SYNC_TYPES, SyncOrchestrator, current_nfl_season  # noqa: E402
from app.services.upstream_client import UpstreamClient  # noqa: E402

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run_syncs(sync_types: list[str], season: int | None, week: int | None) -> int:
    """Run syncs sequentially. Returns a process exit code."""
    settings = get_settings()
    store = PostgresStore(page_size=settings.store_page_size)
    failures = 0
    async with UpstreamClient() as client:
        orchestrator = SyncOrchestrator(client=client, store=store)
        for sync_type in sync_types:
            try:
                result = await orchestrator.run(sync_type, season_year=season, week=week)
                logger.info(
                    f"{sync_type}: {result.records_processed} records "
                    f"({result.batches_skipped} batches skipped)"
                )
            except Exception as e:
                failures += 1
                logger.error(f"{sync_type} failed: {e}")
    return 1 if failures else 0


async def run_normalize(season: int | None, week: int) -> int:
    store = PostgresStore(page_size=get_settings().store_page_size)
    results = await MetricNormalizer(store).normalize_all(season or current_nfl_season(), week)
    for result in results:
        logger.info(f"{result.position}: {result.rows_updated} of {result.players} rows normalized")
    return 0


async def run_enqueue(schedule: str, week: int | None) -> int:
    store = PostgresStore(page_size=get_settings().store_page_size)
    created = await JobQueueService(store).enqueue_schedule(schedule, week=week)
    print(f"Enqueued {len(created)} jobs: {', '.join(j['name'] for j in created)}")
    return 0


async def main() -> int:
    parser = argparse.ArgumentParser(description="Run fantasy data syncs")
    parser.add_argument(
        "command",
        choices=[*SYNC_TYPES, "all", "normalize", "enqueue"],
        help="Sync type, 'all', 'normalize' or 'enqueue'",
    )
    parser.add_argument("schedule", nargs="?", choices=list(SCHEDULES), help="Schedule for enqueue")
    parser.add_argument("--season", type=int, help="Season year (default: current NFL season)")
    parser.add_argument("--week", type=int, help="Week number (default: depends on sync type)")
    args = parser.parse_args()

    if args.command == "enqueue" and not args.schedule:
        parser.error("enqueue requires a schedule name")
    if args.command == "normalize" and not args.week:
        parser.error("normalize requires --week")

    await init_pool()
    try:
        if args.command == "all":
            return await run_syncs(list(SYNC_TYPES), args.season, args.week)
        if args.command == "normalize":
            return await run_normalize(args.season, args.week)
        if args.command == "enqueue":
            return await run_enqueue(args.schedule, args.week)
        return await run_syncs([args.command], args.season, args.week)
    finally:
        await close_pool()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
