"""Job queue handoff for the long-running sync worker."""

import logging
from dataclasses import dataclass
from typing import Any

from app.services.store import StoreProtocol
from app.services.sync import (
    SYNC_DEFENSE_POINTS_AGAINST,
    SYNC_EFFICIENCY_AVERAGES,
    SYNC_INJURIES,
    SYNC_NFL_MATCHUPS,
    SYNC_PLAYER_STATS,
    SYNC_PLAYERS,
)

logger = logging.getLogger(__name__)

# Scheduled jobs jump ahead of user-triggered ones (default priority 100)
SCHEDULED_PRIORITY = 10


@dataclass(frozen=True, slots=True)
class JobSpec:
    name: str
    priority: int = SCHEDULED_PRIORITY
    needs_week: bool = False


SCHEDULES: dict[str, tuple[JobSpec, ...]] = {
    "daily": (
        JobSpec(f"sync-{SYNC_INJURIES}", needs_week=True),
        JobSpec(f"sync-{SYNC_PLAYER_STATS}", needs_week=True),
    ),
    "weekly": (
        JobSpec(f"sync-{SYNC_PLAYERS}"),
        JobSpec(f"sync-{SYNC_DEFENSE_POINTS_AGAINST}", needs_week=True),
        JobSpec(f"sync-{SYNC_EFFICIENCY_AVERAGES}", needs_week=True),
    ),
    "annual": (JobSpec(f"sync-{SYNC_NFL_MATCHUPS}"),),
}


class JobQueueService:
    """Enqueues the jobs of a schedule for the external worker."""

    def __init__(self, store: StoreProtocol):
        self.store = store

    async def enqueue_schedule(self, schedule: str, week: int | None = None) -> list[dict[str, Any]]:
        """
        Insert a pending job for each entry of the named schedule.

        Raises:
            ValueError: If the schedule name is unknown
        """
        specs = SCHEDULES.get(schedule)
        if specs is None:
            raise ValueError(f"Unknown schedule: {schedule}")

        jobs = [
            {"name": spec.name, "priority": spec.priority, "week": week if spec.needs_week else None}
            for spec in specs
        ]
        created = await self.store.enqueue_jobs(jobs)
        logger.info(f"Enqueued {len(created)} {schedule} jobs: {[j['name'] for j in jobs]}")
        return created
