"""Sync API routes - scheduler-triggered data syncs and job enqueueing."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from app.dependencies import get_store, get_upstream_client, require_cron_secret, require_db
from app.errors import ConfigurationError, PermanentUpstreamError, TransientUpstreamError
from app.schemas.sync import EnqueuedJob, EnqueueResponse, SyncRunResponse
from app.services.jobs import SCHEDULES, JobQueueService
from app.services.store import StoreProtocol
from app.services.sync import SYNC_TYPES, SyncOrchestrator
from app.services.upstream_client import UpstreamClient

logger = logging.getLogger(__name__)
router = APIRouter(
    tags=["sync"],
    dependencies=[Depends(require_cron_secret)],
)

SyncTypePath = Annotated[str, Path(description=f"One of: {', '.join(SYNC_TYPES)}")]
ScheduleName = Annotated[str, Path(description=f"One of: {', '.join(SCHEDULES)}")]
SeasonQuery = Annotated[int | None, Query(ge=2000, le=2100)]
WeekQuery = Annotated[int | None, Query(ge=1, le=18)]


@router.post("/api/v1/sync/{sync_type}", response_model=SyncRunResponse)
async def run_sync(
    sync_type: SyncTypePath,
    store: Annotated[StoreProtocol, Depends(get_store)],
    client: Annotated[UpstreamClient, Depends(get_upstream_client)],
    season_year: SeasonQuery = None,
    week: WeekQuery = None,
    _: None = Depends(require_db),
) -> SyncRunResponse:
    """Run one sync inline and report how many records were written."""
    if sync_type not in SYNC_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown sync type: {sync_type}")

    try:
        orchestrator = SyncOrchestrator(client=client, store=store)
        result = await orchestrator.run(sync_type, season_year=season_year, week=week)
    except ConfigurationError as e:
        logger.error(f"Configuration error running {sync_type}: {e}")
        raise HTTPException(status_code=500, detail="Server configuration error") from e
    except PermanentUpstreamError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    except TransientUpstreamError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except Exception as e:
        logger.exception(f"Failed to run {sync_type} sync: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Internal server error while running {sync_type} sync",
        ) from e

    return SyncRunResponse.model_validate(result, from_attributes=True)


@router.post("/api/v1/jobs/{schedule}", response_model=EnqueueResponse)
async def enqueue_jobs(
    schedule: ScheduleName,
    store: Annotated[StoreProtocol, Depends(get_store)],
    week: WeekQuery = None,
    _: None = Depends(require_db),
) -> EnqueueResponse:
    """Hand a schedule's syncs to the background worker."""
    if schedule not in SCHEDULES:
        raise HTTPException(status_code=404, detail=f"Unknown schedule: {schedule}")

    try:
        created = await JobQueueService(store).enqueue_schedule(schedule, week=week)
    except Exception as e:
        logger.exception(f"Failed to enqueue {schedule} jobs: {e}")
        raise HTTPException(
            status_code=500, detail="Internal server error while enqueueing jobs"
        ) from e

    return EnqueueResponse(
        schedule=schedule,
        jobs=[EnqueuedJob(name=j["name"], priority=j["priority"], week=j.get("week")) for j in created],
    )
