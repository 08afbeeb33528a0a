"""Sync and job queue API response schemas."""

from pydantic import BaseModel, ConfigDict


class SyncRunResponse(BaseModel):
    """Response for POST /api/v1/sync/{sync_type}."""

    model_config = ConfigDict(from_attributes=True)

    sync_type: str
    status: str
    season_year: int
    week: int | None
    records_processed: int
    batches_skipped: int


class EnqueuedJob(BaseModel):
    name: str
    priority: int
    week: int | None = None


class EnqueueResponse(BaseModel):
    """Response for POST /api/v1/jobs/{schedule}."""

    schedule: str
    jobs: list[EnqueuedJob]
