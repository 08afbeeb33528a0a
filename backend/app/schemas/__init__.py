"""API response schemas."""

from app.schemas.sync import EnqueuedJob, EnqueueResponse, SyncRunResponse
from app.schemas.tips import (
    ConfidenceResponse,
    RecommendationResponse,
    StartBenchResponse,
)

__all__ = [
    "ConfidenceResponse",
    "EnqueuedJob",
    "EnqueueResponse",
    "RecommendationResponse",
    "StartBenchResponse",
    "SyncRunResponse",
]
