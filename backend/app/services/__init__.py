"""Service layer for business logic."""

from app.services.jobs import JobQueueService
from app.services.normalization import MetricNormalizer
from app.services.start_bench import StartBenchService
from app.services.store import PostgresStore
from app.services.sync import SyncOrchestrator
from app.services.upstream_client import RetryPolicy, UpstreamClient

__all__ = [
    "JobQueueService",
    "MetricNormalizer",
    "PostgresStore",
    "RetryPolicy",
    "StartBenchService",
    "SyncOrchestrator",
    "UpstreamClient",
]
