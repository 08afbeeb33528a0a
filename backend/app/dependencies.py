"""Shared FastAPI dependencies for API routes."""

import hmac
import logging
from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Header, HTTPException

from app.config import Settings, get_settings
from app.db import get_pool
from app.services.store import PostgresStore, StoreProtocol
from app.services.upstream_client import UpstreamClient

logger = logging.getLogger(__name__)


def require_db() -> None:
    """FastAPI dependency that requires database availability.

    Raises HTTPException 503 if the database pool is not initialized.

    Usage:
        @router.get("/endpoint")
        async def endpoint(_: None = Depends(require_db)):
            ...
    """
    try:
        get_pool()
    except RuntimeError as e:
        raise HTTPException(
            status_code=503,
            detail="Database not available. This feature requires database connection.",
        ) from e


def require_cron_secret(
    settings: Annotated[Settings, Depends(get_settings)],
    x_cron_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Guard scheduler-only endpoints with the shared cron secret.

    Returns 500 when the secret is not configured on the server and 401
    when the request header is missing or does not match.
    """
    if not settings.cron_job_secret:
        logger.error("CRON_JOB_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if x_cron_secret is None or not hmac.compare_digest(x_cron_secret, settings.cron_job_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Caller identity forwarded by the auth gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user id")
    return x_user_id


def get_store(settings: Annotated[Settings, Depends(get_settings)]) -> StoreProtocol:
    """Store backed by the shared connection pool."""
    return PostgresStore(page_size=settings.store_page_size)


async def get_upstream_client() -> AsyncIterator[UpstreamClient]:
    """Provider client scoped to one request."""
    async with UpstreamClient() as client:
        yield client
