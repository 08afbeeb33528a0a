"""Main FastAPI application entry point."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import router
from app.config import get_settings
from app.db import close_pool, init_pool, pool_ready
from app.errors import ConfigurationError

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Lineup Tips Backend",
    description="Fantasy football stats sync, metric normalization and start/bench tips",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration.

    The service stays healthy without a database; only DB routes answer 503.
    """
    return {
        "status": "healthy",
        "database": "connected" if pool_ready() else "unavailable",
    }


@app.on_event("startup")
async def startup_event() -> None:
    """Open the database pool; without it DB routes answer 503."""
    logger.info("Starting Lineup Tips Backend")
    logger.info(f"CORS origins: {settings.cors_origins_list}")
    logger.info(f"Upstream API base: {settings.upstream_api_base_url}")
    try:
        await init_pool()
    except ConfigurationError as e:
        logger.warning(f"Database disabled: {e}")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Cleanup on shutdown."""
    logger.info("Shutting down Lineup Tips Backend")
    await close_pool()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
