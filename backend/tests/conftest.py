"""Shared pytest fixtures for backend tests."""

from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from app.config import Settings, get_settings
from app.dependencies import get_store, get_upstream_client
from app.main import app
from app.services.start_bench import clear_roster_slots_cache
from tests.fakes import CRON_SECRET, InMemoryStore


@pytest.fixture(autouse=True)
def clear_caches():
    """Roster configurations are cached per league id; start each test empty."""
    clear_roster_slots_cache()
    yield
    clear_roster_slots_cache()


@pytest.fixture
def store() -> InMemoryStore:
    """Empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with a cron secret and small, predictable batches."""
    return Settings(
        cron_job_secret=CRON_SECRET,
        admin_league_key="nfl.l.1",
        upstream_access_token="token",
        sync_page_size=25,
        sync_max_pages=10,
        sync_batch_size=100,
        injury_batch_size=200,
    )


@pytest.fixture
def mock_pool():
    """Pretend the database pool is initialized so require_db passes."""
    with patch("app.db._pool", MagicMock()):
        yield


@pytest.fixture
async def async_client():
    """Async HTTP client for testing the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def override_app(store: InMemoryStore, test_settings: Settings):
    """Route dependencies backed by the in-memory store and test settings."""
    fake_client = MagicMock()

    async def _client():
        yield fake_client

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_upstream_client] = _client
    yield fake_client
    app.dependency_overrides.clear()
