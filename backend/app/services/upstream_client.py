"""Fantasy data provider client with rate limiting and retry/backoff."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from app.config import get_settings
from app.errors import (
    ConfigurationError,
    PermanentUpstreamError,
    TransientUpstreamError,
    UpstreamPayloadError,
)
from app.services import parsers

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]

# HTTP status codes that should trigger a retry
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def _is_retryable_error(exception: BaseException) -> bool:
    """Check if an error should trigger a retry."""
    return isinstance(exception, TransientUpstreamError)


def classify_status(status_code: int, url: str) -> None:
    """Raise the matching upstream error for a non-2xx status code."""
    if status_code < 400:
        return
    if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
        raise TransientUpstreamError(
            f"Upstream returned {status_code} for {url}", status_code=status_code
        )
    raise PermanentUpstreamError(
        f"Upstream returned {status_code} for {url}", status_code=status_code
    )


@dataclass(frozen=True)
class RetryPolicy:
    """
    Reusable retry policy shared by every upstream call.

    The delay after attempt n (1-based) is base_delay * 2**n, capped at
    max_delay. After max_attempts the last error is re-raised unchanged.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    retryable: Callable[[BaseException], bool] = field(default=_is_retryable_error)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        settings = get_settings()
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * 2**attempt, self.max_delay)

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.delay_for(retry_state.attempt_number)

    def retrying(self, sleep: SleepFn = asyncio.sleep) -> AsyncRetrying:
        """Build a tenacity controller for this policy."""
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(self.retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=sleep,
            reraise=True,
        )

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        sleep: SleepFn = asyncio.sleep,
        **kwargs: Any,
    ) -> T:
        """Run fn under this policy."""
        return await self.retrying(sleep)(fn, *args, **kwargs)


@dataclass(slots=True)
class Page:
    """One page of records from a paginated collection."""

    records: list[Any]
    start: int
    count: int

    @property
    def is_last(self) -> bool:
        """A short or empty page ends the collection."""
        return len(self.records) < self.count


class UpstreamClientProtocol(Protocol):
    """Protocol for the client methods used by the sync orchestrator."""

    async def fetch_page(
        self,
        resource: str,
        start: int,
        count: int,
        extract: Callable[[Any], list[Any]],
    ) -> Page: ...

    async def get_player_stats(self, player_keys: list[str], week: int) -> list[Any]: ...

    async def get_schedule(self, url: str, season: int) -> Any: ...


class UpstreamClient:
    """
    Fantasy provider client with rate limiting.

    Every request goes through the shared RetryPolicy. The sleep used
    between retries is injectable so callers can observe backoff delays.
    """

    def __init__(
        self,
        access_token: str | None = None,
        base_url: str | None = None,
        retry_policy: RetryPolicy | None = None,
        requests_per_second: float | None = None,
        max_concurrent: int = 5,
        sleep: SleepFn = asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            access_token: Bearer token for the provider (defaults to settings)
            base_url: Provider API root (defaults to settings)
            retry_policy: Retry/backoff policy (defaults to settings)
            requests_per_second: Target request rate
            max_concurrent: Maximum concurrent requests
            sleep: Coroutine used to wait between retries
        """
        settings = get_settings()
        self.access_token = access_token or settings.upstream_access_token
        self.base_url = (base_url or settings.upstream_api_base_url).rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        rate = requests_per_second or settings.requests_per_second
        self.delay = 1.0 / rate
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._sleep = sleep
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client (lazy initialization, coroutine-safe)."""
        if self._client is None:
            async with self._lock:
                if self._client is None:  # Double-check after acquiring lock
                    self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources (coroutine-safe)."""
        async with self._lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    async def __aenter__(self) -> "UpstreamClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager and close client."""
        await self.close()

    async def _rate_limit(self) -> None:
        """Apply rate limiting between requests."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self.delay:
                await asyncio.sleep(self.delay - elapsed)
            self._last_request_time = time.monotonic()

    def _auth_headers(self) -> dict[str, str]:
        if not self.access_token:
            raise ConfigurationError(
                "Upstream access token not configured. Set UPSTREAM_ACCESS_TOKEN."
            )
        return {"Authorization": f"Bearer {self.access_token}"}

    async def _get_once(
        self, url: str, params: dict[str, Any] | None, headers: dict[str, str]
    ) -> Any:
        """Single rate-limited GET, translating failures into upstream errors."""
        async with self.semaphore:
            await self._rate_limit()

            client = await self._get_client()
            try:
                response = await client.get(url, params=params, headers=headers)
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                raise TransientUpstreamError(f"Network error for {url}: {e}") from e

        classify_status(response.status_code, url)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamPayloadError(
                f"Invalid JSON from {url}", status_code=response.status_code
            ) from e

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> Any:
        """GET a JSON document with retries.

        Configuration errors are raised before any request is made.
        """
        headers = self._auth_headers() if authenticated else {}
        return await self.retry_policy.call(
            self._get_once, url, params, headers, sleep=self._sleep
        )

    async def fetch_page(
        self,
        resource: str,
        start: int,
        count: int,
        extract: Callable[[Any], list[Any]] = parsers.league_player_entries,
    ) -> Page:
        """
        Fetch one page of a provider collection.

        Args:
            resource: Collection path below the API root, e.g. "league/<key>/players"
            start: Zero-based offset of the first record
            count: Requested page size
            extract: Turns the JSON document into the ordered record list

        Returns:
            Page holding the extracted records
        """
        url = f"{self.base_url}/{resource};start={start};count={count}"
        data = await self.get_json(url, params={"format": "json"})
        return Page(records=extract(data), start=start, count=count)

    async def get_player_stats(self, player_keys: list[str], week: int) -> list[Any]:
        """Fetch weekly stats for up to one request batch of player keys."""
        keys = ",".join(player_keys)
        url = f"{self.base_url}/players;player_keys={keys}/stats;type=week;week={week}"
        data = await self.get_json(url, params={"format": "json"})
        return parsers.players_collection_entries(data)

    async def get_schedule(self, url: str, season: int) -> Any:
        """Fetch the public scoreboard covering a whole NFL season."""
        params = {"limit": 1000, "dates": f"{season}0901-{season + 1}0131"}
        return await self.get_json(url, params=params, authenticated=False)
