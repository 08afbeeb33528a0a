"""Sync orchestrator: provider -> typed records -> batched idempotent upserts.

Every run opens a sync_logs row, then walks the provider's paginated
collections, decodes them at the boundary and upserts in bounded sequential
batches. A failed batch is logged and skipped; a fatal error closes the log
as failed and is re-raised.
"""

import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any, TypeVar

from app.config import Settings, get_settings
from app.errors import ConfigurationError, PersistenceError, UpstreamError
from app.services import parsers
from app.services.efficiency import efficiency_metrics
from app.services.normalization import MetricNormalizer
from app.services.store import StoreProtocol
from app.services.upstream_client import UpstreamClientProtocol

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Sync types
SYNC_PLAYERS = "players"
SYNC_PLAYER_STATS = "player-stats"
SYNC_INJURIES = "injuries"
SYNC_NFL_MATCHUPS = "nfl-matchups"
SYNC_DEFENSE_POINTS_AGAINST = "defense-points-against"
SYNC_EFFICIENCY_AVERAGES = "efficiency-averages"

SYNC_TYPES = (
    SYNC_PLAYERS,
    SYNC_PLAYER_STATS,
    SYNC_INJURIES,
    SYNC_NFL_MATCHUPS,
    SYNC_DEFENSE_POINTS_AGAINST,
    SYNC_EFFICIENCY_AVERAGES,
)

# Sync log statuses
STATUS_STARTED = "started"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

INJURIES_RESOURCE = "players;game_keys=nfl;out=injury_status"

DEFENSE_POSITIONS = ("QB", "RB", "WR", "TE", "K")


# =============================================================================
# Season calendar
# =============================================================================


def current_nfl_season(today: date | None = None) -> int:
    """NFL season year; January to August belong to the previous season."""
    today = today or datetime.now(UTC).date()
    return today.year if today.month >= 9 else today.year - 1


def current_nfl_week(today: date | None = None) -> int:
    """Week number counted from September 1st, clamped to 1-18."""
    today = today or datetime.now(UTC).date()
    season_start = date(current_nfl_season(today), 9, 1)
    weeks = (today - season_start).days // 7
    return max(1, min(18, weeks + 1))


def most_recent_nfl_week(today: date | None = None) -> int:
    """Last week whose games have been played."""
    return max(1, current_nfl_week(today) - 1)


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most size items."""
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


# =============================================================================
# Results
# =============================================================================


@dataclass(slots=True)
class BatchOutcome:
    written: int = 0
    skipped: int = 0


@dataclass(slots=True)
class SyncResult:
    """Outcome of one sync run."""

    sync_type: str
    status: str
    season_year: int
    week: int | None
    records_processed: int
    batches_skipped: int = 0


class SyncOrchestrator:
    """Runs provider syncs against a store."""

    def __init__(
        self,
        client: UpstreamClientProtocol,
        store: StoreProtocol,
        settings: Settings | None = None,
        normalizer: MetricNormalizer | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.client = client
        self.store = store
        self.settings = settings or get_settings()
        self.normalizer = normalizer or MetricNormalizer(store)
        self._today = today or (lambda: datetime.now(UTC).date())
        self._handlers: dict[str, Callable[[int, int], Awaitable[tuple[int, int]]]] = {
            SYNC_PLAYERS: self.sync_players,
            SYNC_PLAYER_STATS: self.sync_player_stats,
            SYNC_INJURIES: self.sync_injuries,
            SYNC_NFL_MATCHUPS: self.sync_nfl_matchups,
            SYNC_DEFENSE_POINTS_AGAINST: self.sync_defense_points_against,
            SYNC_EFFICIENCY_AVERAGES: self.sync_efficiency_averages,
        }

    def _default_week(self, sync_type: str) -> int:
        today = self._today()
        if sync_type in (SYNC_PLAYERS, SYNC_INJURIES):
            return current_nfl_week(today)
        return most_recent_nfl_week(today)

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    async def run(
        self, sync_type: str, season_year: int | None = None, week: int | None = None
    ) -> SyncResult:
        """
        Run one sync type with audit logging.

        Args:
            sync_type: One of SYNC_TYPES
            season_year: Season to sync (defaults to the current NFL season)
            week: Week to sync (defaults by sync type)

        Returns:
            SyncResult with the number of records written

        Raises:
            ValueError: Unknown sync type
            ConfigurationError, UpstreamError, PersistenceError: Fatal run errors
        """
        handler = self._handlers.get(sync_type)
        if handler is None:
            raise ValueError(f"Unknown sync type: {sync_type}")

        season_year = season_year or current_nfl_season(self._today())
        week = week or self._default_week(sync_type)

        log_id = await self._open_log(sync_type)
        logger.info(f"Starting {sync_type} sync for {season_year} week {week}")
        try:
            processed, skipped = await handler(season_year, week)
        except Exception as e:
            logger.error(f"{sync_type} sync failed: {e}")
            await self._close_log(log_id, STATUS_FAILED, 0, str(e))
            raise

        await self._close_log(log_id, STATUS_COMPLETED, processed)
        logger.info(
            f"Completed {sync_type} sync: {processed} records, {skipped} batches skipped"
        )
        return SyncResult(
            sync_type=sync_type,
            status=STATUS_COMPLETED,
            season_year=season_year,
            week=week,
            records_processed=processed,
            batches_skipped=skipped,
        )

    async def _open_log(self, sync_type: str) -> Any:
        try:
            return await self.store.open_sync_log(sync_type)
        except PersistenceError as e:
            logger.error(f"Failed to open sync log for {sync_type}: {e}")
            return None

    async def _close_log(
        self, log_id: Any, status: str, processed: int, error: str | None = None
    ) -> None:
        """Close the audit row. Failures here are logged, never raised."""
        if log_id is None:
            return
        try:
            await self.store.close_sync_log(log_id, status, processed, error)
        except PersistenceError as e:
            logger.error(f"Failed to close sync log {log_id}: {e}")

    # -------------------------------------------------------------------------
    # Shared mechanics
    # -------------------------------------------------------------------------

    async def collect_pages(
        self, resource: str, extract: Callable[[Any], list[Any]]
    ) -> list[Any]:
        """Fetch pages until a short or empty page, up to sync_max_pages."""
        page_size = self.settings.sync_page_size
        records: list[Any] = []
        start = 0
        pages = 0
        while True:
            page = await self.client.fetch_page(resource, start, page_size, extract)
            pages += 1
            records.extend(page.records)
            if page.is_last:
                break
            if pages >= self.settings.sync_max_pages:
                logger.warning(
                    f"{resource} still has data after {pages} pages, stopping"
                )
                break
            start += page_size
        logger.info(f"Fetched {len(records)} records from {resource} in {pages} pages")
        return records

    async def write_batches(
        self,
        table: str,
        rows: list[dict[str, Any]],
        conflict_keys: Sequence[str],
        batch_size: int,
    ) -> BatchOutcome:
        """Upsert rows in sequential batches, skipping batches that fail."""
        outcome = BatchOutcome()
        for index, batch in enumerate(chunked(rows, batch_size)):
            try:
                outcome.written += await self.store.upsert(table, batch, conflict_keys)
            except PersistenceError as e:
                outcome.skipped += 1
                logger.error(f"Skipping {table} batch {index} ({len(batch)} rows): {e}")
        return outcome

    # -------------------------------------------------------------------------
    # Sync types
    # -------------------------------------------------------------------------

    async def sync_players(self, season_year: int, week: int) -> tuple[int, int]:
        """Page through the admin league's players and upsert them by key."""
        league_key = self.settings.admin_league_key
        if not league_key:
            raise ConfigurationError("Admin league key not configured. Set ADMIN_LEAGUE_KEY.")

        entries = await self.collect_pages(
            f"league/{league_key}/players", parsers.league_player_entries
        )
        players: dict[str, dict[str, Any]] = {}
        for entry in entries:
            player = parsers.parse_player(entry)
            if player is None:
                continue
            players[player.player_key] = {
                "yahoo_player_id": player.player_key,
                "name": player.name,
                "position": player.position,
                "team": player.team,
                "bye_week": player.bye_week,
            }

        outcome = await self.write_batches(
            "players", list(players.values()), ["yahoo_player_id"], self.settings.sync_batch_size
        )
        return outcome.written, outcome.skipped

    async def sync_player_stats(self, season_year: int, week: int) -> tuple[int, int]:
        """Fetch weekly actual stats for every known player.

        Each row also carries the played flag and the per-week efficiency
        metrics the 3-week averages are built from.
        """
        keys = await self.store.list_player_keys()
        if not keys:
            logger.warning("No players in store, skipping stats sync")
            return 0, 0

        parsed: dict[str, parsers.RawPlayerStats] = {}
        failed_requests = 0
        for batch in chunked(keys, self.settings.sync_stats_request_size):
            try:
                entries = await self.client.get_player_stats(batch, week)
            except UpstreamError as e:
                failed_requests += 1
                logger.warning(f"Skipping stats request for {len(batch)} players: {e}")
                continue
            for entry in entries:
                stats = parsers.parse_player_stats(entry)
                if stats is not None:
                    parsed[stats.player_key] = stats

        ids = await self.store.player_ids_by_key(list(parsed))
        rows = [
            {
                "player_id": ids[key],
                "season_year": season_year,
                "week": week,
                "source": "actual",
                "played": stats.played,
                **stats.stats,
                **efficiency_metrics(stats.stats),
            }
            for key, stats in parsed.items()
            if key in ids
        ]
        outcome = await self.write_batches(
            "player_stats",
            rows,
            ["player_id", "season_year", "week", "source"],
            self.settings.sync_batch_size,
        )
        return outcome.written, outcome.skipped + failed_requests

    async def sync_injuries(self, season_year: int, week: int) -> tuple[int, int]:
        """Record today's non-healthy injury designations."""
        entries = await self.collect_pages(INJURIES_RESOURCE, parsers.players_collection_entries)
        injuries: dict[str, parsers.RawInjury] = {}
        for entry in entries:
            injury = parsers.parse_injury(entry)
            if injury is not None:
                injuries[injury.player_key] = injury

        ids = await self.store.player_ids_by_key(list(injuries))
        report_date = self._today()
        rows = [
            {
                "player_id": ids[key],
                "season_year": season_year,
                "week": week,
                "report_date": report_date,
                "status": injury.status,
                "notes": injury.note,
            }
            for key, injury in injuries.items()
            if key in ids
        ]
        outcome = await self.write_batches(
            "player_injuries",
            rows,
            ["player_id", "season_year", "week", "report_date"],
            self.settings.injury_batch_size,
        )
        return outcome.written, outcome.skipped

    async def sync_nfl_matchups(self, season_year: int, week: int) -> tuple[int, int]:
        """Load the whole regular-season schedule from the public feed."""
        data = await self.client.get_schedule(self.settings.schedule_feed_url, season_year)
        unique: dict[tuple[str, str, int, int], dict[str, Any]] = {}
        for matchup in parsers.parse_schedule(data):
            key = (matchup.home_team, matchup.away_team, matchup.season, matchup.week)
            unique[key] = {
                "home_team": matchup.home_team,
                "away_team": matchup.away_team,
                "season": matchup.season,
                "week": matchup.week,
            }

        outcome = await self.write_batches(
            "nfl_matchups",
            list(unique.values()),
            ["home_team", "away_team", "season", "week"],
            self.settings.sync_batch_size,
        )
        return outcome.written, outcome.skipped

    async def backfill_opponent_defense(self, season_year: int, week: int) -> int:
        """
        Fill opponent_defense_player_id on this week's actual stat rows.

        The player's NFL team is matched (case-insensitively) against the
        week's matchups; the other side's DEF player becomes the opponent.
        Rows without a team, matchup or defense player are left untouched.
        """
        rows = await self.store.stats_missing_opponent(season_year, week)
        if not rows:
            logger.info("No player stats need an opponent defense")
            return 0

        opponent_by_team: dict[str, Any] = {}
        updates: list[dict[str, Any]] = []
        for row in rows:
            team = row.get("team")
            if not team:
                continue
            key = team.lower()
            if key not in opponent_by_team:
                opponent_by_team[key] = await self._opponent_defense(team, season_year, week)
            defense_id = opponent_by_team[key]
            if defense_id is not None:
                updates.append({"id": row["id"], "opponent_defense_player_id": defense_id})

        updated = 0
        for batch in chunked(updates, self.settings.sync_batch_size):
            try:
                updated += await self.store.update_by_id("player_stats", batch)
            except PersistenceError as e:
                logger.error(f"Skipping opponent defense batch ({len(batch)} rows): {e}")

        logger.info(f"Set opponent defense on {updated} of {len(rows)} stat rows")
        return updated

    async def _opponent_defense(self, team: str, season_year: int, week: int) -> Any | None:
        matchup = await self.store.find_matchup(team, season_year, week)
        if matchup is None:
            return None
        if matchup["home_team"].lower() == team.lower():
            opponent = matchup["away_team"]
        else:
            opponent = matchup["home_team"]
        return await self.store.find_defense_player(opponent)

    async def sync_defense_points_against(self, season_year: int, week: int) -> tuple[int, int]:
        """Aggregate fantasy points allowed per position for every DEF and league."""
        await self.backfill_opponent_defense(season_year, week)

        league_ids = await self.store.league_ids_for_season(season_year)
        if not league_ids:
            logger.warning(f"No leagues found for season {season_year}")
            return 0, 0
        defense_ids = await self.store.defense_player_ids()
        if not defense_ids:
            logger.warning("No defense players found")
            return 0, 0

        processed = 0
        skipped = 0
        for league_id in league_ids:
            for defense_id in defense_ids:
                try:
                    totals = await self.store.defense_totals_by_position(
                        league_id, season_year, defense_id, week
                    )
                    if not totals:
                        continue
                    row = self.points_against_row(league_id, defense_id, season_year, week, totals)
                    await self.store.upsert(
                        "defense_points_against",
                        [row],
                        ["league_id", "player_id", "season_year", "week"],
                    )
                    processed += 1
                except PersistenceError as e:
                    skipped += 1
                    logger.error(
                        f"Failed defense {defense_id} in league {league_id}: {e}"
                    )
        return processed, skipped

    @staticmethod
    def points_against_row(
        league_id: Any,
        defense_id: Any,
        season_year: int,
        week: int,
        totals: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """Sum per-position totals into one defense_points_against row."""
        row: dict[str, Any] = {
            "league_id": league_id,
            "player_id": defense_id,
            "season_year": season_year,
            "week": week,
        }
        for position in DEFENSE_POSITIONS:
            row[f"{position}_pts_against"] = 0.0
        for item in totals:
            position = item.get("position")
            if position in DEFENSE_POSITIONS:
                row[f"{position}_pts_against"] += float(item.get("total_points") or 0)
        return row

    async def sync_efficiency_averages(self, season_year: int, week: int) -> tuple[int, int]:
        """Refresh 3-week averages, then renormalize every position."""
        await self.store.calculate_efficiency_averages(season_year, week)
        results = await self.normalizer.normalize_all(season_year, week)
        return sum(r.rows_updated for r in results), 0
