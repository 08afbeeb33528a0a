"""Persistent store adapter over asyncpg.

All services talk to storage through StoreProtocol so tests can swap in an
in-memory fake. PostgresStore is the production implementation; every
asyncpg failure surfaces as PersistenceError.
"""

import logging
import re
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Protocol

import asyncpg

from app.db import get_connection
from app.errors import PersistenceError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

INJURED_STATUSES = ("O", "IR", "PUP-R", "D", "SUSP", "NFI-R", "IR-R")

# Per-category columns read for recommendation reasons
RECOMMENDATION_STAT_COLUMNS = (
    "passing_yards",
    "passing_touchdowns",
    "interceptions",
    "rushing_yards",
    "rushing_attempts",
    "rushing_touchdowns",
    "receptions",
    "receiving_yards",
    "receiving_touchdowns",
    "targets",
    "targets_per_game_3wk_avg",
    "catch_rate_3wk_avg",
    "yards_per_target_3wk_avg",
    "yards_per_touch_3wk_avg",
    "passing_efficiency_3wk_avg",
    "turnovers_3wk_avg",
    "rushing_upside_3wk_avg",
)

# Stored procedures refreshing the 3-week rolling averages
EFFICIENCY_AVERAGE_FUNCTIONS = (
    "calculate_efficiency_3wk_avg",
    "calculate_rb_efficiency_3wk_avg",
    "calculate_qb_efficiency_3wk_avg",
    "calculate_k_efficiency_3wk_avg",
    "calculate_def_efficiency_3wk_avg",
)


def quote_ident(name: str) -> str:
    """Quote a table or column name, rejecting anything but plain identifiers."""
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def build_upsert_sql(table: str, columns: Sequence[str], conflict_keys: Sequence[str]) -> str:
    """Build an INSERT ... ON CONFLICT statement for executemany."""
    missing = [key for key in conflict_keys if key not in columns]
    if missing:
        raise ValueError(f"Conflict keys {missing} not present in row columns")

    column_list = ", ".join(quote_ident(c) for c in columns)
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    conflict_list = ", ".join(quote_ident(k) for k in conflict_keys)
    updates = [c for c in columns if c not in conflict_keys]

    sql = (
        f"INSERT INTO {quote_ident(table)} ({column_list}) VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_list}) "
    )
    if not updates:
        return sql + "DO NOTHING"
    assignments = ", ".join(f"{quote_ident(c)} = EXCLUDED.{quote_ident(c)}" for c in updates)
    return sql + f"DO UPDATE SET {assignments}"


class StoreProtocol(Protocol):
    """Storage operations used by the sync, normalization and tips services."""

    # Sync log
    async def open_sync_log(self, sync_type: str, league_id: Any = None) -> Any: ...
    async def close_sync_log(
        self,
        log_id: Any,
        status: str,
        records_processed: int,
        error_message: str | None = None,
    ) -> None: ...

    # Generic writes
    async def upsert(
        self, table: str, rows: list[dict[str, Any]], conflict_keys: Sequence[str]
    ) -> int: ...
    async def update_by_id(self, table: str, rows: list[dict[str, Any]]) -> int: ...

    # Sync reads
    async def list_player_keys(self) -> list[str]: ...
    async def player_ids_by_key(self, player_keys: Sequence[str]) -> dict[str, Any]: ...
    async def stats_missing_opponent(self, season_year: int, week: int) -> list[dict[str, Any]]: ...
    async def find_matchup(self, team: str, season: int, week: int) -> dict[str, Any] | None: ...
    async def find_defense_player(self, team: str) -> Any | None: ...
    async def league_ids_for_season(self, season_year: int) -> list[Any]: ...
    async def defense_player_ids(self) -> list[Any]: ...
    async def defense_totals_by_position(
        self, league_id: Any, season_year: int, defense_player_id: Any, week: int
    ) -> list[dict[str, Any]]: ...
    async def calculate_efficiency_averages(self, season_year: int, week: int) -> None: ...

    # Normalization
    async def fetch_position_metrics(
        self, position: str, season_year: int, week: int, columns: Sequence[str]
    ) -> list[dict[str, Any]]: ...

    # Recommendations
    async def get_league(self, league_id: Any) -> dict[str, Any] | None: ...
    async def user_team_ids(self, league_id: Any, user_id: str) -> list[Any]: ...
    async def roster_entries(self, team_ids: Sequence[Any]) -> list[dict[str, Any]]: ...
    async def roster_scores(
        self, league_id: Any, season_year: int, week: int, player_ids: Sequence[Any]
    ) -> dict[Any, dict[str, Any]]: ...
    async def player_stats_for_week(
        self, season_year: int, week: int, player_ids: Sequence[Any]
    ) -> list[dict[str, Any]]: ...
    async def injured_player_ids(self, player_ids: Sequence[Any]) -> set[Any]: ...
    async def bye_week_player_ids(self, player_ids: Sequence[Any], week: int) -> set[Any]: ...
    async def league_roster_positions(self, league_id: Any) -> dict[str, int]: ...

    # Job queue
    async def enqueue_jobs(self, jobs: list[dict[str, Any]]) -> list[dict[str, Any]]: ...


# =============================================================================
# SQL
# =============================================================================

_OPEN_SYNC_LOG_SQL = """
    INSERT INTO sync_logs (sync_type, league_id, status, started_at)
    VALUES ($1, $2, 'started', $3)
    RETURNING id
"""

_CLOSE_SYNC_LOG_SQL = """
    UPDATE sync_logs
    SET status = $2, completed_at = $3, records_processed = $4, error_message = $5
    WHERE id = $1
"""

_PLAYER_KEYS_PAGE_SQL = """
    SELECT yahoo_player_id FROM players
    WHERE yahoo_player_id IS NOT NULL
    ORDER BY id
    LIMIT $1 OFFSET $2
"""

_PLAYER_IDS_BY_KEY_SQL = """
    SELECT id, yahoo_player_id FROM players
    WHERE yahoo_player_id = ANY($1::text[])
"""

_STATS_MISSING_OPPONENT_SQL = """
    SELECT ps.id, ps.player_id, p.team
    FROM player_stats ps
    JOIN players p ON p.id = ps.player_id
    WHERE ps.season_year = $1
      AND ps.week = $2
      AND ps.source = 'actual'
      AND ps.opponent_defense_player_id IS NULL
    ORDER BY ps.id
"""

_FIND_MATCHUP_SQL = """
    SELECT home_team, away_team FROM nfl_matchups
    WHERE season = $1 AND week = $2
      AND (lower(home_team) = lower($3) OR lower(away_team) = lower($3))
    LIMIT 1
"""

_FIND_DEFENSE_PLAYER_SQL = """
    SELECT id FROM players
    WHERE position = 'DEF' AND lower(team) = lower($1)
    LIMIT 1
"""

_LEAGUES_FOR_SEASON_SQL = "SELECT id FROM leagues WHERE season_year = $1 ORDER BY id"

_DEFENSE_PLAYERS_SQL = "SELECT id FROM players WHERE position = 'DEF' ORDER BY id"

_DEFENSE_TOTALS_SQL = """
    SELECT position, total_points
    FROM get_defense_totals_by_position($1, $2, $3, $4)
"""

_GET_LEAGUE_SQL = "SELECT id, name, season_year FROM leagues WHERE id = $1"

_USER_TEAM_IDS_SQL = "SELECT id FROM teams WHERE league_id = $1 AND user_id = $2"

_ROSTER_ENTRIES_SQL = """
    SELECT
        re.player_id,
        re.slot,
        t.id AS team_id,
        t.name AS team_name,
        p.name AS player_name,
        p.position,
        p.team AS nfl_team,
        p.yahoo_player_id
    FROM roster_entry re
    JOIN teams t ON t.id = re.team_id
    JOIN players p ON p.id = re.player_id
    WHERE re.team_id = ANY($1)
"""

_ROSTER_SCORES_SQL = """
    SELECT player_id, weighted_score, fantasy_points
    FROM league_calcs
    WHERE league_id = $1 AND season_year = $2 AND week = $3
      AND player_id = ANY($4)
"""

_INJURED_PLAYERS_SQL = """
    SELECT player_id FROM (
        SELECT DISTINCT ON (player_id) player_id, status
        FROM player_injuries
        WHERE player_id = ANY($1)
        ORDER BY player_id, report_date DESC
    ) latest
    WHERE status = ANY($2::text[])
"""

_BYE_WEEK_PLAYERS_SQL = "SELECT id FROM players WHERE id = ANY($1) AND bye_week = $2"

_ROSTER_POSITIONS_SQL = """
    SELECT position, count FROM league_roster_positions WHERE league_id = $1
"""

_ENQUEUE_JOB_SQL = """
    INSERT INTO jobs (name, status, priority, week)
    VALUES ($1, 'pending', $2, $3)
    RETURNING id, name, status, priority, week
"""


class PostgresStore:
    """StoreProtocol implementation backed by the shared asyncpg pool."""

    def __init__(self, page_size: int = 1000):
        self.page_size = page_size

    @asynccontextmanager
    async def _connection(self, action: str) -> AsyncIterator[asyncpg.Connection]:
        try:
            async with get_connection() as conn:
                yield conn
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"{action} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Sync log
    # -------------------------------------------------------------------------

    async def open_sync_log(self, sync_type: str, league_id: Any = None) -> Any:
        async with self._connection("open sync log") as conn:
            row = await conn.fetchrow(
                _OPEN_SYNC_LOG_SQL, sync_type, league_id, datetime.now(UTC)
            )
            return row["id"]

    async def close_sync_log(
        self,
        log_id: Any,
        status: str,
        records_processed: int,
        error_message: str | None = None,
    ) -> None:
        async with self._connection("close sync log") as conn:
            await conn.execute(
                _CLOSE_SYNC_LOG_SQL,
                log_id,
                status,
                datetime.now(UTC),
                records_processed,
                error_message[:500] if error_message else None,
            )

    # -------------------------------------------------------------------------
    # Generic writes
    # -------------------------------------------------------------------------

    async def upsert(
        self, table: str, rows: list[dict[str, Any]], conflict_keys: Sequence[str]
    ) -> int:
        """
        Insert or update rows keyed on conflict_keys.

        All rows must share the same columns. Returns the number of rows written.
        """
        if not rows:
            return 0
        columns = list(rows[0].keys())
        if any(list(row.keys()) != columns for row in rows):
            raise ValueError(f"Rows for {table} do not share the same columns")

        sql = build_upsert_sql(table, columns, conflict_keys)
        async with self._connection(f"upsert into {table}") as conn:
            await conn.executemany(sql, [tuple(row[c] for c in columns) for row in rows])
        return len(rows)

    async def update_by_id(self, table: str, rows: list[dict[str, Any]]) -> int:
        """Update the given columns of existing rows matched by id."""
        if not rows:
            return 0
        columns = [c for c in rows[0] if c != "id"]
        assignments = ", ".join(
            f"{quote_ident(c)} = ${i}" for i, c in enumerate(columns, start=2)
        )
        sql = f"UPDATE {quote_ident(table)} SET {assignments} WHERE id = $1"
        async with self._connection(f"update {table}") as conn:
            await conn.executemany(
                sql, [(row["id"], *(row[c] for c in columns)) for row in rows]
            )
        return len(rows)

    # -------------------------------------------------------------------------
    # Sync reads
    # -------------------------------------------------------------------------

    async def list_player_keys(self) -> list[str]:
        """Every known provider player key, read page by page."""
        keys: list[str] = []
        offset = 0
        async with self._connection("list player keys") as conn:
            while True:
                rows = await conn.fetch(_PLAYER_KEYS_PAGE_SQL, self.page_size, offset)
                keys.extend(row["yahoo_player_id"] for row in rows)
                if len(rows) < self.page_size:
                    break
                offset += self.page_size
        return keys

    async def player_ids_by_key(self, player_keys: Sequence[str]) -> dict[str, Any]:
        if not player_keys:
            return {}
        async with self._connection("resolve player ids") as conn:
            rows = await conn.fetch(_PLAYER_IDS_BY_KEY_SQL, list(player_keys))
        return {row["yahoo_player_id"]: row["id"] for row in rows}

    async def stats_missing_opponent(self, season_year: int, week: int) -> list[dict[str, Any]]:
        async with self._connection("read stats missing opponent") as conn:
            rows = await conn.fetch(_STATS_MISSING_OPPONENT_SQL, season_year, week)
        return [dict(row) for row in rows]

    async def find_matchup(self, team: str, season: int, week: int) -> dict[str, Any] | None:
        async with self._connection("find matchup") as conn:
            row = await conn.fetchrow(_FIND_MATCHUP_SQL, season, week, team)
        return dict(row) if row else None

    async def find_defense_player(self, team: str) -> Any | None:
        async with self._connection("find defense player") as conn:
            return await conn.fetchval(_FIND_DEFENSE_PLAYER_SQL, team)

    async def league_ids_for_season(self, season_year: int) -> list[Any]:
        async with self._connection("list leagues") as conn:
            rows = await conn.fetch(_LEAGUES_FOR_SEASON_SQL, season_year)
        return [row["id"] for row in rows]

    async def defense_player_ids(self) -> list[Any]:
        async with self._connection("list defense players") as conn:
            rows = await conn.fetch(_DEFENSE_PLAYERS_SQL)
        return [row["id"] for row in rows]

    async def defense_totals_by_position(
        self, league_id: Any, season_year: int, defense_player_id: Any, week: int
    ) -> list[dict[str, Any]]:
        async with self._connection("aggregate defense totals") as conn:
            rows = await conn.fetch(
                _DEFENSE_TOTALS_SQL, league_id, season_year, defense_player_id, week
            )
        return [dict(row) for row in rows]

    async def calculate_efficiency_averages(self, season_year: int, week: int) -> None:
        """Refresh the 3-week rolling averages for every position."""
        start_week = max(1, week - 2)
        async with self._connection("calculate 3-week averages") as conn:
            for function in EFFICIENCY_AVERAGE_FUNCTIONS:
                logger.info(f"Running {function} for {season_year} week {week}")
                await conn.execute(
                    f"SELECT {function}($1, $2, $3)", season_year, week, start_week
                )

    # -------------------------------------------------------------------------
    # Normalization
    # -------------------------------------------------------------------------

    async def fetch_position_metrics(
        self, position: str, season_year: int, week: int, columns: Sequence[str]
    ) -> list[dict[str, Any]]:
        """Actual stat rows for one position/week, read page by page."""
        column_list = ", ".join(f"ps.{quote_ident(c)}" for c in columns)
        sql = f"""
            SELECT ps.id, ps.player_id, {column_list}
            FROM player_stats ps
            JOIN players p ON p.id = ps.player_id
            WHERE ps.source = 'actual'
              AND ps.season_year = $1
              AND ps.week = $2
              AND p.position = $3
            ORDER BY ps.id
            LIMIT $4 OFFSET $5
        """
        results: list[dict[str, Any]] = []
        offset = 0
        async with self._connection(f"read {position} metrics") as conn:
            while True:
                rows = await conn.fetch(sql, season_year, week, position, self.page_size, offset)
                results.extend(dict(row) for row in rows)
                if len(rows) < self.page_size:
                    break
                offset += self.page_size
        return results

    # -------------------------------------------------------------------------
    # Recommendations
    # -------------------------------------------------------------------------

    async def get_league(self, league_id: Any) -> dict[str, Any] | None:
        async with self._connection("read league") as conn:
            row = await conn.fetchrow(_GET_LEAGUE_SQL, league_id)
        return dict(row) if row else None

    async def user_team_ids(self, league_id: Any, user_id: str) -> list[Any]:
        async with self._connection("read user teams") as conn:
            rows = await conn.fetch(_USER_TEAM_IDS_SQL, league_id, user_id)
        return [row["id"] for row in rows]

    async def roster_entries(self, team_ids: Sequence[Any]) -> list[dict[str, Any]]:
        async with self._connection("read roster entries") as conn:
            rows = await conn.fetch(_ROSTER_ENTRIES_SQL, list(team_ids))
        return [dict(row) for row in rows]

    async def roster_scores(
        self, league_id: Any, season_year: int, week: int, player_ids: Sequence[Any]
    ) -> dict[Any, dict[str, Any]]:
        async with self._connection("read roster scores") as conn:
            rows = await conn.fetch(
                _ROSTER_SCORES_SQL, league_id, season_year, week, list(player_ids)
            )
        return {row["player_id"]: dict(row) for row in rows}

    async def player_stats_for_week(
        self, season_year: int, week: int, player_ids: Sequence[Any]
    ) -> list[dict[str, Any]]:
        column_list = ", ".join(quote_ident(c) for c in RECOMMENDATION_STAT_COLUMNS)
        sql = f"""
            SELECT player_id, source, {column_list}
            FROM player_stats
            WHERE season_year = $1 AND week = $2 AND player_id = ANY($3)
        """
        async with self._connection("read player stats") as conn:
            rows = await conn.fetch(sql, season_year, week, list(player_ids))
        return [dict(row) for row in rows]

    async def injured_player_ids(self, player_ids: Sequence[Any]) -> set[Any]:
        """Players whose latest injury report has a do-not-start status."""
        async with self._connection("read injuries") as conn:
            rows = await conn.fetch(
                _INJURED_PLAYERS_SQL, list(player_ids), list(INJURED_STATUSES)
            )
        return {row["player_id"] for row in rows}

    async def bye_week_player_ids(self, player_ids: Sequence[Any], week: int) -> set[Any]:
        async with self._connection("read bye weeks") as conn:
            rows = await conn.fetch(_BYE_WEEK_PLAYERS_SQL, list(player_ids), week)
        return {row["id"] for row in rows}

    async def league_roster_positions(self, league_id: Any) -> dict[str, int]:
        async with self._connection("read roster positions") as conn:
            rows = await conn.fetch(_ROSTER_POSITIONS_SQL, league_id)
        return {row["position"]: row["count"] for row in rows}

    # -------------------------------------------------------------------------
    # Job queue
    # -------------------------------------------------------------------------

    async def enqueue_jobs(self, jobs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert pending jobs in one transaction."""
        created = []
        async with self._connection("enqueue jobs") as conn:
            async with conn.transaction():
                for job in jobs:
                    row = await conn.fetchrow(
                        _ENQUEUE_JOB_SQL, job["name"], job["priority"], job.get("week")
                    )
                    created.append(dict(row))
        return created
