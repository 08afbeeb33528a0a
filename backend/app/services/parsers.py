"""Decoders for provider and schedule-feed payloads.

The fantasy provider encodes collections as string-keyed objects
(``{"0": {...}, "1": {...}, "count": 2}``) and player records as lists of
small fragments. Everything here turns those shapes into ordered, typed
records and skips malformed entries instead of propagating partial data.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from app.errors import UpstreamPayloadError

logger = logging.getLogger(__name__)

# Provider stat id -> player_stats column
STAT_ID_COLUMNS: dict[str, str] = {
    # Passing
    "1": "passes_attempted",
    "4": "passing_yards",
    "5": "passing_touchdowns",
    "6": "interceptions",
    # Rushing
    "8": "rushing_attempts",
    "9": "rushing_yards",
    "10": "rushing_touchdowns",
    # Receiving
    "11": "receptions",
    "12": "receiving_yards",
    "13": "receiving_touchdowns",
    "78": "targets",
    # Returns and misc
    "15": "return_touchdowns",
    "16": "two_point_conversions",
    "18": "fumbles_lost",
    "57": "offensive_fumble_return_td",
    # Kicking
    "19": "fg_made_0_19",
    "20": "fg_made_20_29",
    "21": "fg_made_30_39",
    "22": "fg_made_40_49",
    "23": "fg_made_50_plus",
    "24": "fg_missed_0_19",
    "25": "fg_missed_20_29",
    "26": "fg_missed_30_39",
    "27": "fg_missed_40_49",
    "28": "fg_missed_50_plus",
    "29": "pat_made",
    "30": "pat_missed",
    # Defense
    "31": "points_allowed",
    "32": "sacks",
    "33": "defensive_int",
    "34": "fumble_recoveries",
    "35": "defensive_touchdowns",
    "36": "safeties",
    "37": "block_kicks",
    "69": "total_yards_given_up",
    "73": "defense_return_touchdowns",
    # Points allowed ranges (mutually exclusive)
    "50": "points_allowed_0",
    "51": "points_allowed_1_6",
    "52": "points_allowed_7_13",
    "53": "points_allowed_14_20",
    "54": "points_allowed_21_27",
    "55": "points_allowed_28_34",
    "56": "points_allowed_35_plus",
}

GAMES_PLAYED_STAT_ID = "0"

STAT_COLUMNS: tuple[str, ...] = tuple(STAT_ID_COLUMNS.values())

# Schedule feed abbreviation -> provider abbreviation, where they differ.
# Team matching is case-insensitive, so "JAX" already matches "Jax".
SCHEDULE_TEAM_ALIASES: dict[str, str] = {
    "WSH": "WAS",
}

HEALTHY_STATUSES = {"", "Healthy"}


def _safe_int(val: Any, default: int = 0) -> int:
    """Safely convert API value to int, handling None and empty strings."""
    if val is None or val == "":
        return default
    try:
        return int(val)
    except (ValueError, TypeError):
        return default


def _safe_float(val: Any, default: float = 0.0) -> float:
    """Safely convert API value to float, handling None and empty strings."""
    if val is None or val == "":
        return default
    try:
        return float(val)
    except (ValueError, TypeError):
        return default


def ordered_values(container: Any) -> list[Any]:
    """Return the entries of an object-as-array container in index order.

    Only digit keys are entries; bookkeeping keys like "count" are ignored.
    A real list is returned as-is.
    """
    if isinstance(container, list):
        return container
    if not isinstance(container, dict):
        return []
    keys = sorted((k for k in container if isinstance(k, str) and k.isdigit()), key=int)
    return [container[k] for k in keys]


def _merge_fragments(fragments: Any) -> dict[str, Any]:
    """Flatten a provider player fragment list into one dict.

    Fragments are dicts or empty lists; later keys do not override earlier ones.
    """
    merged: dict[str, Any] = {}
    if not isinstance(fragments, list):
        return merged
    for fragment in fragments:
        if isinstance(fragment, dict):
            for key, value in fragment.items():
                merged.setdefault(key, value)
    return merged


def _player_parts(entry: Any) -> list[Any] | None:
    if not isinstance(entry, dict):
        return None
    parts = entry.get("player")
    if not isinstance(parts, list) or not parts:
        return None
    return parts


def _fantasy_content(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict) or not isinstance(data.get("fantasy_content"), dict):
        raise UpstreamPayloadError("Payload has no fantasy_content object")
    return data["fantasy_content"]


# =============================================================================
# Collection extractors (JSON document -> ordered raw entries)
# =============================================================================


def league_player_entries(data: Any) -> list[Any]:
    """Entries of fantasy_content.league[1].players."""
    league = _fantasy_content(data).get("league")
    if not isinstance(league, list):
        raise UpstreamPayloadError("Payload has no league collection")
    if len(league) < 2 or not isinstance(league[1], dict):
        return []
    return ordered_values(league[1].get("players"))


def players_collection_entries(data: Any) -> list[Any]:
    """Entries of fantasy_content.players."""
    return ordered_values(_fantasy_content(data).get("players"))


# =============================================================================
# Typed records
# =============================================================================


@dataclass(slots=True)
class RawPlayer:
    """A player as reported by the provider."""

    player_key: str
    name: str
    position: str
    team: str | None
    bye_week: int | None


@dataclass(slots=True)
class RawPlayerStats:
    """Weekly stat line for one player, keyed by column name."""

    player_key: str
    stats: dict[str, float] = field(default_factory=dict)
    played: bool = False


@dataclass(slots=True)
class RawInjury:
    """Current injury designation for one player."""

    player_key: str
    status: str
    note: str | None


@dataclass(slots=True)
class NflMatchup:
    """One regular-season game from the schedule feed."""

    home_team: str
    away_team: str
    season: int
    week: int


def parse_player(entry: Any) -> RawPlayer | None:
    """Decode one player entry, or None if key, name or position is missing."""
    parts = _player_parts(entry)
    if parts is None:
        return None
    info = _merge_fragments(parts[0])

    player_key = info.get("player_key")
    name = info.get("name", {}).get("full") if isinstance(info.get("name"), dict) else None
    position = info.get("display_position")
    if not player_key or not name or not position:
        logger.warning(f"Skipping player with missing fields: key={player_key}")
        return None

    bye_weeks = info.get("bye_weeks")
    bye_week = None
    if isinstance(bye_weeks, dict):
        bye_week = _safe_int(bye_weeks.get("week"), default=0) or None

    return RawPlayer(
        player_key=str(player_key),
        name=str(name),
        position=str(position),
        team=info.get("editorial_team_abbr") or None,
        bye_week=bye_week,
    )


def parse_player_stats(entry: Any) -> RawPlayerStats | None:
    """Decode one player stats entry.

    Unknown stat ids are ignored; mapped columns absent from the payload are 0.
    ``played`` follows the games-played stat, or any non-zero stat when the
    provider omits it.
    Returns None when the entry has no player key or no stats list.
    """
    parts = _player_parts(entry)
    if parts is None or len(parts) < 2:
        return None
    player_key = _merge_fragments(parts[0]).get("player_key")
    player_stats = parts[1].get("player_stats") if isinstance(parts[1], dict) else None
    stats = player_stats.get("stats") if isinstance(player_stats, dict) else None
    if not player_key or not isinstance(stats, list) or not stats:
        return None

    values = {column: 0.0 for column in STAT_COLUMNS}
    games_played: float | None = None
    for item in stats:
        stat = item.get("stat") if isinstance(item, dict) else None
        if not isinstance(stat, dict):
            continue
        stat_id = str(stat.get("stat_id"))
        if stat_id == GAMES_PLAYED_STAT_ID:
            games_played = _safe_float(stat.get("value"))
            continue
        column = STAT_ID_COLUMNS.get(stat_id)
        if column:
            values[column] = _safe_float(stat.get("value"))

    if games_played is None:
        played = any(values.values())
    else:
        played = games_played > 0
    return RawPlayerStats(player_key=str(player_key), stats=values, played=played)


def parse_injury(entry: Any) -> RawInjury | None:
    """Decode one injury entry; healthy players yield None."""
    parts = _player_parts(entry)
    if parts is None:
        return None
    info = _merge_fragments(parts[0])
    player_key = info.get("player_key")
    status = info.get("injury_status") or info.get("status") or ""
    if not player_key or status in HEALTHY_STATUSES:
        return None
    return RawInjury(
        player_key=str(player_key),
        status=str(status),
        note=info.get("injury_note") or None,
    )


def schedule_team(team: Any) -> str | None:
    """Provider-style abbreviation for a scoreboard team object."""
    if not isinstance(team, dict) or not team.get("abbreviation"):
        return None
    abbreviation = str(team["abbreviation"]).upper()
    return SCHEDULE_TEAM_ALIASES.get(abbreviation, abbreviation)


def parse_schedule(data: Any) -> list[NflMatchup]:
    """Regular-season matchups from a scoreboard document.

    Teams are stored as abbreviations so they compare equal (ignoring case)
    to the provider's editorial team abbreviations on player rows.
    """
    if not isinstance(data, dict):
        raise UpstreamPayloadError("Scoreboard payload is not an object")
    events = data.get("events")
    if not isinstance(events, list):
        logger.warning("No events found in scoreboard response")
        return []

    matchups: list[NflMatchup] = []
    for event in events:
        if not isinstance(event, dict):
            continue
        season = event.get("season") or {}
        if season.get("type") != 2:
            continue

        competitions = event.get("competitions") or [{}]
        teams: dict[str, str] = {}
        for competitor in competitions[0].get("competitors") or []:
            team = schedule_team(competitor.get("team"))
            if competitor.get("homeAway") in ("home", "away") and team:
                teams[competitor["homeAway"]] = team

        week = _safe_int((event.get("week") or {}).get("number"))
        year = _safe_int(season.get("year"))
        if "home" not in teams or "away" not in teams or not week or not year:
            logger.warning(f"Missing team data for event {event.get('id')}")
            continue

        matchups.append(
            NflMatchup(home_team=teams["home"], away_team=teams["away"], season=year, week=week)
        )

    return matchups
