"""Start/bench recommendations for fantasy rosters.

Players are grouped by (position, fantasy team) and ranked by the league's
weighted score. The top N of each group, where N is the league's starting
capacity for that position, should start. Only disagreements between the
current lineup and that ranking produce a recommendation.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from cachetools import TTLCache

from app.config import get_settings
from app.errors import LineupTipsError, PersistenceError
from app.services.store import StoreProtocol

logger = logging.getLogger(__name__)

Decision = Literal["START", "BENCH"]

BENCH_SLOTS = frozenset({"BENCH", "BN", "IR"})
FLEX_SLOT_PATTERNS = ("W/R/T", "W/R", "W/T", "FLEX")
FLEX_ELIGIBLE_POSITIONS = frozenset({"WR", "RB", "TE"})

DEFAULT_POSITION_SLOTS: dict[str, int] = {
    "QB": 1,
    "RB": 2,
    "WR": 2,
    "TE": 1,
    "K": 1,
    "DEF": 1,
}

DEFAULT_FLEX_SLOTS = 1

ROSTER_SLOTS_CACHE_SIZE = 256

# League id -> RosterSlots, created on first use
_roster_slots_cache: TTLCache | None = None


class LeagueNotFoundError(LineupTipsError):
    """Raised when a league id has no matching league."""


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(slots=True)
class RosterSlots:
    """Starting capacity per position plus shared flex slots."""

    positions: dict[str, int]
    flex: int = 0

    def capacity(self, position: str) -> int:
        if position in self.positions:
            return self.positions[position]
        return DEFAULT_POSITION_SLOTS.get(position, 0)


@dataclass(slots=True)
class RosterPlayer:
    """A rostered player joined with this week's score and stats."""

    player_id: Any
    yahoo_player_id: str | None
    name: str
    position: str
    nfl_team: str | None
    slot: str
    team_id: Any
    team_name: str
    weighted_score: float = 0.0
    fantasy_points: float = 0.0
    stats: dict[str, Any] | None = None

    @property
    def is_starting(self) -> bool:
        return self.slot.upper() not in BENCH_SLOTS


@dataclass(slots=True)
class Confidence:
    level: int
    label: str


@dataclass(slots=True)
class StartBenchRecommendation:
    """One actionable lineup change."""

    player_id: Any
    yahoo_player_id: str | None
    name: str
    position: str
    team: str | None
    slot: str
    weighted_score: float
    comparison_score: float
    comparison_name: str
    league_id: Any
    league_name: str
    team_id: Any
    team_name: str
    recommendation: Decision
    reason: str
    confidence: Confidence
    injury_status: str | None = None


@dataclass(slots=True)
class _Comparison:
    score: float
    name: str


@dataclass(slots=True)
class _Context:
    league_id: Any
    league_name: str
    injured: set[Any]
    on_bye: set[Any]
    recommended: set[tuple[Any, Any]] = field(default_factory=set)
    results: list[StartBenchRecommendation] = field(default_factory=list)


# =============================================================================
# Roster slots
# =============================================================================


def _slots_cache() -> TTLCache:
    global _roster_slots_cache
    if _roster_slots_cache is None:
        _roster_slots_cache = TTLCache(
            maxsize=ROSTER_SLOTS_CACHE_SIZE,
            ttl=get_settings().roster_slots_cache_ttl,
        )
    return _roster_slots_cache


def clear_roster_slots_cache() -> None:
    """Clear cached roster configurations. Used by tests to ensure isolation."""
    if _roster_slots_cache is not None:
        _roster_slots_cache.clear()


def is_flex_slot(slot: str | None) -> bool:
    """True for W/R/T style slots shared by several positions."""
    if not slot:
        return False
    upper = slot.upper()
    return any(pattern in upper for pattern in FLEX_SLOT_PATTERNS)


def default_roster_slots() -> RosterSlots:
    return RosterSlots(positions=dict(DEFAULT_POSITION_SLOTS), flex=DEFAULT_FLEX_SLOTS)


def build_roster_slots(config: dict[str, int]) -> RosterSlots:
    """
    Build capacities from a league's roster position configuration.

    An empty configuration falls back to the default table with one flex slot.
    Flex labels are summed into the flex count; bench labels are ignored.
    """
    if not config:
        return default_roster_slots()

    positions: dict[str, int] = {}
    flex = 0
    for label, count in config.items():
        if is_flex_slot(label):
            flex += count
        elif label.upper() in BENCH_SLOTS:
            continue
        else:
            positions[label] = count
    return RosterSlots(positions=positions, flex=flex)


# =============================================================================
# Ranking helpers
# =============================================================================


def primary_position(position: str) -> str:
    """First listed position for multi-eligible players ("WR,TE" -> "WR")."""
    return position.split(",")[0].strip()


def group_players(players: list[RosterPlayer]) -> dict[tuple[str, Any], list[RosterPlayer]]:
    """Group by (position, team id), keeping fetch order within each group."""
    groups: dict[tuple[str, Any], list[RosterPlayer]] = {}
    for player in players:
        groups.setdefault((player.position, player.team_id), []).append(player)
    return groups


def rank_players(players: list[RosterPlayer]) -> list[RosterPlayer]:
    """Sort by weighted score, highest first. Ties keep their input order."""
    return sorted(players, key=lambda p: p.weighted_score, reverse=True)


def calculate_confidence(player_score: float, comparison_score: float, decision: Decision) -> Confidence:
    """Confidence from the relative gap between two weighted scores."""
    diff = abs(player_score - comparison_score)
    base = max(player_score, comparison_score, 1)
    percent = diff / base * 100
    word = "Start" if decision == "START" else "Bench"
    if percent >= 25:
        return Confidence(level=3, label=f"Must {word}")
    if percent >= 10:
        return Confidence(level=2, label=f"Strong {word}")
    return Confidence(level=1, label=f"Lean {word}")


def dedupe_stats(rows: list[dict[str, Any]]) -> dict[Any, dict[str, Any]]:
    """One stat row per player, preferring projected over actual."""
    chosen: dict[Any, dict[str, Any]] = {}
    for row in rows:
        existing = chosen.get(row["player_id"])
        if existing is None or (
            row.get("source") == "projected" and existing.get("source") != "projected"
        ):
            chosen[row["player_id"]] = row
    return chosen


# =============================================================================
# Reason text
# =============================================================================


def _num(value: Any) -> str:
    number = float(value or 0)
    return str(int(number)) if number.is_integer() else f"{number:.1f}"


def _qb_stats(stats: dict[str, Any], kind: str) -> str:
    text = (
        f"Projected: {_num(stats.get('passing_yards'))} pass yds, "
        f"{_num(stats.get('passing_touchdowns'))} TDs, "
        f"{_num(stats.get('interceptions'))} INTs. "
    )
    if kind == "start" and stats.get("passing_efficiency_3wk_avg"):
        text += f"3-wk passing efficiency: {float(stats['passing_efficiency_3wk_avg']):.2f}. "
    elif kind == "bench" and stats.get("turnovers_3wk_avg"):
        text += f"3-wk avg turnovers: {float(stats['turnovers_3wk_avg']):.2f}. "
    return text


def _rb_stats(stats: dict[str, Any], kind: str) -> str:
    text = (
        f"Projected: {_num(stats.get('rushing_yards'))} rush yds, "
        f"{_num(stats.get('rushing_touchdowns'))} rush TDs, "
        f"{_num(stats.get('receptions'))} rec"
    )
    if kind != "bench":
        text += f", {_num(stats.get('receiving_yards'))} rec yds"
    text += ". "
    if stats.get("yards_per_touch_3wk_avg"):
        text += f"3-wk avg: {float(stats['yards_per_touch_3wk_avg']):.1f} yds/touch. "
    return text


def _receiver_stats(stats: dict[str, Any], kind: str) -> str:
    text = (
        f"Projected: {_num(stats.get('targets'))} targets, "
        f"{_num(stats.get('receptions'))} rec, "
        f"{_num(stats.get('receiving_yards'))} rec yds"
    )
    if kind != "bench":
        text += f", {_num(stats.get('receiving_touchdowns'))} rec TDs"
    text += ". "
    if stats.get("targets_per_game_3wk_avg"):
        text += f"3-wk avg: {float(stats['targets_per_game_3wk_avg']):.1f} targets/game"
        if kind == "start" and stats.get("yards_per_target_3wk_avg"):
            text += f", {float(stats['yards_per_target_3wk_avg']):.1f} yds/target"
        text += ". "
    return text


def position_stats(player: RosterPlayer, kind: str) -> str:
    """Per-category projection summary for a reason string.

    kind is "start", "bench" or "flex".
    """
    if player.position in ("K", "DEF"):
        return f"Projected fantasy points: {player.fantasy_points:.2f}. "
    if not player.stats:
        return ""
    if player.position == "QB":
        return _qb_stats(player.stats, kind)
    if player.position == "RB":
        return _rb_stats(player.stats, kind)
    if player.position in ("WR", "TE"):
        return _receiver_stats(player.stats, kind)
    return ""


def start_reason(player: RosterPlayer, ranked: list[RosterPlayer], rank: int, capacity: int) -> str:
    reason = (
        f"Ranked #{rank + 1} of {len(ranked)} {player.position}s with weighted score "
        f"{player.weighted_score:.2f} (top {capacity} should start). "
    )
    reason += position_stats(player, "start")
    if capacity < len(ranked):
        other = ranked[capacity]
        reason += (
            f"Better than {other.name} ({player.weighted_score:.2f} vs {other.weighted_score:.2f})."
        )
    return reason.strip()


def bench_reason(player: RosterPlayer, ranked: list[RosterPlayer], rank: int, capacity: int) -> str:
    reason = (
        f"Ranked #{rank + 1} of {len(ranked)} {player.position}s with weighted score "
        f"{player.weighted_score:.2f} (only top {capacity} should start). "
    )
    reason += position_stats(player, "bench")
    if capacity > 0:
        other = ranked[capacity - 1]
        reason += (
            f"Worse than {other.name} ({player.weighted_score:.2f} vs {other.weighted_score:.2f})."
        )
    return reason.strip()


def injury_reason(player: RosterPlayer) -> str:
    return (
        f"{player.name} is currently injured and should not be started. "
        f"Weighted score: {player.weighted_score:.2f}."
    )


def bye_week_reason(player: RosterPlayer) -> str:
    return (
        f"{player.name} is on a bye this week and will not play. "
        f"Weighted score: {player.weighted_score:.2f}."
    )


def flex_start_reason(player: RosterPlayer, ranked: list[RosterPlayer], rank: int, slots: int) -> str:
    reason = (
        f"Best available for W/R/T flex slot. Ranked #{rank + 1} of {len(ranked)} "
        f"flex-eligible players ({player.position}) with weighted score "
        f"{player.weighted_score:.2f}. "
    )
    reason += position_stats(player, "flex")
    if slots < len(ranked):
        other = ranked[slots]
        reason += (
            f"Better flex option than {other.name} ({other.position}) "
            f"({player.weighted_score:.2f} vs {other.weighted_score:.2f})."
        )
    return reason.strip()


def flex_bench_reason(player: RosterPlayer, ranked: list[RosterPlayer], rank: int, slots: int) -> str:
    reason = (
        f"Not the best option for W/R/T flex slot. Ranked #{rank + 1} of {len(ranked)} "
        f"flex-eligible players ({player.position}) with weighted score "
        f"{player.weighted_score:.2f}. "
    )
    reason += position_stats(player, "flex")
    if slots > 0:
        other = ranked[slots - 1]
        reason += (
            f"Worse flex option than {other.name} ({other.position}) "
            f"({player.weighted_score:.2f} vs {other.weighted_score:.2f})."
        )
    return reason.strip()


# =============================================================================
# Recommendation engine
# =============================================================================


def _emit(
    ctx: _Context,
    player: RosterPlayer,
    decision: Decision,
    reason: str,
    comparison: _Comparison,
) -> None:
    key = (player.team_id, player.player_id)
    if key in ctx.recommended:
        return
    ctx.recommended.add(key)
    ctx.results.append(
        StartBenchRecommendation(
            player_id=player.player_id,
            yahoo_player_id=player.yahoo_player_id,
            name=player.name,
            position=player.position,
            team=player.nfl_team,
            slot=player.slot,
            weighted_score=player.weighted_score,
            comparison_score=comparison.score,
            comparison_name=comparison.name,
            league_id=ctx.league_id,
            league_name=ctx.league_name,
            team_id=player.team_id,
            team_name=player.team_name,
            recommendation=decision,
            reason=reason,
            confidence=calculate_confidence(player.weighted_score, comparison.score, decision),
            injury_status="injured" if player.player_id in ctx.injured else None,
        )
    )


def _replacement(ctx: _Context, player: RosterPlayer, ranked: list[RosterPlayer], fallback: str) -> _Comparison:
    for other in ranked:
        if other.player_id != player.player_id and other.player_id not in ctx.injured | ctx.on_bye:
            return _Comparison(score=other.weighted_score, name=other.name)
    return _Comparison(score=100.0, name=fallback)


def _boundary(ranked: list[RosterPlayer], index: int, fallback: str) -> _Comparison:
    if 0 <= index < len(ranked):
        return _Comparison(score=ranked[index].weighted_score, name=ranked[index].name)
    return _Comparison(score=0.0, name=fallback)


def _process_group(
    ctx: _Context, ranked: list[RosterPlayer], capacity: int, flex_active: bool
) -> list[RosterPlayer]:
    """Positional pass for one group. Returns players deferred to the flex pass."""
    deferred: list[RosterPlayer] = []
    for rank, player in enumerate(ranked):
        should_start = rank < capacity
        injured = player.player_id in ctx.injured
        on_bye = player.player_id in ctx.on_bye

        if should_start and injured:
            _emit(ctx, player, "BENCH", injury_reason(player),
                  _replacement(ctx, player, ranked, "any healthy player"))
            continue

        if should_start and on_bye:
            if player.is_starting:
                _emit(ctx, player, "BENCH", bye_week_reason(player),
                      _replacement(ctx, player, ranked, "any available player"))
            continue

        if flex_active and not should_start and player.position in FLEX_ELIGIBLE_POSITIONS:
            if injured and player.is_starting:
                _emit(ctx, player, "BENCH", injury_reason(player),
                      _replacement(ctx, player, ranked, "any healthy player"))
            elif on_bye and player.is_starting:
                _emit(ctx, player, "BENCH", bye_week_reason(player),
                      _replacement(ctx, player, ranked, "any available player"))
            elif not injured and not on_bye:
                deferred.append(player)
            continue

        if player.is_starting != should_start:
            if should_start:
                _emit(ctx, player, "START", start_reason(player, ranked, rank, capacity),
                      _boundary(ranked, capacity, "starter"))
            else:
                _emit(ctx, player, "BENCH", bench_reason(player, ranked, rank, capacity),
                      _boundary(ranked, capacity - 1, "bench"))
    return deferred


def _process_flex(ctx: _Context, candidates: list[RosterPlayer], flex_slots: int) -> None:
    """Flex pass for one fantasy team's leftover WR/RB/TE."""
    ranked = rank_players(candidates)
    for rank, player in enumerate(ranked):
        should_start = rank < flex_slots
        if player.is_starting == should_start:
            continue
        if should_start:
            _emit(ctx, player, "START", flex_start_reason(player, ranked, rank, flex_slots),
                  _boundary(ranked, flex_slots, "flex starter"))
        else:
            _emit(ctx, player, "BENCH", flex_bench_reason(player, ranked, rank, flex_slots),
                  _boundary(ranked, flex_slots - 1, "flex bench"))


def build_recommendations(
    players: list[RosterPlayer],
    slots: RosterSlots,
    injured: set[Any],
    on_bye: set[Any],
    league_id: Any,
    league_name: str,
) -> list[StartBenchRecommendation]:
    """
    Compute START/BENCH recommendations for already-loaded roster data.

    Args:
        players: Rostered players with scores and stats attached
        slots: League starting capacities
        injured: Player ids that must not start
        on_bye: Player ids whose NFL team is on bye
        league_id: Echoed into each recommendation
        league_name: Echoed into each recommendation

    Returns:
        Unordered recommendations; at most one per player per team
    """
    ctx = _Context(league_id=league_id, league_name=league_name, injured=injured, on_bye=on_bye)
    flex_active = slots.flex > 0
    flex_candidates: dict[Any, list[RosterPlayer]] = {}

    for (position, team_id), group in group_players(players).items():
        ranked = rank_players(group)
        deferred = _process_group(ctx, ranked, slots.capacity(position), flex_active)
        flex_candidates.setdefault(team_id, []).extend(deferred)

    if flex_active:
        for candidates in flex_candidates.values():
            _process_flex(ctx, candidates, slots.flex)

    return ctx.results


# =============================================================================
# Service
# =============================================================================


class StartBenchService:
    """Loads roster data from the store and runs the recommendation engine."""

    def __init__(self, store: StoreProtocol):
        self.store = store

    async def _roster_slots(self, league_id: Any) -> RosterSlots:
        cache = _slots_cache()
        cached = cache.get(league_id)
        if cached is not None:
            return cached

        try:
            config = await self.store.league_roster_positions(league_id)
        except PersistenceError as e:
            logger.warning(f"Using default roster slots for league {league_id}: {e}")
            return default_roster_slots()

        slots = build_roster_slots(config)
        cache[league_id] = slots
        return slots

    async def get_recommendations(
        self,
        league_id: Any,
        league_name: str,
        season_year: int,
        week: int,
        team_ids: list[Any],
    ) -> list[StartBenchRecommendation]:
        """Recommendations for the given fantasy teams of one league."""
        if not team_ids:
            return []

        entries = await self.store.roster_entries(team_ids)
        if not entries:
            logger.info(f"No roster entries for teams {team_ids} in league {league_id}")
            return []

        player_ids = list(dict.fromkeys(entry["player_id"] for entry in entries))
        scores, stat_rows, injured, on_bye, slots = await asyncio.gather(
            self.store.roster_scores(league_id, season_year, week, player_ids),
            self.store.player_stats_for_week(season_year, week, player_ids),
            self.store.injured_player_ids(player_ids),
            self.store.bye_week_player_ids(player_ids, week),
            self._roster_slots(league_id),
        )
        stats = dedupe_stats(stat_rows)

        players = []
        for entry in entries:
            score = scores.get(entry["player_id"]) or {}
            players.append(
                RosterPlayer(
                    player_id=entry["player_id"],
                    yahoo_player_id=entry.get("yahoo_player_id"),
                    name=entry["player_name"],
                    position=primary_position(entry["position"]),
                    nfl_team=entry.get("nfl_team"),
                    slot=entry.get("slot") or "BN",
                    team_id=entry["team_id"],
                    team_name=entry.get("team_name") or "",
                    weighted_score=float(score.get("weighted_score") or 0),
                    fantasy_points=float(score.get("fantasy_points") or 0),
                    stats=stats.get(entry["player_id"]),
                )
            )

        recommendations = build_recommendations(
            players, slots, injured, on_bye, league_id, league_name
        )
        logger.info(
            f"Generated {len(recommendations)} start/bench recommendations "
            f"for league {league_id} week {week}"
        )
        return recommendations

    async def get_user_recommendations(
        self, league_id: Any, user_id: str, season_year: int, week: int
    ) -> tuple[dict[str, Any], list[StartBenchRecommendation]]:
        """Resolve the user's teams in a league and recommend for them.

        Raises:
            LeagueNotFoundError: If the league does not exist
        """
        league = await self.store.get_league(league_id)
        if league is None:
            raise LeagueNotFoundError(f"League {league_id} not found")
        team_ids = await self.store.user_team_ids(league_id, user_id)
        recommendations = await self.get_recommendations(
            league_id, league.get("name") or "", season_year, week, team_ids
        )
        return league, recommendations
