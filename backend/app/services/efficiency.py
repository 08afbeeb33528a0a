"""Per-week efficiency metrics derived from a raw stat line.

These functions are stateless: each takes a ``player_stats`` column dict
and returns the metric columns for one position family. The stats sync
runs every calculator for every player, so rows carry zeros for metrics
outside their position; the 3-week average procedures only read the
columns that matter for the player's position.

A metric that divides by an attempt count is None when the count is 0.
"""

import math
from collections.abc import Callable, Mapping

StatLine = Mapping[str, float]
Metrics = dict[str, float | None]


def round_half_up(value: float, digits: int) -> float:
    """Round with halves going up, e.g. 0.0625 -> 0.063 at 3 digits."""
    scale = 10**digits
    return math.floor(value * scale + 0.5) / scale


def _ratio(numerator: float, denominator: float, digits: int = 2) -> float | None:
    if denominator <= 0:
        return None
    return round_half_up(numerator / denominator, digits)


def _stat(stats: StatLine, column: str) -> float:
    return float(stats.get(column) or 0)


def receiver_metrics(stats: StatLine) -> Metrics:
    """WR volume and efficiency: targets, catch rate, yards per target."""
    targets = _stat(stats, "targets")
    return {
        "targets_per_game": round_half_up(targets, 2),
        "catch_rate": _ratio(_stat(stats, "receptions"), targets, digits=3),
        "yards_per_target": _ratio(_stat(stats, "receiving_yards"), targets),
    }


def running_back_metrics(stats: StatLine) -> Metrics:
    """
    RB workload and production.

    weighted_opportunity is carries + targets, receiving_profile is
    receptions + receiving yards, and yards_per_touch spreads rushing and
    receiving yards over the same opportunities.
    """
    carries = _stat(stats, "rushing_attempts")
    targets = _stat(stats, "targets")
    touches = carries + targets
    return {
        "weighted_opportunity": round_half_up(touches, 2),
        "touchdown_production": round_half_up(
            _stat(stats, "rushing_touchdowns") + _stat(stats, "receiving_touchdowns"), 2
        ),
        "receiving_profile": round_half_up(
            _stat(stats, "receptions") + _stat(stats, "receiving_yards"), 2
        ),
        "yards_per_touch": _ratio(
            _stat(stats, "rushing_yards") + _stat(stats, "receiving_yards"), touches
        ),
    }


def tight_end_metrics(stats: StatLine) -> Metrics:
    targets = _stat(stats, "targets")
    return {
        "targets_per_game": round_half_up(targets, 2),
        "yards_per_target": _ratio(_stat(stats, "receiving_yards"), targets),
        "receiving_touchdowns": round_half_up(_stat(stats, "receiving_touchdowns"), 2),
    }


def quarterback_metrics(stats: StatLine) -> Metrics:
    """
    QB passing efficiency, ball security and rushing upside.

    passing_efficiency is passing TDs plus yards per attempt (None without
    attempts); rushing_upside counts a rushing TD as 6 yards.
    """
    attempts = _stat(stats, "passes_attempted")
    passing_efficiency = None
    if attempts > 0:
        passing_efficiency = round_half_up(
            _stat(stats, "passing_touchdowns") + _stat(stats, "passing_yards") / attempts, 2
        )
    return {
        "passing_efficiency": passing_efficiency,
        "turnovers": round_half_up(_stat(stats, "interceptions") + _stat(stats, "fumbles_lost"), 2),
        "rushing_upside": round_half_up(
            _stat(stats, "rushing_yards") + 6 * _stat(stats, "rushing_touchdowns"), 2
        ),
    }


FG_MADE_SHORT = ("fg_made_0_19", "fg_made_20_29", "fg_made_30_39")
FG_MADE = FG_MADE_SHORT + ("fg_made_40_49", "fg_made_50_plus")
FG_MISSED = (
    "fg_missed_0_19",
    "fg_missed_20_29",
    "fg_missed_30_39",
    "fg_missed_40_49",
    "fg_missed_50_plus",
)


def kicker_metrics(stats: StatLine) -> Metrics:
    """
    K distance profile, misses and attempts.

    fg_profile weights makes by distance: 3 for 50+, 2 for 40-49, 1 below 40.
    """
    fg_profile = (
        3 * _stat(stats, "fg_made_50_plus")
        + 2 * _stat(stats, "fg_made_40_49")
        + sum(_stat(stats, c) for c in FG_MADE_SHORT)
    )
    missed = sum(_stat(stats, c) for c in FG_MISSED)
    made = sum(_stat(stats, c) for c in FG_MADE)
    return {
        "fg_profile": round_half_up(fg_profile, 2),
        "fg_pat_misses": round_half_up(missed + _stat(stats, "pat_missed"), 2),
        "fg_attempts": round_half_up(made + missed, 2),
    }


def defense_metrics(stats: StatLine) -> Metrics:
    # points_allowed, block_kicks and safeties are raw columns already
    return {
        "sacks_per_game": round_half_up(_stat(stats, "sacks"), 2),
        "turnovers_forced": round_half_up(
            _stat(stats, "defensive_int") + _stat(stats, "fumble_recoveries"), 2
        ),
        "dst_tds": round_half_up(
            _stat(stats, "defensive_touchdowns") + _stat(stats, "defense_return_touchdowns"), 2
        ),
        "yards_allowed": round_half_up(_stat(stats, "total_yards_given_up"), 2),
    }


# Later calculators win on shared columns; the WR and TE
# targets_per_game/yards_per_target formulas are identical.
CALCULATORS: tuple[Callable[[StatLine], Metrics], ...] = (
    receiver_metrics,
    running_back_metrics,
    tight_end_metrics,
    quarterback_metrics,
    kicker_metrics,
    defense_metrics,
)


def efficiency_metrics(stats: StatLine) -> Metrics:
    """Every per-week efficiency column for one stat line."""
    metrics: Metrics = {}
    for calculator in CALCULATORS:
        metrics.update(calculator(stats))
    return metrics
