"""Per-position min-max normalization of 3-week efficiency averages."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from app.services.efficiency import round_half_up
from app.services.store import StoreProtocol

logger = logging.getLogger(__name__)

# Metric base names per position. Raw column is "<name>_3wk_avg",
# normalized column is "<name>_3wk_avg_norm".
METRICS_BY_POSITION: dict[str, tuple[str, ...]] = {
    "QB": ("passing_efficiency", "turnovers", "rushing_upside"),
    "RB": (
        "weighted_opportunity",
        "touchdown_production",
        "receiving_profile",
        "yards_per_touch",
    ),
    "WR": ("targets_per_game", "catch_rate", "yards_per_target"),
    "TE": ("targets_per_game", "yards_per_target", "receiving_touchdowns"),
    "K": ("fg_profile", "fg_pat_misses", "fg_attempts"),
    "DEF": (
        "sacks_per_game",
        "turnovers_forced",
        "dst_tds",
        "points_allowed",
        "yards_allowed",
        "block_kicks",
        "safeties",
    ),
}

POSITIONS = tuple(METRICS_BY_POSITION)


def metric_columns(position: str) -> list[str]:
    """Raw 3-week average columns for a position."""
    if position not in METRICS_BY_POSITION:
        raise ValueError(f"Unknown position: {position}")
    return [f"{name}_3wk_avg" for name in METRICS_BY_POSITION[position]]


def min_max_normalize(values: list[float | None], digits: int = 3) -> list[float | None]:
    """
    Scale values to [0, 1] by (v - min) / (max - min).

    None stays None and is ignored when finding min/max. When every present
    value is equal, each present value maps to 0.0.
    """
    present = [v for v in values if v is not None]
    if not present:
        return [None] * len(values)

    low = min(present)
    high = max(present)
    spread = high - low

    result: list[float | None] = []
    for value in values:
        if value is None:
            result.append(None)
        elif spread == 0:
            result.append(0.0)
        else:
            result.append(round_half_up((value - low) / spread, digits))
    return result


def _to_float(value: float | Decimal | None) -> float | None:
    return None if value is None else float(value)


@dataclass(slots=True)
class NormalizationResult:
    """Outcome of normalizing one position for one week."""

    position: str
    season_year: int
    week: int
    players: int
    rows_updated: int
    ranges: dict[str, tuple[float, float] | None] = field(default_factory=dict)


class MetricNormalizer:
    """Recomputes the *_norm columns for a position/week from scratch."""

    def __init__(self, store: StoreProtocol):
        self.store = store

    async def normalize(self, position: str, season_year: int, week: int) -> NormalizationResult:
        """
        Normalize every metric of one position across its population.

        Args:
            position: One of QB, RB, WR, TE, K, DEF
            season_year: Season of the stat rows
            week: Week of the stat rows

        Returns:
            NormalizationResult with the observed (min, max) per metric
        """
        columns = metric_columns(position)
        rows = await self.store.fetch_position_metrics(position, season_year, week, columns)
        result = NormalizationResult(
            position=position, season_year=season_year, week=week, players=len(rows), rows_updated=0
        )
        if not rows:
            logger.info(f"No {position} stats for {season_year} week {week}, nothing to normalize")
            return result

        updates: list[dict[str, Any]] = [{"id": row["id"]} for row in rows]
        for column in columns:
            raw = [_to_float(row.get(column)) for row in rows]
            present = [v for v in raw if v is not None]
            result.ranges[column] = (min(present), max(present)) if present else None
            for update, value in zip(updates, min_max_normalize(raw)):
                update[f"{column}_norm"] = value

        result.rows_updated = await self.store.update_by_id("player_stats", updates)
        logger.info(
            f"Normalized {result.rows_updated} {position} rows for {season_year} week {week}"
        )
        return result

    async def normalize_all(self, season_year: int, week: int) -> list[NormalizationResult]:
        """Normalize every position in turn."""
        results = []
        for position in POSITIONS:
            results.append(await self.normalize(position, season_year, week))
        return results
