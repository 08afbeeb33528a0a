"""Start/bench tips API response schemas.

These Pydantic models are populated directly from the service dataclasses
using model_validate(obj, from_attributes=True).
"""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ConfidenceResponse(BaseModel):
    """How strongly a recommendation is held."""

    model_config = ConfigDict(from_attributes=True)

    level: int
    label: str


class RecommendationResponse(BaseModel):
    """A single START/BENCH recommendation."""

    model_config = ConfigDict(from_attributes=True)

    player_id: UUID | str
    yahoo_player_id: str | None
    name: str
    position: str
    team: str | None
    slot: str
    weighted_score: float
    comparison_score: float
    comparison_name: str
    team_id: UUID | str
    team_name: str
    recommendation: Literal["START", "BENCH"]
    reason: str
    confidence: ConfidenceResponse
    injury_status: str | None = None


class StartBenchResponse(BaseModel):
    """Response for GET /api/v1/tips/start-bench/{league_id}."""

    league_id: UUID | str
    league_name: str
    season_year: int
    week: int
    recommendations: list[RecommendationResponse]
