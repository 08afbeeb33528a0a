"""Tips API routes - start/bench recommendations for a user's teams."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from app.dependencies import get_store, require_db, require_user_id
from app.schemas.tips import RecommendationResponse, StartBenchResponse
from app.services.start_bench import LeagueNotFoundError, StartBenchService
from app.services.store import StoreProtocol

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/tips", tags=["tips"])

LeagueIdPath = Annotated[str, Path(min_length=1, max_length=64)]


@router.get("/start-bench/{league_id}", response_model=StartBenchResponse)
async def get_start_bench(
    league_id: LeagueIdPath,
    user_id: Annotated[str, Depends(require_user_id)],
    store: Annotated[StoreProtocol, Depends(get_store)],
    season_year: Annotated[int, Query(ge=2000, le=2100)],
    week: Annotated[int, Query(ge=1, le=18)],
    _: None = Depends(require_db),
) -> StartBenchResponse:
    """
    Get START/BENCH recommendations for the caller's teams in a league.

    Only players whose current slot disagrees with their ranking appear.
    """
    try:
        service = StartBenchService(store)
        league, recommendations = await service.get_user_recommendations(
            league_id, user_id, season_year, week
        )
    except LeagueNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        logger.exception(f"Failed to build start/bench tips: {e}")
        raise HTTPException(
            status_code=500,
            detail="Internal server error while building recommendations",
        ) from e

    return StartBenchResponse(
        league_id=league["id"],
        league_name=league.get("name") or "",
        season_year=season_year,
        week=week,
        recommendations=[
            RecommendationResponse.model_validate(r, from_attributes=True)
            for r in recommendations
        ],
    )
