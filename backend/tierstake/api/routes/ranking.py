"""
API routes for personal and district rankings
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from tierstake.api.dependencies import get_ranking_engine
from tierstake.services.ranking_engine import RankingEngine, parse_ranking_type

router = APIRouter(prefix="/api/ranking", tags=["ranking"])


class RankingSummaryResponse(BaseModel):
    wallet_address: str
    personal_rank: Optional[int] = None
    personal_bonus: int
    district_rank: Optional[int] = None
    district_bonus: int
    total_bonus: int
    staking_amount: float
    total_rewards: float
    team_level: Optional[str] = None


class RankingEntryResponse(BaseModel):
    rank: int
    wallet_address: str
    score: float
    staking_amount: float
    district_performance: float
    total_rewards: float
    team_level: Optional[str] = None
    bonus: int


class RankingListResponse(BaseModel):
    type: str
    limit: int
    entries: List[RankingEntryResponse]


@router.get("/list", response_model=RankingListResponse)
async def get_ranking_list(
    request: Request,
    type: str = Query(default="personal", description="'personal' or 'district'"),
    limit: Optional[int] = Query(default=None, ge=1),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    """Top entries of a ranking, in rank order"""
    settings = request.app.state.settings
    kind = parse_ranking_type(type)
    limit = min(limit or settings.ranking_default_limit, settings.ranking_max_limit)
    entries = engine.ranking_list(kind, limit)
    return RankingListResponse(
        type=kind.value,
        limit=limit,
        entries=[RankingEntryResponse(**entry.to_dict()) for entry in entries],
    )


@router.get("/{identity}", response_model=RankingSummaryResponse)
async def get_account_ranking(
    identity: str,
    engine: RankingEngine = Depends(get_ranking_engine),
):
    """Rank and bonus breakdown for one account"""
    summary = engine.ranking_summary(identity)
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Account {identity} not found"
        )
    return summary
