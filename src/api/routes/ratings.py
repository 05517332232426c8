"""
Rating endpoints
================

POST /api/v1/ratings/{kind}/{id}          -- rate the counterpart once done
GET  /api/v1/ratings/users/{user_id}      -- average, breakdown, recent ratings
GET  /api/v1/ratings/mine                 -- ratings the caller has given
GET  /api/v1/ratings/{kind}/{id}/pending  -- do I still owe a rating?
"""

from fastapi import APIRouter, Depends, Query, Request

from src.api.dependencies import get_current_user, get_ratings
from src.api.middleware import RATE_LIMIT, limiter
from src.api.schemas import (
    PendingRatingResponse,
    RatingCreateRequest,
    RatingPage,
    RatingResponse,
    RatingSummaryResponse,
)
from src.domain.entities import AuthContext
from src.domain.enums import EngagementKind
from src.services.ratings import RatingService

router = APIRouter(prefix="/ratings", tags=["ratings"])


@router.get(
    "/users/{user_id}",
    response_model=RatingSummaryResponse,
    summary="Rating summary for a user",
)
@limiter.limit(RATE_LIMIT)
async def user_ratings(
    request: Request,
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    user: AuthContext = Depends(get_current_user),
    ratings: RatingService = Depends(get_ratings),
):
    summary = await ratings.summary(user_id, page=page, limit=limit)
    return RatingSummaryResponse(
        user_id=summary.user_id,
        avg_rating=summary.avg_rating,
        total_ratings=summary.total_ratings,
        breakdown=summary.breakdown,
        recent=[RatingResponse.model_validate(r) for r in summary.recent],
    )


@router.get(
    "/mine",
    response_model=RatingPage,
    summary="Ratings I have given, newest first",
)
@limiter.limit(RATE_LIMIT)
async def my_ratings(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: AuthContext = Depends(get_current_user),
    ratings: RatingService = Depends(get_ratings),
):
    rows, total = await ratings.given_by(user, page=page, limit=limit)
    return RatingPage(
        items=[RatingResponse.model_validate(r) for r in rows],
        total=total,
        page=page,
        limit=limit,
    )

@router.post(
    "/{kind}/{engagement_id}",
    status_code=201,
    response_model=RatingResponse,
    summary="Rate the other party of a finished order or ride",
    responses={409: {"description": "Not finished yet, or already rated."}},
)
@limiter.limit(RATE_LIMIT)
async def rate(
    request: Request,
    kind: EngagementKind,
    engagement_id: int,
    body: RatingCreateRequest,
    user: AuthContext = Depends(get_current_user),
    ratings: RatingService = Depends(get_ratings),
):
    return await ratings.rate(user, kind, engagement_id, body.score, body.comment)


@router.get(
    "/{kind}/{engagement_id}/pending",
    response_model=PendingRatingResponse,
    summary="Whether the caller still needs to rate",
)
@limiter.limit(RATE_LIMIT)
async def pending_rating(
    request: Request,
    kind: EngagementKind,
    engagement_id: int,
    user: AuthContext = Depends(get_current_user),
    ratings: RatingService = Depends(get_ratings),
):
    return await ratings.pending(user, kind, engagement_id)
