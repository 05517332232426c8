"""
User endpoints
==============

GET  /api/v1/users/me            -- profile with counters
POST /api/v1/users/me/deliverer  -- register as a deliverer / driver
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_current_user, get_users
from src.api.middleware import RATE_LIMIT, limiter
from src.api.schemas import (
    DelivererRequest,
    ProfileResponse,
    UserResponse,
    UserStatsResponse,
)
from src.domain.entities import AuthContext
from src.services.users import UserService

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=ProfileResponse, summary="My profile and counters")
@limiter.limit(RATE_LIMIT)
async def me(
    request: Request,
    user: AuthContext = Depends(get_current_user),
    users: UserService = Depends(get_users),
):
    profile, stats = await users.profile(user)
    return ProfileResponse(
        user=UserResponse.model_validate(profile),
        stats=UserStatsResponse.model_validate(stats),
    )


@router.post(
    "/me/deliverer",
    response_model=UserResponse,
    summary="Register as a deliverer",
    responses={409: {"description": "Already registered."}},
)
@limiter.limit(RATE_LIMIT)
async def become_deliverer(
    request: Request,
    body: DelivererRequest | None = None,
    user: AuthContext = Depends(get_current_user),
    users: UserService = Depends(get_users),
):
    return await users.become_deliverer(user, body.vehicle if body else None)
