"""
Tracking endpoints
==================

POST /api/v1/tracking/{kind}/{id}/location -- assignee reports a position
GET  /api/v1/tracking/{kind}/{id}/location -- latest position (parties only)
GET  /api/v1/tracking/{kind}/{id}/history  -- recent positions, newest first
GET  /api/v1/tracking/active               -- my live engagements, latest positions
POST /api/v1/tracking/estimate             -- distance / time / fee estimate
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from src.api.dependencies import get_current_user, get_tracking
from src.api.middleware import RATE_LIMIT, limiter
from src.api.schemas import (
    EstimateRequest,
    EstimateResponse,
    InFlightResponse,
    LatestLocationResponse,
    LocationHistoryResponse,
    LocationSampleResponse,
    LocationUpdateRequest,
    TrackedEngagementResponse,
)
from src.domain.entities import AuthContext
from src.domain.enums import EngagementKind
from src.domain.estimation import Point, estimate_trip
from src.services.tracking import LocationChannel

router = APIRouter(prefix="/tracking", tags=["tracking"])


@router.post(
    "/estimate",
    response_model=EstimateResponse,
    summary="Estimate distance, duration and fee between two points",
)
@limiter.limit(RATE_LIMIT)
async def estimate(
    request: Request,
    body: EstimateRequest,
    user: AuthContext = Depends(get_current_user),
):
    return estimate_trip(
        Point(body.pickup_lat, body.pickup_lng),
        Point(body.dropoff_lat, body.dropoff_lng),
    )


@router.get(
    "/active",
    response_model=InFlightResponse,
    summary="My live orders and rides with their latest positions",
)
@limiter.limit(RATE_LIMIT)
async def active_tracking(
    request: Request,
    user: AuthContext = Depends(get_current_user),
    tracking: LocationChannel = Depends(get_tracking),
):
    tracked = await tracking.in_flight(user)
    rendered = [
        TrackedEngagementResponse(
            kind=t.kind,
            id=t.engagement.id,
            status=t.engagement.status.value,
            requester_id=t.engagement.requester_id,
            assignee_id=t.engagement.assignee_id,
            as_assignee=t.as_assignee,
            pickup_location=t.engagement.pickup_location,
            created_at=t.engagement.created_at,
            location=(
                LocationSampleResponse.model_validate(t.sample) if t.sample else None
            ),
        )
        for t in tracked
    ]
    return InFlightResponse(
        as_requester=[r for r in rendered if not r.as_assignee],
        as_assignee=[r for r in rendered if r.as_assignee],
    )

@router.post(
    "/{kind}/{engagement_id}/location",
    status_code=201,
    response_model=LocationSampleResponse,
    summary="Report the assignee's current position",
)
@limiter.limit(RATE_LIMIT)
async def update_location(
    request: Request,
    kind: EngagementKind,
    engagement_id: int,
    body: LocationUpdateRequest,
    user: AuthContext = Depends(get_current_user),
    tracking: LocationChannel = Depends(get_tracking),
):
    return await tracking.record(
        user, kind, engagement_id, body.latitude, body.longitude, body.accuracy
    )


@router.get(
    "/{kind}/{engagement_id}/location",
    response_model=LatestLocationResponse,
    summary="Latest reported position",
)
@limiter.limit(RATE_LIMIT)
async def latest_location(
    request: Request,
    kind: EngagementKind,
    engagement_id: int,
    user: AuthContext = Depends(get_current_user),
    tracking: LocationChannel = Depends(get_tracking),
):
    snapshot = await tracking.latest(user, kind, engagement_id)
    return LatestLocationResponse(
        kind=snapshot.kind,
        id=snapshot.engagement_id,
        status=snapshot.status,
        location=(
            LocationSampleResponse.model_validate(snapshot.sample)
            if snapshot.sample
            else None
        ),
    )


@router.get(
    "/{kind}/{engagement_id}/history",
    response_model=LocationHistoryResponse,
    summary="Recent positions, newest first",
)
@limiter.limit(RATE_LIMIT)
async def location_history(
    request: Request,
    kind: EngagementKind,
    engagement_id: int,
    limit: Optional[int] = Query(None, ge=1),
    user: AuthContext = Depends(get_current_user),
    tracking: LocationChannel = Depends(get_tracking),
):
    history = await tracking.history(user, kind, engagement_id, limit)
    return LocationHistoryResponse(
        kind=history.kind,
        id=history.engagement_id,
        status=history.status,
        locations=[LocationSampleResponse.model_validate(s) for s in history.samples],
    )
