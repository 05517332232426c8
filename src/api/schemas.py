"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.enums import EngagementKind, OrderStatus, RatingType, RideStatus, Urgency

_LAT = {"ge": -90, "le": 90}
_LNG = {"ge": -180, "le": 180}


# ── Requests ──────────────────────────────────────────────────────────


class OrderCreateRequest(BaseModel):
    restaurant: Optional[str] = Field(None, max_length=120)
    pickup_location: str = Field(..., min_length=1, max_length=255)
    pickup_lat: Optional[float] = Field(None, **_LAT)
    pickup_lng: Optional[float] = Field(None, **_LNG)
    dropoff_building: str = Field(..., min_length=1, max_length=255)
    dropoff_room: Optional[str] = Field(None, max_length=50)
    dropoff_lat: Optional[float] = Field(None, **_LAT)
    dropoff_lng: Optional[float] = Field(None, **_LNG)
    item_count: int = Field(1, ge=1, le=20)
    special_instructions: Optional[str] = Field(None, max_length=500)
    fee: Optional[float] = Field(
        None, ge=0, description="Delivery fee; estimated from coordinates when omitted."
    )
    tip: Optional[float] = Field(None, ge=0)


class RideCreateRequest(BaseModel):
    pickup_location: str = Field(..., min_length=1, max_length=255)
    pickup_lat: Optional[float] = Field(None, **_LAT)
    pickup_lng: Optional[float] = Field(None, **_LNG)
    dropoff_location: str = Field(..., min_length=1, max_length=255)
    dropoff_lat: Optional[float] = Field(None, **_LAT)
    dropoff_lng: Optional[float] = Field(None, **_LNG)
    num_passengers: int = Field(1, ge=1, le=4)
    special_instructions: Optional[str] = Field(None, max_length=500)
    fee: Optional[float] = Field(
        None, ge=0, description="Ride fee; estimated from coordinates when omitted."
    )
    tip: Optional[float] = Field(None, ge=0)


class StatusUpdateRequest(BaseModel):
    status: str
    latitude: Optional[float] = Field(None, **_LAT)
    longitude: Optional[float] = Field(None, **_LNG)
    note: Optional[str] = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class LocationUpdateRequest(BaseModel):
    latitude: float = Field(..., **_LAT)
    longitude: float = Field(..., **_LNG)
    accuracy: Optional[float] = Field(None, ge=0)


class EstimateRequest(BaseModel):
    pickup_lat: float = Field(..., **_LAT)
    pickup_lng: float = Field(..., **_LNG)
    dropoff_lat: float = Field(..., **_LAT)
    dropoff_lng: float = Field(..., **_LNG)


class RatingCreateRequest(BaseModel):
    score: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class DelivererRequest(BaseModel):
    vehicle: Optional[str] = Field(None, max_length=50)


class VerificationConfirmRequest(BaseModel):
    code: str = Field(..., pattern=r"^\s*\d{6}\s*$")


# ── Responses ─────────────────────────────────────────────────────────


class StatusEventResponse(BaseModel):
    status: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    note: Optional[str] = None
    actor_id: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class _EngagementResponse(BaseModel):
    id: int
    pickup_location: str
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    dropoff_lat: Optional[float] = None
    dropoff_lng: Optional[float] = None
    special_instructions: Optional[str] = None
    fee: float
    tip: float = 0.0
    earnings: Optional[float] = None
    estimated_duration_minutes: Optional[int] = None
    actual_duration_minutes: Optional[int] = None
    cancelled_reason: Optional[str] = None
    cancelled_by: Optional[int] = None
    created_at: datetime
    accepted_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True, "populate_by_name": True}


class OrderResponse(_EngagementResponse):
    customer_id: int = Field(..., validation_alias="requester_id")
    deliverer_id: Optional[int] = Field(None, validation_alias="assignee_id")
    status: OrderStatus
    restaurant: Optional[str] = None
    dropoff_building: str
    dropoff_room: Optional[str] = None
    item_count: int
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class RideResponse(_EngagementResponse):
    rider_id: int = Field(..., validation_alias="requester_id")
    driver_id: Optional[int] = Field(None, validation_alias="assignee_id")
    status: RideStatus
    dropoff_location: str
    num_passengers: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class OrderDetailResponse(OrderResponse):
    history: list[StatusEventResponse] = []


class RideDetailResponse(RideResponse):
    history: list[StatusEventResponse] = []


class AvailableOrderResponse(OrderResponse):
    wait_minutes: float
    urgency: Urgency
    estimated_earnings: float


class AvailableRideResponse(RideResponse):
    wait_minutes: float
    urgency: Urgency
    estimated_earnings: float


class OrderPage(BaseModel):
    items: list[OrderResponse]
    total: int
    page: int
    limit: int


class RidePage(BaseModel):
    items: list[RideResponse]
    total: int
    page: int
    limit: int


class ActiveOrdersResponse(BaseModel):
    as_customer: Optional[OrderResponse] = None
    as_deliverer: Optional[OrderResponse] = None


class ActiveRidesResponse(BaseModel):
    as_rider: Optional[RideResponse] = None
    as_driver: Optional[RideResponse] = None


class AssigneeStatsResponse(BaseModel):
    kind: EngagementKind
    today_count: int
    today_earnings: float
    today_tips: float
    total_count: int
    avg_rating: float
    total_ratings: int

    model_config = {"from_attributes": True}


class LocationSampleResponse(BaseModel):
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    user_id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class LatestLocationResponse(BaseModel):
    kind: EngagementKind
    id: int
    status: str
    location: Optional[LocationSampleResponse] = None


class LocationHistoryResponse(BaseModel):
    kind: EngagementKind
    id: int
    status: str
    locations: list[LocationSampleResponse]


class TrackedEngagementResponse(BaseModel):
    kind: EngagementKind
    id: int
    status: str
    requester_id: int
    assignee_id: Optional[int] = None
    as_assignee: bool
    pickup_location: str
    created_at: datetime
    location: Optional[LocationSampleResponse] = None


class InFlightResponse(BaseModel):
    as_requester: list[TrackedEngagementResponse]
    as_assignee: list[TrackedEngagementResponse]


class EstimateResponse(BaseModel):
    distance_miles: float
    minutes: int
    fee: float

    model_config = {"from_attributes": True}


class RatingResponse(BaseModel):
    id: int
    order_id: Optional[int] = None
    ride_id: Optional[int] = None
    rater_id: int
    rated_user_id: int
    score: int
    comment: Optional[str] = None
    rating_type: RatingType
    created_at: datetime

    model_config = {"from_attributes": True}


class RatingPage(BaseModel):
    items: list[RatingResponse]
    total: int
    page: int
    limit: int


class RatingSummaryResponse(BaseModel):
    user_id: int
    avg_rating: float
    total_ratings: int
    breakdown: dict[int, int]
    recent: list[RatingResponse]

    model_config = {"from_attributes": True}


class PendingRatingResponse(BaseModel):
    needs_rating: bool
    rated_user_id: Optional[int] = None
    is_requester: bool = False
    reason: Optional[str] = None

    model_config = {"from_attributes": True}


class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    phone: Optional[str] = None
    is_verified: bool
    is_deliverer: bool
    deliverer_vehicle: Optional[str] = None
    avg_rating: float
    total_ratings: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class UserStatsResponse(BaseModel):
    total_orders: int = 0
    total_deliveries: int = 0
    total_rides_requested: int = 0
    total_rides_given: int = 0
    total_earnings: float = 0.0
    total_tips: float = 0.0

    model_config = {"from_attributes": True}


class ProfileResponse(BaseModel):
    user: UserResponse
    stats: UserStatsResponse


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    detail: str
