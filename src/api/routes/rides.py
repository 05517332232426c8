"""
Ride endpoints
==============

Campus rides: a rider requests, a driver accepts, then moves the ride
through arriving -> in_progress -> completed.  Only the driver advances
a ride.  See ``engagements`` for the shared route list.
"""

from src.api.dependencies import get_ride_engine
from src.api.routes.engagements import build_router
from src.api.schemas import (
    ActiveRidesResponse,
    AvailableRideResponse,
    RideCreateRequest,
    RideDetailResponse,
    RidePage,
    RideResponse,
)

router = build_router(
    prefix="/rides",
    engine_dependency=get_ride_engine,
    create_schema=RideCreateRequest,
    response_schema=RideResponse,
    detail_schema=RideDetailResponse,
    available_schema=AvailableRideResponse,
    page_schema=RidePage,
    active_schema=ActiveRidesResponse,
    active_fields=("as_rider", "as_driver"),
)
