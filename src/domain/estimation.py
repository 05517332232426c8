"""
Trip Estimation  (Strategy Pattern)
===================================

Estimates how long a delivery or ride will take and what it should cost,
from optional pickup / dropoff coordinates.

Formula
-------
* distance   = great-circle (Haversine) distance in **miles**
* minutes    = max(5, round(distance x 6 + 3))     (~10 mph with stops)
* fee        = clamp(round(3 + distance x 2), 3, 15)

Assumption
----------
Campus trips are short, so great-circle distance stands in for a real
routing engine.  Estimators are pluggable: the distance model is the
default and ``RandomDurationEstimator`` keeps the legacy placeholder
behaviour (a uniform 5-14 minute guess) available behind the same
interface.
"""

from __future__ import annotations

import math
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

EARTH_RADIUS_MILES = 3_959.0

MIN_MINUTES = 5
MIN_FEE = 3
MAX_FEE = 15


@dataclass(frozen=True)
class Point:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class TripEstimate:
    distance_miles: float
    minutes: int
    fee: float


def haversine_miles(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **miles** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_MILES * math.asin(math.sqrt(a))


def minutes_for(distance_miles: float) -> int:
    return max(MIN_MINUTES, round(distance_miles * 6 + 3))


def fee_for(distance_miles: float) -> float:
    return float(max(MIN_FEE, min(MAX_FEE, round(3 + distance_miles * 2))))


def estimate_trip(pickup: Point, dropoff: Point) -> TripEstimate:
    distance = haversine_miles(
        pickup.latitude, pickup.longitude, dropoff.latitude, dropoff.longitude
    )
    return TripEstimate(
        distance_miles=round(distance, 2),
        minutes=minutes_for(distance),
        fee=fee_for(distance),
    )


# ── Strategy hierarchy ────────────────────────────────────────────────


class DurationEstimator(ABC):
    @abstractmethod
    def estimate(
        self, pickup: Optional[Point], dropoff: Optional[Point]
    ) -> int: ...

    def estimate_fee(
        self, pickup: Optional[Point], dropoff: Optional[Point]
    ) -> Optional[float]:
        """Suggested fee, or ``None`` when the estimator has no basis for one."""
        return None


class RandomDurationEstimator(DurationEstimator):
    """Uniform 5-14 minute guess; ignores coordinates entirely."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def estimate(self, pickup, dropoff) -> int:
        return MIN_MINUTES + self.rng.randrange(10)


class DistanceDurationEstimator(DurationEstimator):
    """Haversine-based estimate; defers to *fallback* without coordinates."""

    def __init__(self, fallback: Optional[DurationEstimator] = None):
        self.fallback = fallback or RandomDurationEstimator()

    def estimate(self, pickup, dropoff) -> int:
        if pickup is None or dropoff is None:
            return self.fallback.estimate(pickup, dropoff)
        return estimate_trip(pickup, dropoff).minutes

    def estimate_fee(self, pickup, dropoff) -> Optional[float]:
        if pickup is None or dropoff is None:
            return None
        return estimate_trip(pickup, dropoff).fee


def point_or_none(
    latitude: Optional[float], longitude: Optional[float]
) -> Optional[Point]:
    if latitude is None or longitude is None:
        return None
    return Point(latitude, longitude)


def build_estimator(name: str) -> DurationEstimator:
    if name == "random":
        return RandomDurationEstimator()
    if name == "distance":
        return DistanceDurationEstimator()
    raise ValueError(f"Unknown duration estimator: {name!r}")
