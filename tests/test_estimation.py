"""Unit tests for trip estimation (distance, duration, fee)."""

import random

import pytest

from src.domain.estimation import (
    DistanceDurationEstimator,
    DurationEstimator,
    Point,
    RandomDurationEstimator,
    build_estimator,
    estimate_trip,
    fee_for,
    haversine_miles,
    minutes_for,
    point_or_none,
)


class _Fixed(DurationEstimator):
    def estimate(self, pickup, dropoff) -> int:
        return 42


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_miles(40.1, -88.2, 40.1, -88.2) == 0.0

    def test_one_degree_of_latitude(self):
        assert haversine_miles(40.0, -88.0, 41.0, -88.0) == pytest.approx(69.1, abs=0.1)

    def test_symmetric(self):
        a = haversine_miles(40.1, -88.2, 40.09, -88.24)
        b = haversine_miles(40.09, -88.24, 40.1, -88.2)
        assert a == pytest.approx(b)


class TestFormulas:
    @pytest.mark.parametrize(
        "miles,expected", [(0, 5), (0.3, 5), (1, 9), (2, 15)]
    )
    def test_minutes(self, miles, expected):
        assert minutes_for(miles) == expected

    @pytest.mark.parametrize(
        "miles,expected", [(0, 3.0), (0.4, 4.0), (2, 7.0), (10, 15.0)]
    )
    def test_fee_is_clamped(self, miles, expected):
        assert fee_for(miles) == expected

    def test_estimate_trip(self):
        trip = estimate_trip(Point(40.0, -88.0), Point(40.0, -88.0))
        assert trip.distance_miles == 0
        assert trip.minutes == 5
        assert trip.fee == 3.0


class TestEstimators:
    def test_random_range(self):
        est = RandomDurationEstimator(random.Random(1))
        samples = {est.estimate(None, None) for _ in range(500)}
        assert min(samples) >= 5
        assert max(samples) <= 14

    def test_random_has_no_fee(self):
        assert RandomDurationEstimator().estimate_fee(None, None) is None

    def test_distance_uses_coordinates(self):
        est = DistanceDurationEstimator(_Fixed())
        pickup, dropoff = Point(40.0, -88.0), Point(40.0, -88.0)
        assert est.estimate(pickup, dropoff) == 5
        assert est.estimate_fee(pickup, dropoff) == 3.0

    def test_distance_falls_back_without_coordinates(self):
        est = DistanceDurationEstimator(_Fixed())
        assert est.estimate(None, Point(40.0, -88.0)) == 42
        assert est.estimate_fee(None, Point(40.0, -88.0)) is None

    def test_point_or_none(self):
        assert point_or_none(None, 1.0) is None
        assert point_or_none(1.0, 2.0) == Point(1.0, 2.0)

    def test_build_estimator(self):
        assert isinstance(build_estimator("random"), RandomDurationEstimator)
        assert isinstance(build_estimator("distance"), DistanceDurationEstimator)
        with pytest.raises(ValueError):
            build_estimator("oracle")
