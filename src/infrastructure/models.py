"""
SQLAlchemy ORM models.

Tables
------
* ``users``            -- campus members; requesters and (optionally) assignees
* ``user_stats``       -- denormalised per-user counters
* ``orders``           -- food-delivery requests
* ``rides``            -- campus ride requests
* ``status_events``    -- append-only transition history (order or ride)
* ``location_samples`` -- append-only assignee positions (order or ride)
* ``ratings``          -- one rating per (engagement, rater, rated user)

Orders and rides share the ``EngagementMixin`` columns so the lifecycle
engine can drive both through one code path.  History, location and
rating rows point at exactly one of ``order_id`` / ``ride_id``.

Indexes
-------
* **B-Tree** on ``status``, ``requester_id``, ``assignee_id`` and
  ``created_at`` for the availability list and active-engagement checks.
* **B-Tree** on ``(order_id, created_at)`` / ``(ride_id, created_at)`` for
  latest-location and history reads.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declared_attr

from .database import Base
from src.domain.entities import utcnow
from src.domain.enums import EngagementKind, OrderStatus, RatingType, RideStatus


def _enum(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    is_deliverer = Column(Boolean, default=False, nullable=False)
    deliverer_vehicle = Column(String(50), nullable=True)
    avg_rating = Column(Float, default=0.0, nullable=False)
    total_ratings = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class UserStatsModel(Base):
    __tablename__ = "user_stats"

    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    total_orders = Column(Integer, default=0, nullable=False)
    total_deliveries = Column(Integer, default=0, nullable=False)
    total_rides_requested = Column(Integer, default=0, nullable=False)
    total_rides_given = Column(Integer, default=0, nullable=False)
    total_earnings = Column(Float, default=0.0, nullable=False)
    total_tips = Column(Float, default=0.0, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class EngagementMixin:
    """Columns shared by orders and rides."""

    id = Column(Integer, primary_key=True, autoincrement=True)

    @declared_attr
    def requester_id(cls):
        return Column(
            Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        )

    @declared_attr
    def assignee_id(cls):
        # Null until accepted; never reassigned afterwards
        return Column(
            Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        )

    @declared_attr
    def cancelled_by(cls):
        return Column(
            Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        )

    pickup_location = Column(String(255), nullable=False)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)
    special_instructions = Column(Text, nullable=True)

    fee = Column(Float, default=0.0, nullable=False)
    tip = Column(Float, default=0.0, nullable=False)
    earnings = Column(Float, nullable=True)
    estimated_duration_minutes = Column(Integer, nullable=True)
    actual_duration_minutes = Column(Integer, nullable=True)

    cancelled_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class OrderModel(EngagementMixin, Base):
    __tablename__ = "orders"

    status = Column(
        _enum(OrderStatus, "orderstatus"),
        default=OrderStatus.PENDING,
        nullable=False,
    )
    restaurant = Column(String(120), nullable=True)
    dropoff_building = Column(String(255), nullable=False)
    dropoff_room = Column(String(50), nullable=True)
    item_count = Column(Integer, default=1, nullable=False)

    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_orders_status", "status"),
        Index("idx_orders_requester", "requester_id"),
        Index("idx_orders_assignee", "assignee_id"),
        Index("idx_orders_created", "created_at"),
    )

    @property
    def dropoff_location(self) -> str:
        if self.dropoff_room:
            return f"{self.dropoff_building} {self.dropoff_room}"
        return self.dropoff_building

    @property
    def party_size(self) -> int:
        return self.item_count


class RideModel(EngagementMixin, Base):
    __tablename__ = "rides"

    status = Column(
        _enum(RideStatus, "ridestatus"),
        default=RideStatus.PENDING,
        nullable=False,
    )
    dropoff_location = Column(String(255), nullable=False)
    num_passengers = Column(Integer, default=1, nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "num_passengers >= 1 AND num_passengers <= 4",
            name="ck_rides_passengers",
        ),
        Index("idx_rides_status", "status"),
        Index("idx_rides_requester", "requester_id"),
        Index("idx_rides_assignee", "assignee_id"),
        Index("idx_rides_created", "created_at"),
    )

    @property
    def party_size(self) -> int:
        return self.num_passengers


ENGAGEMENT_MODELS = {
    EngagementKind.ORDER: OrderModel,
    EngagementKind.RIDE: RideModel,
}

_ONE_PARENT = "(order_id IS NULL) <> (ride_id IS NULL)"


class StatusEventModel(Base):
    __tablename__ = "status_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=True
    )
    ride_id = Column(
        Integer, ForeignKey("rides.id", ondelete="CASCADE"), nullable=True
    )
    status = Column(String(20), nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    note = Column(Text, nullable=True)
    actor_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(_ONE_PARENT, name="ck_status_events_parent"),
        Index("idx_status_events_order", "order_id", "created_at"),
        Index("idx_status_events_ride", "ride_id", "created_at"),
    )


class LocationSampleModel(Base):
    __tablename__ = "location_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=True
    )
    ride_id = Column(
        Integer, ForeignKey("rides.id", ondelete="CASCADE"), nullable=True
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(_ONE_PARENT, name="ck_location_samples_parent"),
        Index("idx_location_samples_order", "order_id", "created_at"),
        Index("idx_location_samples_ride", "ride_id", "created_at"),
    )


class RatingModel(Base):
    __tablename__ = "ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=True
    )
    ride_id = Column(
        Integer, ForeignKey("rides.id", ondelete="CASCADE"), nullable=True
    )
    rater_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    rated_user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    score = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    rating_type = Column(_enum(RatingType, "ratingtype"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("score >= 1 AND score <= 5", name="ck_ratings_score"),
        CheckConstraint(_ONE_PARENT, name="ck_ratings_parent"),
        UniqueConstraint("order_id", "rater_id", "rated_user_id", name="uq_ratings_order"),
        UniqueConstraint("ride_id", "rater_id", "rated_user_id", name="uq_ratings_ride"),
        Index("idx_ratings_rated_user", "rated_user_id"),
    )


def parent_column(kind: EngagementKind) -> str:
    """Name of the history / location / rating column pointing at *kind*."""
    return f"{EngagementKind(kind).value}_id"
