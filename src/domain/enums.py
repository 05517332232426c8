"""Domain enumerations and state-transition rules."""

import enum


class EngagementKind(str, enum.Enum):
    ORDER = "order"
    RIDE = "ride"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    ON_THE_WAY = "on_the_way"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class RideStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    ARRIVING = "arriving"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ACCEPTED, OrderStatus.CANCELLED}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.PICKED_UP, OrderStatus.CANCELLED}),
    OrderStatus.PICKED_UP: frozenset({OrderStatus.ON_THE_WAY, OrderStatus.CANCELLED}),
    OrderStatus.ON_THE_WAY: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

RIDE_TRANSITIONS: dict[RideStatus, frozenset[RideStatus]] = {
    RideStatus.PENDING: frozenset({RideStatus.ACCEPTED, RideStatus.CANCELLED}),
    RideStatus.ACCEPTED: frozenset({RideStatus.ARRIVING, RideStatus.CANCELLED}),
    RideStatus.ARRIVING: frozenset({RideStatus.IN_PROGRESS, RideStatus.CANCELLED}),
    RideStatus.IN_PROGRESS: frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED}),
    RideStatus.COMPLETED: frozenset(),
    RideStatus.CANCELLED: frozenset(),
}


class Urgency(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RatingType(str, enum.Enum):
    REQUESTER_TO_ASSIGNEE = "requester_to_assignee"
    ASSIGNEE_TO_REQUESTER = "assignee_to_requester"
