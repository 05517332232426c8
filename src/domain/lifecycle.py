"""
Order / ride lifecycle definitions.

Both engagement variants share one shape: a ``pending`` request is
claimed by exactly one assignee (``accepted``), then advanced through a
linear chain of working states to a terminal success state.  Any
non-terminal state may be ``cancelled``.

``Lifecycle`` captures everything the engine needs to drive either
variant generically: the transition table, which party may perform each
advance, which timestamp column each transition stamps, and the pool
topic that hears about new requests.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

from .enums import (
    ORDER_TRANSITIONS,
    RIDE_TRANSITIONS,
    EngagementKind,
    OrderStatus,
    RideStatus,
    Urgency,
)
from .errors import InvalidStateTransition, ValidationError


@dataclass(frozen=True)
class Lifecycle:
    kind: EngagementKind
    label: str
    status_type: type[enum.Enum]
    transitions: dict
    pending: enum.Enum
    accepted: enum.Enum
    done: enum.Enum
    cancelled: enum.Enum
    # status -> model attribute stamped when the transition fires
    timestamps: dict
    # status whose timestamp starts the duration clock
    started: enum.Enum
    # advance targets the requester may perform as well as the assignee
    either_party: frozenset = field(default_factory=frozenset)
    pool_topic: str = ""
    requester_counter: str = ""
    assignee_counter: str = ""

    # ── queries ───────────────────────────────────────────────────

    @property
    def terminal(self) -> frozenset:
        return frozenset(s for s, nxt in self.transitions.items() if not nxt)

    @property
    def active(self) -> frozenset:
        return frozenset(self.transitions) - self.terminal

    @property
    def trackable(self) -> frozenset:
        """Assigned, non-terminal states: the assignee is out working."""
        return self.active - {self.pending}

    @property
    def advance_targets(self) -> frozenset:
        return frozenset(self.transitions) - {
            self.pending,
            self.accepted,
            self.cancelled,
        }

    @property
    def cancellable(self) -> frozenset:
        return self.predecessors(self.cancelled)

    def predecessors(self, target) -> frozenset:
        return frozenset(s for s, nxt in self.transitions.items() if target in nxt)

    def can_transition(self, current, target) -> bool:
        return target in self.transitions.get(current, frozenset())

    def check_transition(self, current, target) -> None:
        if not self.can_transition(current, target):
            raise InvalidStateTransition(
                f"Cannot move {self.label.lower()} from {_value(current)} "
                f"to {_value(target)}",
                {"from": _value(current), "to": _value(target)},
            )

    def is_terminal(self, status) -> bool:
        return self.status_type(status) in self.terminal

    def parse_status(self, value: str):
        try:
            return self.status_type(value)
        except ValueError:
            raise ValidationError(
                f"Unknown {self.label.lower()} status: {value!r}",
                {"allowed": [s.value for s in self.status_type]},
            ) from None

    def timestamp_for(self, status) -> Optional[str]:
        return self.timestamps.get(status)

    @property
    def started_attr(self) -> str:
        return self.timestamps[self.started]

    @property
    def done_attr(self) -> str:
        return self.timestamps[self.done]

    def path_is_valid(self, statuses: list) -> bool:
        """True if *statuses* (oldest first) walks the diagram from pending."""
        if not statuses or self.status_type(statuses[0]) != self.pending:
            return False
        return all(
            self.can_transition(self.status_type(a), self.status_type(b))
            for a, b in zip(statuses, statuses[1:])
        )


def _value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


ORDER_LIFECYCLE = Lifecycle(
    kind=EngagementKind.ORDER,
    label="Order",
    status_type=OrderStatus,
    transitions=ORDER_TRANSITIONS,
    pending=OrderStatus.PENDING,
    accepted=OrderStatus.ACCEPTED,
    done=OrderStatus.DELIVERED,
    cancelled=OrderStatus.CANCELLED,
    timestamps={
        OrderStatus.ACCEPTED: "accepted_at",
        OrderStatus.PICKED_UP: "picked_up_at",
        OrderStatus.DELIVERED: "delivered_at",
        OrderStatus.CANCELLED: "cancelled_at",
    },
    started=OrderStatus.PICKED_UP,
    # the customer may confirm hand-over themselves
    either_party=frozenset({OrderStatus.DELIVERED}),
    pool_topic="deliverers",
    requester_counter="total_orders",
    assignee_counter="total_deliveries",
)

RIDE_LIFECYCLE = Lifecycle(
    kind=EngagementKind.RIDE,
    label="Ride",
    status_type=RideStatus,
    transitions=RIDE_TRANSITIONS,
    pending=RideStatus.PENDING,
    accepted=RideStatus.ACCEPTED,
    done=RideStatus.COMPLETED,
    cancelled=RideStatus.CANCELLED,
    timestamps={
        RideStatus.ACCEPTED: "accepted_at",
        RideStatus.IN_PROGRESS: "started_at",
        RideStatus.COMPLETED: "completed_at",
        RideStatus.CANCELLED: "cancelled_at",
    },
    started=RideStatus.IN_PROGRESS,
    pool_topic="drivers",
    requester_counter="total_rides_requested",
    assignee_counter="total_rides_given",
)

LIFECYCLES: dict[EngagementKind, Lifecycle] = {
    EngagementKind.ORDER: ORDER_LIFECYCLE,
    EngagementKind.RIDE: RIDE_LIFECYCLE,
}

POOL_TOPICS = tuple(lc.pool_topic for lc in LIFECYCLES.values())


def lifecycle_for(kind: EngagementKind | str) -> Lifecycle:
    try:
        return LIFECYCLES[EngagementKind(kind)]
    except ValueError:
        raise ValidationError(f"Unknown engagement kind: {kind!r}") from None


# ── Topics ────────────────────────────────────────────────────────────


def engagement_topic(kind: EngagementKind | str, engagement_id: int) -> str:
    return f"{EngagementKind(kind).value}:{engagement_id}"


def user_topic(user_id: int) -> str:
    return f"user:{user_id}"


# ── Availability ──────────────────────────────────────────────────────


def urgency_for(
    wait_minutes: float, medium_after: float = 5.0, high_after: float = 10.0
) -> Urgency:
    """Bias assignee attention toward requests that have waited longest."""
    if wait_minutes > high_after:
        return Urgency.HIGH
    if wait_minutes > medium_after:
        return Urgency.MEDIUM
    return Urgency.LOW


def validate_coordinates(latitude: float, longitude: float) -> None:
    if not -90 <= latitude <= 90:
        raise ValidationError("Latitude must be between -90 and 90")
    if not -180 <= longitude <= 180:
        raise ValidationError("Longitude must be between -180 and 180")
