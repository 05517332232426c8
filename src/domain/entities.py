"""
Domain value objects passed between the API, services and realtime layer.

``AuthContext`` is the explicit authenticated caller: resolved once by the
API (or the WebSocket handshake) and threaded through every service call
as a parameter.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from .enums import EngagementKind, Urgency


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    name: str
    email: str
    is_deliverer: bool = False
    is_verified: bool = False


@dataclass(frozen=True)
class AvailableRequest:
    """A pending engagement as seen by prospective assignees."""

    engagement: Any
    wait_minutes: float
    urgency: Urgency

    @property
    def estimated_earnings(self) -> float:
        return float(self.engagement.fee or 0)


@dataclass(frozen=True)
class ActiveEngagements:
    as_requester: Optional[Any] = None
    as_assignee: Optional[Any] = None


@dataclass(frozen=True)
class LocationSnapshot:
    kind: EngagementKind
    engagement_id: int
    status: str
    sample: Optional[Any] = None


@dataclass(frozen=True)
class LocationHistory:
    kind: EngagementKind
    engagement_id: int
    status: str
    samples: list


@dataclass(frozen=True)
class RatingSummary:
    user_id: int
    avg_rating: float
    total_ratings: int
    breakdown: dict[int, int]
    recent: list


@dataclass(frozen=True)
class PendingRating:
    needs_rating: bool
    rated_user_id: Optional[int] = None
    is_requester: bool = False
    reason: Optional[str] = None


@dataclass(frozen=True)
class EngagementDetail:
    engagement: Any
    history: list


@dataclass(frozen=True)
class AssigneeStats:
    """What an assignee finished today (UTC) next to their lifetime figures."""

    kind: EngagementKind
    today_count: int
    today_earnings: float
    today_tips: float
    total_count: int
    avg_rating: float
    total_ratings: int


@dataclass(frozen=True)
class TrackedEngagement:
    kind: EngagementKind
    engagement: Any
    as_assignee: bool
    sample: Optional[Any] = None
