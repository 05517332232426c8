"""
Realtime wire protocol.

Server events and client commands are closed sets of tagged variants,
discriminated by ``type``.  Each variant has a fixed payload shape so
both ends can match exhaustively instead of trusting free-form dicts.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from .entities import utcnow
from .enums import EngagementKind


class _Event(BaseModel):
    at: datetime = Field(default_factory=utcnow)


# ── Server → client ───────────────────────────────────────────────────


class Connected(_Event):
    type: Literal["connected"] = "connected"
    connection_id: str
    user_id: Optional[int] = None


class Subscribed(_Event):
    type: Literal["subscribed"] = "subscribed"
    kind: EngagementKind
    id: int


class Unsubscribed(_Event):
    type: Literal["unsubscribed"] = "unsubscribed"
    kind: EngagementKind
    id: int


class RequestCreated(_Event):
    type: Literal["request_created"] = "request_created"
    kind: EngagementKind
    id: int
    pickup_location: str
    dropoff_location: str
    party_size: int = 1
    fee: Optional[float] = None
    estimated_duration_minutes: Optional[int] = None


class RequestTaken(_Event):
    """Tells the pool a request is no longer available."""

    type: Literal["request_taken"] = "request_taken"
    kind: EngagementKind
    id: int
    reason: Literal["accepted", "cancelled"] = "accepted"


class Accepted(_Event):
    type: Literal["accepted"] = "accepted"
    kind: EngagementKind
    id: int
    assignee_id: int
    assignee_name: str


class StatusChanged(_Event):
    type: Literal["status_changed"] = "status_changed"
    kind: EngagementKind
    id: int
    status: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    note: Optional[str] = None


class Completed(_Event):
    type: Literal["completed"] = "completed"
    kind: EngagementKind
    id: int
    status: str
    earnings: float
    actual_duration_minutes: Optional[int] = None


class Cancelled(_Event):
    type: Literal["cancelled"] = "cancelled"
    kind: EngagementKind
    id: int
    cancelled_by: int
    reason: str


class LocationUpdated(_Event):
    type: Literal["location_updated"] = "location_updated"
    kind: EngagementKind
    id: int
    latitude: float
    longitude: float
    accuracy: Optional[float] = None


class Presence(_Event):
    type: Literal["presence"] = "presence"
    user_id: int
    user_name: str
    online: bool


class Typing(_Event):
    """A party started or stopped typing on an engagement."""

    type: Literal["typing"] = "typing"
    kind: EngagementKind
    id: int
    user_id: int
    user_name: str
    typing: bool


class Pong(_Event):
    type: Literal["pong"] = "pong"


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    code: str
    message: str


ServerEvent = Annotated[
    Union[
        Connected,
        Subscribed,
        Unsubscribed,
        RequestCreated,
        RequestTaken,
        Accepted,
        StatusChanged,
        Completed,
        Cancelled,
        LocationUpdated,
        Presence,
        Typing,
        Pong,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]


# ── Client → server ───────────────────────────────────────────────────


class SubscribeCommand(BaseModel):
    type: Literal["subscribe"]
    kind: EngagementKind
    id: int


class UnsubscribeCommand(BaseModel):
    type: Literal["unsubscribe"]
    kind: EngagementKind
    id: int


class GoOnlineCommand(BaseModel):
    type: Literal["go_online"]


class GoOfflineCommand(BaseModel):
    type: Literal["go_offline"]


class LocationUpdateCommand(BaseModel):
    type: Literal["location_update"]
    kind: EngagementKind = EngagementKind.ORDER
    id: int
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)


class TypingStartCommand(BaseModel):
    type: Literal["typing_start"]
    kind: EngagementKind = EngagementKind.ORDER
    id: int


class TypingStopCommand(BaseModel):
    type: Literal["typing_stop"]
    kind: EngagementKind = EngagementKind.ORDER
    id: int


class PingCommand(BaseModel):
    type: Literal["ping"]


ClientCommand = Annotated[
    Union[
        SubscribeCommand,
        UnsubscribeCommand,
        GoOnlineCommand,
        GoOfflineCommand,
        LocationUpdateCommand,
        TypingStartCommand,
        TypingStopCommand,
        PingCommand,
    ],
    Field(discriminator="type"),
]

client_commands: TypeAdapter = TypeAdapter(ClientCommand)
server_events: TypeAdapter = TypeAdapter(ServerEvent)
