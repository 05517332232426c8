"""
Realtime Gateway
================

Translates client commands arriving on a persistent connection into hub
operations, and hub / service failures into ``error`` events.

Capabilities
------------
* anonymous   -- ``ping`` only
* authenticated user -- subscribe to engagements they are a party to,
  receive their private ``user:<id>`` topic, push location when assigned,
  relay typing indicators to the other parties of an engagement
* deliverer   -- additionally ``go_online`` / ``go_offline`` to join the
  request pools

Party membership is re-checked against the store on every subscribe and
typing relay; it is never cached on the connection.
"""

from __future__ import annotations

import logging
from typing import Optional

import pydantic
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.domain.entities import AuthContext
from src.domain.errors import AuthorizationError, DomainError
from src.domain.events import (
    Connected,
    ErrorEvent,
    GoOfflineCommand,
    GoOnlineCommand,
    LocationUpdateCommand,
    PingCommand,
    Pong,
    Presence,
    SubscribeCommand,
    Subscribed,
    Typing,
    TypingStartCommand,
    TypingStopCommand,
    UnsubscribeCommand,
    Unsubscribed,
    client_commands,
)
from src.domain.lifecycle import (
    POOL_TOPICS,
    engagement_topic,
    lifecycle_for,
    user_topic,
)
from src.infrastructure.database import unit_of_work
from src.infrastructure.pubsub import Connection, Sender, TopicHub
from src.infrastructure.repositories import EngagementRepository

from .lifecycle import is_party
from .tracking import LocationChannel

logger = logging.getLogger(__name__)


class RealtimeGateway:
    def __init__(
        self,
        hub: TopicHub,
        session_factory: Optional[async_sessionmaker] = None,
        tracking: Optional[LocationChannel] = None,
    ):
        self.hub = hub
        self.sessions = session_factory
        self.tracking = tracking or LocationChannel(session_factory, hub)

    # ── connection lifecycle ──────────────────────────────────────

    async def open(self, sender: Sender, user: Optional[AuthContext] = None) -> Connection:
        conn = self.hub.connect(sender, user)
        if user is not None:
            self.hub.join(conn, user_topic(user.user_id))
        await self.hub.send(
            conn, Connected(connection_id=conn.id, user_id=conn.user_id)
        )
        return conn

    async def close(self, conn: Connection) -> None:
        await self.hub.disconnect(conn)

    # ── dispatch ──────────────────────────────────────────────────

    async def handle(self, conn: Connection, raw: str | bytes) -> None:
        """Apply one client frame; failures become an ``error`` event."""
        try:
            command = client_commands.validate_json(raw)
        except pydantic.ValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            await self.hub.send(
                conn,
                ErrorEvent(
                    code="validation_error",
                    message=first.get("msg", "Malformed command"),
                ),
            )
            return

        try:
            if isinstance(command, PingCommand):
                await self.hub.send(conn, Pong())
            elif isinstance(command, SubscribeCommand):
                await self.subscribe(conn, command)
            elif isinstance(command, UnsubscribeCommand):
                await self.unsubscribe(conn, command)
            elif isinstance(command, GoOnlineCommand):
                await self.set_online(conn, True)
            elif isinstance(command, GoOfflineCommand):
                await self.set_online(conn, False)
            elif isinstance(command, LocationUpdateCommand):
                await self.push_location(conn, command)
            elif isinstance(command, (TypingStartCommand, TypingStopCommand)):
                await self.relay_typing(conn, command)
        except DomainError as exc:
            await self.hub.send(conn, ErrorEvent(code=exc.code, message=exc.message))
        except Exception:
            logger.exception(
                "Unhandled error for %s on connection %s", command.type, conn.id
            )
            await self.hub.send(
                conn, ErrorEvent(code="internal_error", message="Internal error")
            )

    # ── commands ──────────────────────────────────────────────────

    def _require_user(self, conn: Connection) -> AuthContext:
        if conn.user is None:
            raise AuthorizationError("Authentication required")
        return conn.user

    async def _require_party(self, user: AuthContext, kind, engagement_id: int, verb: str):
        lc = lifecycle_for(kind)
        async with unit_of_work(self.sessions) as session:
            row = await EngagementRepository(session, lc).get_by_id(engagement_id)
        # one message for "missing" and "not yours" so ids cannot be guessed
        if row is None or not is_party(row, user.user_id):
            raise AuthorizationError(
                f"Not authorized to {verb} this {lc.label.lower()}"
            )
        return lc

    async def subscribe(self, conn: Connection, command: SubscribeCommand) -> None:
        user = self._require_user(conn)
        lc = await self._require_party(user, command.kind, command.id, "subscribe to")

        self.hub.join(conn, engagement_topic(lc.kind, command.id))
        logger.info(
            "User %s subscribed to %s %s", user.user_id, lc.kind.value, command.id
        )
        await self.hub.send(conn, Subscribed(kind=lc.kind, id=command.id))

    async def unsubscribe(self, conn: Connection, command: UnsubscribeCommand) -> None:
        self.hub.leave(conn, engagement_topic(command.kind, command.id))
        await self.hub.send(conn, Unsubscribed(kind=command.kind, id=command.id))

    async def set_online(self, conn: Connection, online: bool) -> None:
        user = self._require_user(conn)
        if not user.is_deliverer:
            raise AuthorizationError("Deliverer status required")

        for topic in POOL_TOPICS:
            if online:
                self.hub.join(conn, topic)
            else:
                self.hub.leave(conn, topic)
        logger.info(
            "Deliverer %s is now %s", user.user_id, "online" if online else "offline"
        )
        presence = Presence(user_id=user.user_id, user_name=user.name, online=online)
        await self.hub.publish_many(POOL_TOPICS, presence)
        if not online:
            await self.hub.send(conn, presence)

    async def push_location(
        self, conn: Connection, command: LocationUpdateCommand
    ) -> None:
        user = self._require_user(conn)
        await self.tracking.record(
            user,
            command.kind,
            command.id,
            command.latitude,
            command.longitude,
            command.accuracy,
        )

    async def relay_typing(
        self, conn: Connection, command: TypingStartCommand | TypingStopCommand
    ) -> None:
        """Tell the other subscribers of an engagement that *conn*'s user is typing."""
        user = self._require_user(conn)
        lc = await self._require_party(user, command.kind, command.id, "message on")
        await self.hub.publish_many(
            (engagement_topic(lc.kind, command.id),),
            Typing(
                kind=lc.kind,
                id=command.id,
                user_id=user.user_id,
                user_name=user.name,
                typing=isinstance(command, TypingStartCommand),
            ),
            exclude=conn,
        )
