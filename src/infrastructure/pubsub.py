"""
In-process topic hub for realtime fan-out.

Topics
------
* ``order:<id>`` / ``ride:<id>`` -- parties to one engagement
* ``deliverers`` / ``drivers``   -- online assignees (the request pool)
* ``user:<id>``                  -- one user's private channel

Delivery
--------
Each connection owns a bounded outbound queue drained by a single writer
task.  ``publish`` only enqueues, without awaiting, so every subscriber
of a topic sees that topic's events in publish order.  A full queue drops
the event for that subscriber (at-most-once); there is no replay, so a
reconnecting client re-fetches state over HTTP.

The hub lives in one process; scaling it across processes is out of
scope.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Any, Iterable, Optional, Protocol

from pydantic import BaseModel

from src.domain.entities import AuthContext

logger = logging.getLogger(__name__)


class Sender(Protocol):
    async def send_json(self, data: Any) -> None: ...


class Connection:
    def __init__(
        self,
        sender: Sender,
        user: Optional[AuthContext] = None,
        queue_size: int = 100,
    ):
        self.id = uuid.uuid4().hex
        self.sender = sender
        self.user = user
        self.topics: set[str] = set()
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None

    @property
    def user_id(self) -> Optional[int]:
        return self.user.user_id if self.user else None

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain())

    async def stop(self) -> None:
        self.closed = True
        if self._writer:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None

    def offer(self, payload: dict) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning(
                "Dropping %s event for connection %s (queue full)",
                payload.get("type"),
                self.id,
            )
            return False
        return True

    async def flush(self) -> None:
        """Wait until everything queued so far has been handed to the sender."""
        await self._queue.join()

    async def _drain(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                if not self.closed:
                    await self.sender.send_json(payload)
            except Exception:
                logger.warning("Send failed on connection %s; marking closed", self.id)
                self.closed = True
            finally:
                self._queue.task_done()


class TopicHub:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._topics: dict[str, set[Connection]] = defaultdict(set)
        self._connections: dict[str, Connection] = {}

    # ── connections ───────────────────────────────────────────────

    def connect(self, sender: Sender, user: Optional[AuthContext] = None) -> Connection:
        conn = Connection(sender, user, self.queue_size)
        self._connections[conn.id] = conn
        conn.start()
        logger.info(
            "Connection %s opened (user: %s)", conn.id, conn.user_id or "anonymous"
        )
        return conn

    async def disconnect(self, conn: Connection) -> None:
        for topic in list(conn.topics):
            self.leave(conn, topic)
        self._connections.pop(conn.id, None)
        await conn.stop()
        logger.info("Connection %s closed", conn.id)

    @property
    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    async def prune(self) -> int:
        """Disconnect connections whose writer has failed."""
        dead = [c for c in self._connections.values() if c.closed]
        for conn in dead:
            await self.disconnect(conn)
        return len(dead)

    async def close(self) -> None:
        for conn in self.connections:
            await self.disconnect(conn)

    # ── topics ────────────────────────────────────────────────────

    def join(self, conn: Connection, topic: str) -> None:
        self._topics[topic].add(conn)
        conn.topics.add(topic)

    def leave(self, conn: Connection, topic: str) -> None:
        members = self._topics.get(topic)
        if members is not None:
            members.discard(conn)
            if not members:
                del self._topics[topic]
        conn.topics.discard(topic)

    def is_member(self, conn: Connection, topic: str) -> bool:
        return conn in self._topics.get(topic, ())

    def member_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    # ── delivery ──────────────────────────────────────────────────

    async def publish(self, topic: str, event: BaseModel) -> int:
        """Queue *event* for every subscriber of *topic*; returns how many took it."""
        return await self.publish_many((topic,), event)

    async def publish_many(
        self,
        topics: Iterable[str],
        event: BaseModel,
        *,
        exclude: Optional[Connection] = None,
    ) -> int:
        """Queue *event* once per connection subscribed to any of *topics*."""
        payload = event.model_dump(mode="json")
        targets: dict[str, Connection] = {}
        for topic in topics:
            for conn in self._topics.get(topic, ()):
                targets.setdefault(conn.id, conn)
        if exclude is not None:
            targets.pop(exclude.id, None)
        delivered = 0
        for conn in targets.values():
            if conn.offer(payload):
                delivered += 1
        return delivered

    async def send(self, conn: Connection, event: BaseModel) -> bool:
        return conn.offer(event.model_dump(mode="json"))
