"""
Realtime fan-out tests: topic hub delivery, gateway commands and the
background sweeper.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from src.domain.events import Pong, StatusChanged, server_events
from src.infrastructure.codes import InMemoryCodeStore
from src.infrastructure.pubsub import TopicHub
from src.services.realtime import RealtimeGateway
from src.workers.sweeper import run_sweep_cycle, start_sweeper, stop_sweeper
from tests.conftest import ORDER_FIELDS, RecordingSender


class _BlockedSender:
    def __init__(self):
        self.release = asyncio.Event()
        self.sent: list[dict] = []

    async def send_json(self, data):
        await self.release.wait()
        self.sent.append(data)


class _BrokenSender:
    async def send_json(self, data):
        raise ConnectionError("gone")


def _status(i: int) -> StatusChanged:
    return StatusChanged(kind="order", id=1, status="picked_up", note=str(i))


# ── Hub ───────────────────────────────────────────────────────────────


class TestTopicHub:
    @pytest.mark.asyncio
    async def test_publish_order_within_topic(self, hub):
        sender = RecordingSender()
        conn = hub.connect(sender)
        hub.join(conn, "order:1")

        for i in range(20):
            await hub.publish("order:1", _status(i))
        await conn.flush()

        assert [m["note"] for m in sender.sent] == [str(i) for i in range(20)]

    @pytest.mark.asyncio
    async def test_only_members_receive(self, hub):
        member, outsider = RecordingSender(), RecordingSender()
        conn = hub.connect(member)
        other = hub.connect(outsider)
        hub.join(conn, "order:1")

        assert await hub.publish("order:1", _status(0)) == 1
        await conn.flush()
        await other.flush()
        assert len(member.sent) == 1
        assert outsider.sent == []

    @pytest.mark.asyncio
    async def test_overlapping_topics_deliver_once(self, hub):
        both, pool_only = RecordingSender(), RecordingSender()
        a = hub.connect(both)
        b = hub.connect(pool_only)
        hub.join(a, "deliverers")
        hub.join(a, "drivers")
        hub.join(b, "drivers")

        assert await hub.publish_many(("deliverers", "drivers"), _status(0)) == 2
        await a.flush()
        await b.flush()
        assert len(both.sent) == 1
        assert len(pool_only.sent) == 1

    @pytest.mark.asyncio
    async def test_publish_can_skip_the_origin(self, hub):
        origin, other = RecordingSender(), RecordingSender()
        a = hub.connect(origin)
        b = hub.connect(other)
        for conn in (a, b):
            hub.join(conn, "order:1")

        assert await hub.publish_many(("order:1",), _status(0), exclude=a) == 1
        await a.flush()
        await b.flush()
        assert origin.sent == []
        assert len(other.sent) == 1

    @pytest.mark.asyncio
    async def test_full_queue_drops(self):
        hub = TopicHub(queue_size=1)
        sender = _BlockedSender()
        conn = hub.connect(sender)
        hub.join(conn, "order:1")

        delivered = [await hub.publish("order:1", _status(i)) for i in range(3)]
        assert delivered == [1, 0, 0]

        sender.release.set()
        await conn.flush()
        assert [m["note"] for m in sender.sent] == ["0"]
        await hub.close()

    @pytest.mark.asyncio
    async def test_disconnect_leaves_topics(self, hub):
        conn = hub.connect(RecordingSender())
        hub.join(conn, "order:1")
        hub.join(conn, "deliverers")

        await hub.disconnect(conn)

        assert hub.member_count("order:1") == 0
        assert hub.member_count("deliverers") == 0
        assert hub.connections == []

    @pytest.mark.asyncio
    async def test_payloads_match_the_event_union(self, hub):
        sender = RecordingSender()
        conn = hub.connect(sender)
        await hub.send(conn, Pong())
        await conn.flush()

        assert isinstance(server_events.validate_python(sender.sent[0]), Pong)


# ── Gateway ───────────────────────────────────────────────────────────


@pytest.fixture
def gateway(hub, session_factory) -> RealtimeGateway:
    return RealtimeGateway(hub, session_factory)


async def _open(gateway, user=None):
    sender = RecordingSender()
    conn = await gateway.open(sender, user)
    return conn, sender


async def _send(gateway, conn, **command):
    await gateway.handle(conn, json.dumps(command))
    await conn.flush()


class TestGateway:
    @pytest.mark.asyncio
    async def test_connected_event(self, gateway, users, hub):
        conn, sender = await _open(gateway, users.alice)
        await conn.flush()

        assert sender.sent[0]["type"] == "connected"
        assert sender.sent[0]["user_id"] == users.alice.user_id
        assert hub.is_member(conn, f"user:{users.alice.user_id}")

    @pytest.mark.asyncio
    async def test_ping(self, gateway):
        conn, sender = await _open(gateway)
        await _send(gateway, conn, type="ping")
        assert sender.types() == ["connected", "pong"]

    @pytest.mark.asyncio
    async def test_binary_frame(self, gateway):
        conn, sender = await _open(gateway)
        await gateway.handle(conn, b'{"type": "ping"}')
        await conn.flush()
        assert sender.types() == ["connected", "pong"]

    @pytest.mark.asyncio
    async def test_malformed_command(self, gateway):
        conn, sender = await _open(gateway)
        await gateway.handle(conn, "{not json")
        await _send(gateway, conn, type="dance")

        errors = sender.of_type("error")
        assert len(errors) == 2
        assert all(e["code"] == "validation_error" for e in errors)

    @pytest.mark.asyncio
    async def test_party_can_subscribe(self, gateway, orders, users, hub):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        conn, sender = await _open(gateway, users.alice)

        await _send(gateway, conn, type="subscribe", kind="order", id=order.id)

        assert sender.of_type("subscribed")[0]["id"] == order.id
        assert hub.is_member(conn, f"order:{order.id}")

    @pytest.mark.asyncio
    async def test_unrelated_user_cannot_subscribe(self, gateway, orders, users, hub):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        conn, sender = await _open(gateway, users.carol)

        await _send(gateway, conn, type="subscribe", kind="order", id=order.id)

        [error] = sender.of_type("error")
        assert error["code"] == "forbidden"
        assert not hub.is_member(conn, f"order:{order.id}")

    @pytest.mark.asyncio
    async def test_missing_engagement_looks_forbidden(self, gateway, users):
        conn, sender = await _open(gateway, users.alice)
        await _send(gateway, conn, type="subscribe", kind="ride", id=999)
        assert sender.of_type("error")[0]["code"] == "forbidden"

    @pytest.mark.asyncio
    async def test_anonymous_cannot_subscribe(self, gateway, orders, users, hub):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        conn, sender = await _open(gateway)

        await _send(gateway, conn, type="subscribe", kind="order", id=order.id)

        assert sender.of_type("error")[0]["code"] == "forbidden"
        assert conn.topics == set()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, gateway, orders, users, hub):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        conn, sender = await _open(gateway, users.alice)
        await _send(gateway, conn, type="subscribe", kind="order", id=order.id)
        await _send(gateway, conn, type="unsubscribe", kind="order", id=order.id)

        assert not hub.is_member(conn, f"order:{order.id}")
        assert sender.types()[-1] == "unsubscribed"

    @pytest.mark.asyncio
    async def test_subscriber_sees_lifecycle_once(self, gateway, orders, users):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        conn, sender = await _open(gateway, users.alice)
        await _send(gateway, conn, type="subscribe", kind="order", id=order.id)

        await orders.accept(users.bob, order.id)
        await orders.advance(users.bob, order.id, "picked_up")
        await orders.cancel(users.bob, order.id, "bike broke")
        await conn.flush()

        # alice sits on both the order topic and her private topic
        assert sender.types()[2:] == ["accepted", "status_changed", "cancelled"]

    @pytest.mark.asyncio
    async def test_go_online_joins_pools(self, gateway, orders, users, hub):
        conn, sender = await _open(gateway, users.bob)
        await _send(gateway, conn, type="go_online")

        assert hub.is_member(conn, "deliverers")
        assert hub.is_member(conn, "drivers")
        assert sender.types() == ["connected", "presence"]

        await orders.request(users.alice, **ORDER_FIELDS)
        await conn.flush()
        assert "request_created" in sender.types()

        await _send(gateway, conn, type="go_offline")
        assert not hub.is_member(conn, "deliverers")
        assert sender.of_type("presence")[-1]["online"] is False

    @pytest.mark.asyncio
    async def test_go_online_requires_deliverer(self, gateway, users, hub):
        conn, sender = await _open(gateway, users.alice)
        await _send(gateway, conn, type="go_online")

        assert sender.of_type("error")[0]["code"] == "forbidden"
        assert not hub.is_member(conn, "deliverers")

    @pytest.mark.asyncio
    async def test_location_push(self, gateway, orders, users):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        await orders.accept(users.bob, order.id)
        watcher, watched = await _open(gateway, users.alice)
        await _send(gateway, watcher, type="subscribe", kind="order", id=order.id)
        driver, driver_sent = await _open(gateway, users.bob)

        await _send(
            gateway,
            driver,
            type="location_update",
            kind="order",
            id=order.id,
            latitude=40.1,
            longitude=-88.2,
            accuracy=5,
        )
        await watcher.flush()

        [update] = watched.of_type("location_updated")
        assert update["latitude"] == 40.1
        assert update["accuracy"] == 5
        assert driver_sent.of_type("error") == []

    @pytest.mark.asyncio
    async def test_location_push_from_non_assignee(self, gateway, orders, users):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        await orders.accept(users.bob, order.id)
        conn, sender = await _open(gateway, users.carol)

        await _send(
            gateway,
            conn,
            type="location_update",
            kind="order",
            id=order.id,
            latitude=40.1,
            longitude=-88.2,
        )

        assert sender.of_type("error")[0]["code"] == "forbidden"

    @pytest.mark.asyncio
    async def test_location_push_after_cancel(self, gateway, orders, users):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        await orders.accept(users.bob, order.id)
        await orders.cancel(users.alice, order.id)
        conn, sender = await _open(gateway, users.bob)

        await _send(
            gateway,
            conn,
            type="location_update",
            kind="order",
            id=order.id,
            latitude=40.1,
            longitude=-88.2,
        )

        assert sender.of_type("error")[0]["code"] == "conflict"

    @pytest.mark.asyncio
    async def test_typing_reaches_the_other_party(self, gateway, orders, users):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        await orders.accept(users.bob, order.id)
        alice, alice_sent = await _open(gateway, users.alice)
        bob, bob_sent = await _open(gateway, users.bob)
        for conn in (alice, bob):
            await _send(gateway, conn, type="subscribe", kind="order", id=order.id)

        await _send(gateway, bob, type="typing_start", kind="order", id=order.id)
        await _send(gateway, bob, type="typing_stop", kind="order", id=order.id)
        await alice.flush()

        started, stopped = alice_sent.of_type("typing")
        assert started["user_id"] == users.bob.user_id
        assert started["user_name"] == "Bob"
        assert started["typing"] is True
        assert stopped["typing"] is False
        assert bob_sent.of_type("typing") == []

    @pytest.mark.asyncio
    async def test_typing_from_outsider(self, gateway, orders, users):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        conn, sender = await _open(gateway, users.carol)

        await _send(gateway, conn, type="typing_start", id=order.id)

        assert sender.of_type("error")[0]["code"] == "forbidden"

    @pytest.mark.asyncio
    async def test_out_of_range_location_rejected(self, gateway, users):
        conn, sender = await _open(gateway, users.bob)
        await _send(
            gateway, conn, type="location_update", id=1, latitude=95, longitude=0
        )
        assert sender.of_type("error")[0]["code"] == "validation_error"


# ── Sweeper ───────────────────────────────────────────────────────────


class TestSweeper:
    @pytest.mark.asyncio
    async def test_prunes_dead_connections_and_codes(self, hub):
        alive = hub.connect(RecordingSender())
        dead = hub.connect(_BrokenSender())
        hub.join(dead, "order:1")
        await hub.send(dead, Pong())
        await dead.flush()
        assert dead.closed

        now = [0.0]
        codes = InMemoryCodeStore(clock=lambda: now[0])
        await codes.put("verify", 1, "123456", ttl_seconds=10)
        now[0] = 11

        result = await run_sweep_cycle(hub, codes)

        assert result == {"pruned": 1, "purged": 1, "live": 1}
        assert hub.connections == [alive]
        assert hub.member_count("order:1") == 0

    @pytest.mark.asyncio
    async def test_start_and_stop(self, hub):
        await start_sweeper(hub, None, interval=0.01)
        await asyncio.sleep(0.05)
        await stop_sweeper()
