"""
Integration tests for the REST and WebSocket endpoints.

Runs the real application against the per-test SQLite database through
httpx's ASGI transport; the WebSocket check uses Starlette's TestClient.
"""

from __future__ import annotations

import re

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.api.security import create_access_token
from src.infrastructure.pubsub import TopicHub
from tests.conftest import ORDER_FIELDS, RIDE_FIELDS, auth

ORDERS = "/api/v1/orders"
RIDES = "/api/v1/rides"


async def _place_order(client, user, **overrides):
    resp = await client.post(ORDERS, json={**ORDER_FIELDS, **overrides}, headers=auth(user))
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Basics ────────────────────────────────────────────────────────────


class TestBasics:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        resp = await client.get(f"{ORDERS}/mine")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_bad_token(self, client):
        resp = await client.get(
            f"{ORDERS}/mine", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Could not validate credentials"

    @pytest.mark.asyncio
    async def test_token_for_unknown_user(self, client):
        headers = {"Authorization": f"Bearer {create_access_token(4242)}"}
        resp = await client.get(f"{ORDERS}/mine", headers=headers)
        assert resp.status_code == 401


# ── Orders ────────────────────────────────────────────────────────────


class TestOrders:
    @pytest.mark.asyncio
    async def test_create(self, client, users):
        order = await _place_order(client, users.alice, fee=4.5, tip=1.0)

        assert order["status"] == "pending"
        assert order["customer_id"] == users.alice.user_id
        assert order["deliverer_id"] is None
        assert order["fee"] == 4.5
        assert order["dropoff_room"] == "0216"

    @pytest.mark.asyncio
    async def test_fee_estimated_from_coordinates(self, client, users):
        order = await _place_order(
            client,
            users.alice,
            pickup_lat=40.1092,
            pickup_lng=-88.2272,
            dropoff_lat=40.1138,
            dropoff_lng=-88.2249,
        )
        assert 3.0 <= order["fee"] <= 15.0
        assert order["estimated_duration_minutes"] >= 5

    @pytest.mark.asyncio
    async def test_unverified_is_forbidden(self, client, users):
        resp = await client.post(ORDERS, json=ORDER_FIELDS, headers=auth(users.frank))
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_schema_validation(self, client, users):
        resp = await client.post(
            ORDERS,
            json={**ORDER_FIELDS, "item_count": 0},
            headers=auth(users.alice),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_second_active_request_conflicts(self, client, users):
        await _place_order(client, users.alice)
        resp = await client.post(RIDES, json=RIDE_FIELDS, headers=auth(users.alice))
        assert resp.status_code == 409
        assert resp.json()["error"] == "conflict"

    @pytest.mark.asyncio
    async def test_available_for_deliverers_only(self, client, users):
        order = await _place_order(client, users.alice)

        resp = await client.get(f"{ORDERS}/available", headers=auth(users.bob))
        assert resp.status_code == 200
        [item] = resp.json()
        assert item["id"] == order["id"]
        assert item["urgency"] == "low"
        assert item["estimated_earnings"] == order["fee"]

        resp = await client.get(f"{ORDERS}/available", headers=auth(users.dave))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_accept_race_loser_gets_409(self, client, users):
        order = await _place_order(client, users.alice)

        first = await client.post(f"{ORDERS}/{order['id']}/accept", headers=auth(users.bob))
        second = await client.post(
            f"{ORDERS}/{order['id']}/accept", headers=auth(users.carol)
        )

        assert first.status_code == 200
        assert first.json()["deliverer_id"] == users.bob.user_id
        assert second.status_code == 409
        assert "no longer available" in second.json()["detail"]

    @pytest.mark.asyncio
    async def test_own_order_cannot_be_accepted(self, client, users, orders):
        await orders.request(users.bob, **ORDER_FIELDS)
        active = await client.get(f"{ORDERS}/active", headers=auth(users.bob))
        own_id = active.json()["as_customer"]["id"]

        resp = await client.post(f"{ORDERS}/{own_id}/accept", headers=auth(users.bob))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_order(self, client, users):
        resp = await client.post(f"{ORDERS}/999/accept", headers=auth(users.bob))
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_unknown_status_is_400(self, client, users):
        order = await _place_order(client, users.alice)
        await client.post(f"{ORDERS}/{order['id']}/accept", headers=auth(users.bob))

        resp = await client.post(
            f"{ORDERS}/{order['id']}/status",
            json={"status": "teleported"},
            headers=auth(users.bob),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_skipping_a_step_is_409(self, client, users):
        order = await _place_order(client, users.alice)
        await client.post(f"{ORDERS}/{order['id']}/accept", headers=auth(users.bob))

        resp = await client.post(
            f"{ORDERS}/{order['id']}/status",
            json={"status": "delivered"},
            headers=auth(users.bob),
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_full_flow(self, client, users):
        order = await _place_order(client, users.alice, fee=5.0)
        oid = order["id"]

        await client.post(f"{ORDERS}/{oid}/accept", headers=auth(users.bob))
        for step in ("picked_up", "on_the_way"):
            resp = await client.post(
                f"{ORDERS}/{oid}/status",
                json={"status": step, "latitude": 40.11, "longitude": -88.22},
                headers=auth(users.bob),
            )
            assert resp.status_code == 200, resp.text
        # the customer may confirm the hand-off
        resp = await client.post(
            f"{ORDERS}/{oid}/status",
            json={"status": "delivered"},
            headers=auth(users.alice),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "delivered"
        assert body["earnings"] == 5.0
        assert body["delivered_at"] is not None

        detail = await client.get(f"{ORDERS}/{oid}", headers=auth(users.alice))
        assert [h["status"] for h in detail.json()["history"]] == [
            "delivered",
            "on_the_way",
            "picked_up",
            "accepted",
            "pending",
        ]

        profile = await client.get("/api/v1/users/me", headers=auth(users.bob))
        assert profile.json()["stats"]["total_deliveries"] == 1
        assert profile.json()["stats"]["total_earnings"] == 5.0

    @pytest.mark.asyncio
    async def test_detail_hidden_from_outsiders(self, client, users):
        order = await _place_order(client, users.alice)
        resp = await client.get(f"{ORDERS}/{order['id']}", headers=auth(users.carol))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_cancel_with_and_without_reason(self, client, users):
        order = await _place_order(client, users.alice)
        resp = await client.post(
            f"{ORDERS}/{order['id']}/cancel", headers=auth(users.alice)
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        assert resp.json()["cancelled_reason"] == "No reason provided"

        again = await client.post(
            f"{ORDERS}/{order['id']}/cancel",
            json={"reason": "changed my mind"},
            headers=auth(users.alice),
        )
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_mine_is_paginated(self, client, users):
        for _ in range(3):
            order = await _place_order(client, users.alice)
            await client.post(
                f"{ORDERS}/{order['id']}/cancel", headers=auth(users.alice)
            )

        resp = await client.get(
            f"{ORDERS}/mine", params={"page": 2, "limit": 2}, headers=auth(users.alice)
        )
        body = resp.json()
        assert body["total"] == 3
        assert body["page"] == 2
        assert len(body["items"]) == 1

    @pytest.mark.asyncio
    async def test_assigned_history_and_stats(self, client, users, orders):
        order = await orders.request(users.alice, **ORDER_FIELDS, fee=5.0, tip=2.0)
        await orders.accept(users.bob, order.id)
        for step in ("picked_up", "on_the_way", "delivered"):
            await orders.advance(users.bob, order.id, step)

        history = await client.get(f"{ORDERS}/assigned", headers=auth(users.bob))
        assert history.status_code == 200
        body = history.json()
        assert body["total"] == 1
        assert body["items"][0]["id"] == order.id
        assert body["items"][0]["deliverer_id"] == users.bob.user_id

        stats = await client.get(f"{ORDERS}/stats", headers=auth(users.bob))
        assert stats.status_code == 200
        assert stats.json() == {
            "kind": "order",
            "today_count": 1,
            "today_earnings": 5.0,
            "today_tips": 2.0,
            "total_count": 1,
            "avg_rating": 0.0,
            "total_ratings": 0,
        }

        empty = await client.get(f"{RIDES}/assigned", headers=auth(users.bob))
        assert empty.json()["total"] == 0


# ── Rides ─────────────────────────────────────────────────────────────


class TestRides:
    @pytest.mark.asyncio
    async def test_ride_flow_and_active(self, client, users):
        resp = await client.post(RIDES, json=RIDE_FIELDS, headers=auth(users.dave))
        assert resp.status_code == 201
        ride = resp.json()
        assert ride["rider_id"] == users.dave.user_id
        assert ride["num_passengers"] == 2

        await client.post(f"{RIDES}/{ride['id']}/accept", headers=auth(users.erin))
        active = await client.get(f"{RIDES}/active", headers=auth(users.erin))
        assert active.json()["as_driver"]["id"] == ride["id"]
        assert active.json()["as_rider"] is None

        # only the driver moves a ride forward
        resp = await client.post(
            f"{RIDES}/{ride['id']}/status",
            json={"status": "arriving"},
            headers=auth(users.dave),
        )
        assert resp.status_code == 403

        for step in ("arriving", "in_progress", "completed"):
            resp = await client.post(
                f"{RIDES}/{ride['id']}/status",
                json={"status": step},
                headers=auth(users.erin),
            )
            assert resp.status_code == 200, resp.text
        assert resp.json()["completed_at"] is not None

        active = await client.get(f"{RIDES}/active", headers=auth(users.erin))
        assert active.json() == {"as_rider": None, "as_driver": None}


# ── Tracking ──────────────────────────────────────────────────────────


class TestTracking:
    @pytest.mark.asyncio
    async def test_report_and_read(self, client, users):
        order = await _place_order(client, users.alice)
        await client.post(f"{ORDERS}/{order['id']}/accept", headers=auth(users.bob))

        resp = await client.post(
            f"/api/v1/tracking/order/{order['id']}/location",
            json={"latitude": 40.1, "longitude": -88.2, "accuracy": 4},
            headers=auth(users.bob),
        )
        assert resp.status_code == 201

        latest = await client.get(
            f"/api/v1/tracking/order/{order['id']}/location", headers=auth(users.alice)
        )
        assert latest.json()["status"] == "accepted"
        assert latest.json()["location"]["latitude"] == 40.1

        history = await client.get(
            f"/api/v1/tracking/order/{order['id']}/history",
            params={"limit": 10},
            headers=auth(users.alice),
        )
        assert len(history.json()["locations"]) == 1

    @pytest.mark.asyncio
    async def test_active_lists_both_sides(self, client, users):
        order = await _place_order(client, users.alice)
        await client.post(f"{ORDERS}/{order['id']}/accept", headers=auth(users.bob))
        await client.post(
            f"/api/v1/tracking/order/{order['id']}/location",
            json={"latitude": 40.1, "longitude": -88.2},
            headers=auth(users.bob),
        )

        mine = await client.get("/api/v1/tracking/active", headers=auth(users.alice))
        assert mine.status_code == 200
        [tracked] = mine.json()["as_requester"]
        assert tracked["id"] == order["id"]
        assert tracked["status"] == "accepted"
        assert tracked["location"]["latitude"] == 40.1
        assert mine.json()["as_assignee"] == []

        working = await client.get("/api/v1/tracking/active", headers=auth(users.bob))
        assert working.json()["as_assignee"][0]["as_assignee"] is True

    @pytest.mark.asyncio
    async def test_requester_cannot_report(self, client, users):
        order = await _place_order(client, users.alice)
        await client.post(f"{ORDERS}/{order['id']}/accept", headers=auth(users.bob))

        resp = await client.post(
            f"/api/v1/tracking/order/{order['id']}/location",
            json={"latitude": 40.1, "longitude": -88.2},
            headers=auth(users.alice),
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_kind(self, client, users):
        resp = await client.get(
            "/api/v1/tracking/scooter/1/location", headers=auth(users.alice)
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_estimate(self, client, users):
        resp = await client.post(
            "/api/v1/tracking/estimate",
            json={
                "pickup_lat": 40.0,
                "pickup_lng": -88.0,
                "dropoff_lat": 40.0,
                "dropoff_lng": -88.0,
            },
            headers=auth(users.alice),
        )
        assert resp.status_code == 200
        assert resp.json() == {"distance_miles": 0.0, "minutes": 5, "fee": 3.0}


# ── Ratings ───────────────────────────────────────────────────────────


class TestRatings:
    @pytest.mark.asyncio
    async def test_rate_after_delivery(self, client, users, orders):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        await orders.accept(users.bob, order.id)
        url = f"/api/v1/ratings/order/{order.id}"

        early = await client.post(url, json={"score": 5}, headers=auth(users.alice))
        assert early.status_code == 409

        for step in ("picked_up", "on_the_way", "delivered"):
            await orders.advance(users.bob, order.id, step)

        pending = await client.get(f"{url}/pending", headers=auth(users.alice))
        assert pending.json()["needs_rating"] is True

        resp = await client.post(
            url, json={"score": 4, "comment": "Quick"}, headers=auth(users.alice)
        )
        assert resp.status_code == 201
        assert resp.json()["rating_type"] == "requester_to_assignee"

        dup = await client.post(url, json={"score": 1}, headers=auth(users.alice))
        assert dup.status_code == 409

        summary = await client.get(
            f"/api/v1/ratings/users/{users.bob.user_id}", headers=auth(users.carol)
        )
        body = summary.json()
        assert body["avg_rating"] == 4.0
        assert body["breakdown"]["4"] == 1
        assert body["recent"][0]["comment"] == "Quick"

    @pytest.mark.asyncio
    async def test_ratings_i_gave(self, client, users, orders):
        order = await orders.request(users.alice, **ORDER_FIELDS)
        await orders.accept(users.bob, order.id)
        for step in ("picked_up", "on_the_way", "delivered"):
            await orders.advance(users.bob, order.id, step)
        await client.post(
            f"/api/v1/ratings/order/{order.id}",
            json={"score": 5},
            headers=auth(users.alice),
        )

        resp = await client.get("/api/v1/ratings/mine", headers=auth(users.alice))
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 1
        assert body["items"][0]["rated_user_id"] == users.bob.user_id

        none = await client.get("/api/v1/ratings/mine", headers=auth(users.bob))
        assert none.json() == {"items": [], "total": 0, "page": 1, "limit": 20}

    @pytest.mark.asyncio
    async def test_score_bounds(self, client, users):
        resp = await client.post(
            "/api/v1/ratings/order/1", json={"score": 6}, headers=auth(users.alice)
        )
        assert resp.status_code == 422


# ── Users & verification ──────────────────────────────────────────────


class TestUsers:
    @pytest.mark.asyncio
    async def test_profile(self, client, users):
        resp = await client.get("/api/v1/users/me", headers=auth(users.alice))
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["email"] == "alice@campus.edu"
        assert body["stats"]["total_orders"] == 0

    @pytest.mark.asyncio
    async def test_become_deliverer_once(self, client, users):
        resp = await client.post(
            "/api/v1/users/me/deliverer",
            json={"vehicle": "bike"},
            headers=auth(users.alice),
        )
        assert resp.status_code == 200
        assert resp.json()["is_deliverer"] is True
        assert resp.json()["deliverer_vehicle"] == "bike"

        again = await client.post("/api/v1/users/me/deliverer", headers=auth(users.alice))
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_verification_flow(self, client, users, mailer):
        send = await client.post(
            "/api/v1/auth/verification/send", headers=auth(users.frank)
        )
        assert send.status_code == 200
        code = re.search(r"\b\d{6}\b", mailer.outbox[-1].body).group(0)

        wrong = "111111" if code != "111111" else "222222"
        bad = await client.post(
            "/api/v1/auth/verification/confirm",
            json={"code": wrong},
            headers=auth(users.frank),
        )
        assert bad.status_code == 400

        ok = await client.post(
            "/api/v1/auth/verification/confirm",
            json={"code": code},
            headers=auth(users.frank),
        )
        assert ok.status_code == 200

        # verified users can now place orders
        await _place_order(client, users.frank)

    @pytest.mark.asyncio
    async def test_verified_user_cannot_resend(self, client, users):
        resp = await client.post(
            "/api/v1/auth/verification/send", headers=auth(users.alice)
        )
        assert resp.status_code == 409


# ── WebSocket ─────────────────────────────────────────────────────────


class TestWebSocket:
    def test_anonymous_ping(self):
        app = create_app(hub=TopicHub())
        with TestClient(app) as client:
            with client.websocket_connect("/ws?token=garbage") as ws:
                connected = ws.receive_json()
                assert connected["type"] == "connected"
                assert connected["user_id"] is None

                ws.send_json({"type": "ping"})
                assert ws.receive_json()["type"] == "pong"

                ws.send_bytes(b'{"type": "ping"}')
                assert ws.receive_json()["type"] == "pong"

                ws.send_json({"type": "subscribe", "kind": "order", "id": 1})
                error = ws.receive_json()
                assert error["type"] == "error"
                assert error["code"] == "forbidden"
