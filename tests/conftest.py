"""
Shared test fixtures.

Each test gets its own file-backed SQLite database (via aiosqlite) so
tests run without Docker / PostgreSQL / Redis.  ``NullPool`` gives every
session its own connection, which lets concurrent transactions really
contend for the same rows.
"""

from __future__ import annotations

import random
from types import SimpleNamespace
from typing import Any, AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.api.middleware import limiter
from src.api.security import create_access_token
from src.domain.entities import AuthContext
from src.domain.estimation import DistanceDurationEstimator, RandomDurationEstimator
from src.domain.lifecycle import ORDER_LIFECYCLE, RIDE_LIFECYCLE
from src.infrastructure.codes import InMemoryCodeStore
from src.infrastructure.database import Base, unit_of_work
from src.infrastructure.mailer import Mailer, OutgoingMail
from src.infrastructure.models import UserModel
from src.infrastructure.pubsub import TopicHub
from src.infrastructure.repositories import UserStatsRepository
from src.services.lifecycle import LifecycleEngine


# ── Test doubles ──────────────────────────────────────────────────────


class RecordingSender:
    """Stands in for a WebSocket: remembers every frame sent to it."""

    def __init__(self):
        self.sent: list[dict] = []

    async def send_json(self, data: Any) -> None:
        self.sent.append(data)

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]

    def of_type(self, kind: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == kind]


class RecordingMailer(Mailer):
    def __init__(self):
        self.outbox: list[OutgoingMail] = []

    async def send(self, mail: OutgoingMail) -> bool:
        self.outbox.append(mail)
        return True


def seeded_estimator() -> DistanceDurationEstimator:
    return DistanceDurationEstimator(RandomDurationEstimator(random.Random(7)))


# ── DB ────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


async def make_user(
    factory: async_sessionmaker,
    name: str,
    *,
    deliverer: bool = False,
    verified: bool = True,
) -> AuthContext:
    email = f"{name.lower()}@campus.edu"
    async with unit_of_work(factory) as session:
        user = UserModel(
            name=name, email=email, is_deliverer=deliverer, is_verified=verified
        )
        session.add(user)
        await session.flush()
        user_id = user.id
    return AuthContext(
        user_id=user_id,
        name=name,
        email=email,
        is_deliverer=deliverer,
        is_verified=verified,
    )


async def stats_for(factory: async_sessionmaker, user_id: int):
    async with unit_of_work(factory) as session:
        return await UserStatsRepository(session).get(user_id)


async def backdate(factory: async_sessionmaker, model, row_id: int, **values) -> None:
    async with unit_of_work(factory) as session:
        await session.execute(
            update(model).where(model.id == row_id).values(**values)
        )


@pytest_asyncio.fixture
async def users(session_factory) -> SimpleNamespace:
    """alice/dave request, bob/carol/erin deliver, frank is unverified."""
    return SimpleNamespace(
        alice=await make_user(session_factory, "Alice"),
        dave=await make_user(session_factory, "Dave"),
        bob=await make_user(session_factory, "Bob", deliverer=True),
        carol=await make_user(session_factory, "Carol", deliverer=True),
        erin=await make_user(session_factory, "Erin", deliverer=True),
        frank=await make_user(session_factory, "Frank", verified=False),
    )


# ── Realtime + engines ────────────────────────────────────────────────


@pytest_asyncio.fixture
async def hub() -> AsyncGenerator[TopicHub, None]:
    hub = TopicHub(queue_size=100)
    yield hub
    await hub.close()


@pytest_asyncio.fixture
async def orders(session_factory, hub) -> LifecycleEngine:
    return LifecycleEngine(
        ORDER_LIFECYCLE, session_factory, hub, seeded_estimator(), default_fee=3.0
    )


@pytest_asyncio.fixture
async def rides(session_factory, hub) -> LifecycleEngine:
    return LifecycleEngine(
        RIDE_LIFECYCLE, session_factory, hub, seeded_estimator(), default_fee=3.0
    )


ORDER_FIELDS = {
    "restaurant": "Noodle Bar",
    "pickup_location": "Illini Union",
    "dropoff_building": "Siebel Center",
    "dropoff_room": "0216",
}

RIDE_FIELDS = {
    "pickup_location": "Main Quad",
    "dropoff_location": "Research Park",
    "num_passengers": 2,
}


# ── HTTP ──────────────────────────────────────────────────────────────


def auth(user: AuthContext) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.user_id)}"}


@pytest_asyncio.fixture
async def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest_asyncio.fixture
async def client(session_factory, hub, mailer) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient backed by the per-test SQLite database."""
    from src.api.app import create_app

    app = create_app(
        session_factory=session_factory,
        hub=hub,
        code_store=InMemoryCodeStore(),
        mailer=mailer,
        estimator=seeded_estimator(),
    )
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    limiter.enabled = True
