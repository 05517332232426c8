"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 campus users (4 of them deliverers / drivers), all verified
  - 3 orders and 2 rides driven through the lifecycle engine, so every
    status history is a legal path (pending, in progress, delivered,
    cancelled)
  - prints a bearer token per user for trying the API
"""

import asyncio

from sqlalchemy import func, select

from src.api.security import create_access_token
from src.domain.entities import AuthContext
from src.domain.lifecycle import ORDER_LIFECYCLE, RIDE_LIFECYCLE
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import UserModel
from src.services.lifecycle import LifecycleEngine

# Main quad (approx)
CAMPUS_LAT, CAMPUS_LNG = 40.1075, -88.2272


USERS = [
    {"name": "Maya Chen", "email": "maya@campus.edu", "deliverer": False},
    {"name": "Jordan Ellis", "email": "jordan@campus.edu", "deliverer": False},
    {"name": "Sam Okafor", "email": "sam@campus.edu", "deliverer": False},
    {"name": "Riley Park", "email": "riley@campus.edu", "deliverer": False},
    {"name": "Alex Moreno", "email": "alex@campus.edu", "deliverer": True, "vehicle": "bike"},
    {"name": "Taylor Brooks", "email": "taylor@campus.edu", "deliverer": True, "vehicle": "scooter"},
    {"name": "Casey Nguyen", "email": "casey@campus.edu", "deliverer": True, "vehicle": "car"},
    {"name": "Drew Patel", "email": "drew@campus.edu", "deliverer": True, "vehicle": "car"},
]


def _ctx(user: UserModel) -> AuthContext:
    return AuthContext(
        user_id=user.id,
        name=user.name,
        email=user.email,
        is_deliverer=user.is_deliverer,
        is_verified=user.is_verified,
    )


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(UserModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        user_models = []
        for u in USERS:
            m = UserModel(
                name=u["name"],
                email=u["email"],
                is_verified=True,
                is_deliverer=u["deliverer"],
                deliverer_vehicle=u.get("vehicle"),
            )
            session.add(m)
            user_models.append(m)
        await session.commit()
        print(f"  Created {len(user_models)} users")

    maya, jordan, sam, riley, alex, taylor, casey, drew = map(_ctx, user_models)
    orders = LifecycleEngine(ORDER_LIFECYCLE)
    rides = LifecycleEngine(RIDE_LIFECYCLE)

    # ── Orders ────────────────────────────────────────────────────────
    await orders.request(
        maya,
        restaurant="Noodle Bar",
        pickup_location="Illini Union food court",
        pickup_lat=40.1092,
        pickup_lng=-88.2272,
        dropoff_building="Lincoln Avenue Residence Hall",
        dropoff_room="214",
        dropoff_lat=40.1040,
        dropoff_lng=-88.2210,
        item_count=2,
    )

    delivered = await orders.request(
        jordan,
        restaurant="Green Street Tacos",
        pickup_location="Green St & 6th",
        pickup_lat=40.1102,
        pickup_lng=-88.2310,
        dropoff_building="Grainger Library",
        tip=2.0,
    )
    await orders.accept(alex, delivered.id)
    for status in ("picked_up", "on_the_way", "delivered"):
        await orders.advance(alex, delivered.id, status)

    cancelled = await orders.request(
        sam,
        pickup_location="Campus bookstore",
        dropoff_building="Siebel Center",
        dropoff_room="0216",
    )
    await orders.cancel(sam, cancelled.id, "Picked it up myself")

    # ── Rides ─────────────────────────────────────────────────────────
    in_progress = await rides.request(
        riley,
        pickup_location="Main Quad",
        pickup_lat=CAMPUS_LAT,
        pickup_lng=CAMPUS_LNG,
        dropoff_location="Research Park",
        dropoff_lat=40.0930,
        dropoff_lng=-88.2440,
        num_passengers=2,
    )
    await rides.accept(casey, in_progress.id)
    await rides.advance(casey, in_progress.id, "arriving")

    await rides.request(
        taylor,
        pickup_location="ARC gym",
        dropoff_location="Amtrak station",
    )
    print("  Created 3 orders and 2 rides")

    print("\nTokens:")
    for ctx in (maya, jordan, sam, riley, alex, taylor, casey, drew):
        print(f"  {ctx.email:<22} {create_access_token(ctx.user_id)}")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
