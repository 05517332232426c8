"""Initial schema: users, counters, orders, rides and their history tables.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

ORDER_STATUSES = ("pending", "accepted", "picked_up", "on_the_way", "delivered", "cancelled")
RIDE_STATUSES = ("pending", "accepted", "arriving", "in_progress", "completed", "cancelled")
RATING_TYPES = ("requester_to_assignee", "assignee_to_requester")
ONE_PARENT = "(order_id IS NULL) <> (ride_id IS NULL)"


def _status(values, name):
    return sa.Enum(*values, name=name, native_enum=False, length=32)


def _engagement_columns():
    """Columns orders and rides have in common."""
    return [
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "requester_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "assignee_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "cancelled_by",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("pickup_location", sa.String(255), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column("dropoff_lat", sa.Float, nullable=True),
        sa.Column("dropoff_lng", sa.Float, nullable=True),
        sa.Column("special_instructions", sa.Text, nullable=True),
        sa.Column("fee", sa.Float, nullable=False, server_default="0"),
        sa.Column("tip", sa.Float, nullable=False, server_default="0"),
        sa.Column("earnings", sa.Float, nullable=True),
        sa.Column("estimated_duration_minutes", sa.Integer, nullable=True),
        sa.Column("actual_duration_minutes", sa.Integer, nullable=True),
        sa.Column("cancelled_reason", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    ]


def _parent_columns():
    return [
        sa.Column(
            "order_id",
            sa.Integer,
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "ride_id",
            sa.Integer,
            sa.ForeignKey("rides.id", ondelete="CASCADE"),
            nullable=True,
        ),
    ]


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_deliverer", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("deliverer_vehicle", sa.String(50), nullable=True),
        sa.Column("avg_rating", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_ratings", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── user_stats ────────────────────────────────────────────────────
    op.create_table(
        "user_stats",
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("total_orders", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_deliveries", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_rides_requested", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_rides_given", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earnings", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_tips", sa.Float, nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── orders ────────────────────────────────────────────────────────
    op.create_table(
        "orders",
        *_engagement_columns(),
        sa.Column("status", _status(ORDER_STATUSES, "orderstatus"), nullable=False),
        sa.Column("restaurant", sa.String(120), nullable=True),
        sa.Column("dropoff_building", sa.String(255), nullable=False),
        sa.Column("dropoff_room", sa.String(50), nullable=True),
        sa.Column("item_count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_orders_status", "orders", ["status"])
    op.create_index("idx_orders_requester", "orders", ["requester_id"])
    op.create_index("idx_orders_assignee", "orders", ["assignee_id"])
    op.create_index("idx_orders_created", "orders", ["created_at"])

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        *_engagement_columns(),
        sa.Column("status", _status(RIDE_STATUSES, "ridestatus"), nullable=False),
        sa.Column("dropoff_location", sa.String(255), nullable=False),
        sa.Column("num_passengers", sa.Integer, nullable=False, server_default="1"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "num_passengers >= 1 AND num_passengers <= 4",
            name="ck_rides_passengers",
        ),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_requester", "rides", ["requester_id"])
    op.create_index("idx_rides_assignee", "rides", ["assignee_id"])
    op.create_index("idx_rides_created", "rides", ["created_at"])

    # ── status_events ─────────────────────────────────────────────────
    op.create_table(
        "status_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        *_parent_columns(),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column(
            "actor_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(ONE_PARENT, name="ck_status_events_parent"),
    )
    op.create_index("idx_status_events_order", "status_events", ["order_id", "created_at"])
    op.create_index("idx_status_events_ride", "status_events", ["ride_id", "created_at"])

    # ── location_samples ──────────────────────────────────────────────
    op.create_table(
        "location_samples",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        *_parent_columns(),
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("accuracy", sa.Float, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(ONE_PARENT, name="ck_location_samples_parent"),
    )
    op.create_index(
        "idx_location_samples_order", "location_samples", ["order_id", "created_at"]
    )
    op.create_index(
        "idx_location_samples_ride", "location_samples", ["ride_id", "created_at"]
    )

    # ── ratings ───────────────────────────────────────────────────────
    op.create_table(
        "ratings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        *_parent_columns(),
        sa.Column(
            "rater_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "rated_user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("score", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text, nullable=True),
        sa.Column("rating_type", _status(RATING_TYPES, "ratingtype"), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("score >= 1 AND score <= 5", name="ck_ratings_score"),
        sa.CheckConstraint(ONE_PARENT, name="ck_ratings_parent"),
        sa.UniqueConstraint("order_id", "rater_id", "rated_user_id", name="uq_ratings_order"),
        sa.UniqueConstraint("ride_id", "rater_id", "rated_user_id", name="uq_ratings_ride"),
    )
    op.create_index("idx_ratings_rated_user", "ratings", ["rated_user_id"])


def downgrade() -> None:
    op.drop_table("ratings")
    op.drop_table("location_samples")
    op.drop_table("status_events")
    op.drop_table("rides")
    op.drop_table("orders")
    op.drop_table("user_stats")
    op.drop_table("users")
