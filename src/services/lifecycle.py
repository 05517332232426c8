"""
Lifecycle Engine
================

Validates and applies status transitions for one order or ride at a time.

Concurrency safety
------------------
* **Conditional UPDATE** (``WHERE status = 'pending' AND assignee_id IS
  NULL``) claims a request; the affected-row count decides the single
  winner of any number of concurrent accepts.  Advance and cancel use the
  same pattern with their legal predecessor states, so a stale read can
  never apply an illegal transition.
* **SELECT ... FOR UPDATE** on the caller's user row serialises one
  user's concurrent requests / claims, keeping "one active engagement"
  true under load.
* Every operation is a single unit of work: the status change, its
  history event and any counter updates commit together or not at all.
  Events are published only after the commit.

Operation per call
------------------
1. Check role and input (no store access yet).
2. Inside one transaction: load, authorise, conditionally update, append
   history, update counters.
3. After commit: publish to the engagement topic, the pool and/or the
   counterpart's private topic.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Protocol

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.config import settings
from src.domain.entities import (
    ActiveEngagements,
    AssigneeStats,
    AuthContext,
    AvailableRequest,
    EngagementDetail,
    as_utc,
    utcnow,
)
from src.domain.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from src.domain.estimation import DurationEstimator, build_estimator, point_or_none
from src.domain.events import (
    Accepted,
    Cancelled,
    Completed,
    RequestCreated,
    RequestTaken,
    StatusChanged,
)
from src.domain.lifecycle import (
    LIFECYCLES,
    Lifecycle,
    engagement_topic,
    urgency_for,
    user_topic,
    validate_coordinates,
)
from src.infrastructure.database import unit_of_work
from src.infrastructure.repositories import (
    EngagementRepository,
    StatusEventRepository,
    UserRepository,
    UserStatsRepository,
)

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    async def publish(self, topic: str, event: BaseModel) -> int: ...

    async def publish_many(self, topics: Iterable[str], event: BaseModel) -> int: ...


def _coordinate_pair(latitude: Optional[float], longitude: Optional[float]) -> None:
    if (latitude is None) != (longitude is None):
        raise ValidationError("Latitude and longitude must be given together")
    if latitude is not None:
        validate_coordinates(latitude, longitude)


def is_party(engagement: Any, user_id: int) -> bool:
    return user_id in (engagement.requester_id, engagement.assignee_id)


class LifecycleEngine:
    def __init__(
        self,
        lifecycle: Lifecycle,
        session_factory: Optional[async_sessionmaker] = None,
        publisher: Optional[Publisher] = None,
        estimator: Optional[DurationEstimator] = None,
        *,
        default_fee: float = settings.default_fee,
        available_limit: int = settings.available_limit,
        medium_after: float = settings.urgency_medium_after_minutes,
        high_after: float = settings.urgency_high_after_minutes,
    ):
        self.lifecycle = lifecycle
        self.sessions = session_factory
        self.publisher = publisher
        self.estimator = estimator or build_estimator(settings.duration_estimator)
        self.default_fee = default_fee
        self.available_limit = available_limit
        self.medium_after = medium_after
        self.high_after = high_after

    @property
    def label(self) -> str:
        return self.lifecycle.label

    def _repo(self, session) -> EngagementRepository:
        return EngagementRepository(session, self.lifecycle)

    def _history(self, session) -> StatusEventRepository:
        return StatusEventRepository(session, self.lifecycle.kind)

    def _topic(self, engagement_id: int) -> str:
        return engagement_topic(self.lifecycle.kind, engagement_id)

    async def _announce(self, event: BaseModel, *topics: str) -> None:
        """Publish *event* once per connection across *topics*."""
        if self.publisher is None:
            return
        try:
            await self.publisher.publish_many(topics, event)
        except Exception:
            logger.exception(
                "Failed to publish %s to %s", event.type, ", ".join(topics)
            )

    # ── Request ───────────────────────────────────────────────────

    async def request(self, actor: AuthContext, **fields: Any):
        """Create a pending engagement owned by *actor*."""
        lc = self.lifecycle
        if not actor.is_verified:
            raise AuthorizationError("Email verification required")

        _coordinate_pair(fields.get("pickup_lat"), fields.get("pickup_lng"))
        _coordinate_pair(fields.get("dropoff_lat"), fields.get("dropoff_lng"))
        fee = fields.pop("fee", None)
        tip = fields.pop("tip", None) or 0.0
        if (fee is not None and fee < 0) or tip < 0:
            raise ValidationError("Fee and tip cannot be negative")

        pickup = point_or_none(fields.get("pickup_lat"), fields.get("pickup_lng"))
        dropoff = point_or_none(fields.get("dropoff_lat"), fields.get("dropoff_lng"))
        estimated = self.estimator.estimate(pickup, dropoff)
        if fee is None:
            fee = self.estimator.estimate_fee(pickup, dropoff) or self.default_fee

        async with unit_of_work(self.sessions) as session:
            await UserRepository(session).lock(actor.user_id)
            for other in LIFECYCLES.values():
                existing = await EngagementRepository(
                    session, other
                ).get_active_as_requester(actor.user_id)
                if existing is not None:
                    raise ConflictError(
                        f"You already have an active {other.label.lower()} request",
                        {"kind": other.kind.value, "active_id": existing.id},
                    )

            row = await self._repo(session).create(
                requester_id=actor.user_id,
                fee=fee,
                tip=tip,
                estimated_duration_minutes=estimated,
                **fields,
            )
            await self._history(session).append(
                row.id,
                lc.pending,
                actor_id=actor.user_id,
                note=f"{self.label} placed",
                at=row.created_at,
            )
            await UserStatsRepository(session).increment(
                actor.user_id, **{lc.requester_counter: 1}
            )

        logger.info("New %s requested: %s by %s", lc.kind.value, row.id, actor.user_id)
        await self._announce(
            RequestCreated(
                kind=lc.kind,
                id=row.id,
                pickup_location=row.pickup_location,
                dropoff_location=row.dropoff_location,
                party_size=row.party_size,
                fee=row.fee,
                estimated_duration_minutes=row.estimated_duration_minutes,
            ),
            lc.pool_topic,
        )
        return row

    # ── List available ────────────────────────────────────────────

    async def list_available(self, actor: AuthContext) -> list[AvailableRequest]:
        if not actor.is_deliverer:
            raise AuthorizationError("Deliverer status required")

        async with unit_of_work(self.sessions) as session:
            rows = await self._repo(session).list_pending(
                exclude_requester=actor.user_id, limit=self.available_limit
            )

        now = utcnow()
        available = []
        for row in rows:
            wait = max(0.0, (now - as_utc(row.created_at)).total_seconds() / 60)
            available.append(
                AvailableRequest(
                    engagement=row,
                    wait_minutes=round(wait, 1),
                    urgency=urgency_for(wait, self.medium_after, self.high_after),
                )
            )
        return available

    # ── Accept ────────────────────────────────────────────────────

    async def accept(self, actor: AuthContext, engagement_id: int):
        lc = self.lifecycle
        if not actor.is_deliverer:
            raise AuthorizationError("Must be a registered deliverer")

        now = utcnow()
        async with unit_of_work(self.sessions) as session:
            await UserRepository(session).lock(actor.user_id)
            repo = self._repo(session)
            row = await repo.get_by_id(engagement_id)
            if row is None:
                raise NotFoundError(self.label, engagement_id)
            if row.requester_id == actor.user_id:
                raise AuthorizationError(f"You cannot accept your own {self.label.lower()}")

            for other in LIFECYCLES.values():
                busy = await EngagementRepository(
                    session, other
                ).get_active_as_assignee(actor.user_id)
                if busy is not None:
                    raise ConflictError(
                        f"You already have an active {other.label.lower()}",
                        {"kind": other.kind.value, "active_id": busy.id},
                    )

            if not await repo.claim(engagement_id, actor.user_id, now):
                raise ConflictError(
                    f"{self.label} is no longer available", {"id": engagement_id}
                )
            await self._history(session).append(
                engagement_id,
                lc.accepted,
                actor_id=actor.user_id,
                note=f"Accepted by {actor.name}",
                at=now,
            )
            row = await repo.get_by_id(engagement_id)

        logger.info(
            "%s %s accepted by %s", self.label, engagement_id, actor.user_id
        )
        accepted = Accepted(
            kind=lc.kind,
            id=engagement_id,
            assignee_id=actor.user_id,
            assignee_name=actor.name,
            at=now,
        )
        await self._announce(
            accepted, self._topic(engagement_id), user_topic(row.requester_id)
        )
        await self._announce(
            RequestTaken(kind=lc.kind, id=engagement_id, at=now), lc.pool_topic
        )
        return row

    # ── Advance ───────────────────────────────────────────────────

    async def advance(
        self,
        actor: AuthContext,
        engagement_id: int,
        target,
        *,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        note: Optional[str] = None,
    ):
        """Move an assigned engagement one step along its chain."""
        lc = self.lifecycle
        target = lc.parse_status(target)
        if target not in lc.advance_targets:
            raise ValidationError(
                f"{target.value!r} is not reachable through a status update",
                {"allowed": sorted(s.value for s in lc.advance_targets)},
            )
        _coordinate_pair(latitude, longitude)

        now = utcnow()
        earnings = None
        duration = None
        async with unit_of_work(self.sessions) as session:
            repo = self._repo(session)
            row = await repo.get_by_id(engagement_id, for_update=True)
            if row is None:
                raise NotFoundError(self.label, engagement_id)

            is_assignee = (
                row.assignee_id is not None and row.assignee_id == actor.user_id
            )
            is_requester = row.requester_id == actor.user_id
            if not is_assignee:
                if is_requester and target in lc.either_party:
                    pass
                elif is_requester:
                    raise AuthorizationError(
                        f"Only the assignee can mark this {self.label.lower()} "
                        f"{target.value}"
                    )
                else:
                    raise AuthorizationError(
                        f"Not authorized to update this {self.label.lower()}"
                    )

            values: dict[str, Any] = {}
            stamp = lc.timestamp_for(target)
            if stamp:
                values[stamp] = now
            if target == lc.done:
                started = as_utc(getattr(row, lc.started_attr))
                duration = (
                    round((now - started).total_seconds() / 60)
                    if started
                    else row.estimated_duration_minutes
                )
                earnings = float(row.fee or 0)
                values.update(actual_duration_minutes=duration, earnings=earnings)

            applied = await repo.transition(
                engagement_id,
                from_statuses=lc.predecessors(target),
                to_status=target,
                assignee_id=row.assignee_id,
                **values,
            )
            if not applied:
                lc.check_transition(row.status, target)
                raise ConflictError(
                    f"{self.label} changed while updating; reload and retry"
                )

            if target == lc.done:
                await UserStatsRepository(session).increment(
                    row.assignee_id,
                    **{
                        lc.assignee_counter: 1,
                        "total_earnings": earnings,
                        "total_tips": float(row.tip or 0),
                    },
                )
            await self._history(session).append(
                engagement_id,
                target,
                actor_id=actor.user_id,
                latitude=latitude,
                longitude=longitude,
                note=note,
                at=now,
            )
            row = await repo.get_by_id(engagement_id)

        logger.info(
            "%s %s -> %s by %s", self.label, engagement_id, target.value, actor.user_id
        )
        topic = self._topic(engagement_id)
        await self._announce(
            StatusChanged(
                kind=lc.kind,
                id=engagement_id,
                status=target.value,
                latitude=latitude,
                longitude=longitude,
                note=note,
                at=now,
            ),
            topic,
        )
        if target == lc.done:
            await self._announce(
                Completed(
                    kind=lc.kind,
                    id=engagement_id,
                    status=target.value,
                    earnings=earnings,
                    actual_duration_minutes=duration,
                    at=now,
                ),
                topic,
            )
        return row

    # ── Cancel ────────────────────────────────────────────────────

    async def cancel(
        self, actor: AuthContext, engagement_id: int, reason: Optional[str] = None
    ):
        lc = self.lifecycle
        reason = (reason or "").strip() or "No reason provided"

        now = utcnow()
        async with unit_of_work(self.sessions) as session:
            repo = self._repo(session)
            row = await repo.get_by_id(engagement_id, for_update=True)
            if row is None:
                raise NotFoundError(self.label, engagement_id)
            if not is_party(row, actor.user_id):
                raise AuthorizationError(
                    f"Not authorized to cancel this {self.label.lower()}"
                )
            if lc.is_terminal(row.status):
                raise ConflictError(
                    f"Cannot cancel a {lc.status_type(row.status).value} "
                    f"{self.label.lower()}"
                )

            was_pending = lc.status_type(row.status) == lc.pending
            applied = await repo.transition(
                engagement_id,
                from_statuses=lc.cancellable,
                to_status=lc.cancelled,
                cancelled_reason=reason,
                cancelled_by=actor.user_id,
                cancelled_at=now,
            )
            if not applied:
                raise ConflictError(
                    f"{self.label} can no longer be cancelled", {"id": engagement_id}
                )
            await self._history(session).append(
                engagement_id, lc.cancelled, actor_id=actor.user_id, note=reason, at=now
            )
            row = await repo.get_by_id(engagement_id)

        logger.info(
            "%s %s cancelled by %s: %s", self.label, engagement_id, actor.user_id, reason
        )
        cancelled = Cancelled(
            kind=lc.kind,
            id=engagement_id,
            cancelled_by=actor.user_id,
            reason=reason,
            at=now,
        )
        topics = [self._topic(engagement_id)]
        counterpart = (
            row.assignee_id if actor.user_id == row.requester_id else row.requester_id
        )
        if counterpart is not None:
            topics.append(user_topic(counterpart))
        await self._announce(cancelled, *topics)
        if was_pending:
            await self._announce(
                RequestTaken(kind=lc.kind, id=engagement_id, reason="cancelled", at=now),
                lc.pool_topic,
            )
        return row

    # ── Queries ───────────────────────────────────────────────────

    async def get(self, actor: AuthContext, engagement_id: int) -> EngagementDetail:
        async with unit_of_work(self.sessions) as session:
            row = await self._repo(session).get_by_id(engagement_id)
            if row is None:
                raise NotFoundError(self.label, engagement_id)
            if not is_party(row, actor.user_id):
                raise AuthorizationError(
                    f"Not authorized to view this {self.label.lower()}"
                )
            history = await self._history(session).list_for(engagement_id)
        return EngagementDetail(engagement=row, history=history)

    async def list_mine(
        self, actor: AuthContext, *, page: int = 1, limit: int = 20
    ) -> tuple[list, int]:
        if page < 1 or not 1 <= limit <= 100:
            raise ValidationError("page must be >= 1 and limit between 1 and 100")
        async with unit_of_work(self.sessions) as session:
            repo = self._repo(session)
            rows = await repo.list_for_requester(
                actor.user_id, limit=limit, offset=(page - 1) * limit
            )
            total = await repo.count_for_requester(actor.user_id)
        return rows, total

    async def active(self, actor: AuthContext) -> ActiveEngagements:
        async with unit_of_work(self.sessions) as session:
            repo = self._repo(session)
            return ActiveEngagements(
                as_requester=await repo.get_active_as_requester(actor.user_id),
                as_assignee=await repo.get_active_as_assignee(actor.user_id),
            )

    async def list_assigned(
        self, actor: AuthContext, *, page: int = 1, limit: int = 20
    ) -> tuple[list, int]:
        """Engagements *actor* carried out to completion, latest first."""
        if page < 1 or not 1 <= limit <= 100:
            raise ValidationError("page must be >= 1 and limit between 1 and 100")
        async with unit_of_work(self.sessions) as session:
            repo = self._repo(session)
            rows = await repo.list_done_for_assignee(
                actor.user_id, limit=limit, offset=(page - 1) * limit
            )
            total = await repo.count_done_for_assignee(actor.user_id)
        return rows, total

    async def assignee_stats(self, actor: AuthContext) -> AssigneeStats:
        lc = self.lifecycle
        midnight = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        async with unit_of_work(self.sessions) as session:
            count, earnings, tips = await self._repo(session).done_totals_since(
                actor.user_id, midnight
            )
            user = await UserRepository(session).get_by_id(actor.user_id)
            if user is None:
                raise NotFoundError("User", actor.user_id)
            stats = await UserStatsRepository(session).get(actor.user_id)
        return AssigneeStats(
            kind=lc.kind,
            today_count=count,
            today_earnings=round(earnings, 2),
            today_tips=round(tips, 2),
            total_count=int(getattr(stats, lc.assignee_counter, 0) or 0),
            avg_rating=float(user.avg_rating or 0),
            total_ratings=int(user.total_ratings or 0),
        )
