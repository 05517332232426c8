"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Mutations that race (claiming a pending request, advancing or cancelling
an engagement) are single conditional ``UPDATE`` statements whose
affected-row count decides the winner; there is never a read followed by
an unconditional write.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    ENGAGEMENT_MODELS,
    LocationSampleModel,
    RatingModel,
    StatusEventModel,
    UserModel,
    UserStatsModel,
    parent_column,
)
from src.domain.enums import EngagementKind
from src.domain.lifecycle import Lifecycle


class EngagementRepository:
    """Orders or rides, depending on the lifecycle it is built with."""

    def __init__(self, session: AsyncSession, lifecycle: Lifecycle):
        self.session = session
        self.lifecycle = lifecycle
        self.model = ENGAGEMENT_MODELS[lifecycle.kind]

    async def create(self, **fields: Any):
        row = self.model(status=self.lifecycle.pending, **fields)
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_by_id(self, engagement_id: int, *, for_update: bool = False):
        query = select(self.model).where(self.model.id == engagement_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(
            query.execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_as_requester(self, user_id: int):
        result = await self.session.execute(
            select(self.model)
            .where(
                self.model.requester_id == user_id,
                self.model.status.in_(self.lifecycle.active),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active_as_assignee(self, user_id: int):
        result = await self.session.execute(
            select(self.model)
            .where(
                self.model.assignee_id == user_id,
                self.model.status.in_(self.lifecycle.trackable),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_pending(self, *, exclude_requester: int, limit: int) -> list:
        """Oldest-first so the longest-waiting request surfaces first."""
        result = await self.session.execute(
            select(self.model)
            .where(
                self.model.status == self.lifecycle.pending,
                self.model.requester_id != exclude_requester,
            )
            .order_by(self.model.created_at, self.model.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_for_requester(
        self, user_id: int, *, limit: int, offset: int
    ) -> list:
        result = await self.session.execute(
            select(self.model)
            .where(self.model.requester_id == user_id)
            .order_by(self.model.created_at.desc(), self.model.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def count_for_requester(self, user_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(self.model)
            .where(self.model.requester_id == user_id)
        )
        return result.scalar() or 0

    async def list_done_for_assignee(
        self, user_id: int, *, limit: int, offset: int
    ) -> list:
        """Finished engagements the user carried out, latest finish first."""
        finished_at = getattr(self.model, self.lifecycle.done_attr)
        result = await self.session.execute(
            select(self.model)
            .where(
                self.model.assignee_id == user_id,
                self.model.status == self.lifecycle.done,
            )
            .order_by(finished_at.desc(), self.model.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def count_done_for_assignee(self, user_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(self.model)
            .where(
                self.model.assignee_id == user_id,
                self.model.status == self.lifecycle.done,
            )
        )
        return result.scalar() or 0

    async def done_totals_since(
        self, user_id: int, since: datetime
    ) -> tuple[int, float, float]:
        """(count, earnings, tips) over engagements the user finished after *since*."""
        finished_at = getattr(self.model, self.lifecycle.done_attr)
        result = await self.session.execute(
            select(
                func.count(self.model.id),
                func.coalesce(func.sum(self.model.earnings), 0),
                func.coalesce(func.sum(self.model.tip), 0),
            ).where(
                self.model.assignee_id == user_id,
                self.model.status == self.lifecycle.done,
                finished_at >= since,
            )
        )
        count, earnings, tips = result.one()
        return int(count or 0), float(earnings or 0), float(tips or 0)

    async def list_in_flight_for(self, user_id: int) -> list:
        """Non-terminal rows where the user is requester, or assigned and working."""
        result = await self.session.execute(
            select(self.model)
            .where(
                or_(
                    and_(
                        self.model.requester_id == user_id,
                        self.model.status.in_(self.lifecycle.active),
                    ),
                    and_(
                        self.model.assignee_id == user_id,
                        self.model.status.in_(self.lifecycle.trackable),
                    ),
                )
            )
            .order_by(self.model.created_at.desc(), self.model.id.desc())
        )
        return list(result.scalars().all())

    async def claim(self, engagement_id: int, assignee_id: int, now: datetime) -> bool:
        """Atomically move a pending, unassigned row to accepted.

        Exactly one of any number of concurrent callers sees ``True``.
        """
        result = await self.session.execute(
            update(self.model)
            .where(
                self.model.id == engagement_id,
                self.model.status == self.lifecycle.pending,
                self.model.assignee_id.is_(None),
            )
            .values(
                status=self.lifecycle.accepted,
                assignee_id=assignee_id,
                accepted_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def transition(
        self,
        engagement_id: int,
        *,
        from_statuses: Iterable,
        to_status,
        assignee_id: Optional[int] = None,
        **values: Any,
    ) -> bool:
        """Conditional status change; ``False`` means the row was not in *from_statuses*."""
        conditions = [
            self.model.id == engagement_id,
            self.model.status.in_(list(from_statuses)),
        ]
        if assignee_id is not None:
            conditions.append(self.model.assignee_id == assignee_id)
        result = await self.session.execute(
            update(self.model)
            .where(*conditions)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class StatusEventRepository:
    def __init__(self, session: AsyncSession, kind: EngagementKind):
        self.session = session
        self.column = parent_column(kind)

    async def append(
        self,
        engagement_id: int,
        status,
        *,
        actor_id: Optional[int] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        note: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> StatusEventModel:
        event = StatusEventModel(
            status=status.value if hasattr(status, "value") else status,
            actor_id=actor_id,
            latitude=latitude,
            longitude=longitude,
            note=note,
            **{self.column: engagement_id},
        )
        if at is not None:
            event.created_at = at
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_for(self, engagement_id: int, *, newest_first: bool = True) -> list:
        column = getattr(StatusEventModel, self.column)
        order = (
            (StatusEventModel.created_at.desc(), StatusEventModel.id.desc())
            if newest_first
            else (StatusEventModel.created_at, StatusEventModel.id)
        )
        result = await self.session.execute(
            select(StatusEventModel).where(column == engagement_id).order_by(*order)
        )
        return list(result.scalars().all())


class LocationRepository:
    def __init__(self, session: AsyncSession, kind: EngagementKind):
        self.session = session
        self.column = parent_column(kind)

    async def append(
        self,
        engagement_id: int,
        user_id: int,
        latitude: float,
        longitude: float,
        accuracy: Optional[float] = None,
    ) -> LocationSampleModel:
        sample = LocationSampleModel(
            user_id=user_id,
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            **{self.column: engagement_id},
        )
        self.session.add(sample)
        await self.session.flush()
        return sample

    async def recent(self, engagement_id: int, limit: int) -> list:
        """Most-recent-first, at most *limit* samples."""
        column = getattr(LocationSampleModel, self.column)
        result = await self.session.execute(
            select(LocationSampleModel)
            .where(column == engagement_id)
            .order_by(LocationSampleModel.created_at.desc(), LocationSampleModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def latest(self, engagement_id: int) -> Optional[LocationSampleModel]:
        samples = await self.recent(engagement_id, 1)
        return samples[0] if samples else None


class RatingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, rating: RatingModel) -> RatingModel:
        self.session.add(rating)
        await self.session.flush()
        return rating

    async def find(
        self, kind: EngagementKind, engagement_id: int, rater_id: int
    ) -> Optional[RatingModel]:
        column = getattr(RatingModel, parent_column(kind))
        result = await self.session.execute(
            select(RatingModel).where(
                column == engagement_id, RatingModel.rater_id == rater_id
            )
        )
        return result.scalars().first()

    async def breakdown(self, user_id: int) -> dict[int, int]:
        result = await self.session.execute(
            select(RatingModel.score, func.count())
            .where(RatingModel.rated_user_id == user_id)
            .group_by(RatingModel.score)
        )
        counts = {score: 0 for score in range(1, 6)}
        for score, count in result.all():
            counts[int(score)] = int(count)
        return counts

    async def recent_for(self, user_id: int, *, limit: int, offset: int) -> list:
        result = await self.session.execute(
            select(RatingModel)
            .where(RatingModel.rated_user_id == user_id)
            .order_by(RatingModel.created_at.desc(), RatingModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def given_by(self, rater_id: int, *, limit: int, offset: int) -> list:
        result = await self.session.execute(
            select(RatingModel)
            .where(RatingModel.rater_id == rater_id)
            .order_by(RatingModel.created_at.desc(), RatingModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def count_given_by(self, rater_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RatingModel)
            .where(RatingModel.rater_id == rater_id)
        )
        return result.scalar() or 0


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def lock(self, user_id: int) -> Optional[UserModel]:
        """SELECT ... FOR UPDATE to serialise one user's concurrent claims."""
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_flags(self, user_id: int, **flags: Any) -> None:
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(**flags)
            .execution_options(synchronize_session=False)
        )

    async def recompute_rating(self, user_id: int) -> tuple[float, int]:
        """Rebuild ``avg_rating`` / ``total_ratings`` from the full rating set.

        The only place these aggregates are written.
        """
        result = await self.session.execute(
            select(func.avg(RatingModel.score), func.count(RatingModel.id)).where(
                RatingModel.rated_user_id == user_id
            )
        )
        avg, count = result.one()
        avg_rating = round(float(avg), 2) if avg is not None else 0.0
        await self.set_flags(
            user_id, avg_rating=avg_rating, total_ratings=int(count or 0)
        )
        return avg_rating, int(count or 0)


class UserStatsRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: int) -> Optional[UserStatsModel]:
        return await self.session.get(
            UserStatsModel, user_id, populate_existing=True
        )

    async def ensure(self, user_id: int) -> UserStatsModel:
        stats = await self.get(user_id)
        if stats is None:
            stats = UserStatsModel(user_id=user_id)
            self.session.add(stats)
            await self.session.flush()
        return stats

    async def increment(self, user_id: int, **deltas: float) -> None:
        """Add *deltas* to counters in one ``UPDATE``; creates the row if missing."""
        await self.ensure(user_id)
        values = {
            name: getattr(UserStatsModel, name) + delta
            for name, delta in deltas.items()
        }
        await self.session.execute(
            update(UserStatsModel)
            .where(UserStatsModel.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
