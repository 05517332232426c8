"""
Ratings
=======

One rating per (engagement, rater, rated party), allowed once the
engagement reached its success state.  The rated user's ``avg_rating``
and ``total_ratings`` are rebuilt from the full rating set inside the
same transaction as the insert, never adjusted incrementally.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.domain.entities import AuthContext, PendingRating, RatingSummary
from src.domain.enums import EngagementKind, RatingType
from src.domain.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from src.domain.lifecycle import lifecycle_for
from src.infrastructure.database import unit_of_work
from src.infrastructure.models import RatingModel, parent_column
from src.infrastructure.repositories import (
    EngagementRepository,
    RatingRepository,
    UserRepository,
)

from .lifecycle import is_party

logger = logging.getLogger(__name__)


class RatingService:
    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.sessions = session_factory

    async def rate(
        self,
        actor: AuthContext,
        kind: EngagementKind | str,
        engagement_id: int,
        score: int,
        comment: Optional[str] = None,
    ) -> RatingModel:
        lc = lifecycle_for(kind)
        if not 1 <= score <= 5:
            raise ValidationError("Score must be between 1 and 5")

        try:
            async with unit_of_work(self.sessions) as session:
                row = await EngagementRepository(session, lc).get_by_id(engagement_id)
                if row is None:
                    raise NotFoundError(lc.label, engagement_id)
                if not is_party(row, actor.user_id):
                    raise AuthorizationError(
                        f"Not authorized to rate this {lc.label.lower()}"
                    )
                if lc.status_type(row.status) != lc.done:
                    raise ConflictError(
                        f"Can only rate {lc.done.value} {lc.label.lower()}s"
                    )

                ratings = RatingRepository(session)
                if await ratings.find(lc.kind, engagement_id, actor.user_id):
                    raise ConflictError(
                        f"You have already rated this {lc.label.lower()}"
                    )

                if actor.user_id == row.requester_id:
                    rated_user_id = row.assignee_id
                    rating_type = RatingType.REQUESTER_TO_ASSIGNEE
                else:
                    rated_user_id = row.requester_id
                    rating_type = RatingType.ASSIGNEE_TO_REQUESTER
                if rated_user_id is None:
                    raise ConflictError(
                        f"This {lc.label.lower()} has no counterpart to rate"
                    )

                rating = await ratings.create(
                    RatingModel(
                        rater_id=actor.user_id,
                        rated_user_id=rated_user_id,
                        score=score,
                        comment=comment,
                        rating_type=rating_type,
                        **{parent_column(lc.kind): engagement_id},
                    )
                )
                avg, total = await UserRepository(session).recompute_rating(
                    rated_user_id
                )
        except sa_exc.IntegrityError:
            # two concurrent submissions: the unique constraint picked one
            raise ConflictError(
                f"You have already rated this {lc.label.lower()}"
            ) from None

        logger.info(
            "User %s rated %s %s/5 (avg now %.2f over %d)",
            actor.user_id,
            rated_user_id,
            score,
            avg,
            total,
        )
        return rating

    async def summary(
        self, user_id: int, *, page: int = 1, limit: int = 10
    ) -> RatingSummary:
        async with unit_of_work(self.sessions) as session:
            user = await UserRepository(session).get_by_id(user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            ratings = RatingRepository(session)
            breakdown = await ratings.breakdown(user_id)
            recent = await ratings.recent_for(
                user_id, limit=limit, offset=(max(page, 1) - 1) * limit
            )
        return RatingSummary(
            user_id=user_id,
            avg_rating=float(user.avg_rating or 0),
            total_ratings=int(user.total_ratings or 0),
            breakdown=breakdown,
            recent=recent,
        )

    async def pending(
        self, actor: AuthContext, kind: EngagementKind | str, engagement_id: int
    ) -> PendingRating:
        """Does *actor* still owe a rating for this engagement?"""
        lc = lifecycle_for(kind)
        async with unit_of_work(self.sessions) as session:
            row = await EngagementRepository(session, lc).get_by_id(engagement_id)
            if row is None:
                raise NotFoundError(lc.label, engagement_id)
            if not is_party(row, actor.user_id):
                raise AuthorizationError(
                    f"Not authorized to view this {lc.label.lower()}"
                )
            if lc.status_type(row.status) != lc.done:
                return PendingRating(
                    needs_rating=False, reason=f"{lc.label} not {lc.done.value}"
                )
            existing = await RatingRepository(session).find(
                lc.kind, engagement_id, actor.user_id
            )

        is_requester = actor.user_id == row.requester_id
        if existing is not None:
            return PendingRating(
                needs_rating=False, is_requester=is_requester, reason="Already rated"
            )
        rated_user_id = row.assignee_id if is_requester else row.requester_id
        if rated_user_id is None:
            return PendingRating(
                needs_rating=False, is_requester=is_requester, reason="No counterpart"
            )
        return PendingRating(
            needs_rating=True,
            rated_user_id=rated_user_id,
            is_requester=is_requester,
        )

    async def given_by(
        self, actor: AuthContext, *, page: int = 1, limit: int = 20
    ) -> tuple[list, int]:
        """Ratings *actor* has handed out, newest first."""
        if page < 1 or not 1 <= limit <= 100:
            raise ValidationError("page must be >= 1 and limit between 1 and 100")
        async with unit_of_work(self.sessions) as session:
            ratings = RatingRepository(session)
            rows = await ratings.given_by(
                actor.user_id, limit=limit, offset=(page - 1) * limit
            )
            total = await ratings.count_given_by(actor.user_id)
        return rows, total
