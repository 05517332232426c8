"""
Location Channel
================

Append-only position samples for an assigned order or ride.

* ``record`` accepts a sample only from the current assignee while the
  engagement is trackable (accepted or later, not terminal), then
  broadcasts it on the engagement topic.
* ``latest`` / ``history`` are party-only reads; an unrelated caller is
  rejected rather than shown an empty result.
* ``in_flight`` lists every live engagement the caller is party to,
  each with its most recent sample, across orders and rides.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from src.config import settings
from src.domain.entities import (
    AuthContext,
    LocationHistory,
    LocationSnapshot,
    TrackedEngagement,
)
from src.domain.enums import EngagementKind
from src.domain.errors import AuthorizationError, ConflictError, NotFoundError
from src.domain.events import LocationUpdated
from src.domain.lifecycle import (
    LIFECYCLES,
    engagement_topic,
    lifecycle_for,
    validate_coordinates,
)
from src.infrastructure.database import unit_of_work
from src.infrastructure.repositories import EngagementRepository, LocationRepository

from .lifecycle import Publisher, is_party

logger = logging.getLogger(__name__)


class LocationChannel:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        publisher: Optional[Publisher] = None,
        *,
        history_default: int = settings.location_history_default,
        history_max: int = settings.location_history_max,
    ):
        self.sessions = session_factory
        self.publisher = publisher
        self.history_default = history_default
        self.history_max = history_max

    async def record(
        self,
        actor: AuthContext,
        kind: EngagementKind | str,
        engagement_id: int,
        latitude: float,
        longitude: float,
        accuracy: Optional[float] = None,
    ):
        lc = lifecycle_for(kind)
        validate_coordinates(latitude, longitude)

        async with unit_of_work(self.sessions) as session:
            row = await EngagementRepository(session, lc).get_by_id(
                engagement_id, for_update=True
            )
            if row is None:
                raise NotFoundError(lc.label, engagement_id)
            if row.assignee_id is None or row.assignee_id != actor.user_id:
                raise AuthorizationError(
                    f"Only the assigned party can report location for this "
                    f"{lc.label.lower()}"
                )
            if lc.status_type(row.status) not in lc.trackable:
                raise ConflictError(
                    f"{lc.label} is not being tracked "
                    f"(status: {lc.status_type(row.status).value})"
                )
            sample = await LocationRepository(session, lc.kind).append(
                engagement_id, actor.user_id, latitude, longitude, accuracy
            )

        logger.debug(
            "Location for %s %s from %s", lc.kind.value, engagement_id, actor.user_id
        )
        if self.publisher is not None:
            topic = engagement_topic(lc.kind, engagement_id)
            try:
                await self.publisher.publish(
                    topic,
                    LocationUpdated(
                        kind=lc.kind,
                        id=engagement_id,
                        latitude=latitude,
                        longitude=longitude,
                        accuracy=accuracy,
                        at=sample.created_at,
                    ),
                )
            except Exception:
                logger.exception("Failed to publish location to %s", topic)
        return sample

    async def _load_for_party(self, session, lc, actor: AuthContext, engagement_id: int):
        row = await EngagementRepository(session, lc).get_by_id(engagement_id)
        if row is None:
            raise NotFoundError(lc.label, engagement_id)
        if not is_party(row, actor.user_id):
            raise AuthorizationError(
                f"Not authorized to track this {lc.label.lower()}"
            )
        return row

    async def latest(
        self, actor: AuthContext, kind: EngagementKind | str, engagement_id: int
    ) -> LocationSnapshot:
        lc = lifecycle_for(kind)
        async with unit_of_work(self.sessions) as session:
            row = await self._load_for_party(session, lc, actor, engagement_id)
            sample = await LocationRepository(session, lc.kind).latest(engagement_id)
        return LocationSnapshot(
            kind=lc.kind,
            engagement_id=engagement_id,
            status=lc.status_type(row.status).value,
            sample=sample,
        )

    async def history(
        self,
        actor: AuthContext,
        kind: EngagementKind | str,
        engagement_id: int,
        limit: Optional[int] = None,
    ) -> LocationHistory:
        """Most-recent-first samples, at most *limit* (clamped to the max)."""
        lc = lifecycle_for(kind)
        limit = max(1, min(limit or self.history_default, self.history_max))
        async with unit_of_work(self.sessions) as session:
            row = await self._load_for_party(session, lc, actor, engagement_id)
            samples = await LocationRepository(session, lc.kind).recent(
                engagement_id, limit
            )
        return LocationHistory(
            kind=lc.kind,
            engagement_id=engagement_id,
            status=lc.status_type(row.status).value,
            samples=samples,
        )

    async def in_flight(self, actor: AuthContext) -> list[TrackedEngagement]:
        """Every non-terminal engagement *actor* is a party to, with its latest sample."""
        tracked = []
        async with unit_of_work(self.sessions) as session:
            for lc in LIFECYCLES.values():
                locations = LocationRepository(session, lc.kind)
                rows = await EngagementRepository(session, lc).list_in_flight_for(
                    actor.user_id
                )
                for row in rows:
                    tracked.append(
                        TrackedEngagement(
                            kind=lc.kind,
                            engagement=row,
                            as_assignee=row.assignee_id == actor.user_id,
                            sample=await locations.latest(row.id),
                        )
                    )
        return tracked
