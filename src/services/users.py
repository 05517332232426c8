"""Profile and deliverer registration."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from src.domain.entities import AuthContext
from src.domain.errors import ConflictError, NotFoundError
from src.infrastructure.database import unit_of_work
from src.infrastructure.repositories import UserRepository, UserStatsRepository

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.sessions = session_factory

    async def profile(self, actor: AuthContext):
        """Return ``(user, stats)``; stats are created empty on first read."""
        async with unit_of_work(self.sessions) as session:
            user = await UserRepository(session).get_by_id(actor.user_id)
            if user is None:
                raise NotFoundError("User", actor.user_id)
            stats = await UserStatsRepository(session).ensure(actor.user_id)
        return user, stats

    async def become_deliverer(self, actor: AuthContext, vehicle: Optional[str] = None):
        async with unit_of_work(self.sessions) as session:
            users = UserRepository(session)
            user = await users.lock(actor.user_id)
            if user is None:
                raise NotFoundError("User", actor.user_id)
            if user.is_deliverer:
                raise ConflictError("Already registered as a deliverer")
            await users.set_flags(
                actor.user_id, is_deliverer=True, deliverer_vehicle=vehicle
            )
            user = await users.lock(actor.user_id)
        logger.info("User %s registered as deliverer", actor.user_id)
        return user
