"""
Async SQLAlchemy engine, session factory and unit-of-work helper.

Uses ``asyncpg`` as the PostgreSQL driver for non-blocking I/O.  Pool
checkouts carry ``database_pool_timeout`` so a saturated pool surfaces
as a retryable error instead of a hang.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.config import settings
from src.domain.errors import TransientError

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_timeout=settings.database_pool_timeout,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

_TRANSIENT = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,
)


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


@asynccontextmanager
async def unit_of_work(
    session_factory: Optional[async_sessionmaker] = None,
) -> AsyncIterator[AsyncSession]:
    """Yield a session inside one transaction; commit on success, roll back on error.

    Driver-level failures are re-raised as ``TransientError``: the
    transaction was rolled back, so nothing was applied.
    """
    factory = session_factory or async_session_factory
    try:
        async with factory() as session:
            async with session.begin():
                yield session
    except _TRANSIENT as exc:
        raise TransientError("The data store is temporarily unavailable") from exc
