"""
Bearer token handling.

Tokens are HS256 JWTs carrying ``user_id``; issuing credentials is
someone else's job, ``create_access_token`` exists for the seed script
and tests.  ``resolve_user`` turns a token into the explicit
``AuthContext`` threaded through every service call.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.config import settings
from src.domain.entities import AuthContext
from src.infrastructure.database import unit_of_work
from src.infrastructure.repositories import UserRepository


def create_access_token(
    user_id: int, expires_delta: Optional[timedelta] = None, **claims: Any
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {"user_id": user_id, "exp": expire, **claims}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[dict[str, Any]]:
    """Return the payload, or ``None`` for a bad signature / expired token."""
    try:
        return jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        return None


async def resolve_user(
    token: Optional[str], session_factory: Optional[async_sessionmaker] = None
) -> Optional[AuthContext]:
    """Look up the user behind *token*; ``None`` if it does not check out."""
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None:
        return None
    user_id = payload.get("user_id")
    if not isinstance(user_id, int):
        return None

    async with unit_of_work(session_factory) as session:
        user = await UserRepository(session).get_by_id(user_id)
    if user is None:
        return None
    return AuthContext(
        user_id=user.id,
        name=user.name,
        email=user.email,
        is_deliverer=bool(user.is_deliverer),
        is_verified=bool(user.is_verified),
    )
