"""FastAPI dependency injection helpers.

Long-lived collaborators (session factory, topic hub, code store, mailer,
estimator) live on ``app.state`` and are set up by ``create_app``; the
services built here are cheap per-request wrappers around them.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import async_sessionmaker
from starlette.requests import HTTPConnection

from src.api.security import resolve_user
from src.domain.entities import AuthContext
from src.domain.enums import EngagementKind
from src.domain.estimation import DurationEstimator
from src.domain.lifecycle import LIFECYCLES
from src.infrastructure.codes import CodeStore
from src.infrastructure.pubsub import TopicHub
from src.services.lifecycle import LifecycleEngine
from src.services.ratings import RatingService
from src.services.realtime import RealtimeGateway
from src.services.tracking import LocationChannel
from src.services.users import UserService
from src.services.verification import VerificationService

bearer = HTTPBearer(auto_error=False)


def get_session_factory(conn: HTTPConnection) -> async_sessionmaker:
    return conn.app.state.session_factory


def get_hub(conn: HTTPConnection) -> TopicHub:
    return conn.app.state.hub


def get_code_store(conn: HTTPConnection) -> CodeStore:
    return conn.app.state.code_store


def get_estimator(conn: HTTPConnection) -> DurationEstimator:
    return conn.app.state.estimator


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    sessions: async_sessionmaker = Depends(get_session_factory),
) -> AuthContext:
    """Resolve the bearer token into an ``AuthContext`` or answer 401."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = await resolve_user(credentials.credentials, sessions)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


# ── Services ──────────────────────────────────────────────────────────


def _engine(conn: HTTPConnection, kind: EngagementKind) -> LifecycleEngine:
    return LifecycleEngine(
        LIFECYCLES[kind],
        get_session_factory(conn),
        get_hub(conn),
        get_estimator(conn),
    )


def get_order_engine(conn: HTTPConnection) -> LifecycleEngine:
    return _engine(conn, EngagementKind.ORDER)


def get_ride_engine(conn: HTTPConnection) -> LifecycleEngine:
    return _engine(conn, EngagementKind.RIDE)


def get_tracking(conn: HTTPConnection) -> LocationChannel:
    return LocationChannel(get_session_factory(conn), get_hub(conn))


def get_ratings(conn: HTTPConnection) -> RatingService:
    return RatingService(get_session_factory(conn))


def get_users(conn: HTTPConnection) -> UserService:
    return UserService(get_session_factory(conn))


def get_verification(conn: HTTPConnection) -> VerificationService:
    return VerificationService(
        get_code_store(conn), conn.app.state.mailer, get_session_factory(conn)
    )


def get_gateway(conn: HTTPConnection) -> RealtimeGateway:
    return RealtimeGateway(get_hub(conn), get_session_factory(conn), get_tracking(conn))
