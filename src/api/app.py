"""
FastAPI application factory.

* Registers routes for orders, rides, tracking, ratings, users, auth,
  health and the realtime WebSocket.
* Holds the long-lived collaborators (session factory, topic hub, code
  store, mailer, estimator) on ``app.state``.
* Starts / stops the background sweeper via lifespan events.
* Applies rate-limiting middleware and maps domain errors to HTTP.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.api.errors import register_error_handlers
from src.api.middleware import limiter
from src.api.routes import auth, health, orders, ratings, realtime, rides, tracking, users
from src.config import settings
from src.domain.estimation import DurationEstimator, build_estimator
from src.infrastructure.codes import CodeStore, build_code_store
from src.infrastructure.database import async_session_factory
from src.infrastructure.mailer import Mailer, build_mailer
from src.infrastructure.pubsub import TopicHub
from src.infrastructure.redis_client import close_redis
from src.workers import sweeper as _sweeper

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the sweeper on startup; drain connections and stop on shutdown."""
    await _sweeper.start_sweeper(app.state.hub, app.state.code_store)
    yield
    await _sweeper.stop_sweeper()
    await app.state.hub.close()
    await close_redis()


def create_app(
    session_factory: Optional[async_sessionmaker] = None,
    hub: Optional[TopicHub] = None,
    code_store: Optional[CodeStore] = None,
    mailer: Optional[Mailer] = None,
    estimator: Optional[DurationEstimator] = None,
) -> FastAPI:
    app = FastAPI(
        title="Campus Runner API",
        description=(
            "Campus food delivery and ride requests.  Requesters place "
            "orders or rides, deliverers and drivers claim them, and both "
            "sides follow status and location in real time."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.session_factory = session_factory or async_session_factory
    app.state.hub = hub or TopicHub(settings.connection_queue_size)
    app.state.code_store = code_store or build_code_store(settings.code_store)
    app.state.mailer = mailer or build_mailer(
        settings.mail_api_key, settings.mail_api_url, settings.mail_sender
    )
    app.state.estimator = estimator or build_estimator(settings.duration_estimator)

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    register_error_handlers(app)

    # Routers
    for module in (orders, rides, tracking, ratings, users, auth, health):
        app.include_router(module.router, prefix="/api/v1")
    app.include_router(realtime.router)

    return app
