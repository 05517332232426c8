"""
Shared order / ride endpoints
=============================

Orders and rides expose the same lifecycle surface; ``build_router``
wires one ``LifecycleEngine`` dependency and that variant's schemas into
a router:

POST /                 -- request (201)
GET  /available        -- pending requests for assignees, oldest first
GET  /mine             -- caller's requests, newest first, paginated
GET  /active           -- caller's current engagement on either side
GET  /assigned         -- engagements the caller finished as assignee
GET  /stats            -- today's count and earnings as assignee
GET  /{id}             -- detail with status history (parties only)
POST /{id}/accept      -- claim a pending request
POST /{id}/status      -- advance along the lifecycle
POST /{id}/cancel      -- cancel from any non-terminal status
"""

from typing import Callable

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from src.api.dependencies import get_current_user
from src.api.middleware import RATE_LIMIT, limiter
from src.api.schemas import AssigneeStatsResponse, CancelRequest, StatusUpdateRequest
from src.domain.entities import AuthContext
from src.services.lifecycle import LifecycleEngine


def build_router(
    *,
    prefix: str,
    engine_dependency: Callable[..., LifecycleEngine],
    create_schema: type[BaseModel],
    response_schema: type[BaseModel],
    detail_schema: type[BaseModel],
    available_schema: type[BaseModel],
    page_schema: type[BaseModel],
    active_schema: type[BaseModel],
    active_fields: tuple[str, str],
) -> APIRouter:
    label = prefix.strip("/").rstrip("s")
    router = APIRouter(prefix=prefix, tags=[prefix.strip("/")])
    requester_field, assignee_field = active_fields

    def render(row) -> BaseModel:
        return response_schema.model_validate(row)

    @router.post(
        "",
        status_code=201,
        response_model=response_schema,
        summary=f"Request a {label}",
    )
    @limiter.limit(RATE_LIMIT)
    async def create(
        request: Request,
        body: create_schema,  # type: ignore[valid-type]
        user: AuthContext = Depends(get_current_user),
        engine: LifecycleEngine = Depends(engine_dependency),
    ):
        row = await engine.request(user, **body.model_dump())
        return render(row)

    @router.get(
        "/available",
        response_model=list[available_schema],  # type: ignore[valid-type]
        summary=f"Pending {label}s waiting for an assignee",
    )
    @limiter.limit(RATE_LIMIT)
    async def list_available(
        request: Request,
        user: AuthContext = Depends(get_current_user),
        engine: LifecycleEngine = Depends(engine_dependency),
    ):
        available = await engine.list_available(user)
        return [
            available_schema.model_validate(
                {
                    **render(item.engagement).model_dump(),
                    "wait_minutes": item.wait_minutes,
                    "urgency": item.urgency,
                    "estimated_earnings": item.estimated_earnings,
                }
            )
            for item in available
        ]

    @router.get(
        "/mine",
        response_model=page_schema,
        summary=f"{label.capitalize()}s I requested",
    )
    @limiter.limit(RATE_LIMIT)
    async def list_mine(
        request: Request,
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        user: AuthContext = Depends(get_current_user),
        engine: LifecycleEngine = Depends(engine_dependency),
    ):
        rows, total = await engine.list_mine(user, page=page, limit=limit)
        return page_schema(
            items=[render(r) for r in rows], total=total, page=page, limit=limit
        )

    @router.get(
        "/active",
        response_model=active_schema,
        summary=f"My current {label} on either side",
    )
    @limiter.limit(RATE_LIMIT)
    async def active(
        request: Request,
        user: AuthContext = Depends(get_current_user),
        engine: LifecycleEngine = Depends(engine_dependency),
    ):
        current = await engine.active(user)
        return active_schema(
            **{
                requester_field: render(current.as_requester)
                if current.as_requester
                else None,
                assignee_field: render(current.as_assignee)
                if current.as_assignee
                else None,
            }
        )

    @router.get(
        "/assigned",
        response_model=page_schema,
        summary=f"{label.capitalize()}s I carried out, latest first",
    )
    @limiter.limit(RATE_LIMIT)
    async def list_assigned(
        request: Request,
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        user: AuthContext = Depends(get_current_user),
        engine: LifecycleEngine = Depends(engine_dependency),
    ):
        rows, total = await engine.list_assigned(user, page=page, limit=limit)
        return page_schema(
            items=[render(r) for r in rows], total=total, page=page, limit=limit
        )

    @router.get(
        "/stats",
        response_model=AssigneeStatsResponse,
        summary=f"Today's finished {label}s and earnings, with my rating",
    )
    @limiter.limit(RATE_LIMIT)
    async def assignee_stats(
        request: Request,
        user: AuthContext = Depends(get_current_user),
        engine: LifecycleEngine = Depends(engine_dependency),
    ):
        return await engine.assignee_stats(user)

    @router.get(
        "/{engagement_id}",
        response_model=detail_schema,
        summary=f"Get a {label} with its status history",
    )
    @limiter.limit(RATE_LIMIT)
    async def get_one(
        request: Request,
        engagement_id: int,
        user: AuthContext = Depends(get_current_user),
        engine: LifecycleEngine = Depends(engine_dependency),
    ):
        detail = await engine.get(user, engagement_id)
        return detail_schema.model_validate(
            {
                **render(detail.engagement).model_dump(),
                "history": [
                    {
                        "status": e.status,
                        "latitude": e.latitude,
                        "longitude": e.longitude,
                        "note": e.note,
                        "actor_id": e.actor_id,
                        "created_at": e.created_at,
                    }
                    for e in detail.history
                ],
            }
        )

    @router.post(
        "/{engagement_id}/accept",
        response_model=response_schema,
        summary=f"Accept a pending {label}",
        responses={409: {"description": f"The {label} is no longer available."}},
    )
    @limiter.limit(RATE_LIMIT)
    async def accept(
        request: Request,
        engagement_id: int,
        user: AuthContext = Depends(get_current_user),
        engine: LifecycleEngine = Depends(engine_dependency),
    ):
        return render(await engine.accept(user, engagement_id))

    @router.post(
        "/{engagement_id}/status",
        response_model=response_schema,
        summary=f"Advance a {label} to its next status",
    )
    @limiter.limit(RATE_LIMIT)
    async def advance(
        request: Request,
        engagement_id: int,
        body: StatusUpdateRequest,
        user: AuthContext = Depends(get_current_user),
        engine: LifecycleEngine = Depends(engine_dependency),
    ):
        row = await engine.advance(
            user,
            engagement_id,
            body.status,
            latitude=body.latitude,
            longitude=body.longitude,
            note=body.note,
        )
        return render(row)

    @router.post(
        "/{engagement_id}/cancel",
        response_model=response_schema,
        summary=f"Cancel a {label}",
    )
    @limiter.limit(RATE_LIMIT)
    async def cancel(
        request: Request,
        engagement_id: int,
        body: CancelRequest | None = None,
        user: AuthContext = Depends(get_current_user),
        engine: LifecycleEngine = Depends(engine_dependency),
    ):
        reason = body.reason if body else None
        return render(await engine.cancel(user, engagement_id, reason))

    return router
