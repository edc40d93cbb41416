"""FastAPI route definitions for the shortlink REST API.

This module provides all HTTP endpoints with dependency injection, domain
error translation and response serialization. The core never decides status
codes; this is the only place that does.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/shorten
        ├─ ShortenRequest (request body)
        └─ ShortLinkResponse (201, 200 when reused) or 400/409/422/503

    GET    /api/urls
        └─ LinkListResponse (200)

    GET    /api/stats
        └─ CodeSpaceStats (200)

    GET    /api/info/:code
        └─ ShortLinkInfo (200) or 404

    DELETE /api/:code
        └─ 200 or 404

    GET    /:code
        └─ 307 Redirect, 404 or 410

Key Behaviours
===============
- The redirect response is returned as soon as the link is resolved; click
  delivery to analytics happens on the dispatcher's own tasks.
- Expired and deactivated links answer 410 Gone, unknown codes 404.
- Health reports the analytics status recorded at startup, for diagnostics
  only; it never affects redirects and never calls analytics itself.
"""

import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response
from fastapi.responses import RedirectResponse

from shortlink.database import ping_db
from shortlink.dependencies import (
    RequestContext,
    ServiceManager,
    get_link_service,
    get_redirect_coordinator,
    get_request_context,
    get_service_manager,
)
from shortlink.enums import HealthStatus
from shortlink.errors import AliasInvalid, AllocationExhausted, CollisionFailure, LinkExpired, LinkNotFound
from shortlink.lifecycle import is_expired, link_state, utcnow
from shortlink.link_service import LinkService
from shortlink.models import ShortLink
from shortlink.redirect import RedirectCoordinator
from shortlink.redis import ping_redis
from shortlink.schemas import (
    CodeSpaceStats,
    HealthResponse,
    LinkListResponse,
    Pagination,
    ShortenRequest,
    ShortLinkInfo,
    ShortLinkResponse,
)

__all__ = ["router"]

router = APIRouter()

CodePath = Annotated[str, Path(min_length=3, max_length=20, pattern=r"^[A-Za-z0-9-]+$")]


def _short_url(base_url: str, code: str) -> str:
    return f"{base_url}/{code}"


def _to_info(link: ShortLink, base_url: str, now: datetime.datetime) -> ShortLinkInfo:
    return ShortLinkInfo(
        code=link.code,
        short_url=_short_url(base_url, link.code),
        target_url=link.target_url,
        state=link_state(link, now),
        active=link.active,
        is_expired=is_expired(link, now),
        is_custom=link.is_custom_alias,
        click_count=link.click_count,
        created_at=link.created_at,
        expires_at=link.expires_at,
    )


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    manager: ServiceManager = Depends(get_service_manager),
) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ping_db()
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    if ctx.settings.LINK_CACHE_ENABLED:
        try:
            await ping_redis()
        except Exception as e:
            ctx.logger.error(f"Cache health check failed: {e}")
            cache_status = HealthStatus.UNHEALTHY

    # Reported from the startup check; analytics is never called from here.
    analytics_status = HealthStatus.HEALTHY if manager.dispatcher.analytics_healthy else HealthStatus.UNHEALTHY

    # Analytics is fail-open, so it does not decide overall health.
    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status, analytics=analytics_status)


@router.post("/api/shorten", response_model=ShortLinkResponse, status_code=201, tags=["links"])
async def shorten_url(
    payload: ShortenRequest,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> ShortLinkResponse:
    ctx.add_tag("link_creation")

    try:
        link, is_existing = await service.create_short_link(payload)
    except AliasInvalid as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CollisionFailure as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except AllocationExhausted as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    if is_existing:
        response.status_code = 200

    ctx.logger.info(
        f"Link shortened: {link.code}",
        extra={"operation": "create_short_link", "code": link.code, "duration_ms": ctx.get_duration()},
    )
    return ShortLinkResponse(
        code=link.code,
        short_url=_short_url(ctx.settings.BASE_URL, link.code),
        target_url=link.target_url,
        is_custom=link.is_custom_alias,
        is_existing=is_existing,
        created_at=link.created_at,
        expires_at=link.expires_at,
    )


@router.get("/api/urls", response_model=LinkListResponse, tags=["links"])
async def list_links(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: Literal["created_at", "click_count", "target_url"] = "created_at",
    order: Literal["asc", "desc"] = "desc",
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkListResponse:
    links, total = await service.list_links(page, limit, sort_by, order)
    now = utcnow()
    return LinkListResponse(
        links=[_to_info(link, ctx.settings.BASE_URL, now) for link in links],
        pagination=Pagination(total=total, page=page, pages=LinkService.page_count(total, limit), limit=limit),
    )


@router.get("/api/stats", response_model=CodeSpaceStats, tags=["links"])
async def code_space_stats(service: LinkService = Depends(get_link_service)) -> CodeSpaceStats:
    return await service.code_space_stats()


@router.get("/api/info/{code}", response_model=ShortLinkInfo, tags=["links"])
async def link_info(
    code: CodePath,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> ShortLinkInfo:
    try:
        link = await service.get_link(code)
    except LinkNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _to_info(link, ctx.settings.BASE_URL, utcnow())


@router.delete("/api/{code}", tags=["links"])
async def deactivate_link(
    code: CodePath,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> dict[str, str]:
    try:
        await service.deactivate_link(code)
    except LinkNotFound as exc:
        ctx.logger.warning(f"Deactivation failed - code not found: {code}")
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Short URL deactivated successfully"}


@router.get("/{code}", tags=["redirect"])
async def redirect_to_target(
    code: CodePath,
    ctx: RequestContext = Depends(get_request_context),
    coordinator: RedirectCoordinator = Depends(get_redirect_coordinator),
) -> RedirectResponse:
    ctx.add_tag("redirect")

    try:
        link = await coordinator.resolve(code, ctx.metadata())
    except LinkNotFound as exc:
        ctx.logger.warning(f"Redirect failed - short code not found: {code}")
        raise HTTPException(status_code=404, detail="Short URL not found") from exc
    except LinkExpired as exc:
        ctx.logger.info(f"Redirect refused - short code expired or inactive: {code}")
        raise HTTPException(status_code=410, detail="This short URL has expired or is inactive") from exc

    ctx.logger.info(
        f"Redirect successful: {code} -> {link.target_url}",
        extra={"operation": "redirect", "code": code, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=link.target_url, status_code=ctx.settings.REDIRECT_STATUS_CODE)
