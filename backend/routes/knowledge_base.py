"""Knowledge-base routes — cached pass-through to Zoho Desk.

GET  /api/knowledge-base/articles            → articles:{query}        10 min
GET  /api/knowledge-base/articles/{id}       → article:{id}            30 min
GET  /api/knowledge-base/categories          → categories:all          1 h
GET  /api/knowledge-base/categories/{id}     → category:{id}           1 h
GET  /api/knowledge-base/sections/{catId}    → sections:category:{id}  1 h
GET  /api/knowledge-base/search              → search:{query}          5 min
GET  /api/knowledge-base/stats               → stats:helpcenter        1 h
POST /api/knowledge-base/sync                  clears the cache, re-imports
GET  /api/knowledge-base/health                token refresh probe
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from routes.cache_admin import require_admin
from services import knowledge_base as kb
from services.cache import TTLCache, get_cache
from services.rate_limiter import rate_limit
from services.zoho_desk import ZohoDeskClient, get_desk_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/knowledge-base", dependencies=[Depends(rate_limit("general"))])


@router.get("/articles")
async def list_articles(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: str | None = Query(None),
    section: str | None = Query(None),
    search: str | None = Query(None),
    sort_by: str = Query("modifiedTime", alias="sortBy"),
    status: str = Query("PUBLISHED"),
    cache: TTLCache = Depends(get_cache),
    client: ZohoDeskClient = Depends(get_desk_client),
) -> dict:
    return await kb.list_articles(
        cache,
        client,
        page=page,
        limit=limit,
        category=category,
        section=section,
        search=search,
        sort_by=sort_by,
        status=status,
    )


@router.get("/articles/{article_id}")
async def get_article(
    article_id: str,
    cache: TTLCache = Depends(get_cache),
    client: ZohoDeskClient = Depends(get_desk_client),
) -> dict:
    return await kb.get_article(cache, client, article_id)


@router.get("/categories")
async def list_categories(
    cache: TTLCache = Depends(get_cache),
    client: ZohoDeskClient = Depends(get_desk_client),
) -> dict:
    return await kb.list_categories(cache, client)


@router.get("/categories/{category_id}")
async def get_category(
    category_id: str,
    cache: TTLCache = Depends(get_cache),
    client: ZohoDeskClient = Depends(get_desk_client),
) -> dict:
    return await kb.get_category(cache, client, category_id)


@router.get("/sections/{category_id}")
async def list_sections(
    category_id: str,
    cache: TTLCache = Depends(get_cache),
    client: ZohoDeskClient = Depends(get_desk_client),
) -> dict:
    return await kb.list_sections(cache, client, category_id)


@router.get("/search", dependencies=[Depends(rate_limit("search"))])
async def search(
    q: str = Query(""),
    category: str | None = Query(None),
    section: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    cache: TTLCache = Depends(get_cache),
    client: ZohoDeskClient = Depends(get_desk_client),
) -> dict:
    return await kb.search_articles(cache, client, q, category=category, section=section, limit=limit, page=page)


@router.get("/stats")
async def help_center_stats(
    cache: TTLCache = Depends(get_cache),
    client: ZohoDeskClient = Depends(get_desk_client),
) -> dict:
    return await kb.get_stats(cache, client)


@router.post("/sync", dependencies=[Depends(require_admin), Depends(rate_limit("sync"))])
async def sync(
    cache: TTLCache = Depends(get_cache),
    client: ZohoDeskClient = Depends(get_desk_client),
) -> dict:
    """Force-invalidate every cached response and re-import from Zoho Desk."""
    return await kb.sync_knowledge_base(cache, client)


@router.get("/health")
async def health(request: Request):
    """Check Zoho Desk connectivity by refreshing the access token."""
    result = {
        "service": "knowledge-base-api",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    client: ZohoDeskClient | None = request.app.state.desk_client
    if client is None:
        return JSONResponse(
            {**result, "status": "unhealthy", "zohoDesk": "not_configured"},
            status_code=503,
        )

    try:
        await client.refresh_access_token()
    except Exception as e:
        logger.exception("Zoho Desk health check failed")
        return JSONResponse(
            {**result, "status": "unhealthy", "zohoDesk": "disconnected", "error": str(e)},
            status_code=503,
        )

    return {**result, "status": "healthy", "zohoDesk": "connected"}
