"""Knowledge-base reads on top of Zoho Desk, cached per resource class.

Each function builds a cache key from its parameters, serves from the
response cache when possible, and otherwise fetches from Zoho Desk and stores
a sanitized payload with a TTL matched to how often that resource changes.
"""

import json
import logging
from datetime import datetime, timezone

from config import settings
from errors import NotFoundError, ZohoDeskNotFoundError
from services.cache import TTLCache
from services.zoho_desk import ZohoDeskClient

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Cache keys
# ---------------------------------------------------------------------------

def _query_key(prefix: str, query: dict) -> str:
    params = {k: v for k, v in query.items() if v is not None}
    return f"{prefix}:{json.dumps(params, sort_keys=True, separators=(',', ':'))}"


def articles_key(query: dict) -> str:
    return _query_key("articles", query)


def search_key(query: dict) -> str:
    return _query_key("search", query)


def article_key(article_id: str) -> str:
    return f"article:{article_id}"


def category_key(category_id: str) -> str:
    return f"category:{category_id}"


def sections_key(category_id: str) -> str:
    return f"sections:category:{category_id}"


CATEGORIES_KEY = "categories:all"
STATS_KEY = "stats:helpcenter"


# ---------------------------------------------------------------------------
# Sanitizers — whitelist the fields the storefront renders
# ---------------------------------------------------------------------------

def sanitize_article(article: dict) -> dict:
    return {
        "id": article.get("id"),
        "title": article.get("title"),
        "summary": article.get("summary") or article.get("title"),
        "content": article.get("content"),
        "categoryId": article.get("categoryId"),
        "sectionId": article.get("sectionId"),
        "tags": article.get("tags") or [],
        "status": article.get("status"),
        "visibility": article.get("visibility"),
        "createdTime": article.get("createdTime"),
        "modifiedTime": article.get("modifiedTime"),
        "viewCount": article.get("viewCount") or 0,
        "helpfulCount": article.get("helpfulCount") or 0,
        "unhelpfulCount": article.get("unhelpfulCount") or 0,
        "language": article.get("language") or "en",
        "attachments": article.get("attachments") or [],
    }


def sanitize_search_hit(article: dict) -> dict:
    return {
        "id": article.get("id"),
        "title": article.get("title"),
        "summary": article.get("summary") or article.get("title"),
        "content": article.get("content"),
        "categoryId": article.get("categoryId"),
        "sectionId": article.get("sectionId"),
        "tags": article.get("tags") or [],
        "status": article.get("status"),
        "relevanceScore": article.get("relevanceScore") or 0,
        "createdTime": article.get("createdTime"),
        "modifiedTime": article.get("modifiedTime"),
    }


def sanitize_category(category: dict) -> dict:
    return {
        "id": category.get("id"),
        "name": category.get("name"),
        "description": category.get("description"),
        "articleCount": category.get("articleCount") or 0,
        "createdTime": category.get("createdTime"),
        "modifiedTime": category.get("modifiedTime"),
    }


def sanitize_section(section: dict) -> dict:
    return {
        "id": section.get("id"),
        "name": section.get("name"),
        "description": section.get("description"),
        "categoryId": section.get("categoryId"),
        "articleCount": section.get("articleCount") or 0,
        "createdTime": section.get("createdTime"),
        "modifiedTime": section.get("modifiedTime"),
    }


def _detail(payload: dict | None) -> dict | None:
    """Desk wraps single resources as {"data": {...}} in some API versions."""
    if not payload:
        return None
    if "data" in payload:
        return payload["data"] or None
    return payload if payload.get("id") else None


# ---------------------------------------------------------------------------
# Cached reads
# ---------------------------------------------------------------------------

async def list_articles(
    cache: TTLCache,
    client: ZohoDeskClient,
    page: int = 1,
    limit: int = 20,
    category: str | None = None,
    section: str | None = None,
    search: str | None = None,
    sort_by: str = "modifiedTime",
    status: str = "PUBLISHED",
) -> dict:
    """List articles, narrowed by search, then category, then section."""
    query = {
        "page": page,
        "limit": limit,
        "category": category,
        "section": section,
        "search": search,
        "sortBy": sort_by,
        "status": status,
    }

    async def fetch() -> dict:
        if search:
            articles = await client.search_articles(search, limit=limit, sortBy=sort_by)
        elif category:
            articles = await client.get_articles_by_category(category, limit=limit, sortBy=sort_by)
        elif section:
            articles = await client.get_articles_by_section(section, limit=limit, sortBy=sort_by)
        else:
            articles = await client.get_articles(limit=limit, sort_by=sort_by, status=status)

        data = articles.get("data") or []
        return {
            "data": [sanitize_article(a) for a in data],
            "total": articles.get("total") or 0,
            "page": page,
            "limit": limit,
            "hasMore": len(data) == limit,
        }

    return await cache.get_or_fetch(articles_key(query), settings.cache_ttl_articles, fetch)


async def get_article(cache: TTLCache, client: ZohoDeskClient, article_id: str) -> dict:
    async def fetch() -> dict:
        try:
            article = _detail(await client.get_article(article_id))
        except ZohoDeskNotFoundError:
            article = None
        if article is None:
            raise NotFoundError(f"Article with ID {article_id} does not exist", title="Article not found")
        return sanitize_article(article)

    return await cache.get_or_fetch(article_key(article_id), settings.cache_ttl_article, fetch)


async def list_categories(cache: TTLCache, client: ZohoDeskClient) -> dict:
    async def fetch() -> dict:
        categories = (await client.get_categories()).get("data") or []
        return {
            "data": [sanitize_category(c) for c in categories],
            "total": len(categories),
        }

    return await cache.get_or_fetch(CATEGORIES_KEY, settings.cache_ttl_categories, fetch)


async def get_category(cache: TTLCache, client: ZohoDeskClient, category_id: str) -> dict:
    async def fetch() -> dict:
        try:
            category = _detail(await client.get_category(category_id))
        except ZohoDeskNotFoundError:
            category = None
        if category is None:
            raise NotFoundError(f"Category with ID {category_id} does not exist", title="Category not found")
        return sanitize_category(category)

    return await cache.get_or_fetch(category_key(category_id), settings.cache_ttl_categories, fetch)


async def list_sections(cache: TTLCache, client: ZohoDeskClient, category_id: str) -> dict:
    async def fetch() -> dict:
        sections = (await client.get_sections(category_id)).get("data") or []
        return {
            "data": [sanitize_section(s) for s in sections],
            "total": len(sections),
            "categoryId": category_id,
        }

    return await cache.get_or_fetch(sections_key(category_id), settings.cache_ttl_categories, fetch)


async def search_articles(
    cache: TTLCache,
    client: ZohoDeskClient,
    query: str,
    category: str | None = None,
    section: str | None = None,
    limit: int = 20,
    page: int = 1,
) -> dict:
    query = query.strip()
    if not query:
        raise ValueError("Search query is required")
    key = search_key({"q": query, "category": category, "section": section, "limit": limit, "page": page})

    async def fetch() -> dict:
        results = await client.search_articles(query, limit=limit, category=category, section=section)
        return {
            "data": [sanitize_search_hit(a) for a in results.get("data") or []],
            "query": query,
            "total": results.get("total") or 0,
            "page": page,
            "limit": limit,
        }

    return await cache.get_or_fetch(key, settings.cache_ttl_search, fetch)


async def get_stats(cache: TTLCache, client: ZohoDeskClient) -> dict:
    stats = await cache.get_or_fetch(STATS_KEY, settings.cache_ttl_stats, client.get_help_center_stats)
    # Degraded stats are served but not kept for the full TTL.
    if "error" in stats:
        cache.delete(STATS_KEY)
    return stats


async def sync_knowledge_base(cache: TTLCache, client: ZohoDeskClient) -> dict:
    """Drop every cached response, then re-import from Zoho Desk."""
    logger.info("Starting knowledge base sync")
    cleared = cache.clear()
    result = await client.bulk_import_articles()
    result.pop("articles", None)
    logger.info("Knowledge base sync finished: %s", result)
    return {
        "success": result.get("success", False),
        "message": "Knowledge base sync completed" if result.get("success") else "Knowledge base sync failed",
        "cacheEntriesCleared": cleared,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **{k: v for k, v in result.items() if k != "success"},
    }
