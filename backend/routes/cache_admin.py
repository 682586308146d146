"""Cache administration routes — stats and invalidation."""

import hmac
import logging

from fastapi import APIRouter, Depends, Header, Query, Request

from errors import NotFoundError, StorefrontError
from services.cache import TTLCache, get_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cache")


def require_admin(request: Request, x_admin_token: str | None = Header(None)) -> None:
    """Reject the request unless X-Admin-Token matches ADMIN_API_TOKEN (when configured)."""
    expected = request.app.state.settings.admin_api_token
    if not expected:
        return
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise StorefrontError(
            "Admin token required. Pass X-Admin-Token header.",
            status_code=401,
            title="Unauthorized",
        )


@router.get("/stats", dependencies=[Depends(require_admin)])
async def cache_stats(request: Request, cache: TTLCache = Depends(get_cache)) -> dict:
    """Response cache counters plus per-profile rate-limiter usage."""
    limiters = request.app.state.rate_limiters
    return {
        "cache": cache.get_stats(),
        "rate_limits": {name: limiter.get_stats() for name, limiter in limiters.items()},
    }


@router.delete("", dependencies=[Depends(require_admin)])
async def clear_cache(
    pattern: str | None = Query(None, description="Regex matched against cache keys"),
    cache: TTLCache = Depends(get_cache),
) -> dict:
    """Clear everything, or only the keys matching `pattern`."""
    if pattern:
        removed = cache.clear_pattern(pattern)
    else:
        removed = cache.clear()
    logger.info("Admin cache clear (pattern=%s): %d removed", pattern, removed)
    return {"success": True, "pattern": pattern, "removed": removed}


@router.get("/ttl/{key:path}", dependencies=[Depends(require_admin)])
async def cache_ttl(key: str, cache: TTLCache = Depends(get_cache)) -> dict:
    ttl = cache.get_ttl(key)
    if ttl is None:
        raise NotFoundError(f"No live cache entry for {key!r}", title="Cache key not found")
    return {"key": key, "ttl": ttl}
