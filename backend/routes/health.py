"""Health and readiness check routes."""

import logging

from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/ready")
async def ready(request: Request) -> dict:
    """Lightweight readiness check — no external calls."""
    settings = request.app.state.settings
    return {"status": "ok", "service": "storefront-kb-api", "commit": settings.git_sha}


@router.get("/health")
async def health(request: Request) -> dict:
    """Process health: cache sweeper state and Zoho Desk configuration."""
    settings = request.app.state.settings
    cache = request.app.state.cache
    missing = settings.validate()
    result = {
        "status": "ok",
        "service": "storefront-kb-api",
        "commit": settings.git_sha,
        "cache": {
            "entries": cache.get_stats()["active_entries"],
            "sweeper_running": cache.sweeper_running,
        },
        "zoho_desk": "configured" if not missing else "not_configured",
    }
    if missing:
        result["status"] = "degraded"
        result["missing_env"] = missing
        logger.warning("Health degraded, missing env vars: %s", ", ".join(missing))
    return result
