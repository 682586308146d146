"""FastAPI application entry point for the storefront knowledge-base API."""

import logging
import sys
from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, settings as default_settings
from errors import register_error_handlers
from services.cache import TTLCache
from services.rate_limiter import RateLimiter
from services.zoho_desk import ZohoDeskClient

# Structured logging: JSON for production, human-readable for local
if default_settings.is_production:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}',
        stream=sys.stdout,
    )
else:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

logger = logging.getLogger(__name__)


def _build_rate_limiters(settings: Settings, store: TTLCache) -> dict[str, RateLimiter]:
    if not settings.rate_limit_enabled:
        return {}
    return {
        name: RateLimiter(store, name, window_seconds=window, max_requests=limit)
        for name, (window, limit) in settings.rate_limits.items()
    }


def create_app(
    settings: Settings | None = None,
    cache: TTLCache | None = None,
    desk_client: ZohoDeskClient | None = None,
) -> FastAPI:
    """Build the app. Tests pass their own cache and Desk client."""
    if settings is None:
        settings = default_settings
    if cache is None:
        cache = TTLCache(sweep_interval_seconds=settings.cache_sweep_interval_seconds)
    rate_limit_store = TTLCache(sweep_interval_seconds=60, name="rate-limit")

    if desk_client is None and not settings.validate():
        desk_client = ZohoDeskClient(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        missing = settings.validate()
        if missing:
            logger.warning("Missing env vars (Zoho Desk calls will fail): %s", ", ".join(missing))

        async with AsyncExitStack() as stack:
            await stack.enter_async_context(cache)
            await stack.enter_async_context(rate_limit_store)
            if desk_client is not None:
                stack.push_async_callback(desk_client.aclose)
            yield

    app = FastAPI(title="Storefront Knowledge Base API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.cache = cache
    app.state.desk_client = desk_client
    app.state.rate_limiters = _build_rate_limiters(settings, rate_limit_store)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Security headers
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # Centralized error handlers
    register_error_handlers(app)

    from routes.cache_admin import router as cache_admin_router
    from routes.health import router as health_router
    from routes.knowledge_base import router as knowledge_base_router

    app.include_router(health_router)
    app.include_router(knowledge_base_router)
    app.include_router(cache_admin_router)

    return app


app = create_app()
