"""Custom exceptions and centralized FastAPI error handlers."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    """Base exception with HTTP status code and a short error title."""

    title = "Request failed"

    def __init__(self, message: str, status_code: int = 500, title: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        if title:
            self.title = title


class ConfigurationError(StorefrontError):
    title = "Configuration error"

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class NotFoundError(StorefrontError):
    title = "Not found"

    def __init__(self, message: str, title: str | None = None):
        super().__init__(message, status_code=404, title=title)


class RateLimitExceededError(StorefrontError):
    title = "Rate limit exceeded"

    def __init__(self, message: str, retry_after: int, headers: dict[str, str] | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after
        self.headers = headers or {}


# ---------------------------------------------------------------------------
# Zoho Desk upstream
# ---------------------------------------------------------------------------

class ZohoDeskError(StorefrontError):
    """Upstream Zoho Desk failure. Surfaces as 502 unless a subclass says otherwise."""

    title = "Upstream error"

    def __init__(self, message: str, status_code: int = 502, upstream_status: int | None = None):
        super().__init__(message, status_code=status_code)
        self.upstream_status = upstream_status


class ZohoDeskAuthError(ZohoDeskError):
    title = "Authentication failed"

    def __init__(self, message: str = "Unable to authenticate with Zoho Desk"):
        super().__init__(message, status_code=401, upstream_status=401)


class ZohoDeskRateLimitError(ZohoDeskError):
    title = "Rate limit exceeded"

    def __init__(self, retry_after: int):
        super().__init__(
            "Too many requests. Please try again later.",
            status_code=429,
            upstream_status=429,
        )
        self.retry_after = retry_after


class ZohoDeskNotFoundError(ZohoDeskError):
    title = "Not found"

    def __init__(self, endpoint: str):
        super().__init__(f"Zoho Desk resource not found: {endpoint}", status_code=404, upstream_status=404)


# ---------------------------------------------------------------------------
# Response cache
# ---------------------------------------------------------------------------

class CacheError(StorefrontError, ValueError):
    """Invalid cache usage. Never raised for a plain miss."""

    title = "Invalid cache operation"

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class InvalidTTLError(CacheError):
    def __init__(self, ttl_seconds):
        super().__init__(f"TTL must be a positive integer number of seconds, got {ttl_seconds!r}")
        self.ttl_seconds = ttl_seconds


class CacheValueError(CacheError):
    def __init__(self, key: str, reason: str):
        super().__init__(f"Value for cache key {key!r} is not JSON-serializable: {reason}")
        self.key = key


class InvalidPatternError(CacheError):
    def __init__(self, pattern: str, reason: str):
        super().__init__(f"Invalid key pattern {pattern!r}: {reason}")
        self.pattern = pattern


def _error_body(exc: StorefrontError) -> dict:
    body = {"error": exc.title, "message": exc.message}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        body["retryAfter"] = retry_after
    return body


def register_error_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers on the FastAPI app."""

    @app.exception_handler(StorefrontError)
    async def handle_storefront_error(_request: Request, exc: StorefrontError):
        headers = dict(getattr(exc, "headers", {}) or {})
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.title, exc.message)
        return JSONResponse(_error_body(exc), status_code=exc.status_code, headers=headers or None)

    @app.exception_handler(ValueError)
    async def handle_value_error(_request: Request, exc: ValueError):
        return JSONResponse({"error": "Invalid request", "message": str(exc)}, status_code=400)

    @app.exception_handler(Exception)
    async def handle_unexpected(_request: Request, exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse(
            {"error": "Internal server error", "message": "Failed to process request"},
            status_code=500,
        )
