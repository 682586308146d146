"""Zoho Desk help-center API client.

Async httpx client with OAuth refresh-token auth. Requests retry on expired
tokens (401), upstream rate limits (429, honoring Retry-After) and transient
5xx/transport failures, then surface a typed ZohoDesk* error.

Endpoint reference: https://desk.zoho.com/DeskAPIDocument#KnowledgeBase
"""

import asyncio
import logging
from datetime import datetime, timezone

import httpx
from fastapi import Request

from config import Settings
from errors import (
    ConfigurationError,
    ZohoDeskAuthError,
    ZohoDeskError,
    ZohoDeskNotFoundError,
    ZohoDeskRateLimitError,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
DEFAULT_RETRY_AFTER_SECONDS = 60


class ZohoDeskClient:
    """Thin async client for the Zoho Desk knowledge-base endpoints."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        max_retries: int = MAX_RETRIES,
        retry_backoff_seconds: float = 1.0,
        max_retry_wait_seconds: float = 60.0,
    ):
        if not settings.zoho_org_id:
            raise ConfigurationError("ZOHO_ORG_ID environment variable is required")
        self.base_url = settings.zoho_desk_api_url.rstrip("/")
        self.accounts_url = settings.zoho_accounts_url.rstrip("/")
        self.org_id = settings.zoho_org_id
        self._refresh_token = settings.zoho_refresh_token
        self._client_id = settings.zoho_client_id
        self._client_secret = settings.zoho_client_secret
        self._http = http_client or httpx.AsyncClient(timeout=settings.zoho_timeout_seconds)
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.max_retry_wait_seconds = max_retry_wait_seconds
        self.access_token: str | None = None

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Auth + transport
    # ------------------------------------------------------------------

    async def refresh_access_token(self) -> str:
        """Exchange the refresh token for a new access token."""
        try:
            resp = await self._http.post(
                f"{self.accounts_url}/oauth/v2/token",
                data={
                    "refresh_token": self._refresh_token or "",
                    "client_id": self._client_id or "",
                    "client_secret": self._client_secret or "",
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            logger.error("Zoho token refresh failed: %s", e)
            raise ZohoDeskAuthError(f"Token refresh failed: {e}") from e

        if resp.status_code >= 400:
            logger.error("Zoho token refresh failed with status %d", resp.status_code)
            raise ZohoDeskAuthError(f"Token refresh failed: {resp.status_code}")

        token = resp.json().get("access_token")
        if not token:
            raise ZohoDeskAuthError("Token refresh response did not include an access token")
        self.access_token = token
        return token

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Zoho-oauthtoken {self.access_token}",
            "orgId": self.org_id,
        }

    async def request(self, endpoint: str, params: dict | None = None) -> dict:
        """GET a Desk endpoint and return the decoded JSON body."""
        url = f"{self.base_url}{endpoint}"
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        retry_after = DEFAULT_RETRY_AFTER_SECONDS
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            if not self.access_token:
                await self.refresh_access_token()

            try:
                resp = await self._http.get(url, params=clean_params, headers=self._headers())
            except httpx.TransportError as e:
                last_error = e
                logger.warning("Zoho request %s failed (%d/%d): %s", endpoint, attempt, self.max_retries, e)
                await self._backoff(attempt)
                continue

            if resp.status_code == 401:
                logger.info("Zoho access token expired, refreshing")
                self.access_token = None
                last_error = ZohoDeskAuthError()
                continue

            if resp.status_code == 429:
                retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
                last_error = ZohoDeskRateLimitError(retry_after)
                logger.warning("Zoho rate limited on %s; retry after %ss (%d/%d)", endpoint, retry_after, attempt, self.max_retries)
                if attempt < self.max_retries:
                    await asyncio.sleep(min(retry_after, self.max_retry_wait_seconds))
                continue

            if resp.status_code == 404:
                raise ZohoDeskNotFoundError(endpoint)

            if resp.status_code >= 500:
                last_error = ZohoDeskError(
                    f"Zoho Desk request failed: {resp.status_code} {resp.reason_phrase}",
                    upstream_status=resp.status_code,
                )
                logger.warning("Zoho request %s returned %d (%d/%d)", endpoint, resp.status_code, attempt, self.max_retries)
                await self._backoff(attempt)
                continue

            if resp.status_code >= 400:
                raise ZohoDeskError(
                    f"Zoho Desk request failed: {resp.status_code} {resp.reason_phrase}",
                    upstream_status=resp.status_code,
                )

            if resp.status_code == 204 or not resp.content:
                return {}
            return resp.json()

        logger.error("Zoho request %s gave up after %d attempts: %s", endpoint, self.max_retries, last_error)
        if isinstance(last_error, ZohoDeskError):
            raise last_error
        raise ZohoDeskError(f"Zoho Desk request failed: {last_error}") from last_error

    async def _backoff(self, attempt: int) -> None:
        if attempt < self.max_retries:
            await asyncio.sleep(self.retry_backoff_seconds * attempt)

    # ------------------------------------------------------------------
    # Knowledge base endpoints
    # ------------------------------------------------------------------

    async def get_articles(self, limit: int = 50, sort_by: str = "modifiedTime", **params) -> dict:
        return await self.request("/kbArticles", {"limit": limit, "sortBy": sort_by, **params})

    async def get_article(self, article_id: str) -> dict:
        return await self.request(f"/kbArticles/{article_id}")

    async def search_articles(self, query: str, limit: int = 20, **params) -> dict:
        return await self.request("/kbArticles/search", {"searchStr": query, "limit": limit, **params})

    async def get_categories(self) -> dict:
        return await self.request("/kbCategories")

    async def get_category(self, category_id: str) -> dict:
        return await self.request(f"/kbCategories/{category_id}")

    async def get_sections(self, category_id: str) -> dict:
        return await self.request(f"/kbCategories/{category_id}/kbSections")

    async def get_articles_by_category(self, category_id: str, limit: int = 50, **params) -> dict:
        return await self.request(f"/kbCategories/{category_id}/kbArticles", {"limit": limit, **params})

    async def get_articles_by_section(self, section_id: str, limit: int = 50, **params) -> dict:
        return await self.request(f"/kbSections/{section_id}/kbArticles", {"limit": limit, **params})

    async def get_help_center_stats(self) -> dict:
        """Article and category totals. Degrades to zeros if Desk is unavailable."""
        now = datetime.now(timezone.utc).isoformat()
        try:
            articles, categories = await asyncio.gather(
                self.get_articles(limit=1),
                self.get_categories(),
            )
        except ZohoDeskError as e:
            logger.warning("Help center stats unavailable: %s", e)
            return {"totalArticles": 0, "totalCategories": 0, "lastUpdated": now, "error": str(e)}

        return {
            "totalArticles": articles.get("total") or 0,
            "totalCategories": len(categories.get("data") or []),
            "lastUpdated": now,
        }

    async def bulk_import_articles(self) -> dict:
        """Walk every category and collect its articles."""
        try:
            categories = (await self.get_categories()).get("data") or []
            articles: list[dict] = []
            for category in categories:
                page = await self.get_articles_by_category(category["id"])
                articles.extend(page.get("data") or [])
        except ZohoDeskError as e:
            logger.error("Bulk import failed: %s", e)
            return {"success": False, "error": str(e), "articlesImported": 0}

        logger.info("Bulk import collected %d articles from %d categories", len(articles), len(categories))
        return {
            "success": True,
            "articlesImported": len(articles),
            "categories": len(categories),
            "articles": articles,
        }


def _parse_retry_after(value: str | None) -> int:
    try:
        return max(0, int(value)) if value is not None else DEFAULT_RETRY_AFTER_SECONDS
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS


def get_desk_client(request: Request) -> ZohoDeskClient:
    """FastAPI dependency: the Zoho Desk client owned by this app instance."""
    client = request.app.state.desk_client
    if client is None:
        raise ConfigurationError("Zoho Desk is not configured (ZOHO_ORG_ID missing)")
    return client
