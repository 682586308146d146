"""Test knowledge-base and cache admin endpoints."""

from __future__ import annotations

import httpx
from fastapi.testclient import TestClient

from app import create_app
from services import knowledge_base as kb
from services.cache import TTLCache

ARTICLE = {
    "id": "42",
    "title": "Setup Guide",
    "content": "<p>Plug it in.</p>",
    "categoryId": "c1",
    "sectionId": "s1",
    "status": "PUBLISHED",
    "internalNotes": "do not leak",
}


def test_categories_served_from_cache_on_second_request(client, fake_desk):
    fake_desk.routes["/kbCategories"] = {"data": [{"id": "c1", "name": "Getting started", "secret": "x"}]}

    first = client.get("/api/knowledge-base/categories")
    second = client.get("/api/knowledge-base/categories")

    assert first.status_code == 200
    assert first.json() == second.json()
    assert first.json()["total"] == 1
    assert first.json()["data"][0] == {
        "id": "c1",
        "name": "Getting started",
        "description": None,
        "articleCount": 0,
        "createdTime": None,
        "modifiedTime": None,
    }
    assert fake_desk.calls_to("/kbCategories") == 1


def test_article_is_sanitized_and_cached_for_30_minutes(client, fake_desk, cache):
    fake_desk.routes["/kbArticles/42"] = ARTICLE

    response = client.get("/api/knowledge-base/articles/42")

    body = response.json()
    assert response.status_code == 200
    assert body["title"] == "Setup Guide"
    assert body["summary"] == "Setup Guide"
    assert body["language"] == "en"
    assert body["tags"] == []
    assert "internalNotes" not in body
    assert cache.get_ttl("article:42") == 1800


def test_missing_article_returns_404(client):
    response = client.get("/api/knowledge-base/articles/nope")

    assert response.status_code == 404
    assert response.json()["error"] == "Article not found"


def test_article_listing_uses_category_endpoint(client, fake_desk, cache):
    fake_desk.routes["/kbCategories/c1/kbArticles"] = {"data": [ARTICLE], "total": 1}

    response = client.get("/api/knowledge-base/articles", params={"category": "c1", "limit": 1})

    body = response.json()
    assert response.status_code == 200
    assert body["hasMore"] is True
    assert body["data"][0]["id"] == "42"
    assert cache.keys(prefix="articles:") == [
        kb.articles_key({
            "page": 1, "limit": 1, "category": "c1", "sortBy": "modifiedTime", "status": "PUBLISHED",
        })
    ]


def test_sections_for_category(client, fake_desk):
    fake_desk.routes["/kbCategories/c1/kbSections"] = {"data": [{"id": "s1", "name": "Install", "categoryId": "c1"}]}

    response = client.get("/api/knowledge-base/sections/c1")

    assert response.status_code == 200
    assert response.json()["categoryId"] == "c1"
    assert response.json()["data"][0]["articleCount"] == 0


def test_search_requires_query(client):
    response = client.get("/api/knowledge-base/search", params={"q": "   "})

    assert response.status_code == 400


def test_search_results(client, fake_desk, cache):
    fake_desk.routes["/kbArticles/search"] = {"data": [{**ARTICLE, "relevanceScore": 0.9}], "total": 1}

    response = client.get("/api/knowledge-base/search", params={"q": " setup "})

    body = response.json()
    assert body["query"] == "setup"
    assert body["data"][0]["relevanceScore"] == 0.9
    assert cache.get_ttl(cache.keys(prefix="search:")[0]) == 300


def test_upstream_rate_limit_maps_to_429(client, fake_desk):
    fake_desk.routes["/kbCategories"] = lambda _req: httpx.Response(429, headers={"Retry-After": "30"})

    response = client.get("/api/knowledge-base/categories")

    assert response.status_code == 429
    assert response.json()["retryAfter"] == 30
    assert response.headers["Retry-After"] == "30"


def test_sync_clears_cache(client, fake_desk, cache):
    fake_desk.routes["/kbCategories"] = {"data": [{"id": "c1"}]}
    fake_desk.routes["/kbCategories/c1/kbArticles"] = {"data": [ARTICLE]}
    client.get("/api/knowledge-base/categories")
    assert cache.has(kb.CATEGORIES_KEY)

    response = client.post("/api/knowledge-base/sync")

    body = response.json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["cacheEntriesCleared"] == 1
    assert body["articlesImported"] == 1
    assert "articles" not in body
    assert cache.has(kb.CATEGORIES_KEY) is False


def test_stats_cached_under_helpcenter_key(client, fake_desk, cache):
    fake_desk.routes["/kbArticles"] = {"data": [], "total": 5}
    fake_desk.routes["/kbCategories"] = {"data": [{"id": "c1"}]}

    response = client.get("/api/knowledge-base/stats")

    assert response.json()["totalArticles"] == 5
    assert cache.has(kb.STATS_KEY)


def test_cache_admin_pattern_clear_and_ttl(client, cache):
    cache.set("articles:a", {"data": []}, 600)
    cache.set("articles:b", {"data": []}, 600)
    cache.set("categories:all", {"data": []}, 3600)

    assert client.get("/api/cache/ttl/categories:all").json() == {"key": "categories:all", "ttl": 3600}

    response = client.delete("/api/cache", params={"pattern": "^articles:"})
    assert response.json()["removed"] == 2
    assert cache.has("categories:all")

    assert client.get("/api/cache/ttl/articles:a").status_code == 404
    assert client.delete("/api/cache").json()["removed"] == 1


def test_cache_admin_rejects_bad_pattern(client):
    response = client.delete("/api/cache", params={"pattern": "("})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid cache operation"


def test_cache_stats_endpoint(client, cache):
    cache.set("article:1", {"id": "1"}, 60)

    body = client.get("/api/cache/stats").json()

    assert body["cache"]["active_entries"] == 1
    assert body["cache"]["sweeper_running"] is True
    assert set(body["rate_limits"]) == {"general", "search", "sync"}


def test_admin_token_enforced(settings, cache, desk_client):
    settings.admin_api_token = "s3cret"
    app = create_app(settings=settings, cache=cache, desk_client=desk_client)

    with TestClient(app) as client:
        assert client.delete("/api/cache").status_code == 401
        assert client.post("/api/knowledge-base/sync").status_code == 401
        ok = client.delete("/api/cache", headers={"X-Admin-Token": "s3cret"})
        assert ok.status_code == 200


def test_search_rate_limit(settings, cache, desk_client, fake_desk):
    settings.rate_limits = {"search": (600, 2)}
    fake_desk.routes["/kbArticles/search"] = {"data": []}
    app = create_app(settings=settings, cache=cache, desk_client=desk_client)

    with TestClient(app) as client:
        first = client.get("/api/knowledge-base/search", params={"q": "a"})
        client.get("/api/knowledge-base/search", params={"q": "b"})
        blocked = client.get("/api/knowledge-base/search", params={"q": "c"})

    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert blocked.status_code == 429
    assert int(blocked.headers["Retry-After"]) >= 1
    assert blocked.json()["error"] == "Rate limit exceeded"


def test_kb_health(client):
    response = client.get("/api/knowledge-base/health")

    assert response.status_code == 200
    assert response.json()["zohoDesk"] == "connected"


def test_kb_health_unhealthy_when_token_refresh_fails(client, fake_desk):
    fake_desk.token_status = 401

    response = client.get("/api/knowledge-base/health")

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


def test_ready_and_health(client):
    assert client.get("/ready").json()["status"] == "ok"

    health = client.get("/health").json()
    assert health["cache"]["sweeper_running"] is True
    assert health["zoho_desk"] == "configured"


def test_injected_empty_cache_is_the_one_routes_use(settings, desk_client, fake_desk):
    injected = TTLCache()
    app = create_app(settings=settings, cache=injected, desk_client=desk_client)
    fake_desk.routes["/kbCategories"] = {"data": []}

    assert app.state.cache is injected
    with TestClient(app) as client:
        client.get("/api/knowledge-base/categories")

    assert injected.has(kb.CATEGORIES_KEY)
