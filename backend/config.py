"""Centralized configuration — all env vars in one place."""

import os


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self):
        self.cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
        self.git_sha: str = os.getenv("GIT_SHA", "unknown")
        self.environment: str = os.getenv("ENVIRONMENT", "local")
        self.admin_api_token: str | None = os.getenv("ADMIN_API_TOKEN") or None

        # Zoho Desk
        self.zoho_desk_api_url: str = os.getenv("ZOHO_DESK_API_URL", "https://desk.zoho.com/api/v1")
        self.zoho_accounts_url: str = os.getenv("ZOHO_ACCOUNTS_URL", "https://accounts.zoho.com")
        self.zoho_org_id: str | None = os.getenv("ZOHO_ORG_ID")
        self.zoho_refresh_token: str | None = os.getenv("ZOHO_REFRESH_TOKEN")
        self.zoho_client_id: str | None = os.getenv("ZOHO_CLIENT_ID")
        self.zoho_client_secret: str | None = os.getenv("ZOHO_CLIENT_SECRET")
        self.zoho_timeout_seconds: int = _env_int("ZOHO_TIMEOUT_SECONDS", 10)

        # Response cache (TTLs in seconds)
        self.cache_sweep_interval_seconds: int = _env_int("CACHE_SWEEP_INTERVAL_SECONDS", 300)
        self.cache_ttl_articles: int = _env_int("CACHE_TTL_ARTICLES", 600)  # 10 minutes
        self.cache_ttl_search: int = _env_int("CACHE_TTL_SEARCH", 300)  # 5 minutes
        self.cache_ttl_article: int = _env_int("CACHE_TTL_ARTICLE", 1800)  # 30 minutes
        self.cache_ttl_categories: int = _env_int("CACHE_TTL_CATEGORIES", 3600)  # 1 hour
        self.cache_ttl_stats: int = _env_int("CACHE_TTL_STATS", 3600)

        # Rate limiting: (window seconds, max requests)
        self.rate_limit_enabled: bool = _env_bool("RATE_LIMIT_ENABLED", True)
        self.rate_limits: dict[str, tuple[int, int]] = {
            "general": (15 * 60, 100),
            "search": (10 * 60, 50),
            "sync": (60 * 60, 5),
        }

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate(self) -> list[str]:
        """Return list of missing required env vars for Zoho Desk access."""
        required = ["ZOHO_ORG_ID", "ZOHO_REFRESH_TOKEN", "ZOHO_CLIENT_ID", "ZOHO_CLIENT_SECRET"]
        return [var for var in required if not getattr(self, _attr_for(var))]


settings = Settings()


def _attr_for(env_var: str) -> str:
    """Map env var name to Settings attribute name."""
    return env_var.lower()
