"""Pydantic Settings — typed configuration with .env auto-loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    service_port: int = 5000
    cors_origins: list[str] = ["*"]
    debug: bool = False
    log_level: str = "INFO"

    # ── Project backend (read-only collections) ──────────────
    backend_base_url: str = "http://localhost:8000"
    backend_api_prefix: str = "/api/v1"
    backend_access_token: str = ""
    backend_timeout: int = 15  # seconds

    # ── Context resolution ───────────────────────────────────
    context_cache_ttl: int = 300  # seconds (5 min)
    max_concurrent_searches: int = 15  # 3 terms × 5 collections
    max_concurrent_resolutions: int = 15  # per worker; extra requests get 503
    confidence_action_threshold: float = 0.5  # >= acts autonomously
    suggestion_threshold: float = 0.7  # < attaches rephrasing hints

    # ── Smart defaults ───────────────────────────────────────
    credit_risk_overdue_days: int = 30
    # Invoice-number allocation scans pages of invoices until a short page
    # or the page cap; the result is only ever a provisional preview.
    invoice_scan_page_size: int = 100
    invoice_scan_max_pages: int = 10


@lru_cache
def get_settings() -> Settings:
    """Singleton accessor for application settings."""
    return Settings()
