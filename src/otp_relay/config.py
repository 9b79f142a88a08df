"""Application configuration."""

import os
from urllib.parse import urlsplit

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Every field has a default so a missing variable never stops startup.
    """

    telegram_bot_token: str = ""
    telegram_admin_id: str | None = None
    supabase_url: str = "http://localhost:54321"
    supabase_service_key: str = ""
    admin_token: str = ""

    panel_url: str = "http://localhost"
    panel_base_path: str = "/ints/client/SMSCDRStats"
    panel_username: str = ""
    panel_password: str = ""
    panel_timeout_seconds: float = 30.0
    panel_retries: int = 3
    panel_auth_markers: str = "Welcome,Dashboard,Logout"
    panel_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    )

    reservation_ttl_seconds: int = 600
    max_numbers_per_user: int = 3
    captcha_timeout_seconds: float = 30.0
    otp_dedup_window_seconds: int = 600
    otp_retention_days: int = 1

    auto_sync: bool = True
    inventory_sync_interval_seconds: float = 300.0
    otp_poll_interval_seconds: float = 30.0
    reservation_sweep_interval_seconds: float = 60.0

    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_admin_id(raw: str | None) -> int | None:
    """Parse the Telegram operator id from env."""
    if raw is None:
        return None
    cleaned = raw.strip()
    if cleaned.lstrip("-").isdigit():
        return int(cleaned)
    return None


def parse_auth_markers(raw: str) -> tuple[str, ...]:
    """Parse the comma-separated list of post-login markers."""
    markers = tuple(chunk.strip() for chunk in raw.split(",") if chunk.strip())
    return markers or ("Welcome", "Dashboard")


def validate_panel_url(url: str) -> str:
    """Return the panel base URL without a trailing slash, or raise."""
    parts = urlsplit(url.strip())
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        raise ValueError(f"Invalid panel URL: {url!r}")
    return url.strip().rstrip("/")
