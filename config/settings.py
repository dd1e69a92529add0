"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Worker settings loaded from environment variables (prefix WORKER_)."""

    # Origin the worker is scoped to; requests to any other origin bypass it
    origin: str = "http://localhost:8000"
    # Where intercepted requests are actually fetched from (defaults to origin)
    upstream_url: Optional[str] = None

    # Base path of the deployed application
    base_path: str = "/doit"

    # Partition naming: <prefix>-<role>-<generation>
    cache_prefix: str = "doit"
    cache_generation: str = "v3"

    # Store settings
    store_backend: str = "sqlite"  # "sqlite" or "memory"
    store_path: Path = Path("./data/offline_cache.db")

    # Routing
    static_extensions: List[str] = [
        ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".ico",
        ".woff", ".woff2", ".ttf", ".eot",
        ".css", ".js", ".webmanifest", ".json",
    ]
    sounds_prefix: str = "/sounds/"
    framework_static_prefix: str = "/_next/static/"
    framework_prefix: str = "/_next/"

    # Lifecycle
    skip_waiting_on_install: bool = True

    # Precache manifest overrides (None = use config/precache.py)
    static_assets: Optional[List[str]] = None
    sound_assets: Optional[List[str]] = None

    # Network
    network_timeout_seconds: Optional[float] = None
    max_concurrent_requests: int = 10

    # Thread pools
    max_request_workers: int = 16
    max_revalidation_workers: int = 4
    precache_workers: int = 8

    # Notifications
    notification_title: str = "DoIt"
    notification_body: str = "You have a notification"
    notification_icon: str = "/android-chrome-192x192.png"
    notification_badge: str = "/favicon-32x32.png"

    log_level: str = "INFO"

    class Config:
        env_prefix = "WORKER_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def root_url(self) -> str:
        """Path of the root document (the offline navigation fallback)."""
        return f"{self.base_path.rstrip('/')}/"


settings = Settings()
