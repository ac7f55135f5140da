"""
Configuration management for FPL Cache Refresh Service.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class Config:
    """Application configuration."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # FPL API Configuration
    fpl_api_base_url: str = os.getenv("FPL_API_BASE_URL", "https://fantasy.premierleague.com/api")
    # Upper bound for a single upstream call; refresh tiers re-run on schedule instead of retrying
    request_timeout_seconds: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "20"))

    # Rate Limiting
    max_requests_per_minute: int = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "30"))
    min_request_interval: float = float(os.getenv("MIN_REQUEST_INTERVAL", "0.5"))

    # Cache Configuration
    cache_backend: str = os.getenv("CACHE_BACKEND", "redis")  # redis or memory
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    cache_key_prefix: str = os.getenv("CACHE_KEY_PREFIX", "fpl:")
    # Last-known copies served when upstream is down after the fresh entry expired (7 days)
    stale_ttl_seconds: int = int(os.getenv("STALE_TTL_SECONDS", "604800"))

    # Game state windows (product decisions, not tuned from data)
    match_duration_hours: float = float(os.getenv("MATCH_DURATION_HOURS", "2"))
    post_match_window_hours: float = float(os.getenv("POST_MATCH_WINDOW_HOURS", "4"))
    pre_deadline_window_hours: float = float(os.getenv("PRE_DEADLINE_WINDOW_HOURS", "24"))

    # Refresh jobs
    job_timeout_seconds: float = float(os.getenv("JOB_TIMEOUT_SECONDS", "120"))
    warm_cache_on_startup: bool = os.getenv("WARM_CACHE_ON_STARTUP", "true").lower() in ("1", "true", "yes")

    # Trigger endpoints: bearer token that external schedulers must present
    cron_secret: str = os.getenv("CRON_SECRET", "")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Supabase Configuration (refresh log, optional)
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_KEY", "")
    supabase_service_key: Optional[str] = os.getenv("SUPABASE_SERVICE_KEY", None)

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")  # json or text

    @property
    def supabase_enabled(self) -> bool:
        """True when Supabase settings are present, so refresh logs are persisted."""
        return bool(self.supabase_url and (self.supabase_service_key or self.supabase_key))

    def validate(self):
        """Validate configuration."""
        errors: List[str] = []

        if self.cache_backend not in ("redis", "memory"):
            errors.append("CACHE_BACKEND must be 'redis' or 'memory'")
        if self.cache_backend == "redis" and not self.redis_url:
            errors.append("REDIS_URL is required when CACHE_BACKEND=redis")
        if self.request_timeout_seconds <= 0:
            errors.append("REQUEST_TIMEOUT_SECONDS must be positive")
        if self.job_timeout_seconds <= 0:
            errors.append("JOB_TIMEOUT_SECONDS must be positive")
        if self.match_duration_hours < 0 or self.post_match_window_hours < 0:
            errors.append("MATCH_DURATION_HOURS and POST_MATCH_WINDOW_HOURS must not be negative")
        if self.pre_deadline_window_hours < 0:
            errors.append("PRE_DEADLINE_WINDOW_HOURS must not be negative")
        if self.supabase_url and not (self.supabase_key or self.supabase_service_key):
            errors.append("SUPABASE_KEY is required when SUPABASE_URL is set")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True

    def __post_init__(self):
        """Validate after initialization."""
        self.cache_backend = (self.cache_backend or "").strip().lower()
        self.validate()
