from functools import lru_cache
from threading import Lock
from typing import Optional
import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Process-wide configuration for cloudtables.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "cloudtables"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False

    # Default AWS connection
    AWS_PROFILE: Optional[str] = None
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_SESSION_TOKEN: Optional[str] = None
    AWS_DEFAULT_REGION: str = "us-east-1"
    # fnmatch patterns, e.g. ["us-*", "eu-west-1"]. Empty means the default region only.
    AWS_REGIONS: list[str] = []

    # Scan engine
    SCAN_PARALLELISM: int = 1
    SCAN_MAX_PAGES: Optional[int] = None
    SCAN_PAGE_SIZE: int = 1000

    # Provider call retries (throttled / transient errors)
    RETRY_MAX_ATTEMPTS: int = 5
    RETRY_MIN_WAIT_SECONDS: float = 0.25
    RETRY_MAX_WAIT_SECONDS: float = 20.0

    # Calls per second keyed by "service:action", "service" or "default".
    # CloudWatch and CloudTrail lookups are notoriously restrictive.
    RATE_LIMITS: dict[str, float] = {
        "cloudwatch:GetMetricStatistics": 20.0,
        "logs:FilterLogEvents": 5.0,
        "cloudtrail:LookupEvents": 2.0,
        "sts": 10.0,
        "ec2": 50.0,
        "default": 25.0,
    }

    # Error codes treated as "not found" for every table. Each operation adds
    # the codes its own table declares.
    DEFAULT_IGNORE_ERROR_CODES: list[str] = [
        "ResourceNotFoundException",
        "NoSuchEntity",
    ]

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """Rejects values the scan engine cannot honor."""
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )
        if self.SCAN_PARALLELISM < 1:
            raise ValueError("SCAN_PARALLELISM must be >= 1.")
        if self.SCAN_MAX_PAGES is not None and self.SCAN_MAX_PAGES <= 0:
            raise ValueError("SCAN_MAX_PAGES must be > 0 when set.")
        if self.SCAN_PAGE_SIZE < 1:
            raise ValueError("SCAN_PAGE_SIZE must be >= 1.")
        if self.RETRY_MAX_ATTEMPTS < 1:
            raise ValueError("RETRY_MAX_ATTEMPTS must be >= 1.")
        if self.RETRY_MIN_WAIT_SECONDS < 0 or self.RETRY_MAX_WAIT_SECONDS < self.RETRY_MIN_WAIT_SECONDS:
            raise ValueError(
                "RETRY_MIN_WAIT_SECONDS must be >= 0 and <= RETRY_MAX_WAIT_SECONDS."
            )
        for key, rate in self.RATE_LIMITS.items():
            if rate <= 0:
                raise ValueError(f"RATE_LIMITS[{key!r}] must be > 0.")
        if "default" not in self.RATE_LIMITS:
            raise ValueError("RATE_LIMITS must define a 'default' budget.")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == ENV_PRODUCTION
