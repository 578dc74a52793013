import logging
from typing import Annotated

from croniter import croniter
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


logger = logging.getLogger(__name__)


class CustomSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    epg_sources: Annotated[list[str] | None, NoDecode] = None
    default_ttl_sec: int = 3600
    epg_fetch_timeout_sec: float = 60.0  # Total budget per source, retries included
    epg_fetch_max_retries: int = 2
    epg_fetch_backoff_factor: float = 2.0
    epg_fetch_max_concurrency: int = 8
    epg_user_agent: str = "epg-merge-service/0.1.0"
    generator_info_name: str = "merged-by-epg-merge-service"

    cache_max_entries: int = 32
    cache_purge_cron: str = "*/15 * * * *"
    cache_warm_on_start: bool = False

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("epg_sources", mode="before")
    @classmethod
    def parse_epg_sources(cls, value):
        """Parse comma-separated URLs or list."""
        if value is None:
            return []
        if isinstance(value, str):
            if not value.strip():
                return []
            return [url.strip() for url in value.split(",") if url.strip()]
        if isinstance(value, list):
            return value
        return []

    @field_validator("epg_sources", mode="after")
    @classmethod
    def validate_epg_sources(cls, value):
        """Validate EPG source URLs are HTTP/HTTPS."""
        if not value:
            return value

        for url in value:
            if not url.lower().startswith(("http://", "https://")):
                raise ValueError(f"EPG source URL must be HTTP/HTTPS: {url}")
        return value

    @field_validator(
        "default_ttl_sec",
        "epg_fetch_max_retries",
        "epg_fetch_max_concurrency",
        "cache_max_entries",
    )
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure integer settings are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("epg_fetch_timeout_sec")
    @classmethod
    def validate_fetch_timeout(cls, value: float) -> float:
        """A per-source timeout is mandatory, so zero is rejected."""
        if value <= 0:
            raise ValueError("epg_fetch_timeout_sec must be > 0")
        return value

    @field_validator("epg_fetch_backoff_factor")
    @classmethod
    def validate_backoff_factor(cls, value: float) -> float:
        """Ensure the backoff multiplier is at least 1."""
        if value < 1:
            raise ValueError("epg_fetch_backoff_factor must be >= 1")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate logging level name."""
        normalized = value.upper()
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    @field_validator("cache_purge_cron")
    @classmethod
    def validate_cron_expression(cls, value: str) -> str:
        """Validate cron expression is valid."""
        try:
            croniter(value)
            return value
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc

    @model_validator(mode="after")
    def validate_epg_configuration(self):
        """Validate cross-field configuration."""
        if not self.epg_sources:
            logger.warning(
                "No EPG sources configured - merged feed will be empty"
            )

        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Configuration loaded:")
        logger.info("  EPG Sources: %s configured", len(self.epg_sources or []))
        logger.info("  Default TTL: %ss", self.default_ttl_sec)
        logger.info("  Fetch Timeout: %ss per source", self.epg_fetch_timeout_sec)
        logger.info(
            "  Fetch Retries: %s (backoff factor %.1f)",
            self.epg_fetch_max_retries,
            self.epg_fetch_backoff_factor,
        )
        logger.info("  Fetch Concurrency: %s", self.epg_fetch_max_concurrency)
        logger.info("  Cache Max Entries: %s", self.cache_max_entries)
        logger.info("  Cache Purge Schedule: %s", self.cache_purge_cron)
        logger.info("  Cache Warm On Start: %s", self.cache_warm_on_start)


settings = CustomSettings()


def setup_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
