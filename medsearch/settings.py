import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Terminology service
    rxnorm_base_url: str = Field(
        default="https://rxnav.nlm.nih.gov/REST", alias="RXNORM_BASE_URL"
    )
    display_names_endpoint: str = Field(
        default="/displaynames.json", alias="RXNORM_DISPLAY_NAMES_ENDPOINT"
    )

    # Circuit breaker
    failure_threshold: int = Field(default=5, ge=1, alias="CB_FAILURE_THRESHOLD")
    reset_timeout_seconds: float = Field(default=60, gt=0, alias="CB_RESET_TIMEOUT")
    half_open_requests: int = Field(default=3, ge=1, alias="CB_HALF_OPEN_REQUESTS")

    # HTTP client
    request_timeout_seconds: float = Field(default=10, gt=0, alias="REQUEST_TIMEOUT")
    catalog_timeout_seconds: float = Field(default=30, gt=0, alias="CATALOG_TIMEOUT")
    max_retries: int = Field(default=3, ge=0, alias="MAX_RETRIES")
    catalog_retries: int = Field(default=2, ge=0, alias="CATALOG_RETRIES")
    retry_delay_ms: float = Field(default=300, ge=0, alias="RETRY_DELAY_MS")

    # Search
    min_search_length: int = Field(default=1, ge=1, alias="MIN_SEARCH_LENGTH")
    max_search_results: int = Field(default=15, ge=1, alias="MAX_SEARCH_RESULTS")
    catalog_refresh_hours: float = Field(default=6, gt=0, alias="CATALOG_REFRESH_HOURS")
    warm_up_ttl_days: float = Field(default=7, gt=0, alias="WARM_UP_TTL_DAYS")

    # Cache
    max_memory_entries: int = Field(default=100, ge=1, alias="MAX_MEMORY_ENTRIES")
    memory_ttl_minutes: float = Field(default=30, gt=0, alias="MEMORY_TTL_MINUTES")
    max_persistent_size_bytes: int = Field(
        default=45 * 1024 * 1024, ge=1, alias="MAX_PERSISTENT_SIZE_BYTES"
    )
    persistent_ttl_hours: float = Field(default=24, gt=0, alias="PERSISTENT_TTL_HOURS")
    eviction_policy: Literal["lru"] = Field(default="lru", alias="EVICTION_POLICY")
    persistent_cache_enabled: bool = Field(default=True, alias="PERSISTENT_CACHE_ENABLED")
    cache_database_url: str = Field(
        default="sqlite+aiosqlite:///./medsearch_cache.db", alias="CACHE_DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")
    cleanup_interval_minutes: float = Field(
        default=60, gt=0, alias="CLEANUP_INTERVAL_MINUTES"
    )

    debug: bool = Field(default=False, alias="MEDSEARCH_DEBUG")


def load_settings() -> Settings:
    """Build settings from the process environment (after ``.env`` is loaded)."""
    return Settings.model_validate(dict(os.environ))


global_settings = load_settings()
