import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):
    # API Client Configuration
    api_base_url: str = Field(default="", alias="API_BASE_URL")
    api_timeout: float = Field(default=30.0, alias="API_TIMEOUT")
    api_retries: int = Field(default=3, alias="API_RETRIES")
    api_retry_delay: float = Field(default=1.0, alias="API_RETRY_DELAY")
    api_cache_ttl: float = Field(default=60.0, alias="API_CACHE_TTL")

    # Circuit Breaker Configuration
    circuit_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_FAILURE_THRESHOLD"
    )
    circuit_reset_timeout: float = Field(default=30.0, alias="CIRCUIT_RESET_TIMEOUT")
    circuit_half_open_requests: int = Field(
        default=3, alias="CIRCUIT_HALF_OPEN_REQUESTS"
    )

    # Verbose cache / deduplication logging
    debug: bool = Field(default=False, alias="PACELINE_DEBUG")


def load_settings() -> Settings:
    """Read settings from the environment (and a .env file if present)."""
    load_dotenv()
    return Settings.model_validate(dict(os.environ))


_global_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings, loading them on first use."""
    global _global_settings
    if _global_settings is None:
        _global_settings = load_settings()
    return _global_settings
