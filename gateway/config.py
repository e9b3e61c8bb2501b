"""Configuration for the LLM gateway."""

import os
from functools import lru_cache
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


@lru_cache
def get_settings() -> "Settings":
    """Get cached settings instance."""
    return Settings()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Settings:
    """Application settings."""

    def __init__(self):
        # Provider selection
        self.provider_family: str = os.getenv("LLM_PROVIDER", "openai").strip().lower()
        self.provider_id: Optional[str] = os.getenv("LLM_PROVIDER_ID") or None
        self.model_name: Optional[str] = os.getenv("LLM_MODEL") or None
        self.base_url: Optional[str] = os.getenv("LLM_BASE_URL") or None
        self.custom_endpoint: str = os.getenv("LLM_CUSTOM_ENDPOINT", "")

        # Usage governor
        self.daily_token_limit: int = int(os.getenv("DAILY_TOKEN_LIMIT", "100000"))

        # Request handling
        self.max_concurrent_requests: int = int(os.getenv("MAX_CONCURRENT_REQUESTS", "4"))
        self.request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "60"))

        # Usage persistence
        self.database_url: str = os.getenv(
            "DATABASE_URL",
            "sqlite+aiosqlite:///./llm_gateway.db"
        )
        self.usage_persistence_enabled: bool = _env_bool("USAGE_PERSISTENCE_ENABLED", "true")

        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def provider_config(self) -> "ProviderConfig":
        """Build the immutable provider configuration from these settings."""
        from .providers.base import ProviderConfig, ProviderFamily

        family = ProviderFamily.parse(self.provider_family)
        return ProviderConfig(
            id=self.provider_id or family.value,
            family=family,
            model_name=self.model_name,
            base_url=self.base_url,
            credential_ref=self.provider_id or family.value,
            custom_endpoint=self.custom_endpoint,
        )


# Create global settings instance
settings = get_settings()

DAILY_TOKEN_LIMIT = settings.daily_token_limit
DATABASE_URL = settings.database_url
MAX_CONCURRENT_REQUESTS = settings.max_concurrent_requests
REQUEST_TIMEOUT = settings.request_timeout
LOG_LEVEL = settings.log_level
