"""Tests for settings loading."""

import pytest

from gateway.config import Settings
from gateway.providers import ProviderFamily


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "LLM_PROVIDER",
        "LLM_PROVIDER_ID",
        "LLM_MODEL",
        "LLM_BASE_URL",
        "LLM_CUSTOM_ENDPOINT",
        "DAILY_TOKEN_LIMIT",
        "MAX_CONCURRENT_REQUESTS",
        "REQUEST_TIMEOUT",
        "DATABASE_URL",
        "USAGE_PERSISTENCE_ENABLED",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, clean_env):
        settings = Settings()

        assert settings.provider_family == "openai"
        assert settings.daily_token_limit == 100000
        assert settings.max_concurrent_requests == 4
        assert settings.request_timeout == 60.0
        assert settings.database_url == "sqlite+aiosqlite:///./llm_gateway.db"
        assert settings.usage_persistence_enabled is True
        assert settings.log_level == "INFO"

    def test_overrides(self, clean_env):
        clean_env.setenv("DAILY_TOKEN_LIMIT", "5000")
        clean_env.setenv("USAGE_PERSISTENCE_ENABLED", "false")
        clean_env.setenv("LOG_LEVEL", "debug")

        settings = Settings()

        assert settings.daily_token_limit == 5000
        assert settings.usage_persistence_enabled is False
        assert settings.log_level == "DEBUG"

    def test_provider_config(self, clean_env):
        clean_env.setenv("LLM_PROVIDER", "Ollama")
        clean_env.setenv("LLM_MODEL", "mistral")
        clean_env.setenv("LLM_BASE_URL", "http://gpu-box:11434")

        config = Settings().provider_config()

        assert config.family is ProviderFamily.OLLAMA
        assert config.id == "ollama"
        assert config.model_name == "mistral"
        assert config.effective_base_url == "http://gpu-box:11434"

    def test_provider_id_names_credential(self, clean_env):
        clean_env.setenv("LLM_PROVIDER", "openai")
        clean_env.setenv("LLM_PROVIDER_ID", "work-openai")

        config = Settings().provider_config()

        assert config.id == "work-openai"
        assert config.secret_key == "work-openai"

    def test_unknown_family_falls_back(self, clean_env):
        clean_env.setenv("LLM_PROVIDER", "gemini")

        assert Settings().provider_config().family is ProviderFamily.OPENAI
