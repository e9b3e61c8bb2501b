"""Tests for the provider abstraction layer and factory."""

import pytest
from unittest.mock import AsyncMock

from gateway.providers import (
    BaseLLMProvider,
    CloudProvider,
    LocalProvider,
    ProviderConfig,
    ProviderFactory,
    ProviderFamily,
)
from gateway.secrets import InMemorySecretStore


class TestProviderFamily:
    """Tests for family parsing and per-family defaults."""

    @pytest.mark.parametrize("value,expected", [
        ("openai", ProviderFamily.OPENAI),
        ("OpenAI", ProviderFamily.OPENAI),
        ("anthropic", ProviderFamily.ANTHROPIC),
        ("Azure OpenAI", ProviderFamily.AZURE_OPENAI),
        ("azure_openai", ProviderFamily.AZURE_OPENAI),
        (" ollama ", ProviderFamily.OLLAMA),
        ("Custom Endpoint", ProviderFamily.CUSTOM),
    ])
    def test_parse_known(self, value, expected):
        assert ProviderFamily.parse(value) is expected

    def test_parse_unknown_falls_back_to_openai(self, caplog):
        with caplog.at_level("WARNING"):
            assert ProviderFamily.parse("gemini") is ProviderFamily.OPENAI
        assert "gemini" in caplog.text

    def test_parse_empty(self):
        assert ProviderFamily.parse("") is ProviderFamily.OPENAI

    def test_only_local_family_skips_key(self):
        assert ProviderFamily.OLLAMA.requires_api_key is False
        for family in ProviderFamily:
            if family is not ProviderFamily.OLLAMA:
                assert family.requires_api_key is True

    def test_default_base_urls(self):
        assert ProviderFamily.OPENAI.default_base_url == "https://api.openai.com/v1"
        assert ProviderFamily.OLLAMA.default_base_url == "http://localhost:11434"


class TestProviderConfig:
    """Tests for ProviderConfig."""

    def test_effective_base_url_defaults_to_family(self):
        config = ProviderConfig(id="openai", family=ProviderFamily.OPENAI)
        assert config.effective_base_url == "https://api.openai.com/v1"

    def test_effective_base_url_strips_trailing_slash(self):
        config = ProviderConfig(
            id="ollama", family=ProviderFamily.OLLAMA, base_url="http://gpu-box:11434/"
        )
        assert config.effective_base_url == "http://gpu-box:11434"

    def test_secret_key(self):
        assert ProviderConfig(id="work", family=ProviderFamily.OPENAI).secret_key == "work"
        config = ProviderConfig(id="work", family=ProviderFamily.OPENAI, credential_ref="shared")
        assert config.secret_key == "shared"

    def test_config_is_immutable(self):
        config = ProviderConfig(id="openai", family=ProviderFamily.OPENAI)
        with pytest.raises(AttributeError):
            config.model_name = "gpt-4"


class TestBaseLLMProvider:
    """Tests for the abstract base class."""

    def test_cannot_instantiate_abstract(self):
        with pytest.raises(TypeError):
            BaseLLMProvider(ProviderConfig(id="x", family=ProviderFamily.OPENAI), InMemorySecretStore())

    def test_get_api_key_missing_returns_empty(self, openai_config):
        provider = CloudProvider(openai_config, InMemorySecretStore())
        assert provider.get_api_key() == ""

    def test_get_api_key_reads_store(self, openai_config, secret_store):
        provider = CloudProvider(openai_config, secret_store)
        assert provider.get_api_key() == "sk-test-key"


class TestProviderFactory:
    """Tests for ProviderFactory resolution and caching."""

    @pytest.fixture
    def factory(self, secret_store):
        return ProviderFactory(secret_store)

    def test_resolve_cloud(self, factory, openai_config):
        assert isinstance(factory.resolve(openai_config), CloudProvider)

    def test_resolve_local(self, factory, ollama_config):
        assert isinstance(factory.resolve(ollama_config), LocalProvider)

    @pytest.mark.parametrize("family", [
        ProviderFamily.ANTHROPIC,
        ProviderFamily.AZURE_OPENAI,
        ProviderFamily.CUSTOM,
    ])
    def test_families_without_provider_fall_back_to_cloud(self, factory, family):
        provider = factory.resolve(ProviderConfig(id=family.value, family=family))
        assert isinstance(provider, CloudProvider)

    def test_resolve_reuses_instance_for_same_config(self, factory, openai_config):
        first = factory.resolve(openai_config)
        second = factory.resolve(ProviderConfig(id="openai", family=ProviderFamily.OPENAI, credential_ref="openai"))
        assert first is second

    def test_resolve_replaces_instance_on_config_change(self, factory, openai_config):
        first = factory.resolve(openai_config)
        changed = ProviderConfig(id="openai", family=ProviderFamily.OPENAI, model_name="gpt-4")
        second = factory.resolve(changed)
        assert first is not second
        assert second.config.model_name == "gpt-4"

    def test_register_provider_class(self, factory, openai_config):
        class CustomCloud(CloudProvider):
            pass

        factory.register_provider_class(ProviderFamily.OPENAI, CustomCloud)
        assert factory.provider_class_for(ProviderFamily.OPENAI) is CustomCloud
        assert isinstance(factory.resolve(openai_config), CustomCloud)

    @pytest.mark.asyncio
    async def test_replaced_providers_are_not_retained(self, factory):
        providers = [
            factory.resolve(ProviderConfig(id="openai", family=ProviderFamily.OPENAI, model_name=f"m{i}"))
            for i in range(50)
        ]

        assert len(factory._instances) == 1
        assert factory._instances[ProviderFamily.OPENAI] is providers[-1]
        shared = providers[0]._client
        assert all(provider._client is shared for provider in providers)

        await factory.aclose()

    @pytest.mark.asyncio
    async def test_aclose_closes_live_providers_and_shared_client(self, factory, openai_config):
        provider = factory.resolve(openai_config)
        client = provider._client
        provider.close = AsyncMock()

        await factory.aclose()

        provider.close.assert_called_once()
        assert client.is_closed
        assert factory._instances == {}

    @pytest.mark.asyncio
    async def test_aclose_keeps_injected_client(self, secret_store, openai_config, mock_backend):
        factory = ProviderFactory(secret_store, http_client=mock_backend.client)
        factory.resolve(openai_config)

        await factory.aclose()

        assert not mock_backend.client.is_closed
