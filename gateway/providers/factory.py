"""Provider factory mapping configuration to a concrete provider.

Provider classes are registered per family and at most one live instance is
kept per family.
"""

import logging
from typing import Dict, Optional, Type

import httpx

from ..secrets import SecretStore
from .base import BaseLLMProvider, ProviderConfig, ProviderFamily
from .cloud_provider import CloudProvider
from .local_provider import LocalProvider

logger = logging.getLogger(__name__)


class ProviderFactory:
    """Resolves a ``ProviderConfig`` to a provider instance.

    Families without a dedicated provider class fall back to ``CloudProvider``
    so the assistant stays usable while configuration is corrected.
    """

    def __init__(
        self,
        secret_store: SecretStore,
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the factory.

        Args:
            secret_store: Store handed to every provider for key lookups.
            timeout: Chat request timeout in seconds.
            http_client: Optional shared HTTP client (for testing). When
                omitted the factory creates one on first use and closes it in
                ``aclose``.
        """
        self._secret_store = secret_store
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self._provider_classes: Dict[ProviderFamily, Type[BaseLLMProvider]] = {
            ProviderFamily.OPENAI: CloudProvider,
            ProviderFamily.OLLAMA: LocalProvider,
        }
        self._instances: Dict[ProviderFamily, BaseLLMProvider] = {}

    def register_provider_class(
        self,
        family: ProviderFamily,
        provider_class: Type[BaseLLMProvider],
    ) -> None:
        """Register a provider class for a family.

        Args:
            family: Family the class serves.
            provider_class: The provider class to instantiate for it.
        """
        self._provider_classes[family] = provider_class
        logger.info(f"Registered provider class for {family.value}: {provider_class.__name__}")

    def provider_class_for(self, family: ProviderFamily) -> Type[BaseLLMProvider]:
        provider_class = self._provider_classes.get(family)
        if provider_class is None:
            logger.warning(
                f"No dedicated provider for {family.value}, falling back to CloudProvider"
            )
            return CloudProvider
        return provider_class

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client shared by every provider."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    def resolve(self, config: ProviderConfig) -> BaseLLMProvider:
        """Return the provider for ``config``, reusing the cached instance.

        A cached instance built from a different configuration is replaced.
        Providers share the factory's HTTP client, so a replaced instance
        holds no connections of its own and requests still in flight on it
        complete normally.
        """
        cached = self._instances.get(config.family)
        if cached is not None and cached.config == config:
            return cached

        provider_class = self.provider_class_for(config.family)
        provider = provider_class(
            config,
            self._secret_store,
            timeout=self._timeout,
            client=self._get_client(),
        )
        self._instances[config.family] = provider
        logger.info(f"Created {provider_class.__name__} for {config.id} ({config.family.value})")
        return provider

    async def aclose(self) -> None:
        """Close the live providers and the shared HTTP client."""
        providers = list(self._instances.values())
        self._instances = {}
        for provider in providers:
            await provider.close()
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
