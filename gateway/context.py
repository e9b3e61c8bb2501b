"""Gateway lifetime: explicit construction, start-up and shutdown.

``GatewayContext`` wires the provider factory, usage governor, validator and
orchestrator together and exposes the caller-facing API. The caller owns its
lifecycle: ``await start()`` once on a running loop, ``await shutdown()`` on
disposal.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings
from .database import build_engine, build_session_factory, init_db
from .orchestrator import ChatOrchestrator, ChatResult
from .providers.base import BaseLLMProvider, ProviderConfig
from .providers.factory import ProviderFactory
from .secrets import EnvSecretStore, SecretStore, mask_secret
from .usage import UsageGovernor
from .usage_store import UsageStore
from .validation import CredentialValidator, ValidationResult

logger = logging.getLogger(__name__)


class GatewayContext:
    """Owns every gateway component for one process lifetime."""

    def __init__(
        self,
        config: ProviderConfig,
        secret_store: SecretStore,
        daily_token_limit: int,
        max_concurrent_requests: int = 4,
        request_timeout: float = 60.0,
        governor: Optional[UsageGovernor] = None,
        usage_store: Optional[UsageStore] = None,
        engine: Optional[AsyncEngine] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Build the components. No I/O happens until ``start``.

        Args:
            config: Initially active provider configuration.
            secret_store: Credential store.
            daily_token_limit: Token cap per calendar day.
            max_concurrent_requests: Bound on in-flight provider calls.
            request_timeout: Chat request timeout in seconds.
            governor: Pre-built governor (for testing).
            usage_store: Optional persistence for usage counters.
            engine: Engine backing ``usage_store``; tables are created and the
                engine disposed by this context.
            http_client: Optional shared HTTP client (for testing).
        """
        self.secret_store = secret_store
        self.governor = governor or UsageGovernor(daily_token_limit)
        self.factory = ProviderFactory(secret_store, timeout=request_timeout, http_client=http_client)
        self.validator = CredentialValidator(client=http_client)
        self.orchestrator = ChatOrchestrator(
            self.factory,
            self.governor,
            secret_store,
            config,
            max_concurrent_requests=max_concurrent_requests,
            on_usage_change=self.persist_usage,
        )
        self._usage_store = usage_store
        self._engine = engine
        self._persist_lock = asyncio.Lock()
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        secret_store: Optional[SecretStore] = None,
    ) -> "GatewayContext":
        """Build a context from application settings."""
        engine = None
        usage_store = None
        if settings.usage_persistence_enabled:
            engine = build_engine(settings.database_url)
            usage_store = UsageStore(build_session_factory(engine))

        return cls(
            config=settings.provider_config(),
            secret_store=secret_store or EnvSecretStore(),
            daily_token_limit=settings.daily_token_limit,
            max_concurrent_requests=settings.max_concurrent_requests,
            request_timeout=settings.request_timeout,
            usage_store=usage_store,
            engine=engine,
        )

    @property
    def config(self) -> ProviderConfig:
        return self.orchestrator.config

    @property
    def provider(self) -> BaseLLMProvider:
        return self.factory.resolve(self.config)

    async def start(self) -> None:
        """Restore persisted usage and schedule the midnight reset."""
        if self._started:
            return

        if self._usage_store is not None:
            if self._engine is not None:
                await init_db(self._engine)
            state = await self._usage_store.load()
            if state is not None:
                self.governor.restore(state)

        self.governor.start()
        self._started = True
        logger.info(f"Gateway started with provider {self.config.id} ({self.config.family.value})")

    async def shutdown(self) -> None:
        """Cancel the reset task, persist usage and release connections."""
        await self.governor.shutdown()
        await self.persist_usage()
        await self.factory.aclose()
        if self._engine is not None:
            await self._engine.dispose()
        self._started = False
        logger.info("Gateway shut down")

    async def persist_usage(self) -> None:
        if self._usage_store is None:
            return
        # Snapshot under the lock so a stale snapshot never overwrites a newer one
        async with self._persist_lock:
            await self._usage_store.save(self.governor.snapshot())

    # Caller-facing API

    async def send_message(self, text: str) -> ChatResult:
        return await self.orchestrator.send(text)

    async def get_current_model(self) -> str:
        return await self.provider.current_model()

    async def get_available_models(self) -> List[str]:
        return await self.provider.available_models()

    async def validate_connection(self) -> bool:
        return await self.provider.validate_connection()

    async def validate_credentials(self, secret: Optional[str] = None) -> ValidationResult:
        """Validate ``secret``, or the stored one when omitted."""
        if secret is None:
            secret = self.secret_store.get_secret(self.config.secret_key)
        return await self.validator.validate(self.config, secret)

    def get_usage_statistics(self) -> Dict[str, Any]:
        return self.governor.get_usage_statistics()

    def set_secret(self, secret: str) -> str:
        """Store the active provider's secret; returns its masked form."""
        self.secret_store.set_secret(self.config.secret_key, secret)
        return mask_secret(secret)

    def masked_secret(self) -> str:
        return mask_secret(self.secret_store.get_secret(self.config.secret_key))

    def update_config(self, config: ProviderConfig) -> None:
        self.orchestrator.update_config(config)

    def set_daily_limit(self, daily_limit: int) -> None:
        self.governor.set_daily_limit(daily_limit)
