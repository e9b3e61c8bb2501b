"""Request path from a user message to a classified chat result."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from .errors import ErrorKind, ProviderError, format_error_message
from .providers.base import ProviderConfig, token_count
from .providers.factory import ProviderFactory
from .secrets import SecretStore
from .usage import UsageGovernor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatRequest:
    """One outgoing message and its pre-call token estimate."""
    text: str
    estimated_tokens: int


@dataclass(frozen=True)
class ChatSuccess:
    """Reply content plus the tokens charged for it.

    ``over_budget`` is set when recording the tokens pushed usage past the
    daily limit; the content is still returned because it was paid for.
    """
    text: str
    actual_tokens: int
    model: str
    provider: str
    over_budget: bool = False

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ChatFailure:
    """Classified failure with a user-facing message."""
    kind: ErrorKind
    detail: str
    message: str

    @property
    def ok(self) -> bool:
        return False


ChatResult = Union[ChatSuccess, ChatFailure]


class ChatOrchestrator:
    """Sends messages through the configured provider under the token budget.

    No automatic retries: the caller decides whether to resend.
    """

    def __init__(
        self,
        factory: ProviderFactory,
        governor: UsageGovernor,
        secret_store: SecretStore,
        config: ProviderConfig,
        max_concurrent_requests: int = 4,
        on_usage_change: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            factory: Resolves the active provider.
            governor: Daily token budget.
            secret_store: Source of the active provider's API key.
            config: Active provider configuration.
            max_concurrent_requests: Bound on in-flight provider calls.
            on_usage_change: Awaited after usage counters change.
        """
        self._factory = factory
        self._governor = governor
        self._secret_store = secret_store
        self._config = config
        self._semaphore = asyncio.Semaphore(max_concurrent_requests)
        self._on_usage_change = on_usage_change

    @property
    def config(self) -> ProviderConfig:
        return self._config

    def update_config(self, config: ProviderConfig) -> None:
        """Switch the active provider configuration for subsequent sends."""
        self._config = config
        logger.info(f"Active provider set to {config.id} ({config.family.value})")

    def _failure(self, kind: ErrorKind, detail: str, config: ProviderConfig) -> ChatFailure:
        return ChatFailure(
            kind=kind,
            detail=detail,
            message=format_error_message(kind, config.family),
        )

    async def send(self, text: str) -> ChatResult:
        """Send ``text`` and return a success or a classified failure.

        Cancelling the caller aborts the HTTP call; no usage is recorded for
        a cancelled request.
        """
        config = self._config
        provider = self._factory.resolve(config)

        if config.family.requires_api_key:
            secret = self._secret_store.get_secret(config.secret_key) or ""
            if not secret.strip():
                logger.warning(f"API key is blank, cannot send message to {config.family.display_name}")
                return self._failure(ErrorKind.INVALID_CREDENTIAL, "API key is not configured", config)
            if not secret.isascii():
                logger.warning(f"API key for {config.family.display_name} contains non-ASCII characters")
                return self._failure(
                    ErrorKind.INVALID_CREDENTIAL, "API key contains invalid characters", config
                )

        request = ChatRequest(text=text, estimated_tokens=self._governor.estimate(text))
        logger.info(f"Preparing to send message, estimated token count: {request.estimated_tokens}")

        if not self._governor.reserve(request.estimated_tokens):
            return self._failure(
                ErrorKind.QUOTA_EXCEEDED,
                f"Request needs about {request.estimated_tokens} tokens, "
                f"daily budget is exhausted",
                config,
            )

        try:
            async with self._semaphore:
                reply = await provider.send_message(request.text)
        except ProviderError as e:
            logger.warning(f"Chat request failed ({e.kind.value}): {e}")
            self._governor.record_failure()
            await self._notify_usage_change()
            return self._failure(e.kind, e.detail, config)

        # Backends that report no usage are charged the estimate
        actual_tokens = token_count(reply.total_tokens)
        if actual_tokens is None:
            actual_tokens = request.estimated_tokens
        within_budget = self._governor.commit(actual_tokens)
        await self._notify_usage_change()

        if not within_budget:
            logger.warning(f"Request used {actual_tokens} tokens and exceeded the daily limit")

        return ChatSuccess(
            text=reply.text,
            actual_tokens=actual_tokens,
            model=reply.model,
            provider=reply.provider,
            over_budget=not within_budget,
        )

    async def _notify_usage_change(self) -> None:
        if self._on_usage_change is not None:
            await self._on_usage_change()
