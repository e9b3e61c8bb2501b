"""Provider abstraction layer for LLM backends.

This module defines the interface every backend family implements, so the
gateway can switch between cloud and locally hosted models without
re-branching at call sites.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, List

from ..secrets import SecretStore

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are Aladin, an AI assistant for coding in JetBrains IDEs. "
    "You help answer questions about code, suggest improvements, and assist with programming tasks."
)


class ProviderFamily(Enum):
    """Backend families sharing one wire protocol and auth scheme."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    AZURE_OPENAI = "azure_openai"
    OLLAMA = "ollama"
    CUSTOM = "custom"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def default_base_url(self) -> str:
        return _DEFAULT_BASE_URLS[self]

    @property
    def requires_api_key(self) -> bool:
        return self is not ProviderFamily.OLLAMA

    @property
    def remediation_hint(self) -> str:
        return _REMEDIATION_HINTS[self]

    @classmethod
    def parse(cls, value: str) -> "ProviderFamily":
        """Parse a family from its value or display name.

        Unknown values fall back to OpenAI so a bad setting never leaves the
        assistant unusable.
        """
        normalized = (value or "").strip().lower()
        for family in cls:
            if normalized in (family.value, family.display_name.lower()):
                return family
        logger.warning(f"Unknown provider family {value!r}, falling back to OpenAI")
        return cls.OPENAI


_DISPLAY_NAMES = {
    ProviderFamily.OPENAI: "OpenAI",
    ProviderFamily.ANTHROPIC: "Anthropic",
    ProviderFamily.AZURE_OPENAI: "Azure OpenAI",
    ProviderFamily.OLLAMA: "Ollama",
    ProviderFamily.CUSTOM: "Custom Endpoint",
}

_DEFAULT_BASE_URLS = {
    ProviderFamily.OPENAI: "https://api.openai.com/v1",
    ProviderFamily.ANTHROPIC: "https://api.anthropic.com/v1",
    ProviderFamily.AZURE_OPENAI: "https://YOUR_RESOURCE_NAME.openai.azure.com",
    ProviderFamily.OLLAMA: "http://localhost:11434",
    ProviderFamily.CUSTOM: "",
}

_REMEDIATION_HINTS = {
    ProviderFamily.OPENAI: "Check your OpenAI API key and quota.",
    ProviderFamily.ANTHROPIC: "Check your Anthropic API key and quota.",
    ProviderFamily.AZURE_OPENAI: "Check your Azure OpenAI API key, endpoint URL, and quota.",
    ProviderFamily.OLLAMA: "Make sure Ollama is running on your machine.",
    ProviderFamily.CUSTOM: "Check your custom endpoint configuration.",
}


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration for one configured backend. Immutable once built."""

    id: str
    family: ProviderFamily
    model_name: Optional[str] = None
    base_url: Optional[str] = None
    credential_ref: Optional[str] = None
    custom_endpoint: str = ""

    @property
    def effective_base_url(self) -> str:
        """Configured base URL, or the family default, without a trailing slash."""
        return (self.base_url or self.family.default_base_url).rstrip("/")

    @property
    def secret_key(self) -> str:
        """Key under which the credential lives in the secret store."""
        return self.credential_ref or self.id


def token_count(value: Any) -> Optional[int]:
    """Return ``value`` as a token count, or None if it is not a non-negative int."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


@dataclass
class ChatReply:
    """Successful reply from a backend.

    ``total_tokens`` is None when the backend does not report usage.
    """

    text: str
    model: str
    provider: str
    total_tokens: Optional[int] = None


class BaseLLMProvider(ABC):
    """Base abstract class for all LLM providers.

    Instances are shared across concurrent requests and are read-only after
    construction apart from cached model discovery. Providers never record
    usage themselves; they report it on the returned ``ChatReply``.
    """

    def __init__(self, config: ProviderConfig, secret_store: SecretStore):
        """Initialize the provider.

        Args:
            config: Backend configuration, held by reference and never mutated.
            secret_store: Store the API key is read from at call time.
        """
        self.config = config
        self._secret_store = secret_store

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the unique name of this provider."""
        pass

    @abstractmethod
    async def send_message(self, text: str) -> ChatReply:
        """Send one user message, prefixed by the fixed system prompt.

        Raises:
            ProviderError: Classified failure; transport exceptions never escape.
        """
        pass

    @abstractmethod
    async def current_model(self) -> str:
        """Return the active model identifier."""
        pass

    @abstractmethod
    async def available_models(self) -> List[str]:
        """List models from the backend, or a fixed fallback list on any failure."""
        pass

    @abstractmethod
    async def validate_connection(self) -> bool:
        """Cheap reachability probe. Never raises."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        pass

    def get_api_key(self) -> str:
        """Read the API key from the secret store; empty string when absent."""
        return self._secret_store.get_secret(self.config.secret_key) or ""
