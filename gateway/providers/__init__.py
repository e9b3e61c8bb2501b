"""Provider abstraction layer for LLM backends.

This package defines the interface every backend family implements and the
factory that selects one from configuration.
"""

from .base import (
    BaseLLMProvider,
    ChatReply,
    ProviderConfig,
    ProviderFamily,
    SYSTEM_PROMPT,
)
from .factory import ProviderFactory
from .cloud_provider import CloudProvider
from .local_provider import LocalProvider

__all__ = [
    "BaseLLMProvider",
    "ChatReply",
    "ProviderConfig",
    "ProviderFamily",
    "SYSTEM_PROMPT",
    "ProviderFactory",
    "CloudProvider",
    "LocalProvider",
]
