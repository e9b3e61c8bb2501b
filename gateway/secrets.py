"""Secret store contract used to look up provider API keys.

The gateway only reads and writes secrets through ``SecretStore``; raw values
are never logged or serialized, only ``mask_secret`` output is.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

logger = logging.getLogger(__name__)

MASKED_SECRET = "********"


def mask_secret(secret: Optional[str]) -> str:
    """Return a display placeholder for a secret."""
    return MASKED_SECRET if secret else ""


class SecretStore(ABC):
    """Key/value store for provider credentials."""

    @abstractmethod
    def get_secret(self, provider_id: str) -> Optional[str]:
        """Return the secret for a provider, or None when absent."""
        pass

    @abstractmethod
    def set_secret(self, provider_id: str, secret: str) -> None:
        """Store (or clear, with an empty string) the secret for a provider."""
        pass


class InMemorySecretStore(SecretStore):
    """Process-local store, mostly useful for tests and embedding."""

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self._secrets: Dict[str, str] = dict(secrets or {})
        self._lock = threading.Lock()

    def get_secret(self, provider_id: str) -> Optional[str]:
        with self._lock:
            return self._secrets.get(provider_id) or None

    def set_secret(self, provider_id: str, secret: str) -> None:
        with self._lock:
            if secret:
                self._secrets[provider_id] = secret
            else:
                self._secrets.pop(provider_id, None)
        logger.info(f"Updated secret for {provider_id}: {mask_secret(secret) or '<cleared>'}")


class EnvSecretStore(InMemorySecretStore):
    """Reads ``<PROVIDER_ID>_API_KEY`` from the environment.

    Values set at runtime override the environment for the process lifetime.
    """

    @staticmethod
    def env_var_name(provider_id: str) -> str:
        return f"{provider_id.upper().replace('-', '_')}_API_KEY"

    def get_secret(self, provider_id: str) -> Optional[str]:
        override = super().get_secret(provider_id)
        if override:
            return override
        return os.getenv(self.env_var_name(provider_id)) or None
