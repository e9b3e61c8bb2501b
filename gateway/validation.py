"""Credential and connection validation per provider family.

Each family gets one lightweight GET probe with a bounded timeout. Validation
never raises: transport failures come back as a negative ``ValidationResult``.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

import httpx

from .errors import TRANSPORT_ERRORS, format_error_message
from .providers.base import ProviderConfig, ProviderFamily

logger = logging.getLogger(__name__)

VALIDATION_TIMEOUT = httpx.Timeout(5.0)
AZURE_API_VERSION = "2023-05-15"
ANTHROPIC_VERSION = "2023-06-01"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one validation call."""
    ok: bool
    message: str


class CredentialValidator:
    """Validates credentials and endpoints with a minimal GET per family."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        """Initialize the validator.

        Args:
            client: Optional pre-configured HTTP client (for testing). When
                omitted, each validation opens and closes its own client.
        """
        self._client = client
        self._validators: Dict[
            ProviderFamily, Callable[[ProviderConfig, str], Awaitable[ValidationResult]]
        ] = {
            ProviderFamily.OPENAI: self._validate_openai_key,
            ProviderFamily.ANTHROPIC: self._validate_anthropic_key,
            ProviderFamily.AZURE_OPENAI: self._validate_azure_openai_key,
            ProviderFamily.OLLAMA: self._validate_ollama_connection,
            ProviderFamily.CUSTOM: self._validate_custom_endpoint,
        }

    async def validate(self, config: ProviderConfig, secret: Optional[str]) -> ValidationResult:
        """Validate ``secret`` against the backend described by ``config``.

        Args:
            config: Backend configuration.
            secret: API key; may be empty for families that need none.

        Returns:
            ValidationResult with a user-facing message.
        """
        secret = (secret or "").strip()
        if config.family.requires_api_key and not secret:
            return ValidationResult(False, "API key is empty. Please configure in Settings.")
        # HTTP headers are ASCII only
        if config.family.requires_api_key and not secret.isascii():
            return ValidationResult(False, "Invalid API key")

        validator = self._validators[config.family]
        try:
            return await validator(config, secret)
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Error validating {config.family.display_name} credentials: {e}")
            return ValidationResult(False, format_error_message(e, config.family))

    async def _get(self, url: str, headers: Dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, headers=headers, timeout=VALIDATION_TIMEOUT)
        async with httpx.AsyncClient(timeout=VALIDATION_TIMEOUT) as client:
            return await client.get(url, headers=headers)

    async def _validate_openai_key(self, config: ProviderConfig, api_key: str) -> ValidationResult:
        response = await self._get(
            f"{config.effective_base_url}/models",
            {"Authorization": f"Bearer {api_key}"},
        )
        status_code = response.status_code
        if status_code == 200:
            return ValidationResult(True, "OpenAI API key is valid")
        if status_code == 401:
            return ValidationResult(False, "Invalid API key")
        if status_code == 429:
            return ValidationResult(False, "Rate limit exceeded")
        return ValidationResult(False, f"Validation failed with code: {status_code}")

    async def _validate_anthropic_key(self, config: ProviderConfig, api_key: str) -> ValidationResult:
        response = await self._get(
            f"{config.effective_base_url}/models",
            {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
        )
        status_code = response.status_code
        if status_code == 200:
            return ValidationResult(True, "Anthropic API key is valid")
        if status_code == 401:
            return ValidationResult(False, "Invalid API key")
        if status_code == 403:
            return ValidationResult(False, "Forbidden - key may be revoked")
        if status_code == 429:
            return ValidationResult(False, "Rate limit exceeded")
        return ValidationResult(False, f"Validation failed with code: {status_code}")

    async def _validate_azure_openai_key(
        self, config: ProviderConfig, api_key: str
    ) -> ValidationResult:
        endpoint = config.custom_endpoint.strip()
        if not endpoint or not endpoint.startswith("https://"):
            return ValidationResult(
                False, "Invalid Azure endpoint URL. It should start with https://"
            )

        response = await self._get(
            f"{endpoint.rstrip('/')}/openai/deployments?api-version={AZURE_API_VERSION}",
            {"api-key": api_key},
        )
        status_code = response.status_code
        if status_code == 200:
            return ValidationResult(True, "Azure OpenAI API key is valid")
        if status_code == 401:
            return ValidationResult(False, "Invalid API key")
        if status_code == 403:
            return ValidationResult(False, "Forbidden - check key and permissions")
        if status_code == 404:
            return ValidationResult(False, "Not found - endpoint URL may be incorrect")
        return ValidationResult(False, f"Validation failed with code: {status_code}")

    async def _validate_ollama_connection(self, config: ProviderConfig, _: str) -> ValidationResult:
        base_url = config.effective_base_url
        if not base_url:
            return ValidationResult(False, "Ollama server URL is empty.")

        response = await self._get(f"{base_url}/api/tags", {})
        logger.info(f"Ollama API connection test returned code: {response.status_code}")
        if response.status_code == 200:
            return ValidationResult(True, "Successfully connected to Ollama server.")
        return ValidationResult(
            False,
            f"Failed to connect to Ollama server. Response code: {response.status_code}. "
            f"{response.text[:100]}",
        )

    async def _validate_custom_endpoint(self, config: ProviderConfig, api_key: str) -> ValidationResult:
        endpoint = config.custom_endpoint.strip()
        if not endpoint:
            return ValidationResult(False, "Custom endpoint URL is empty")
        if not endpoint.startswith(("https://", "http://")):
            return ValidationResult(
                False, "Invalid endpoint URL. It should start with http:// or https://"
            )

        response = await self._get(endpoint, {"Authorization": f"Bearer {api_key}"})
        status_code = response.status_code
        if status_code in (200, 204):
            return ValidationResult(True, "Custom endpoint validation successful")
        if status_code in (401, 403):
            return ValidationResult(False, "Authentication failed - check API key")
        if status_code == 404:
            return ValidationResult(False, "Endpoint not found - check URL")
        return ValidationResult(False, f"Validation failed with code: {status_code}")
