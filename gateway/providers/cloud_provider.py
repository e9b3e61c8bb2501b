"""Cloud provider speaking the bearer-authenticated chat-completions protocol."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import (
    AuthenticationError,
    ErrorKind,
    ProviderError,
    RateLimitError,
    TRANSPORT_ERRORS,
    classify_exception,
)
from ..secrets import SecretStore
from .base import BaseLLMProvider, ChatReply, ProviderConfig, SYSTEM_PROMPT, token_count

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-3.5-turbo"
TEMPERATURE = 0.7
MAX_TOKENS = 1000
PROBE_TIMEOUT = httpx.Timeout(5.0)


def _error_message(response: httpx.Response) -> Optional[str]:
    """Extract ``error.message`` from an error body, None if it is not JSON."""
    try:
        body = response.json()
    except ValueError:
        return None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or "Unknown error"
    if isinstance(error, str):
        return error
    return "Unknown error"


class CloudProvider(BaseLLMProvider):
    """Multi-tenant cloud API (OpenAI-compatible).

    POSTs ``{base}/chat/completions`` with a bearer token and reads
    ``choices[0].message.content`` and ``usage.total_tokens``.
    """

    FALLBACK_MODELS = [
        "gpt-3.5-turbo",
        "gpt-4",
        "gpt-4-turbo",
    ]

    def __init__(
        self,
        config: ProviderConfig,
        secret_store: SecretStore,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the cloud provider.

        Args:
            config: Provider configuration.
            secret_store: Store holding the API key under ``config.secret_key``.
            timeout: Seconds allowed for a chat request.
            client: Optional pre-configured HTTP client (for testing).
        """
        super().__init__(config, secret_store)
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def provider_name(self) -> str:
        return self.config.family.value

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, text: str) -> Dict[str, Any]:
        """Build the chat-completions request body for one user message."""
        return {
            "model": self.config.model_name or DEFAULT_MODEL,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": text},
            ],
            "temperature": TEMPERATURE,
            "max_tokens": MAX_TOKENS,
        }

    async def send_message(self, text: str) -> ChatReply:
        """Send a message to the chat-completions endpoint.

        Args:
            text: The user's message.

        Returns:
            ChatReply with the assistant content and ``usage.total_tokens``.

        Raises:
            ProviderError: If the request fails or the response is malformed.
        """
        api_key = self.get_api_key()
        if not api_key.strip():
            raise AuthenticationError("API key is not configured", self.provider_name)
        # HTTP headers are ASCII only
        if not api_key.isascii():
            raise AuthenticationError("API key contains invalid characters", self.provider_name)

        url = f"{self.config.effective_base_url}/chat/completions"
        payload = self.build_payload(text)
        logger.info(f"Sending request to {self.provider_name} model {payload['model']}")

        try:
            response = await self._get_client().post(
                url,
                headers=self._headers(api_key),
                json=payload,
                timeout=self._timeout,
            )
        except TRANSPORT_ERRORS as e:
            raise ProviderError(
                f"Error communicating with {self.config.family.display_name}: {e}",
                self.provider_name,
                kind=classify_exception(e),
            ) from e

        logger.info(f"Received response from {self.provider_name} with code: {response.status_code}")

        if response.status_code != 200:
            self._raise_for_error(response)

        try:
            data = response.json()
            choices = data["choices"]
            if not choices:
                raise ProviderError(
                    "Received empty response",
                    self.provider_name,
                    kind=ErrorKind.PROTOCOL_ERROR,
                )
            content = choices[0]["message"]["content"]
            usage = data.get("usage") or {}
            total_tokens = token_count(usage.get("total_tokens"))
            if total_tokens is None and usage.get("total_tokens") is not None:
                logger.warning(
                    f"Ignoring invalid token count from {self.provider_name}: {usage['total_tokens']!r}"
                )
        except ProviderError:
            raise
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise ProviderError(
                f"Malformed response: {e!r}",
                self.provider_name,
                kind=ErrorKind.PROTOCOL_ERROR,
            ) from e

        logger.info(f"Processed {self.provider_name} response with {total_tokens} tokens")
        return ChatReply(
            text=content,
            model=payload["model"],
            provider=self.provider_name,
            total_tokens=total_tokens,
        )

    def _raise_for_error(self, response: httpx.Response) -> None:
        status_code = response.status_code
        error_msg = _error_message(response)
        logger.warning(f"{self.provider_name} API error: {status_code}, {error_msg}")
        # Proxies answer with HTML bodies, so the status code decides first
        detail = error_msg or f"HTTP {status_code}"

        if status_code == 429 or (error_msg and "rate limit" in error_msg.lower()):
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                f"Rate limit exceeded. Please try again later. ({detail})",
                self.provider_name,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status_code == 401:
            raise AuthenticationError(detail, self.provider_name)
        if status_code == 404:
            raise ProviderError(
                detail,
                self.provider_name,
                kind=ErrorKind.ENDPOINT_MISCONFIGURED,
                recoverable=False,
            )
        if error_msg is None:
            raise ProviderError(
                f"HTTP {status_code}: unparseable error body",
                self.provider_name,
                kind=ErrorKind.PROTOCOL_ERROR,
            )
        raise ProviderError(
            f"Error from {self.config.family.display_name}: {error_msg}",
            self.provider_name,
            kind=ErrorKind.UPSTREAM_ERROR,
            recoverable=status_code >= 500,
        )

    async def current_model(self) -> str:
        return self.config.model_name or DEFAULT_MODEL

    async def available_models(self) -> List[str]:
        """Query ``{base}/models``; fall back to a fixed list on any failure."""
        api_key = self.get_api_key()
        if not api_key.strip() or not api_key.isascii():
            return list(self.FALLBACK_MODELS)

        try:
            response = await self._get_client().get(
                f"{self.config.effective_base_url}/models",
                headers=self._headers(api_key),
                timeout=PROBE_TIMEOUT,
            )
            if response.status_code == 200:
                models = [item["id"] for item in response.json()["data"]]
                if models:
                    return sorted(models)
            logger.warning(f"Model listing returned {response.status_code}, using fallback list")
        except TRANSPORT_ERRORS + (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to list {self.provider_name} models: {e}")
        return list(self.FALLBACK_MODELS)

    async def validate_connection(self) -> bool:
        api_key = self.get_api_key()
        if not api_key.strip() or not api_key.isascii():
            return False

        try:
            response = await self._get_client().get(
                f"{self.config.effective_base_url}/models",
                headers=self._headers(api_key),
                timeout=PROBE_TIMEOUT,
            )
            return response.status_code == 200
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Failed to validate {self.provider_name} connection: {e}")
            return False

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
