"""Local provider for a self-hosted, unauthenticated Ollama-style server."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ErrorKind, ProviderError, TRANSPORT_ERRORS, classify_exception
from ..secrets import SecretStore
from .base import BaseLLMProvider, ChatReply, ProviderConfig, SYSTEM_PROMPT, token_count

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "phi3"
LISTING_TIMEOUT = httpx.Timeout(5.0)
CONNECTIVITY_TIMEOUT = httpx.Timeout(3.0)


class LocalProvider(BaseLLMProvider):
    """Locally hosted model server.

    POSTs ``{base}/api/generate`` with ``stream: false`` and discovers models
    through ``{base}/api/tags``. No credentials are sent.
    """

    # Default models in order of preference
    FALLBACK_MODELS = ["phi3", "phi2", "llama2", "mistral", "gemma"]

    def __init__(
        self,
        config: ProviderConfig,
        secret_store: SecretStore,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config, secret_store)
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._cached_models: Optional[List[str]] = None

    @property
    def provider_name(self) -> str:
        return self.config.family.value

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def build_payload(self, text: str) -> Dict[str, Any]:
        """Build the generate request body for one user message."""
        return {
            "model": await self.current_model(),
            "prompt": text,
            "system": SYSTEM_PROMPT,
            "stream": False,
        }

    async def send_message(self, text: str) -> ChatReply:
        url = f"{self.config.effective_base_url}/api/generate"
        payload = await self.build_payload(text)
        logger.info(f"Sending request to {url} with model {payload['model']}")

        try:
            response = await self._get_client().post(url, json=payload, timeout=self._timeout)
        except TRANSPORT_ERRORS as e:
            raise ProviderError(
                f"Error communicating with Ollama: {e}",
                self.provider_name,
                kind=classify_exception(e),
            ) from e

        if response.status_code != 200:
            self._raise_for_error(response)

        try:
            data = response.json()
            content = data["response"]
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderError(
                f"Malformed response: {e!r}",
                self.provider_name,
                kind=ErrorKind.PROTOCOL_ERROR,
            ) from e

        # Ollama reports prompt and completion counts separately
        total_tokens = None
        raw_counts = [data[key] for key in ("prompt_eval_count", "eval_count") if key in data]
        if raw_counts:
            counts = [token_count(raw) for raw in raw_counts]
            if None in counts:
                logger.warning(f"Ignoring invalid token counts from Ollama: {raw_counts!r}")
            else:
                total_tokens = sum(counts)

        logger.info("Successfully processed Ollama response")
        return ChatReply(
            text=content,
            model=payload["model"],
            provider=self.provider_name,
            total_tokens=total_tokens,
        )

    def _raise_for_error(self, response: httpx.Response) -> None:
        status_code = response.status_code
        try:
            body = response.json()
            error_msg = body.get("error", "Unknown error") if isinstance(body, dict) else "Unknown error"
        except ValueError:
            logger.warning(f"Ollama API error {status_code} with unparseable body")
            if status_code == 404:
                raise ProviderError(
                    "HTTP 404: endpoint not found",
                    self.provider_name,
                    kind=ErrorKind.ENDPOINT_MISCONFIGURED,
                )
            raise ProviderError(
                f"HTTP {status_code}: unparseable error body",
                self.provider_name,
                kind=ErrorKind.PROTOCOL_ERROR,
            )

        logger.warning(f"Ollama API error: {status_code}, {error_msg}")
        # Ollama answers 404 when the requested model is not pulled
        kind = ErrorKind.ENDPOINT_MISCONFIGURED if status_code == 404 else ErrorKind.UPSTREAM_ERROR
        raise ProviderError(
            f"Error from Ollama: {error_msg}",
            self.provider_name,
            kind=kind,
            recoverable=status_code >= 500,
        )

    async def current_model(self) -> str:
        """Configured model, else the first discovered one, else ``phi3``."""
        if self.config.model_name:
            return self.config.model_name
        if self._cached_models:
            return self._cached_models[0]

        models = await self._discover_models()
        if models:
            return models[0]
        return DEFAULT_MODEL

    async def available_models(self) -> List[str]:
        models = await self._discover_models()
        if models:
            return models
        return list(self.FALLBACK_MODELS)

    async def _discover_models(self) -> Optional[List[str]]:
        """Query ``/api/tags``, caching a non-empty result. None on any failure."""
        try:
            response = await self._get_client().get(
                f"{self.config.effective_base_url}/api/tags",
                timeout=LISTING_TIMEOUT,
            )
            if response.status_code != 200:
                logger.warning(f"Ollama tags returned {response.status_code}")
                return None
            models = [model["name"] for model in response.json()["models"]]
        except TRANSPORT_ERRORS + (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to get Ollama models: {e}")
            return None

        if models:
            self._cached_models = models
        return models

    async def validate_connection(self) -> bool:
        try:
            response = await self._get_client().get(
                f"{self.config.effective_base_url}/api/tags",
                timeout=CONNECTIVITY_TIMEOUT,
            )
            return response.status_code == 200
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Failed to connect to Ollama server: {e}")
            return False

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
