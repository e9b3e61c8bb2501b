"""Error taxonomy shared by providers, the validator and the orchestrator.

Providers raise ``ProviderError`` subclasses carrying an ``ErrorKind``; callers
of the gateway only ever see the kind and a user-facing message built by
``format_error_message``.
"""

import json
from enum import Enum
from typing import Optional, Union, TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from .providers.base import ProviderFamily


# httpx.InvalidURL does not derive from httpx.HTTPError
TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


class ErrorKind(Enum):
    """Classified failure categories."""
    INVALID_CREDENTIAL = "invalid_credential"
    NETWORK_UNREACHABLE = "network_unreachable"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    PROTOCOL_ERROR = "protocol_error"
    ENDPOINT_MISCONFIGURED = "endpoint_misconfigured"
    UNKNOWN_PROVIDER_FAMILY = "unknown_provider_family"
    UPSTREAM_ERROR = "upstream_error"


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(
        self,
        message: str,
        provider: str,
        kind: ErrorKind = ErrorKind.UPSTREAM_ERROR,
        recoverable: bool = True,
    ):
        """Initialize the error.

        Args:
            message: Error message.
            provider: Name of the provider that raised the error.
            kind: Classified failure category.
            recoverable: Whether retrying later may succeed (e.g. rate limit)
                or user action is required first (e.g. invalid API key).
        """
        super().__init__(f"[{provider}] {message}")
        self.detail = message
        self.provider = provider
        self.kind = kind
        self.recoverable = recoverable


class RateLimitError(ProviderError):
    """Raised when a provider rate limits the request."""

    def __init__(self, message: str, provider: str, retry_after: Optional[int] = None):
        super().__init__(message, provider, kind=ErrorKind.RATE_LIMITED, recoverable=True)
        self.retry_after = retry_after


class AuthenticationError(ProviderError):
    """Raised when provider authentication fails."""

    def __init__(self, message: str, provider: str):
        super().__init__(
            message, provider, kind=ErrorKind.INVALID_CREDENTIAL, recoverable=False
        )


def classify_exception(error: BaseException) -> ErrorKind:
    """Map a transport or parsing exception to an ``ErrorKind``."""
    if isinstance(error, ProviderError):
        return error.kind
    # ConnectTimeout is both a timeout and a connect failure; report the timeout
    if isinstance(error, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    if isinstance(error, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return ErrorKind.ENDPOINT_MISCONFIGURED
    if isinstance(error, (httpx.ConnectError, httpx.NetworkError, httpx.RequestError)):
        return ErrorKind.NETWORK_UNREACHABLE
    if isinstance(error, (json.JSONDecodeError, KeyError, IndexError, TypeError, ValueError)):
        return ErrorKind.PROTOCOL_ERROR
    return ErrorKind.UPSTREAM_ERROR


_BASE_MESSAGES = {
    ErrorKind.INVALID_CREDENTIAL: "Authentication error: The API key was rejected or is missing.",
    ErrorKind.NETWORK_UNREACHABLE: (
        "Network error: Could not reach the API server. Check your internet connection."
    ),
    ErrorKind.TIMEOUT: (
        "Timeout error: The API request took too long. "
        "The service might be experiencing high load."
    ),
    ErrorKind.RATE_LIMITED: "Rate limit exceeded. Please try again later.",
    ErrorKind.QUOTA_EXCEEDED: (
        "Daily token limit exceeded. Please try again tomorrow or adjust your limits in settings."
    ),
    ErrorKind.PROTOCOL_ERROR: "Protocol error: The API returned an unexpected response.",
    ErrorKind.ENDPOINT_MISCONFIGURED: "Endpoint error: The API endpoint URL appears to be wrong.",
    ErrorKind.UNKNOWN_PROVIDER_FAMILY: "Configuration error: Unknown provider.",
    ErrorKind.UPSTREAM_ERROR: "Error: The API reported a failure.",
}


def format_error_message(
    error: Union[ErrorKind, BaseException],
    family: "ProviderFamily",
) -> str:
    """Build a user-facing message with a provider-specific remediation hint.

    Args:
        error: Either an already classified kind or the raw exception.
        family: Provider family the failure happened against.

    Returns:
        Backend-agnostic description followed by the family hint.
    """
    if isinstance(error, ErrorKind):
        base_message = _BASE_MESSAGES[error]
    else:
        kind = classify_exception(error)
        if kind in (ErrorKind.UPSTREAM_ERROR, ErrorKind.PROTOCOL_ERROR) and str(error):
            base_message = f"Error: {error}"
        else:
            base_message = _BASE_MESSAGES[kind]
    return f"{base_message} {family.remediation_hint}"
