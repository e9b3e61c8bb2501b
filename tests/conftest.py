"""Pytest configuration and fixtures for LLM gateway tests."""

import json
from datetime import date
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from gateway.providers.base import ProviderConfig, ProviderFamily
from gateway.secrets import InMemorySecretStore


class MockBackend:
    """Records outgoing requests and answers them with ``handler``."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.handler: Callable[[httpx.Request], Any] = lambda request: httpx.Response(404)
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self))

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return self.handler(request)

    def respond(self, status_code: int = 200, json_body: Any = None, text: Optional[str] = None) -> None:
        """Answer every request with the same response."""
        if json_body is not None:
            self.handler = lambda request: httpx.Response(status_code, json=json_body)
        else:
            self.handler = lambda request: httpx.Response(status_code, text=text or "")

    def fail_with(self, exc_type: type, message: str = "boom") -> None:
        """Raise a transport exception for every request."""
        def handler(request: httpx.Request):
            raise exc_type(message, request=request)
        self.handler = handler

    def json_body(self, index: int = -1) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)


class Clock:
    """Mutable local date for rollover tests."""

    def __init__(self, current: date) -> None:
        self.current = current

    def today(self) -> date:
        return self.current


def chat_completion(content: str = "Test response", total_tokens: Optional[int] = 30) -> Dict[str, Any]:
    """Sample chat-completions response body."""
    body: Dict[str, Any] = {
        "choices": [
            {"message": {"role": "assistant", "content": content}}
        ],
    }
    if total_tokens is not None:
        body["usage"] = {
            "prompt_tokens": 10,
            "completion_tokens": total_tokens - 10,
            "total_tokens": total_tokens,
        }
    return body


@pytest.fixture
async def mock_backend():
    """HTTP client backed by an in-process transport."""
    backend = MockBackend()
    yield backend
    await backend.client.aclose()


@pytest.fixture
def secret_store() -> InMemorySecretStore:
    return InMemorySecretStore({"openai": "sk-test-key"})


@pytest.fixture
def openai_config() -> ProviderConfig:
    return ProviderConfig(id="openai", family=ProviderFamily.OPENAI, credential_ref="openai")


@pytest.fixture
def ollama_config() -> ProviderConfig:
    return ProviderConfig(id="ollama", family=ProviderFamily.OLLAMA)


@pytest.fixture
def clock() -> Clock:
    return Clock(date(2024, 3, 14))
