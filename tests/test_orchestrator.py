"""Tests for the chat orchestrator request path."""

import asyncio
from typing import List, Optional

import pytest

from conftest import chat_completion
from gateway.errors import ErrorKind, ProviderError, RateLimitError
from gateway.orchestrator import ChatFailure, ChatOrchestrator, ChatSuccess
from gateway.providers import BaseLLMProvider, ChatReply, ProviderConfig, ProviderFactory, ProviderFamily
from gateway.secrets import InMemorySecretStore
from gateway.usage import UsageGovernor


class StubProvider(BaseLLMProvider):
    """Provider double with scripted replies and an optional gate."""

    def __init__(self, config, secret_store, timeout=60.0, client=None):
        super().__init__(config, secret_store)
        self.calls: List[str] = []
        self.total_tokens: Optional[int] = 40
        self.error: Optional[ProviderError] = None
        self.gate: Optional[asyncio.Event] = None
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def provider_name(self) -> str:
        return "stub"

    async def send_message(self, text: str) -> ChatReply:
        self.calls.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0.01)
            if self.error is not None:
                raise self.error
            return ChatReply(
                text=f"echo: {text}",
                model="stub-model",
                provider="stub",
                total_tokens=self.total_tokens,
            )
        finally:
            self.in_flight -= 1

    async def current_model(self) -> str:
        return "stub-model"

    async def available_models(self) -> List[str]:
        return ["stub-model"]

    async def validate_connection(self) -> bool:
        return True

    async def close(self) -> None:
        pass


async def _wait_for_calls(stub: StubProvider, count: int) -> None:
    while len(stub.calls) < count:
        await asyncio.sleep(0)


def _build(
    config: ProviderConfig,
    secret_store,
    daily_limit: int = 10_000,
    max_concurrent_requests: int = 4,
    on_usage_change=None,
):
    factory = ProviderFactory(secret_store)
    factory.register_provider_class(config.family, StubProvider)
    governor = UsageGovernor(daily_limit)
    orchestrator = ChatOrchestrator(
        factory,
        governor,
        secret_store,
        config,
        max_concurrent_requests=max_concurrent_requests,
        on_usage_change=on_usage_change,
    )
    return orchestrator, governor, factory.resolve(config)


class TestChatOrchestrator:
    """Tests for ChatOrchestrator.send."""

    @pytest.mark.asyncio
    async def test_success_commits_actual_tokens(self, openai_config, secret_store):
        orchestrator, governor, stub = _build(openai_config, secret_store)

        result = await orchestrator.send("Hello")

        assert isinstance(result, ChatSuccess)
        assert result.ok is True
        assert result.text == "echo: Hello"
        assert result.actual_tokens == 40
        assert result.over_budget is False
        stats = governor.get_usage_statistics()
        assert stats["tokens_used_today"] == 40
        assert stats["total_requests"] == 1

    @pytest.mark.asyncio
    async def test_missing_usage_charges_estimate(self, openai_config, secret_store):
        orchestrator, governor, stub = _build(openai_config, secret_store)
        stub.total_tokens = None

        result = await orchestrator.send("abcd")

        assert result.actual_tokens == 152
        assert governor.snapshot().tokens_used_today == 152

    @pytest.mark.asyncio
    async def test_missing_key_makes_no_call(self, openai_config):
        orchestrator, governor, stub = _build(openai_config, InMemorySecretStore())

        result = await orchestrator.send("Hello")

        assert isinstance(result, ChatFailure)
        assert result.kind == ErrorKind.INVALID_CREDENTIAL
        assert result.message.endswith("Check your OpenAI API key and quota.")
        assert stub.calls == []
        assert governor.get_usage_statistics()["total_requests"] == 0

    @pytest.mark.asyncio
    async def test_non_ascii_key_makes_no_call(self, openai_config):
        orchestrator, governor, stub = _build(
            openai_config, InMemorySecretStore({"openai": "sk-t’est"})
        )

        result = await orchestrator.send("Hello")

        assert result.kind == ErrorKind.INVALID_CREDENTIAL
        assert stub.calls == []

    @pytest.mark.asyncio
    async def test_negative_usage_charges_estimate(self, openai_config, secret_store):
        orchestrator, governor, stub = _build(openai_config, secret_store)
        stub.total_tokens = -5

        result = await orchestrator.send("abcd")

        assert result.ok is True
        assert result.actual_tokens == 152
        assert governor.snapshot().tokens_used_today == 152

    @pytest.mark.asyncio
    @pytest.mark.parametrize("total_tokens", ["n/a", -5, {"x": 1}])
    async def test_malformed_backend_usage_charges_estimate(
        self, openai_config, secret_store, mock_backend, total_tokens
    ):
        factory = ProviderFactory(secret_store, http_client=mock_backend.client)
        governor = UsageGovernor(10_000)
        orchestrator = ChatOrchestrator(factory, governor, secret_store, openai_config)
        body = chat_completion(total_tokens=None)
        body["usage"] = {"total_tokens": total_tokens}
        mock_backend.respond(200, body)

        result = await orchestrator.send("abcd")

        assert isinstance(result, ChatSuccess)
        assert result.actual_tokens == 152
        assert governor.snapshot().tokens_used_today == 152

    @pytest.mark.asyncio
    async def test_local_family_needs_no_key(self, ollama_config):
        orchestrator, governor, stub = _build(ollama_config, InMemorySecretStore())

        result = await orchestrator.send("Hello")

        assert result.ok is True
        assert stub.calls == ["Hello"]

    @pytest.mark.asyncio
    async def test_quota_exceeded_makes_no_call(self, openai_config, secret_store):
        orchestrator, governor, stub = _build(openai_config, secret_store, daily_limit=300)
        governor.commit(200)

        result = await orchestrator.send("Hello")

        assert result.kind == ErrorKind.QUOTA_EXCEEDED
        assert result.message.startswith("Daily token limit exceeded.")
        assert stub.calls == []
        assert governor.snapshot().tokens_used_today == 200

    @pytest.mark.asyncio
    async def test_provider_error_is_classified(self, openai_config, secret_store):
        orchestrator, governor, stub = _build(openai_config, secret_store)
        stub.error = RateLimitError("Rate limit exceeded. Please try again later.", "openai")

        result = await orchestrator.send("Hello")

        assert result.kind == ErrorKind.RATE_LIMITED
        assert result.detail == "Rate limit exceeded. Please try again later."
        stats = governor.get_usage_statistics()
        assert stats["tokens_used_today"] == 0
        assert stats["failed_requests"] == 1

    @pytest.mark.asyncio
    async def test_over_budget_reply_is_returned(self, openai_config, secret_store):
        orchestrator, governor, stub = _build(openai_config, secret_store, daily_limit=300)
        stub.total_tokens = 400

        result = await orchestrator.send("Hello")

        assert result.ok is True
        assert result.over_budget is True
        assert governor.snapshot().tokens_used_today == 400
        assert (await orchestrator.send("again")).kind == ErrorKind.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_concurrent_overshoot_is_bounded(self, openai_config, secret_store):
        """Both requests pass the guard before either commits; only one overshoots."""
        orchestrator, governor, stub = _build(openai_config, secret_store, daily_limit=1000)
        governor.commit(750)
        stub.total_tokens = None
        stub.gate = asyncio.Event()

        tasks = [asyncio.create_task(orchestrator.send("")) for _ in range(2)]
        await _wait_for_calls(stub, 2)
        stub.gate.set()
        results = await asyncio.gather(*tasks)

        assert all(result.ok for result in results)
        assert sorted(result.over_budget for result in results) == [False, True]
        used = governor.snapshot().tokens_used_today
        assert used == 750 + 2 * 151
        assert used - 1000 <= 151

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, openai_config, secret_store):
        orchestrator, governor, stub = _build(
            openai_config, secret_store, max_concurrent_requests=2
        )

        await asyncio.gather(*(orchestrator.send(f"m{i}") for i in range(6)))

        assert len(stub.calls) == 6
        assert stub.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_cancellation_records_nothing(self, openai_config, secret_store):
        orchestrator, governor, stub = _build(openai_config, secret_store)
        stub.gate = asyncio.Event()

        task = asyncio.create_task(orchestrator.send("Hello"))
        await _wait_for_calls(stub, 1)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        stats = governor.get_usage_statistics()
        assert stats["tokens_used_today"] == 0
        assert stats["total_requests"] == 0

    @pytest.mark.asyncio
    async def test_usage_change_callback(self, openai_config, secret_store):
        notifications = []

        async def on_change():
            notifications.append(True)

        orchestrator, governor, stub = _build(openai_config, secret_store, on_usage_change=on_change)

        await orchestrator.send("Hello")

        assert notifications == [True]

    @pytest.mark.asyncio
    async def test_update_config_switches_provider(self, openai_config, secret_store):
        orchestrator, governor, stub = _build(openai_config, secret_store)
        new_config = ProviderConfig(
            id="openai", family=ProviderFamily.OPENAI, credential_ref="openai", model_name="gpt-4"
        )

        orchestrator.update_config(new_config)
        await orchestrator.send("Hello")

        assert orchestrator.config is new_config
        assert stub.calls == []
