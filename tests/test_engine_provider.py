"""Tests for the provider contract, model registry, and task executor."""

import asyncio
from types import SimpleNamespace

import pytest

from cairn.core.config.models import CairnConfig, ProviderSettings
from cairn.core.context.models import ContextMessage, MessageRole
from cairn.core.engine.cancellation import CancellationToken, RunCancelledError
from cairn.core.engine.deadline import CallDeadline
from cairn.core.engine.executor import TaskExecutor
from cairn.core.engine.provider import (
    MalformedUsageError,
    ModelNotFoundError,
    ModelRegistry,
    Provider,
    ProviderConfig,
    ProviderError,
    ProviderOptions,
    ProviderResponse,
    ProviderTimeoutError,
    RateLimitError,
)

PROMPT = [ContextMessage(role=MessageRole.USER, content="Fix the bug")]
OPTIONS = ProviderOptions(model="gpt-4o")


class TestModelRegistry:
    """Tests for ModelRegistry."""

    def test_register_and_create(self, scripted_provider) -> None:
        """create() calls the factory with the registered config."""
        registry = ModelRegistry()
        config = ProviderConfig(provider="openai", api_key="sk-test")
        registry.register("gpt-4o", scripted_provider.factory, config)

        assert registry.has("gpt-4o")
        assert registry.model_ids() == ["gpt-4o"]
        assert registry.create("gpt-4o") is scripted_provider
        assert scripted_provider.configs == [config]
        assert registry.config_for("gpt-4o").provider == "openai"

    def test_decorator(self, scripted_provider) -> None:
        """registers() works as a decorator."""
        registry = ModelRegistry()

        @registry.registers("claude-sonnet-4", ProviderConfig(provider="anthropic"))
        def make(config: ProviderConfig) -> Provider:
            return scripted_provider

        assert registry.create("claude-sonnet-4") is scripted_provider

    def test_unknown_model(self) -> None:
        """Unknown models raise ModelNotFoundError listing what exists."""
        registry = ModelRegistry()
        registry.register("gpt-4o", lambda c: None, ProviderConfig(provider="openai"))
        with pytest.raises(ModelNotFoundError) as exc_info:
            registry.create("gpt-9")
        assert exc_info.value.model_id == "gpt-9"
        assert "gpt-4o" in str(exc_info.value)

    def test_factory_must_return_provider(self) -> None:
        """A factory returning a non-provider is a TypeError."""
        registry = ModelRegistry()
        registry.register("gpt-4o", lambda c: object(), ProviderConfig(provider="openai"))
        with pytest.raises(TypeError, match="not a Provider"):
            registry.create("gpt-4o")

    def test_from_config(self, scripted_provider, caplog) -> None:
        """from_config registers models whose provider has a factory."""
        config = CairnConfig(
            providers={
                "gpt-4o": ProviderSettings(provider="openai", api_key="sk-1"),
                "mystery-1": ProviderSettings(provider="acme"),
            }
        )
        registry = ModelRegistry.from_config(config, {"openai": scripted_provider.factory})

        assert registry.model_ids() == ["gpt-4o"]
        assert registry.config_for("gpt-4o").api_key == "sk-1"
        assert "skipping model mystery-1" in caplog.text

    def test_api_key_hidden_from_repr(self) -> None:
        """Credentials never show up in repr."""
        config = ProviderConfig(provider="openai", api_key="sk-secret")
        assert "sk-secret" not in repr(config)

    def test_scripted_provider_satisfies_protocol(self, scripted_provider) -> None:
        """The fake provider is a runtime Provider."""
        assert isinstance(scripted_provider, Provider)


class TestTaskExecutor:
    """Tests for TaskExecutor."""

    @pytest.fixture
    def executor(self):
        return TaskExecutor(CallDeadline(timeout_seconds=0.05, cancel_grace_seconds=0.05))

    @pytest.mark.asyncio
    async def test_success(self, executor, scripted_provider) -> None:
        """A good response yields content and usage."""
        result = await executor.execute(scripted_provider, PROMPT, OPTIONS)
        assert result.content == "done"
        assert result.usage.total_tokens == 150
        assert result.duration_seconds >= 0
        assert scripted_provider.calls == [(PROMPT, OPTIONS)]

    @pytest.mark.asyncio
    async def test_dict_response(self, executor, scripted_provider, usage_factory) -> None:
        """Dict responses with valid usage are accepted."""
        usage = usage_factory(prompt_tokens=10, completion_tokens=5)
        scripted_provider.script = [{"content": "ok", "usage": usage.model_dump()}]
        result = await executor.execute(scripted_provider, PROMPT, OPTIONS)
        assert result.usage.total_tokens == 15

    @pytest.mark.asyncio
    async def test_attribute_response(self, executor, scripted_provider, usage_factory) -> None:
        """Objects exposing content and usage attributes are accepted."""
        scripted_provider.script = [SimpleNamespace(content="ok", usage=usage_factory())]
        result = await executor.execute(scripted_provider, PROMPT, OPTIONS)
        assert result.content == "ok"

    @pytest.mark.parametrize(
        "raw",
        [
            {"content": "no usage"},
            {"content": "bad", "usage": {"prompt_tokens": -1, "completion_tokens": 0}},
            SimpleNamespace(content="no usage"),
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_usage(self, executor, scripted_provider, raw) -> None:
        """Responses without valid usage raise MalformedUsageError."""
        scripted_provider.script = [raw]
        with pytest.raises(MalformedUsageError):
            await executor.execute(scripted_provider, PROMPT, OPTIONS)

    @pytest.mark.asyncio
    async def test_timeout(self, executor, scripted_provider) -> None:
        """A slow provider times out."""
        scripted_provider.script = [1.0]
        with pytest.raises(ProviderTimeoutError):
            await executor.execute(scripted_provider, PROMPT, OPTIONS)

    @pytest.mark.asyncio
    async def test_provider_errors_pass_through(self, executor, scripted_provider) -> None:
        """ProviderError subclasses are raised unchanged."""
        error = RateLimitError(retry_after=2)
        scripted_provider.script = [error]
        with pytest.raises(RateLimitError) as exc_info:
            await executor.execute(scripted_provider, PROMPT, OPTIONS)
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_other_errors_wrapped(self, executor, scripted_provider) -> None:
        """Unexpected exceptions become non-transient ProviderErrors."""
        scripted_provider.script = [RuntimeError("socket closed")]
        with pytest.raises(ProviderError, match="socket closed") as exc_info:
            await executor.execute(scripted_provider, PROMPT, OPTIONS)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_cancelled(self, scripted_provider) -> None:
        """Cancelling the token interrupts a hanging call."""
        executor = TaskExecutor(CallDeadline(timeout_seconds=5.0, cancel_grace_seconds=0.1))
        scripted_provider.script = [scripted_provider.HANG]
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel, "stop")
        with pytest.raises(RunCancelledError):
            await executor.execute(scripted_provider, PROMPT, OPTIONS, token)
