"""
Provider protocol, provider errors, and the model registry.

A Provider is any object that can execute a prompt against a metered model
endpoint and report usage. The engine never sees a provider's wire
protocol. Providers are created through a ModelRegistry that maps a model
id to a factory taking an explicit ProviderConfig; factories never read
ambient environment state.

Usage:
    >>> registry = ModelRegistry()
    >>> @registry.registers("gpt-4o", ProviderConfig(provider="openai", api_key="..."))
    ... def make_openai(config: ProviderConfig) -> Provider:
    ...     return OpenAIProvider(config)
    >>> provider = registry.create("gpt-4o")
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from cairn.core.context.models import ContextMessage
from cairn.core.cost.models import LLMUsage

if TYPE_CHECKING:
    from cairn.core.config.models import CairnConfig

logger = logging.getLogger(__name__)


# ==============================================================================
# Errors
# ==============================================================================


class ProviderError(Exception):
    """Base class for provider call failures. Not retried unless transient."""

    retryable = False


class TransientProviderError(ProviderError):
    """A failure worth retrying (timeouts, rate limits)."""

    retryable = True


class ProviderTimeoutError(TransientProviderError):
    """The provider call did not finish within its deadline."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Provider call timed out after {timeout_seconds:g}s")


class RateLimitError(TransientProviderError):
    """The provider signalled a rate limit."""

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class MalformedUsageError(ProviderError):
    """The provider response carried missing or invalid usage data."""


class ModelNotFoundError(KeyError):
    """Raised when no provider factory is registered for a model id."""

    def __init__(self, model_id: str, available: list[str]) -> None:
        self.model_id = model_id
        self.available = available
        super().__init__(model_id)

    def __str__(self) -> str:
        known = ", ".join(self.available) or "none"
        return f"Model '{self.model_id}' not found. Registered models: {known}"


# ==============================================================================
# Contract
# ==============================================================================


class ProviderConfig(BaseModel):
    """
    Fully specified deployment configuration for one provider instance.

    Attributes:
        provider: Provider name used for pricing (e.g. 'openai')
        api_key: Credential, never included in repr
        endpoint: Base URL of the deployment
        deployment: Deployment or region name
        extra: Provider-specific options
    """

    model_config = ConfigDict(frozen=True)

    provider: str = Field(min_length=1)
    api_key: str | None = Field(default=None, repr=False)
    endpoint: str | None = None
    deployment: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class ProviderOptions(BaseModel):
    """Per-call options passed to Provider.execute."""

    model_config = ConfigDict(frozen=True)

    model: str
    max_completion_tokens: int = Field(default=1024, ge=1)
    temperature: float | None = Field(default=None, ge=0.0)
    metadata: dict[str, str] = Field(default_factory=dict)


class ProviderResponse(BaseModel):
    """Content and usage returned by a provider call."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    content: str
    usage: LLMUsage


@runtime_checkable
class Provider(Protocol):
    """
    Protocol for model provider implementations.

    Providers are responsible for:
    - Reaching their backing API with the assembled prompt
    - Reporting token usage for every successful call
    - Raising TransientProviderError subclasses for retryable failures
    """

    @property
    def id(self) -> str:
        """Stable provider instance identifier."""
        ...

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        ...

    @property
    def model_id(self) -> str:
        """Model id this provider serves."""
        ...

    async def execute(
        self, prompt: list[ContextMessage], options: ProviderOptions
    ) -> ProviderResponse:
        """
        Execute a prompt.

        Args:
            prompt: Ordered context messages
            options: Per-call options

        Returns:
            ProviderResponse with content and usage

        Raises:
            TransientProviderError: For retryable failures
            ProviderError: For anything else
        """
        ...


ProviderFactory = Callable[[ProviderConfig], Provider]


# ==============================================================================
# Registry
# ==============================================================================


class ModelRegistry:
    """
    Maps model ids to provider factories and their configuration.

    Example:
        >>> registry = ModelRegistry()
        >>> registry.register("gpt-4o", make_openai, ProviderConfig(provider="openai"))
        >>> registry.has("gpt-4o")
        True
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[ProviderFactory, ProviderConfig]] = {}

    def register(self, model_id: str, factory: ProviderFactory, config: ProviderConfig) -> None:
        """Register (or replace) the factory for a model id."""
        if model_id in self._entries:
            logger.debug(f"Replacing provider factory for {model_id}")
        self._entries[model_id] = (factory, config)

    def registers(
        self, model_id: str, config: ProviderConfig
    ) -> Callable[[ProviderFactory], ProviderFactory]:
        """
        Decorator form of register().

        Usage:
            @registry.registers("claude-4.5-sonnet", ProviderConfig(provider="anthropic"))
            def make_claude(config: ProviderConfig) -> Provider:
                return ClaudeProvider(config)
        """

        def decorator(factory: ProviderFactory) -> ProviderFactory:
            self.register(model_id, factory, config)
            return factory

        return decorator

    def has(self, model_id: str) -> bool:
        return model_id in self._entries

    def model_ids(self) -> list[str]:
        return sorted(self._entries)

    def config_for(self, model_id: str) -> ProviderConfig:
        """
        Get the configuration registered for a model id.

        Raises:
            ModelNotFoundError: If the model id is unknown
        """
        return self._lookup(model_id)[1]

    def create(self, model_id: str) -> Provider:
        """
        Build a provider instance for a model id.

        Raises:
            ModelNotFoundError: If the model id is unknown
            TypeError: If the factory returns something that is not a Provider
        """
        factory, config = self._lookup(model_id)
        provider = factory(config)
        if not isinstance(provider, Provider):
            raise TypeError(
                f"Factory for {model_id} returned {type(provider).__name__}, not a Provider"
            )
        return provider

    def _lookup(self, model_id: str) -> tuple[ProviderFactory, ProviderConfig]:
        entry = self._entries.get(model_id)
        if entry is None:
            raise ModelNotFoundError(model_id, self.model_ids())
        return entry

    @classmethod
    def from_config(
        cls, config: CairnConfig, factories: Mapping[str, ProviderFactory]
    ) -> ModelRegistry:
        """
        Build a registry from configured provider settings.

        Args:
            config: Loaded configuration; ``config.providers`` maps model ids
                to deployment settings
            factories: Provider name -> factory

        Returns:
            Registry with one entry per configured model whose provider has
            a factory. Models whose provider has no factory are skipped with
            a warning.
        """
        registry = cls()
        for model_id, settings in config.providers.items():
            factory = factories.get(settings.provider)
            if factory is None:
                logger.warning(
                    f"No provider factory for '{settings.provider}', skipping model {model_id}"
                )
                continue
            registry.register(
                model_id,
                factory,
                ProviderConfig(
                    provider=settings.provider,
                    api_key=settings.api_key,
                    endpoint=settings.endpoint,
                    deployment=settings.deployment,
                    extra=settings.extra,
                ),
            )
        return registry
