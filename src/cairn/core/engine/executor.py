"""
Single provider call execution.

TaskExecutor runs one call under a CallDeadline and normalizes what comes
back: a validated ProviderResponse, or one of the provider error types.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from pydantic import ValidationError

from cairn.core.context.models import ContextMessage
from cairn.core.cost.models import LLMUsage
from cairn.core.engine.cancellation import CancellationToken, RunCancelledError
from cairn.core.engine.deadline import CallDeadline
from cairn.core.engine.provider import (
    MalformedUsageError,
    Provider,
    ProviderError,
    ProviderOptions,
    ProviderResponse,
    ProviderTimeoutError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one successful provider call."""

    content: str
    usage: LLMUsage
    duration_seconds: float


class TaskExecutor:
    """
    Executes provider calls under a deadline.

    Example:
        >>> executor = TaskExecutor(CallDeadline(timeout_seconds=60))
        >>> result = await executor.execute(provider, messages, options, token)
        >>> result.usage.total_tokens
        1500
    """

    def __init__(self, deadline: CallDeadline) -> None:
        self.deadline = deadline

    async def execute(
        self,
        provider: Provider,
        prompt: list[ContextMessage],
        options: ProviderOptions,
        token: CancellationToken | None = None,
    ) -> ExecutionResult:
        """
        Make one provider call.

        Raises:
            ProviderTimeoutError: If the call exceeds the deadline
            RunCancelledError: If the run is cancelled during the call
            MalformedUsageError: If the response lacks valid usage
            ProviderError: For any other provider failure
        """
        start = time.monotonic()
        try:
            raw = await self.deadline.execute(provider.execute(prompt, options), token)
        except (ProviderError, RunCancelledError, asyncio.CancelledError):
            raise
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(self.deadline.timeout_seconds) from e
        except Exception as e:
            raise ProviderError(
                f"{provider.display_name} call failed: {type(e).__name__}: {e}"
            ) from e

        response = self._validate(raw, provider)
        duration = time.monotonic() - start
        logger.debug(
            f"{provider.display_name} returned {response.usage.total_tokens} tokens "
            f"in {duration:.2f}s"
        )
        return ExecutionResult(
            content=response.content, usage=response.usage, duration_seconds=duration
        )

    @staticmethod
    def _validate(raw: object, provider: Provider) -> ProviderResponse:
        if isinstance(raw, ProviderResponse):
            return raw
        if raw is None or (getattr(raw, "usage", None) is None and not isinstance(raw, dict)):
            raise MalformedUsageError(f"{provider.display_name} returned no usage data")
        try:
            return ProviderResponse.model_validate(raw)
        except ValidationError as e:
            raise MalformedUsageError(
                f"{provider.display_name} returned malformed usage: {e.error_count()} errors"
            ) from e
