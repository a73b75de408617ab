"""
Deadline enforcement for provider calls.

CallDeadline wraps one provider call and races it against two things:

1. **Timeout**: the call must finish within ``timeout_seconds``; otherwise
   ProviderTimeoutError is raised (a transient, retryable failure).
2. **Cancellation**: if the run's CancellationToken fires first, the call
   is cancelled and RunCancelledError is raised.

In both cases the outstanding call gets ``cancel_grace_seconds`` to stop.
A call that is still running after the grace period is orphaned: it keeps
running in the background, and its eventual result or error is consumed
and discarded so it never reaches the run.

Example:
    >>> deadline = CallDeadline(timeout_seconds=30, cancel_grace_seconds=2)
    >>> response = await deadline.execute(provider.execute(prompt, options), token)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

from cairn.core.engine.cancellation import CancellationToken, RunCancelledError
from cairn.core.engine.provider import ProviderTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _discard_result(task: asyncio.Future[Any]) -> None:
    """Consume the outcome of an orphaned call."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Orphaned provider call finished with {type(error).__name__}: {error}")
    else:
        logger.debug("Orphaned provider call finished; result discarded")


class CallDeadline:
    """
    Timeout and cancellation guard for a single provider call.

    Attributes:
        timeout_seconds: Maximum seconds a call may take
        cancel_grace_seconds: Seconds a cancelled call may take to stop
        enabled: Whether the timeout is enforced (cancellation always is)
    """

    def __init__(
        self,
        timeout_seconds: float,
        cancel_grace_seconds: float = 5.0,
        enabled: bool = True,
    ) -> None:
        """
        Initialize a call deadline.

        Raises:
            ValueError: If timeout_seconds <= 0 or cancel_grace_seconds < 0
        """
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {timeout_seconds}")
        if cancel_grace_seconds < 0:
            raise ValueError(f"cancel_grace_seconds must be >= 0, got {cancel_grace_seconds}")
        self.timeout_seconds = timeout_seconds
        self.cancel_grace_seconds = cancel_grace_seconds
        self.enabled = enabled

    async def execute(
        self,
        coro: Coroutine[Any, Any, T],
        token: CancellationToken | None = None,
    ) -> T:
        """
        Run a provider call under the deadline.

        Args:
            coro: The provider call
            token: Cancellation token of the owning run

        Returns:
            The call's result

        Raises:
            ProviderTimeoutError: If the call exceeds the timeout
            RunCancelledError: If the token fires before the call finishes
            Exception: Anything the call itself raises
        """
        if token is not None and token.cancelled:
            coro.close()
            raise RunCancelledError(token.reason)

        main_task = asyncio.ensure_future(coro)
        cancel_task = asyncio.ensure_future(token.wait()) if token is not None else None
        waiters: set[asyncio.Future[Any]] = {main_task}
        if cancel_task is not None:
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.timeout_seconds if self.enabled else None,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            main_task.cancel()
            if cancel_task is not None:
                cancel_task.cancel()
            raise

        cancelled = cancel_task is not None and cancel_task in done
        if cancel_task is not None:
            cancel_task.cancel()

        # Case 1: the call finished before any cancellation
        if main_task in done and not cancelled:
            return main_task.result()

        # Case 2: cancellation fired; a result that lands with it is discarded
        if cancelled:
            await self._stop(main_task)
            assert token is not None
            raise RunCancelledError(token.reason)

        # Case 3: timeout
        await self._stop(main_task)
        raise ProviderTimeoutError(self.timeout_seconds)

    async def _stop(self, task: asyncio.Future[Any]) -> None:
        """Cancel a call and wait up to the grace period, then orphan it."""
        task.cancel()
        done, _ = await asyncio.wait({task}, timeout=self.cancel_grace_seconds)
        if task in done:
            _discard_result(task)
            return
        logger.warning(
            f"Provider call did not stop within {self.cancel_grace_seconds:g}s; orphaning it"
        )
        task.add_done_callback(_discard_result)
