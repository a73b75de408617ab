"""
Cooperative cancellation for runs.

Each run gets a CancellationToken. Cancelling a run sets the token; the
engine checks it between steps, backoff sleeps wait on it, and the call
deadline races the outstanding provider call against it. A second
cancellation is a no-op.

Usage:
    >>> token = CancellationToken()
    >>> token.on_cancel(lambda: print("cleaning up"))
    >>> token.cancel("user request")
    cleaning up
    >>> token.cancelled
    True
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class RunCancelledError(Exception):
    """Raised inside a run once its cancellation has been observed."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(f"Run cancelled: {reason}" if reason else "Run cancelled")


class CancellationToken:
    """
    Cancellation flag with an awaitable event and cleanup callbacks.

    Must be used from the event loop thread that runs the engine.

    Attributes:
        cancelled: True once cancel() has been called
        reason: Reason passed to the first cancel() call
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """
        Register a callback to run when the token is cancelled.

        Callbacks registered after cancellation run immediately.
        """
        if self._cancelled:
            self._run_callback(callback)
            return
        self._callbacks.append(callback)

    def cancel(self, reason: str | None = None) -> bool:
        """
        Request cancellation.

        Returns:
            True if this call cancelled the token, False if it was already
            cancelled
        """
        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        self._event.set()
        for callback in self._callbacks:
            self._run_callback(callback)
        return True

    def raise_if_cancelled(self) -> None:
        """Raise RunCancelledError if cancellation was requested."""
        if self._cancelled:
            raise RunCancelledError(self._reason)

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    @staticmethod
    def _run_callback(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            # A failing cleanup must not stop cancellation
            logger.exception("Cancellation callback failed")
