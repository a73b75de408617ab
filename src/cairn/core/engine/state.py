"""
Run lifecycle state machine.

    idle -> queued -> running <-> awaiting_provider -> completed | failed | cancelled

Any non-terminal state may move to cancelled. Terminal states have no
exits; an attempt to leave one raises InvalidTransitionError.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Lifecycle state of a run."""

    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"
    AWAITING_PROVIDER = "awaiting_provider"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({RunState.COMPLETED, RunState.FAILED, RunState.CANCELLED})

VALID_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.QUEUED, RunState.CANCELLED}),
    RunState.QUEUED: frozenset({RunState.RUNNING, RunState.CANCELLED}),
    RunState.RUNNING: frozenset(
        {RunState.AWAITING_PROVIDER, RunState.COMPLETED, RunState.FAILED, RunState.CANCELLED}
    ),
    RunState.AWAITING_PROVIDER: frozenset(
        {RunState.RUNNING, RunState.FAILED, RunState.CANCELLED}
    ),
    RunState.COMPLETED: frozenset(),
    RunState.FAILED: frozenset(),
    RunState.CANCELLED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised on a transition the state machine does not allow."""

    def __init__(self, from_state: RunState, to_state: RunState) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid run transition: {from_state.value} -> {to_state.value}")


class RunStateMachine:
    """
    Tracks a run's state and enforces valid transitions.

    Example:
        >>> machine = RunStateMachine()
        >>> machine.transition(RunState.QUEUED)
        >>> machine.state
        <RunState.QUEUED: 'queued'>
    """

    def __init__(self, initial: RunState = RunState.IDLE) -> None:
        self._state = initial
        self._history: list[tuple[RunState, RunState]] = []

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def history(self) -> list[tuple[RunState, RunState]]:
        """Transitions taken so far, oldest first."""
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    def can_transition(self, to_state: RunState) -> bool:
        return to_state in VALID_TRANSITIONS[self._state]

    def transition(self, to_state: RunState) -> None:
        """
        Move to a new state.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if not self.can_transition(to_state):
            raise InvalidTransitionError(self._state, to_state)
        self._history.append((self._state, to_state))
        self._state = to_state
