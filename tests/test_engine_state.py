"""Tests for the run state machine."""

import pytest

from cairn.core.engine.state import (
    TERMINAL_STATES,
    InvalidTransitionError,
    RunState,
    RunStateMachine,
)


class TestRunStateMachine:
    """Tests for RunStateMachine."""

    def test_happy_path(self) -> None:
        """A run moves through the provider loop to completion."""
        machine = RunStateMachine()
        for state in (
            RunState.QUEUED,
            RunState.RUNNING,
            RunState.AWAITING_PROVIDER,
            RunState.RUNNING,
            RunState.COMPLETED,
        ):
            machine.transition(state)
        assert machine.state is RunState.COMPLETED
        assert machine.is_terminal
        assert machine.history[0] == (RunState.IDLE, RunState.QUEUED)
        assert len(machine.history) == 5

    @pytest.mark.parametrize(
        "state",
        [RunState.IDLE, RunState.QUEUED, RunState.RUNNING, RunState.AWAITING_PROVIDER],
    )
    def test_any_live_state_can_cancel(self, state: RunState) -> None:
        """Every non-terminal state may move to cancelled."""
        machine = RunStateMachine(initial=state)
        assert machine.can_transition(RunState.CANCELLED)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_states_are_final(self, terminal: RunState) -> None:
        """Terminal states have no exits."""
        machine = RunStateMachine(initial=terminal)
        for target in RunState:
            assert not machine.can_transition(target)
        with pytest.raises(InvalidTransitionError):
            machine.transition(RunState.RUNNING)

    def test_invalid_transition(self) -> None:
        """Skipping states raises with both ends recorded."""
        machine = RunStateMachine()
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.transition(RunState.COMPLETED)
        assert exc_info.value.from_state is RunState.IDLE
        assert exc_info.value.to_state is RunState.COMPLETED
        assert machine.state is RunState.IDLE
        assert machine.history == []

    def test_awaiting_provider_cannot_complete(self) -> None:
        """A run must return to running before it completes."""
        machine = RunStateMachine(initial=RunState.AWAITING_PROVIDER)
        assert not machine.can_transition(RunState.COMPLETED)
        assert machine.can_transition(RunState.FAILED)

    def test_is_terminal_property(self) -> None:
        """RunState.is_terminal matches TERMINAL_STATES."""
        assert {s for s in RunState if s.is_terminal} == set(TERMINAL_STATES)
