"""
Run engine task, run, and status models.

- TaskSpec: one unit of work in a run (which model, what context)
- Run: mutable engine-side record of a submitted run
- RunStatus: immutable view of a run handed to callers

Usage:
    >>> task = TaskSpec(task_id="t1", model_id="gpt-4o", goal="Fix the failing test")
    >>> run_id = engine.submit(session_id, [task])
    >>> status = await engine.execute(run_id)
    >>> status.state
    <RunState.COMPLETED: 'completed'>
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from cairn.core.context.models import AssemblySections, AssemblyStrategy, SystemInput
from cairn.core.cost.models import CostSnapshot
from cairn.core.engine.state import RunState, RunStateMachine
from cairn.core.engine.tracing import ExecutionLogger, ExecutionTimeline
from cairn.core.ids import RunId, SessionId

# ===========================================================================
# TaskSpec - What to run
# ===========================================================================


class TaskSpec(BaseModel):
    """
    One provider-backed task within a run.

    Attributes:
        task_id: Identifier unique within the run
        model_id: Registered model to call
        goal: Task goal, placed in the system section
        sections: Context inputs for assembly
        strategy: Assembly strategy (None uses the configured default)
        total_budget: Prompt token budget (None uses the model window minus
            the completion allowance)
        max_completion_tokens: Completion tokens to request (None uses config)
        dependencies: Ids of tasks in the same run that must complete first
    """

    model_config = ConfigDict(frozen=True)

    task_id: str = Field(min_length=1)
    model_id: str = Field(min_length=1)
    goal: str | None = None
    sections: AssemblySections = Field(default_factory=AssemblySections)
    strategy: AssemblyStrategy | None = None
    total_budget: int | None = Field(default=None, ge=0)
    max_completion_tokens: int | None = Field(default=None, ge=1)
    dependencies: list[str] = Field(default_factory=list)

    def resolved_sections(self) -> AssemblySections:
        """Sections with the task goal merged into the system section."""
        if self.goal is None:
            return self.sections
        system = self.sections.system or SystemInput()
        return self.sections.model_copy(
            update={"system": system.model_copy(update={"goal": self.goal})}
        )


# ===========================================================================
# ErrorKind - Why a run ended badly
# ===========================================================================


class ErrorKind(str, Enum):
    """Classification of the error that ended a run."""

    BUDGET_EXCEEDED = "budget_exceeded"
    PRICING = "pricing"
    ASSEMBLY = "assembly"
    MALFORMED_USAGE = "malformed_usage"
    PROVIDER = "provider"
    RETRIES_EXHAUSTED = "retries_exhausted"
    MODEL_NOT_FOUND = "model_not_found"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


# ===========================================================================
# Run - Engine-side record
# ===========================================================================


@dataclass
class Run:
    """
    Mutable record of one run, owned by the engine.

    Attributes:
        run_id: Run identifier
        session_id: Owning session
        tasks: Tasks in execution order (dependencies first)
        machine: Lifecycle state machine
        timeline: Span timeline (replaced when execution starts)
        log: Structured execution log
        completed_tasks: Task ids finished so far
        attempts: Provider attempts made per task id
        error: Message of the error that ended the run
        error_kind: Classification of that error
        exception: The error itself, for callers that want to re-raise it
    """

    run_id: RunId
    session_id: SessionId
    tasks: list[TaskSpec]
    machine: RunStateMachine = field(default_factory=RunStateMachine)
    timeline: ExecutionTimeline | None = None
    log: ExecutionLogger | None = None
    completed_tasks: list[str] = field(default_factory=list)
    attempts: dict[str, int] = field(default_factory=dict)
    error: str | None = None
    error_kind: ErrorKind | None = None
    exception: BaseException | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.timeline is None:
            self.timeline = ExecutionTimeline(self.run_id)
        if self.log is None:
            self.log = ExecutionLogger(self.run_id)

    @property
    def state(self) -> RunState:
        return self.machine.state


# ===========================================================================
# RunStatus - Caller-facing view
# ===========================================================================


@dataclass(frozen=True)
class RunStatus:
    """
    Immutable snapshot of a run.

    Attributes:
        run_id: Run identifier
        session_id: Owning session
        state: Lifecycle state
        timeline: Copy of the span timeline
        cost: Cost recorded for the run so far
        completed_tasks: Task ids finished so far
        attempts: Provider attempts made per task id
        error: Message of the error that ended the run
        error_kind: Classification of that error
    """

    run_id: RunId
    session_id: SessionId
    state: RunState
    timeline: ExecutionTimeline
    cost: CostSnapshot
    completed_tasks: tuple[str, ...] = ()
    attempts: dict[str, int] = field(default_factory=dict)
    error: str | None = None
    error_kind: ErrorKind | None = None
    exception: BaseException | None = field(default=None, repr=False, compare=False)
    created_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.COMPLETED

    def raise_for_error(self) -> None:
        """Re-raise the error that ended the run, if any."""
        if self.exception is not None:
            raise self.exception
