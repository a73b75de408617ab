"""
Run execution engine.

Coordinates context assembly, pricing, budget enforcement, provider calls
with retry and deadlines, cancellation, and execution tracing for runs of
provider-backed tasks.

Modules:
    state: Run lifecycle state machine.
    provider: Provider protocol, errors, and the model registry.
    retry / deadline / cancellation: Call resilience.
    dependencies: Task ordering and DAG validation within a run.
    executor: Single provider call with response validation.
    tracing: Span timelines and structured execution logs.
    run_engine: The engine itself.
"""

from cairn.core.engine.cancellation import CancellationToken, RunCancelledError
from cairn.core.engine.deadline import CallDeadline
from cairn.core.engine.dependencies import DependencyError, TaskGraph
from cairn.core.engine.executor import ExecutionResult, TaskExecutor
from cairn.core.engine.models import ErrorKind, Run, RunStatus, TaskSpec
from cairn.core.engine.provider import (
    MalformedUsageError,
    ModelNotFoundError,
    ModelRegistry,
    Provider,
    ProviderConfig,
    ProviderError,
    ProviderFactory,
    ProviderOptions,
    ProviderResponse,
    ProviderTimeoutError,
    RateLimitError,
    TransientProviderError,
)
from cairn.core.engine.retry import RetryPolicy
from cairn.core.engine.run_engine import RunEngine, RunNotFoundError
from cairn.core.engine.state import InvalidTransitionError, RunState, RunStateMachine
from cairn.core.engine.tracing import (
    ExecutionLogger,
    ExecutionSpan,
    ExecutionTimeline,
    ExecutionTracer,
    LogEntry,
    LogLevel,
    SpanStatus,
    TracingError,
)

__all__ = [
    # Engine
    "RunEngine",
    "RunNotFoundError",
    "TaskSpec",
    "Run",
    "RunStatus",
    "ErrorKind",
    "DependencyError",
    "TaskGraph",
    # State
    "InvalidTransitionError",
    "RunState",
    "RunStateMachine",
    # Providers
    "MalformedUsageError",
    "ModelNotFoundError",
    "ModelRegistry",
    "Provider",
    "ProviderConfig",
    "ProviderError",
    "ProviderFactory",
    "ProviderOptions",
    "ProviderResponse",
    "ProviderTimeoutError",
    "RateLimitError",
    "TransientProviderError",
    # Resilience
    "CallDeadline",
    "CancellationToken",
    "RetryPolicy",
    "RunCancelledError",
    "ExecutionResult",
    "TaskExecutor",
    # Tracing
    "ExecutionLogger",
    "ExecutionSpan",
    "ExecutionTimeline",
    "ExecutionTracer",
    "LogEntry",
    "LogLevel",
    "SpanStatus",
    "TracingError",
]
