"""
Run engine.

Drives submitted runs through their tasks. For each task the engine:

1. assembles the prompt within the model's token budget
2. resolves a price and projects the call's cost
3. admits the call against run and session ceilings (budget.pre_check)
4. calls the provider under a deadline, retrying transient failures
5. records the actual cost exactly once per successful attempt
6. checks real spend against the ceilings (budget.post_check)

Each step is a span in the run's timeline. Runs are independent: a run
that fails its own ceiling does not affect other runs, while a session
ceiling breach aborts the whole session and refuses new submissions.

Usage:
    >>> engine = RunEngine(registry, config)
    >>> session_id = engine.start_session()
    >>> run_id = engine.submit(session_id, [TaskSpec(task_id="t1", model_id="gpt-4o")])
    >>> status = await engine.execute(run_id)
    >>> status.state, status.cost.total_cost
    (<RunState.COMPLETED: 'completed'>, Decimal('0.0123'))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from cairn.core.config.models import CairnConfig
from cairn.core.context.builder import ContextAssemblyError, ContextBuilder
from cairn.core.context.tokens import TokenCounter, context_window
from cairn.core.cost.budget import BudgetExceededError, BudgetManager
from cairn.core.cost.ledger import CostLedger
from cairn.core.cost.models import BudgetPolicy, BudgetScope
from cairn.core.cost.pricing import PricingError, PricingResolver, build_resolver
from cairn.core.cost.tracker import CostTracker, estimate_cost
from cairn.core.engine.cancellation import CancellationToken, RunCancelledError
from cairn.core.engine.deadline import CallDeadline
from cairn.core.engine.dependencies import TaskGraph
from cairn.core.engine.executor import ExecutionResult, TaskExecutor
from cairn.core.engine.models import ErrorKind, Run, RunStatus, TaskSpec
from cairn.core.engine.provider import (
    MalformedUsageError,
    ModelNotFoundError,
    ModelRegistry,
    ProviderError,
    ProviderOptions,
    TransientProviderError,
)
from cairn.core.engine.retry import RetryPolicy
from cairn.core.engine.state import RunState
from cairn.core.engine.tracing import ExecutionSpan, ExecutionTracer, LogEntry, SpanStatus
from cairn.core.ids import RunId, SessionId, new_run_id, new_session_id

logger = logging.getLogger(__name__)


class RunNotFoundError(KeyError):
    """Raised when a run id is not known to the engine."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(run_id)

    def __str__(self) -> str:
        return f"Run not found: {self.run_id}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RunEngine:
    """
    Executes runs of provider-backed tasks under budget and retry policy.

    The engine is single-event-loop: submit, cancel, and execute must be
    called from the loop that executes runs. Cost bookkeeping goes through
    the shared ledger, which is thread-safe.

    Args:
        registry: Model id -> provider factory
        config: Loaded configuration (defaults if omitted)
        ledger: Cost ledger (shared with budget_manager)
        budget_manager: Budget enforcement (built from config if omitted)
        pricing: Price resolver (built from config if omitted)
        context_builder: Fixed builder for every task (built per model if omitted)
    """

    def __init__(
        self,
        registry: ModelRegistry,
        config: CairnConfig | None = None,
        ledger: CostLedger | None = None,
        budget_manager: BudgetManager | None = None,
        pricing: PricingResolver | None = None,
        context_builder: ContextBuilder | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or CairnConfig()
        if ledger is None:
            ledger = budget_manager.ledger if budget_manager is not None else CostLedger()
        if budget_manager is not None and budget_manager.ledger is not ledger:
            raise ValueError("budget_manager must use the engine's ledger")
        self.ledger = ledger
        self.budget = budget_manager or BudgetManager(ledger, self.config.budget.to_policy())
        self.tracker = CostTracker(ledger, pricing or build_resolver(self.config.pricing))
        self.retry_policy = RetryPolicy.from_config(self.config.retry)
        self.executor = TaskExecutor(
            CallDeadline(
                timeout_seconds=self.config.execution.provider_timeout_seconds,
                cancel_grace_seconds=self.config.execution.cancel_grace_seconds,
            )
        )
        self._context_builder = context_builder
        self._builders: dict[str, ContextBuilder] = {}
        self._counter = TokenCounter(self.config.context.chars_per_token)
        self._runs: dict[RunId, Run] = {}
        self._tokens: dict[RunId, CancellationToken] = {}

    # ------------------------------------------------------------------
    # Sessions and submission
    # ------------------------------------------------------------------

    def start_session(
        self, session_id: SessionId | None = None, policy: BudgetPolicy | None = None
    ) -> SessionId:
        """Register a session and fix its budget policy."""
        session_id = session_id or new_session_id()
        self.budget.start_session(session_id, policy)
        logger.info(f"Session {session_id} started")
        return session_id

    def submit(self, session_id: SessionId, tasks: Sequence[TaskSpec]) -> RunId:
        """
        Queue a run of tasks for a session.

        Raises:
            BudgetExceededError: If the session was aborted for overspending
            DependencyError: If a dependency is unknown, self-referencing, or
                part of a cycle
            ModelNotFoundError: If a task names an unregistered model
            ValueError: If task ids are not unique within the run
        """
        if self.budget.is_session_aborted(session_id):
            spent = self.budget.session_spend(session_id)
            ceiling = self.budget.policy_for(session_id).per_session_ceiling
            raise BudgetExceededError(
                scope=BudgetScope.SESSION,
                run_id=RunId(""),
                session_id=session_id,
                current=spent,
                limit=ceiling if ceiling is not None else spent,
                reason=f"Session {session_id} was aborted after exceeding its budget",
            )

        task_ids = [task.task_id for task in tasks]
        if len(set(task_ids)) != len(task_ids):
            raise ValueError(f"Task ids must be unique within a run: {task_ids}")
        for task in tasks:
            if not self.registry.has(task.model_id):
                raise ModelNotFoundError(task.model_id, self.registry.model_ids())
        ordered = TaskGraph(tasks).execution_order()

        run = Run(run_id=new_run_id(), session_id=session_id, tasks=ordered)
        run.machine.transition(RunState.QUEUED)
        self._runs[run.run_id] = run
        self._tokens[run.run_id] = CancellationToken()
        run.log.info("engine", "submit", f"Queued {len(tasks)} tasks", session_id=session_id)
        logger.info(f"Run {run.run_id} queued for session {session_id}")
        return run.run_id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def status(self, run_id: RunId) -> RunStatus:
        """
        Snapshot a run.

        Raises:
            RunNotFoundError: If the run id is unknown
        """
        run = self._get(run_id)
        assert run.timeline is not None
        return RunStatus(
            run_id=run.run_id,
            session_id=run.session_id,
            state=run.state,
            timeline=run.timeline.snapshot(),
            cost=self.ledger.snapshot_run(run.run_id),
            completed_tasks=tuple(run.completed_tasks),
            attempts=dict(run.attempts),
            error=run.error,
            error_kind=run.error_kind,
            exception=run.exception,
            created_at=run.created_at,
            finished_at=run.finished_at,
        )

    def runs(self, session_id: SessionId | None = None) -> list[RunStatus]:
        """Snapshot all runs, optionally for one session, in submission order."""
        return [
            self.status(run.run_id)
            for run in self._runs.values()
            if session_id is None or run.session_id == session_id
        ]

    def logs(self, run_id: RunId) -> list[LogEntry]:
        """Structured log entries recorded for a run."""
        run = self._get(run_id)
        assert run.log is not None
        return run.log.entries

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, run_id: RunId, reason: str = "cancelled by caller") -> bool:
        """
        Cancel a run.

        A queued run is cancelled immediately. A running run observes the
        cancellation at its next step, during backoff, or by having its
        outstanding provider call cancelled.

        Returns:
            False if the run is unknown or already terminal, True otherwise
        """
        run = self._runs.get(run_id)
        if run is None or run.state.is_terminal:
            return False

        token = self._tokens[run_id]
        token.cancel(reason)
        if run.state in (RunState.IDLE, RunState.QUEUED):
            error = RunCancelledError(reason)
            tracer = ExecutionTracer(run_id)
            tracer.record_terminal("run.cancelled", error, SpanStatus.CANCELLED)
            run.timeline = tracer.finish()
            run.machine.transition(RunState.CANCELLED)
            self._record_error(run, error, ErrorKind.CANCELLED)
        logger.info(f"Cancellation requested for run {run_id}: {reason}")
        return True

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def drain(self) -> list[RunStatus]:
        """Execute every queued run concurrently and return their final status."""
        queued = [run.run_id for run in self._runs.values() if run.state is RunState.QUEUED]
        if not queued:
            return []
        return list(await asyncio.gather(*(self.execute(run_id) for run_id in queued)))

    async def execute(self, run_id: RunId) -> RunStatus:
        """
        Execute a queued run to a terminal state.

        Run failures are reported through the returned status (``error``,
        ``error_kind``, ``raise_for_error()``); they are not raised here.

        Raises:
            RunNotFoundError: If the run id is unknown
            RuntimeError: If the run is already executing
        """
        run = self._get(run_id)
        if run.state.is_terminal:
            return self.status(run_id)
        if run.state is not RunState.QUEUED:
            raise RuntimeError(f"Run {run_id} is already {run.state.value}")

        token = self._tokens[run_id]
        tracer = ExecutionTracer(run_id, cancel_types=(RunCancelledError, asyncio.CancelledError))
        run.timeline = tracer.timeline
        run.machine.transition(RunState.RUNNING)
        run.started_at = _now()
        root = tracer.start_span("run", {"session_id": run.session_id, "tasks": len(run.tasks)})

        try:
            for task in run.tasks:
                token.raise_if_cancelled()
                await self._execute_task(run, task, tracer, token)
                run.completed_tasks.append(task.task_id)
        except RunCancelledError as e:
            self._fail(run, tracer, root, e, ErrorKind.CANCELLED, "run.cancelled")
        except asyncio.CancelledError as e:
            self._fail(run, tracer, root, e, ErrorKind.CANCELLED, "run.cancelled")
            raise
        except BudgetExceededError as e:
            self._fail(run, tracer, root, e, ErrorKind.BUDGET_EXCEEDED, "budget.exceeded")
        except PricingError as e:
            self._fail(run, tracer, root, e, ErrorKind.PRICING, "pricing.error")
        except ContextAssemblyError as e:
            self._fail(run, tracer, root, e, ErrorKind.ASSEMBLY, "assembly.error")
        except MalformedUsageError as e:
            self._fail(run, tracer, root, e, ErrorKind.MALFORMED_USAGE, "provider.malformed_usage")
        except TransientProviderError as e:
            self._fail(
                run, tracer, root, e, ErrorKind.RETRIES_EXHAUSTED, "provider.retries_exhausted"
            )
        except ProviderError as e:
            self._fail(run, tracer, root, e, ErrorKind.PROVIDER, "provider.error")
        except ModelNotFoundError as e:
            self._fail(run, tracer, root, e, ErrorKind.MODEL_NOT_FOUND, "provider.not_found")
        except Exception as e:
            logger.exception(f"Unexpected error in run {run_id}")
            self._fail(run, tracer, root, e, ErrorKind.INTERNAL, "engine.error")
        else:
            tracer.end_span(root)
            tracer.finish()
            run.machine.transition(RunState.COMPLETED)
            run.finished_at = _now()
            assert run.log is not None
            run.log.info("engine", "complete", f"Completed {len(run.completed_tasks)} tasks")
            logger.info(f"Run {run_id} completed")

        return self.status(run_id)

    async def _execute_task(
        self,
        run: Run,
        task: TaskSpec,
        tracer: ExecutionTracer,
        token: CancellationToken,
    ) -> ExecutionResult:
        """Run one task: assemble, price, admit, call with retry, record, check."""
        assert run.log is not None
        with tracer.span(f"task:{task.task_id}", model=task.model_id):
            provider = self.registry.create(task.model_id)
            provider_name = self.registry.config_for(task.model_id).provider
            completion_tokens = (
                task.max_completion_tokens or self.config.execution.max_completion_tokens
            )
            strategy = task.strategy or self.config.context.default_strategy
            budget = task.total_budget
            if budget is None:
                budget = max(context_window(task.model_id) - completion_tokens, 0)

            with tracer.span("assemble", strategy=strategy.value, budget=budget):
                assembled = self._builder_for(task.model_id).assemble(
                    task.resolved_sections(), strategy, budget
                )
            prompt_tokens = assembled.report.total_tokens

            with tracer.span("pricing.resolve", provider=provider_name):
                task_price = self.tracker.resolver.resolve(provider_name, task.model_id)
                projected = estimate_cost(prompt_tokens, completion_tokens, task_price[0])

            options = ProviderOptions(
                model=task.model_id,
                max_completion_tokens=completion_tokens,
                metadata={"run_id": run.run_id, "task_id": task.task_id},
            )

            attempt = 0
            while True:
                attempt += 1
                run.attempts[task.task_id] = attempt
                token.raise_if_cancelled()

                with tracer.span("budget.pre_check", attempt=attempt, projected=str(projected)):
                    reservation = self.budget.pre_check(run.run_id, run.session_id, projected)

                try:
                    run.machine.transition(RunState.AWAITING_PROVIDER)
                    with tracer.span("provider.call", attempt=attempt, provider=provider_name):
                        result = await self.executor.execute(
                            provider, assembled.messages, options, token
                        )
                except TransientProviderError as e:
                    self.budget.release(reservation)
                    run.machine.transition(RunState.RUNNING)
                    if not self.retry_policy.should_retry(e, attempt):
                        run.log.error(
                            "provider", "call", f"Giving up after {attempt} attempts: {e}"
                        )
                        raise
                    delay = self.retry_policy.delay_for(attempt, e)
                    run.log.warning(
                        "provider",
                        "retry",
                        f"Attempt {attempt} failed ({e}); retrying in {delay:.2f}s",
                        attempt=attempt,
                    )
                    with tracer.span("retry.backoff", attempt=attempt, delay=delay):
                        await self._backoff(delay, token)
                    continue
                except BaseException:
                    self.budget.release(reservation)
                    raise
                run.machine.transition(RunState.RUNNING)
                break

            try:
                with tracer.span("cost.record", attempt=attempt):
                    event = self.tracker.record_usage(
                        run.run_id,
                        run.session_id,
                        provider_name,
                        result.usage,
                        task_id=task.task_id,
                        idempotency_key=f"{run.run_id}:{task.task_id}:{attempt}",
                        fallback=task_price,
                    )
            except BaseException:
                self.budget.release(reservation)
                raise
            run.log.info(
                "cost",
                "record",
                f"Recorded ${event.cost.amount} for {task.task_id}",
                tokens=result.usage.total_tokens,
            )

            with tracer.span("budget.post_check"):
                decision = self.budget.post_check(run.run_id, run.session_id, reservation)
            if decision.warning:
                run.log.warning("budget", "post_check", decision.warning)
            return result

    async def _backoff(self, delay: float, token: CancellationToken) -> None:
        """Sleep before a retry, waking early if the run is cancelled."""
        if delay <= 0:
            token.raise_if_cancelled()
            return
        try:
            await asyncio.wait_for(token.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise RunCancelledError(token.reason)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, run_id: RunId) -> Run:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def _builder_for(self, model: str) -> ContextBuilder:
        if self._context_builder is not None:
            return self._context_builder
        builder = self._builders.get(model)
        if builder is None:
            context = self.config.context
            builder = ContextBuilder(
                counter=self._counter,
                model=model,
                weights=context.weights,
                headroom_fraction=context.headroom_fraction,
                min_system_tokens=context.min_system_tokens,
            )
            self._builders[model] = builder
        return builder

    def _fail(
        self,
        run: Run,
        tracer: ExecutionTracer,
        root: ExecutionSpan,
        error: BaseException,
        kind: ErrorKind,
        span_name: str,
    ) -> None:
        """Record a terminal span, close the timeline, and end the run."""
        cancelled = kind is ErrorKind.CANCELLED
        status = SpanStatus.CANCELLED if cancelled else SpanStatus.FAILED
        tracer.record_terminal(span_name, error, status)
        tracer.end_span(root, status, str(error))
        tracer.finish(status)
        run.machine.transition(RunState.CANCELLED if cancelled else RunState.FAILED)
        self._record_error(run, error, kind)

    @staticmethod
    def _record_error(run: Run, error: BaseException, kind: ErrorKind) -> None:
        run.error = str(error) or type(error).__name__
        run.error_kind = kind
        run.exception = error
        run.finished_at = _now()
        assert run.log is not None
        if kind is ErrorKind.CANCELLED:
            run.log.info("engine", "cancel", run.error)
            logger.info(f"Run {run.run_id} cancelled: {run.error}")
        else:
            run.log.error("engine", "fail", run.error, kind=kind.value)
            logger.warning(f"Run {run.run_id} failed ({kind.value}): {run.error}")
