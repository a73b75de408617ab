"""
Execution tracing for runs.

Every operation the engine performs for a run (assembly, pricing, budget
checks, each provider attempt, cost recording) is recorded as a span in
the run's ExecutionTimeline. Spans nest: a span opened while another is
open becomes its child, and spans must close innermost-first, so a
parent's interval always contains its children's. Terminal failures
(budget exceeded, pricing errors, cancellation) are recorded as spans too.

ExecutionLogger keeps structured per-run log entries alongside the
timeline and forwards each one to stdlib logging.

Usage:
    >>> tracer = ExecutionTracer(run_id)
    >>> with tracer.span("assemble", strategy="balanced"):
    ...     result = builder.assemble(sections, strategy, budget)
    >>> timeline = tracer.finish()
    >>> [s.name for s in timeline.root_spans()]
    ['assemble']
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

trace_logger = logging.getLogger("cairn.engine.trace")


class TracingError(Exception):
    """Raised when spans are closed out of order or reopened."""


# ==============================================================================
# Spans and timelines
# ==============================================================================


class SpanStatus(str, Enum):
    """Outcome of a span."""

    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ExecutionSpan:
    """
    One traced operation.

    Attributes:
        span_id: Unique span identifier
        name: Operation name (e.g. 'provider.call')
        parent_id: Enclosing span, None for root spans
        started_at: Monotonic start time in seconds
        ended_at: Monotonic end time, None while open
        status: Outcome
        metadata: Operation details (attempt number, projected cost, ...)
        error: Error message for failed or cancelled spans
    """

    span_id: str
    name: str
    parent_id: str | None
    started_at: float
    ended_at: float | None = None
    status: SpanStatus = SpanStatus.ACTIVE
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    @property
    def duration(self) -> float | None:
        if self.ended_at is None:
            return None
        return self.ended_at - self.started_at


class ExecutionTimeline:
    """Ordered spans of one run."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._spans: list[ExecutionSpan] = []
        self.closed = False

    @property
    def spans(self) -> list[ExecutionSpan]:
        """All spans in start order."""
        return list(self._spans)

    def add(self, span: ExecutionSpan) -> None:
        if self.closed:
            raise TracingError(f"Timeline for {self.run_id} is closed")
        self._spans.append(span)

    def get(self, span_id: str) -> ExecutionSpan | None:
        for span in self._spans:
            if span.span_id == span_id:
                return span
        return None

    def named(self, name: str) -> list[ExecutionSpan]:
        return [s for s in self._spans if s.name == name]

    def root_spans(self) -> list[ExecutionSpan]:
        return [s for s in self._spans if s.parent_id is None]

    def children_of(self, span_id: str) -> list[ExecutionSpan]:
        return [s for s in self._spans if s.parent_id == span_id]

    def failed_spans(self) -> list[ExecutionSpan]:
        return [s for s in self._spans if s.status is SpanStatus.FAILED]

    def total_duration(self) -> float:
        """Wall time from the first span's start to the last span's end."""
        closed = [s for s in self._spans if s.ended_at is not None]
        if not closed:
            return 0.0
        start = min(s.started_at for s in self._spans)
        end = max(s.ended_at for s in closed if s.ended_at is not None)
        return end - start

    def critical_path(self) -> list[ExecutionSpan]:
        """
        Longest chain from a root span down to a leaf.

        At each level the longest-running child is followed.
        """
        path: list[ExecutionSpan] = []
        level = self.root_spans()
        while level:
            longest = max(level, key=lambda s: s.duration or 0.0)
            path.append(longest)
            level = self.children_of(longest.span_id)
        return path

    def is_causally_ordered(self) -> bool:
        """Check that every child lies within its parent's interval."""
        by_id = {s.span_id: s for s in self._spans}
        for span in self._spans:
            if span.ended_at is not None and span.ended_at < span.started_at:
                return False
            if span.parent_id is None:
                continue
            parent = by_id.get(span.parent_id)
            if parent is None or span.started_at < parent.started_at:
                return False
            if parent.ended_at is not None and (
                span.ended_at is None or span.ended_at > parent.ended_at
            ):
                return False
        return True

    def snapshot(self) -> ExecutionTimeline:
        """Deep copy safe to hand to callers."""
        return copy.deepcopy(self)

    def __len__(self) -> int:
        return len(self._spans)


# ==============================================================================
# Tracer
# ==============================================================================


class ExecutionTracer:
    """
    Builds a run's timeline with a stack of open spans.

    Args:
        run_id: Run being traced
        clock: Monotonic clock, replaceable in tests
        cancel_types: Exceptions that mark a span CANCELLED instead of FAILED
    """

    def __init__(
        self,
        run_id: str,
        clock: Callable[[], float] = time.monotonic,
        cancel_types: tuple[type[BaseException], ...] = (asyncio.CancelledError,),
    ) -> None:
        self.timeline = ExecutionTimeline(run_id)
        self._clock = clock
        self._cancel_types = cancel_types
        self._stack: list[ExecutionSpan] = []

    @property
    def current(self) -> ExecutionSpan | None:
        return self._stack[-1] if self._stack else None

    def _now(self) -> float:
        now = self._clock()
        # Never let a span end before the latest start on a misbehaving clock
        latest = self._stack[-1].started_at if self._stack else now
        return max(now, latest)

    def start_span(self, name: str, metadata: dict[str, Any] | None = None) -> ExecutionSpan:
        """Open a span as a child of the innermost open span."""
        parent = self.current
        span = ExecutionSpan(
            span_id=uuid.uuid4().hex[:12],
            name=name,
            parent_id=parent.span_id if parent else None,
            started_at=self._now(),
            metadata=dict(metadata or {}),
        )
        self.timeline.add(span)
        self._stack.append(span)
        return span

    def end_span(
        self,
        span: ExecutionSpan,
        status: SpanStatus = SpanStatus.COMPLETED,
        error: str | None = None,
    ) -> ExecutionSpan:
        """
        Close the innermost open span.

        Raises:
            TracingError: If ``span`` is not the innermost open span
        """
        if not self._stack or self._stack[-1] is not span:
            raise TracingError(f"Span '{span.name}' is not the innermost open span")
        span.ended_at = self._now()
        span.status = status
        span.error = error
        self._stack.pop()
        return span

    @contextmanager
    def span(self, name: str, **metadata: Any) -> Iterator[ExecutionSpan]:
        """
        Trace the enclosed block as a span.

        The span is COMPLETED on normal exit. An exception marks it
        CANCELLED or FAILED and propagates.
        """
        opened = self.start_span(name, metadata)
        try:
            yield opened
        except BaseException as e:
            status = (
                SpanStatus.CANCELLED if isinstance(e, self._cancel_types) else SpanStatus.FAILED
            )
            self.end_span(opened, status, str(e) or type(e).__name__)
            raise
        self.end_span(opened)

    def record_terminal(
        self,
        name: str,
        error: BaseException | str,
        status: SpanStatus = SpanStatus.FAILED,
        metadata: dict[str, Any] | None = None,
    ) -> ExecutionSpan:
        """Record a zero-length span for a terminal event."""
        opened = self.start_span(name, metadata)
        return self.end_span(opened, status, str(error))

    def finish(self, status: SpanStatus = SpanStatus.CANCELLED) -> ExecutionTimeline:
        """Close any spans still open (innermost first) and seal the timeline."""
        while self._stack:
            self.end_span(self._stack[-1], status)
        self.timeline.closed = True
        return self.timeline


# ==============================================================================
# Structured logging
# ==============================================================================


class LogLevel(str, Enum):
    """Severity of an execution log entry."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def stdlib_level(self) -> int:
        if self is LogLevel.DEBUG:
            return logging.DEBUG
        elif self is LogLevel.INFO:
            return logging.INFO
        elif self is LogLevel.WARNING:
            return logging.WARNING
        elif self is LogLevel.ERROR:
            return logging.ERROR
        raise ValueError(f"Unhandled log level: {self!r}")


@dataclass(frozen=True)
class LogEntry:
    """One structured log record."""

    level: LogLevel
    domain: str
    operation: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ExecutionLogger:
    """
    Structured log for one run.

    Entries are kept in memory and forwarded to the ``cairn.engine.trace``
    logger as ``[domain/operation] message``.

    Example:
        >>> log = ExecutionLogger("run-1")
        >>> log.info("budget", "pre_check", "admitted", projected="0.012")
        >>> log.by_level(LogLevel.INFO)[0].operation
        'pre_check'
    """

    def __init__(self, run_id: str | None = None, sink: logging.Logger | None = None) -> None:
        self.run_id = run_id
        self._sink = sink or trace_logger
        self._entries: list[LogEntry] = []

    def log(
        self, level: LogLevel, domain: str, operation: str, message: str, **context: Any
    ) -> LogEntry:
        entry = LogEntry(
            level=level, domain=domain, operation=operation, message=message, context=context
        )
        self._entries.append(entry)
        prefix = f"{self.run_id} " if self.run_id else ""
        self._sink.log(level.stdlib_level, f"{prefix}[{domain}/{operation}] {message}")
        return entry

    def debug(self, domain: str, operation: str, message: str, **context: Any) -> LogEntry:
        return self.log(LogLevel.DEBUG, domain, operation, message, **context)

    def info(self, domain: str, operation: str, message: str, **context: Any) -> LogEntry:
        return self.log(LogLevel.INFO, domain, operation, message, **context)

    def warning(self, domain: str, operation: str, message: str, **context: Any) -> LogEntry:
        return self.log(LogLevel.WARNING, domain, operation, message, **context)

    def error(self, domain: str, operation: str, message: str, **context: Any) -> LogEntry:
        return self.log(LogLevel.ERROR, domain, operation, message, **context)

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def by_level(self, level: LogLevel) -> list[LogEntry]:
        return [e for e in self._entries if e.level is level]

    def clear(self) -> None:
        self._entries.clear()
