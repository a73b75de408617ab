"""
In-memory append-only cost ledger.

The ledger is the one piece of mutable state shared by concurrent runs of
a session. Every mutation and every budget read for a session happens
under that session's lock, so different sessions never contend with each
other. A registry lock guards only the creation of session locks.

Besides committed cost events, the ledger tracks *reservations*: the
estimated cost of provider calls that passed a pre-check but have not
reported usage yet. Budget checks count reservations as spend, which is
what stops two concurrent runs from both passing a pre-check that would
jointly exceed the session ceiling.

Usage:
    >>> ledger = CostLedger()
    >>> event = ledger.append(run_id, session_id, cost, idempotency_key="run-1:task-1:1")
    >>> ledger.session_total(session_id) == cost.amount
    True
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal

from cairn.core.cost.models import BudgetScope, CalculatedCost, CostEvent, CostSnapshot
from cairn.core.ids import RunId, SessionId

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class Reservation:
    """Pending estimated cost held against a session between pre- and post-check."""

    reservation_id: str
    run_id: RunId
    session_id: SessionId
    amount: Decimal


class _SessionBook:
    """Per-session events, cached totals, and reservations."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.events: list[CostEvent] = []
        self.total = ZERO
        self.run_totals: dict[RunId, Decimal] = defaultdict(lambda: ZERO)
        self.reservations: dict[str, Reservation] = {}

    def reserved(self, run_id: RunId | None = None) -> Decimal:
        return sum(
            (r.amount for r in self.reservations.values() if run_id is None or r.run_id == run_id),
            ZERO,
        )


class CostLedger:
    """
    Append-only store of cost events keyed by run and session.

    Cached running totals are updated on every append and always equal the
    sum of the stored events; ``verify()`` recomputes them to prove it.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._books: dict[SessionId, _SessionBook] = {}
        self._run_sessions: dict[RunId, SessionId] = {}
        self._idempotency: dict[str, CostEvent] = {}

    def _book(self, session_id: SessionId) -> _SessionBook:
        with self._registry_lock:
            book = self._books.get(session_id)
            if book is None:
                book = _SessionBook()
                self._books[session_id] = book
            return book

    @contextmanager
    def session_guard(self, session_id: SessionId) -> Iterator[None]:
        """Hold the session's lock so a check and an append cannot interleave."""
        book = self._book(session_id)
        with book.lock:
            yield

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(
        self,
        run_id: RunId,
        session_id: SessionId,
        cost: CalculatedCost,
        task_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> CostEvent:
        """
        Append a cost event.

        Args:
            run_id: Run that incurred the cost
            session_id: Session the run belongs to
            cost: Calculated cost of one provider call
            task_id: Optional task identifier
            idempotency_key: Optional key; appending the same key twice
                returns the original event without recording it again

        Returns:
            The stored (or previously stored) CostEvent

        Raises:
            ValueError: If the run was already recorded under another session
        """
        book = self._book(session_id)
        with book.lock:
            if idempotency_key is not None:
                with self._registry_lock:
                    existing = self._idempotency.get(idempotency_key)
                if existing is not None:
                    logger.debug(f"Skipping duplicate cost event {idempotency_key}")
                    return existing

            with self._registry_lock:
                owner = self._run_sessions.setdefault(run_id, session_id)
            if owner != session_id:
                raise ValueError(f"Run {run_id} belongs to session {owner}, not {session_id}")

            event = CostEvent(
                run_id=run_id,
                session_id=session_id,
                task_id=task_id,
                cost=cost,
                idempotency_key=idempotency_key,
            )
            book.events.append(event)
            book.total += cost.amount
            book.run_totals[run_id] += cost.amount
            if idempotency_key is not None:
                with self._registry_lock:
                    self._idempotency[idempotency_key] = event

        logger.debug(
            f"Recorded {cost.amount} {cost.currency} for run {run_id} "
            f"({cost.provider}:{cost.model}, {cost.pricing_source.value})"
        )
        return event

    def reserve(self, session_id: SessionId, run_id: RunId, amount: Decimal) -> Reservation:
        """Hold an estimated amount against the session until released."""
        if amount < 0:
            raise ValueError(f"reservation amount must be >= 0, got {amount}")
        book = self._book(session_id)
        reservation = Reservation(
            reservation_id=f"resv-{uuid.uuid4().hex}",
            run_id=run_id,
            session_id=session_id,
            amount=amount,
        )
        with book.lock:
            book.reservations[reservation.reservation_id] = reservation
        return reservation

    def release(self, reservation: Reservation) -> None:
        """Drop a reservation. Releasing twice is a no-op."""
        book = self._book(reservation.session_id)
        with book.lock:
            book.reservations.pop(reservation.reservation_id, None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def session_total(self, session_id: SessionId) -> Decimal:
        book = self._book(session_id)
        with book.lock:
            return book.total

    def run_total(self, run_id: RunId) -> Decimal:
        session_id = self._run_sessions.get(run_id)
        if session_id is None:
            return ZERO
        book = self._book(session_id)
        with book.lock:
            return book.run_totals[run_id]

    def reserved(self, session_id: SessionId, run_id: RunId | None = None) -> Decimal:
        """Sum of outstanding reservations for a session, optionally one run."""
        book = self._book(session_id)
        with book.lock:
            return book.reserved(run_id)

    def events(
        self, run_id: RunId | None = None, session_id: SessionId | None = None
    ) -> list[CostEvent]:
        """Events in append order, optionally filtered by run and/or session."""
        if session_id is None and run_id is not None:
            session_id = self._run_sessions.get(run_id)
            if session_id is None:
                return []
        if session_id is not None:
            books = [self._book(session_id)]
        else:
            with self._registry_lock:
                books = list(self._books.values())

        found: list[CostEvent] = []
        for book in books:
            with book.lock:
                found.extend(e for e in book.events if run_id is None or e.run_id == run_id)
        if session_id is None:
            found.sort(key=lambda e: e.created_at)
        return found

    def snapshot_run(self, run_id: RunId) -> CostSnapshot:
        """Aggregate cost of one run."""
        events = self.events(run_id=run_id)
        return self._snapshot(BudgetScope.RUN, run_id, events, self.run_total(run_id))

    def snapshot_session(self, session_id: SessionId) -> CostSnapshot:
        """Aggregate cost of one session."""
        book = self._book(session_id)
        with book.lock:
            events = list(book.events)
            total = book.total
        return self._snapshot(BudgetScope.SESSION, session_id, events, total)

    @staticmethod
    def _snapshot(
        scope: BudgetScope, scope_id: str, events: list[CostEvent], cached_total: Decimal
    ) -> CostSnapshot:
        by_model: dict[str, Decimal] = defaultdict(lambda: ZERO)
        by_provider: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for event in events:
            by_model[event.cost.model] += event.cost.amount
            by_provider[event.cost.provider] += event.cost.amount
        return CostSnapshot(
            scope=scope,
            scope_id=scope_id,
            total_cost=cached_total,
            total_tokens=sum(e.cost.total_tokens for e in events),
            event_count=len(events),
            by_model=dict(by_model),
            by_provider=dict(by_provider),
        )

    def verify(self) -> bool:
        """Recompute every cached total from events and compare."""
        with self._registry_lock:
            books = list(self._books.values())
        for book in books:
            with book.lock:
                if book.total != sum((e.cost.amount for e in book.events), ZERO):
                    return False
                for run_id, total in book.run_totals.items():
                    expected = sum(
                        (e.cost.amount for e in book.events if e.run_id == run_id), ZERO
                    )
                    if total != expected:
                        return False
        return True
