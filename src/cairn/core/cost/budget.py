"""
Budget enforcement against the cost ledger.

BudgetManager gates every provider call twice:

- **pre-check** before the call, using an estimate of its cost. The
  estimate is reserved in the ledger so concurrent runs of the same
  session see each other's pending spend.
- **post-check** after the call, using the real usage-derived cost.

Exceeding the per-run ceiling fails only that run. Exceeding the
per-session ceiling aborts the session: every later pre-check for it is
denied until the session is reset. Incurred cost is never refunded; the
post-check only gates what comes next. In soft mode violations are logged
and the call proceeds; in hard mode they raise BudgetExceededError.

Basic Usage:
    >>> ledger = CostLedger()
    >>> manager = BudgetManager(ledger)
    >>> manager.start_session(session_id, BudgetPolicy(per_run_ceiling=Decimal("1.00")))
    >>> reservation = manager.pre_check(run_id, session_id, Decimal("0.05"))
    >>> # ... provider call, cost recorded in the ledger ...
    >>> decision = manager.post_check(run_id, session_id, reservation)
    >>> decision.allowed
    True
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from cairn.core.cost.ledger import ZERO, CostLedger, Reservation
from cairn.core.cost.models import BudgetPolicy, BudgetScope, EnforcementMode
from cairn.core.ids import RunId, SessionId

logger = logging.getLogger(__name__)


class BudgetExceededError(Exception):
    """
    Raised when a hard budget ceiling blocks or ends execution.

    Attributes:
        scope: Whether the run or the session ceiling was hit
        run_id: Run being checked
        session_id: Session being checked
        current: Spend already committed (plus pending reservations) in that scope
        limit: The ceiling that was hit
        projected: Estimated cost of the call being admitted (pre-check only)
    """

    def __init__(
        self,
        scope: BudgetScope,
        run_id: RunId,
        session_id: SessionId,
        current: Decimal,
        limit: Decimal,
        projected: Decimal = ZERO,
        reason: str | None = None,
    ) -> None:
        self.scope = scope
        self.run_id = run_id
        self.session_id = session_id
        self.current = current
        self.limit = limit
        self.projected = projected
        self.message = reason or (
            f"{scope.value.capitalize()} budget exceeded: ${current:.4f} spent, "
            f"${projected:.4f} projected, limit ${limit:.4f}"
        )
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class BudgetDecision:
    """
    Result of a budget check.

    Indicates whether a call may proceed and, if not, which ceiling
    stopped it.
    """

    allowed: bool
    reason: str | None = None
    scope: BudgetScope | None = None
    limit: Decimal | None = None
    projected: Decimal = ZERO
    current_run: Decimal = ZERO
    current_session: Decimal = ZERO
    warning: str | None = None


class BudgetManager:
    """
    Enforces per-run and per-session ceilings using the ledger.

    Policies are fixed per session; a session without an explicit policy
    uses ``default_policy``.

    Example:
        >>> manager = BudgetManager(CostLedger(), BudgetPolicy(per_session_ceiling=Decimal("5")))
        >>> manager.check_budget(run_id, session_id, Decimal("0.10")).allowed
        True
    """

    def __init__(self, ledger: CostLedger, default_policy: BudgetPolicy | None = None) -> None:
        self._ledger = ledger
        self._default_policy = default_policy or BudgetPolicy()
        self._policies: dict[SessionId, BudgetPolicy] = {}
        self._aborted: set[SessionId] = set()
        self._baselines: dict[SessionId, Decimal] = {}
        self._warned: set[tuple[BudgetScope, str]] = set()

    @property
    def ledger(self) -> CostLedger:
        return self._ledger

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(
        self, session_id: SessionId, policy: BudgetPolicy | None = None
    ) -> BudgetPolicy:
        """
        Fix the budget policy for a session.

        Raises:
            ValueError: If the session already has a different policy
        """
        policy = policy or self._default_policy
        with self._ledger.session_guard(session_id):
            existing = self._policies.get(session_id)
            if existing is not None and existing != policy:
                raise ValueError(
                    f"Session {session_id} already has a budget policy; "
                    "use reset_session to change it"
                )
            self._policies[session_id] = policy
        return policy

    def reset_session(self, session_id: SessionId, policy: BudgetPolicy | None = None) -> None:
        """
        Clear an aborted session and start a new accounting window.

        Spend recorded before the reset stays in the ledger but no longer
        counts against the session ceiling.
        """
        with self._ledger.session_guard(session_id):
            self._aborted.discard(session_id)
            self._baselines[session_id] = self._ledger.session_total(session_id)
            if policy is not None:
                self._policies[session_id] = policy
            self._warned = {w for w in self._warned if w != (BudgetScope.SESSION, session_id)}
        logger.info(f"Budget reset for session {session_id}")

    def policy_for(self, session_id: SessionId) -> BudgetPolicy:
        return self._policies.get(session_id, self._default_policy)

    def is_session_aborted(self, session_id: SessionId) -> bool:
        return session_id in self._aborted

    def session_spend(self, session_id: SessionId) -> Decimal:
        """Committed spend counted against the session ceiling."""
        return self._ledger.session_total(session_id) - self._baselines.get(session_id, ZERO)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_budget(
        self, run_id: RunId, session_id: SessionId, projected_cost: Decimal
    ) -> BudgetDecision:
        """
        Decide whether a call with the given projected cost may proceed.

        Pending reservations count as spend. This never raises or reserves;
        use pre_check to gate a call.

        Args:
            run_id: Run making the call
            session_id: Session the run belongs to
            projected_cost: Estimated cost of the call

        Returns:
            BudgetDecision with ``allowed`` False if a ceiling would be hit
        """
        if projected_cost < 0:
            raise ValueError(f"projected_cost must be >= 0, got {projected_cost}")

        with self._ledger.session_guard(session_id):
            policy = self.policy_for(session_id)
            run_spent = self._ledger.run_total(run_id)
            run_pending = self._ledger.reserved(session_id, run_id)
            session_spent = self.session_spend(session_id)
            session_pending = self._ledger.reserved(session_id)

            common = {
                "projected": projected_cost,
                "current_run": run_spent,
                "current_session": session_spent,
            }

            session_limit = policy.per_session_ceiling
            if self.is_session_aborted(session_id):
                return BudgetDecision(
                    allowed=False,
                    reason=f"Session {session_id} was aborted after exceeding its budget",
                    scope=BudgetScope.SESSION,
                    limit=session_limit,
                    **common,
                )
            if session_limit is not None and (
                session_spent >= session_limit
                or session_spent + session_pending + projected_cost > session_limit
            ):
                return BudgetDecision(
                    allowed=False,
                    reason=(
                        f"Session budget would be exceeded: ${session_spent:.4f} spent, "
                        f"${session_pending:.4f} pending, ${projected_cost:.4f} projected, "
                        f"limit ${session_limit:.4f}"
                    ),
                    scope=BudgetScope.SESSION,
                    limit=session_limit,
                    **common,
                )

            run_limit = policy.per_run_ceiling
            if run_limit is not None and (
                run_spent >= run_limit or run_spent + run_pending + projected_cost > run_limit
            ):
                return BudgetDecision(
                    allowed=False,
                    reason=(
                        f"Run budget would be exceeded: ${run_spent:.4f} spent, "
                        f"${projected_cost:.4f} projected, limit ${run_limit:.4f}"
                    ),
                    scope=BudgetScope.RUN,
                    limit=run_limit,
                    **common,
                )

            warning = self._warning(policy, run_id, session_id, run_spent, session_spent)
            return BudgetDecision(allowed=True, warning=warning, **common)

    def pre_check(
        self, run_id: RunId, session_id: SessionId, projected_cost: Decimal
    ) -> Reservation:
        """
        Admit a call and reserve its projected cost.

        The check and the reservation happen under the session lock, so two
        concurrent pre-checks cannot both be admitted against the same
        remaining budget.

        Returns:
            Reservation to pass to post_check

        Raises:
            BudgetExceededError: If a ceiling would be hit in hard mode
        """
        with self._ledger.session_guard(session_id):
            decision = self.check_budget(run_id, session_id, projected_cost)
            if not decision.allowed:
                self._enforce(decision, run_id, session_id)
            return self._ledger.reserve(session_id, run_id, projected_cost)

    def post_check(
        self,
        run_id: RunId,
        session_id: SessionId,
        reservation: Reservation | None = None,
    ) -> BudgetDecision:
        """
        Release the call's reservation and check real spend.

        Args:
            run_id: Run that made the call
            session_id: Session the run belongs to
            reservation: Reservation returned by pre_check

        Returns:
            BudgetDecision for the committed totals

        Raises:
            BudgetExceededError: If a ceiling was exceeded in hard mode. For
                the session scope the session is also marked aborted.
        """
        with self._ledger.session_guard(session_id):
            if reservation is not None:
                self._ledger.release(reservation)
            policy = self.policy_for(session_id)
            run_spent = self._ledger.run_total(run_id)
            session_spent = self.session_spend(session_id)
            common = {"current_run": run_spent, "current_session": session_spent}

            session_limit = policy.per_session_ceiling
            if session_limit is not None and session_spent > session_limit:
                decision = BudgetDecision(
                    allowed=False,
                    reason=(
                        f"Session budget exceeded: ${session_spent:.4f} / ${session_limit:.4f}"
                    ),
                    scope=BudgetScope.SESSION,
                    limit=session_limit,
                    **common,
                )
                if policy.enforcement_mode is EnforcementMode.HARD:
                    self._aborted.add(session_id)
                self._enforce(decision, run_id, session_id)
                return decision

            run_limit = policy.per_run_ceiling
            if run_limit is not None and run_spent > run_limit:
                decision = BudgetDecision(
                    allowed=False,
                    reason=f"Run budget exceeded: ${run_spent:.4f} / ${run_limit:.4f}",
                    scope=BudgetScope.RUN,
                    limit=run_limit,
                    **common,
                )
                self._enforce(decision, run_id, session_id)
                return decision

            warning = self._warning(policy, run_id, session_id, run_spent, session_spent)
            return BudgetDecision(allowed=True, warning=warning, **common)

    def release(self, reservation: Reservation) -> None:
        """Drop a reservation for a call that never completed."""
        self._ledger.release(reservation)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def get_percentage(
        self, scope: BudgetScope, run_id: RunId, session_id: SessionId
    ) -> float | None:
        """
        Percentage of a ceiling already spent.

        Returns:
            Percentage used (0-100+), or None if that ceiling is not set
        """
        limit = self.policy_for(session_id).ceiling_for(scope)
        if limit is None or limit == 0:
            return None
        if scope is BudgetScope.RUN:
            spent = self._ledger.run_total(run_id)
        elif scope is BudgetScope.SESSION:
            spent = self.session_spend(session_id)
        else:
            raise ValueError(f"Unhandled budget scope: {scope!r}")
        return float(spent / limit * 100)

    def _enforce(self, decision: BudgetDecision, run_id: RunId, session_id: SessionId) -> None:
        policy = self.policy_for(session_id)
        assert decision.scope is not None
        if policy.enforcement_mode is EnforcementMode.SOFT:
            logger.warning(f"Soft budget limit: {decision.reason} (run {run_id})")
            return
        if decision.scope is BudgetScope.RUN:
            current = decision.current_run
        else:
            current = decision.current_session
        raise BudgetExceededError(
            scope=decision.scope,
            run_id=run_id,
            session_id=session_id,
            current=current,
            limit=decision.limit if decision.limit is not None else ZERO,
            projected=decision.projected,
            reason=decision.reason,
        )

    def _warning(
        self,
        policy: BudgetPolicy,
        run_id: RunId,
        session_id: SessionId,
        run_spent: Decimal,
        session_spent: Decimal,
    ) -> str | None:
        """Warn once per scope when spend crosses the warning threshold."""
        threshold = Decimal(str(policy.warning_threshold))
        for scope, scope_id, spent in (
            (BudgetScope.SESSION, session_id, session_spent),
            (BudgetScope.RUN, run_id, run_spent),
        ):
            limit = policy.ceiling_for(scope)
            if limit is None or limit == 0 or spent < limit * threshold:
                continue
            if (scope, scope_id) in self._warned:
                continue
            self._warned.add((scope, scope_id))
            message = (
                f"{scope.value.capitalize()} budget at {float(spent / limit * 100):.1f}% "
                f"(${spent:.4f} / ${limit:.4f})"
            )
            logger.warning(message)
            return message
        return None
