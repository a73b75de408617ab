"""
Pricing, cost accounting, and budget enforcement.

Public API:
    PricingRegistry / PricingResolver: Per-1K-token prices with fallbacks
    CostTracker: Usage -> cost -> ledger
    CostLedger: Append-only, per-session-locked cost events
    BudgetManager: Run and session ceilings with pre/post-call checks

Example:
    >>> from cairn.core.cost import BudgetManager, CostLedger, BudgetPolicy
    >>> ledger = CostLedger()
    >>> manager = BudgetManager(ledger, BudgetPolicy(per_run_ceiling=Decimal("1.00")))
    >>> reservation = manager.pre_check(run_id, session_id, Decimal("0.05"))
"""

from cairn.core.cost.budget import BudgetDecision, BudgetExceededError, BudgetManager
from cairn.core.cost.ledger import CostLedger, Reservation
from cairn.core.cost.models import (
    BudgetPolicy,
    BudgetScope,
    CalculatedCost,
    CostEvent,
    CostSnapshot,
    EnforcementMode,
    LLMUsage,
    PricingEntry,
    PricingSource,
)
from cairn.core.cost.pricing import (
    PricingError,
    PricingRegistry,
    PricingResolver,
    build_resolver,
)
from cairn.core.cost.tracker import CostTracker, calculate_cost, estimate_cost

__all__ = [
    # Models
    "BudgetPolicy",
    "BudgetScope",
    "CalculatedCost",
    "CostEvent",
    "CostSnapshot",
    "EnforcementMode",
    "LLMUsage",
    "PricingEntry",
    "PricingSource",
    # Pricing
    "PricingError",
    "PricingRegistry",
    "PricingResolver",
    "build_resolver",
    # Accounting
    "CostLedger",
    "CostTracker",
    "Reservation",
    "calculate_cost",
    "estimate_cost",
    # Budgets
    "BudgetDecision",
    "BudgetExceededError",
    "BudgetManager",
]
