"""
Data models for pricing, cost accounting, and budgets.

All monetary amounts are ``Decimal`` so that accumulating many small costs
never drifts. Every model here is frozen: prices are immutable once
loaded, and cost events are append-only records.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cairn.core.ids import RunId, SessionId

GLOBAL_WILDCARD = "*"


class PricingSource(str, Enum):
    """Where the price used for a cost calculation came from."""

    REGISTRY = "registry"
    PROVIDER_DEFAULT = "provider_default"
    GLOBAL_FALLBACK = "global_fallback"
    PROVIDER_REPORTED = "provider_reported"
    ESTIMATED = "estimated"


class EnforcementMode(str, Enum):
    """How budget violations are handled."""

    SOFT = "soft"
    HARD = "hard"


class BudgetScope(str, Enum):
    """Level a budget ceiling applies to."""

    RUN = "run"
    SESSION = "session"


class LLMUsage(BaseModel):
    """
    Token consumption reported for one provider call.

    Example:
        >>> usage = LLMUsage(prompt_tokens=1200, completion_tokens=300, model="gpt-4o")
        >>> usage.total_tokens
        1500
    """

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = Field(ge=0)
    completion_tokens: int = Field(ge=0)
    model: str = Field(min_length=1)
    provider_cost: Decimal | None = Field(
        default=None, ge=0, description="Cost reported by the provider itself, if any"
    )

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class PricingEntry(BaseModel):
    """
    Price for a (provider, model) pair, per 1,000 tokens.

    A model of ``"*"`` is the provider-level default; provider and model
    both ``"*"`` is the global fallback.
    """

    model_config = ConfigDict(frozen=True)

    provider: str = Field(min_length=1)
    model: str = Field(min_length=1)
    input_per_1k: Decimal = Field(ge=0)
    output_per_1k: Decimal = Field(ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    effective_date: date
    source: str = Field(default="builtin", description="Where this price was published")

    @field_validator("provider", "model")
    @classmethod
    def normalize_key(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.model}"

    @property
    def is_provider_default(self) -> bool:
        return self.model == GLOBAL_WILDCARD and self.provider != GLOBAL_WILDCARD

    @property
    def is_global_fallback(self) -> bool:
        return self.model == GLOBAL_WILDCARD and self.provider == GLOBAL_WILDCARD


class CalculatedCost(BaseModel):
    """Monetary cost of one usage record."""

    model_config = ConfigDict(frozen=True)

    amount: Decimal = Field(ge=0)
    currency: str = "USD"
    provider: str
    model: str
    pricing_source: PricingSource
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class CostEvent(BaseModel):
    """Append-only ledger entry."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: f"cost-{uuid.uuid4().hex}")
    idempotency_key: str | None = None
    run_id: RunId
    session_id: SessionId
    task_id: str | None = None
    cost: CalculatedCost
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CostSnapshot(BaseModel):
    """Point-in-time aggregate of a run's or session's cost events."""

    model_config = ConfigDict(frozen=True)

    scope: BudgetScope
    scope_id: str
    total_cost: Decimal = Decimal("0")
    total_tokens: int = 0
    event_count: int = 0
    by_model: dict[str, Decimal] = Field(default_factory=dict)
    by_provider: dict[str, Decimal] = Field(default_factory=dict)
    taken_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BudgetPolicy(BaseModel):
    """
    Spend limits for a session.

    ``None`` ceilings are unlimited. The policy is fixed for a session's
    lifetime unless the session is explicitly reset.
    """

    model_config = ConfigDict(frozen=True)

    per_run_ceiling: Decimal | None = Field(default=None, ge=0)
    per_session_ceiling: Decimal | None = Field(default=None, ge=0)
    enforcement_mode: EnforcementMode = EnforcementMode.HARD
    warning_threshold: float = Field(default=0.8, ge=0.0, le=1.0)

    def ceiling_for(self, scope: BudgetScope) -> Decimal | None:
        if scope is BudgetScope.RUN:
            return self.per_run_ceiling
        elif scope is BudgetScope.SESSION:
            return self.per_session_ceiling
        raise ValueError(f"Unhandled budget scope: {scope!r}")

    def has_any_limit(self) -> bool:
        return self.per_run_ceiling is not None or self.per_session_ceiling is not None
