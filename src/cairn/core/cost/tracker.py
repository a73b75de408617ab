"""
Usage-to-cost conversion and recording.

CostTracker prices a provider call's usage with exact decimal arithmetic
and appends the result to the ledger:

    cost = prompt_tokens / 1000 * input_per_1k
         + completion_tokens / 1000 * output_per_1k

A cost reported by the provider itself takes precedence over the
registry price when present. Amounts are kept exact; nothing is rounded
before it reaches the ledger.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from cairn.core.cost.ledger import CostLedger
from cairn.core.cost.models import CalculatedCost, CostEvent, LLMUsage, PricingEntry, PricingSource
from cairn.core.cost.pricing import PricingResolver
from cairn.core.ids import RunId, SessionId

logger = logging.getLogger(__name__)

THOUSAND = Decimal(1000)


def calculate_cost(
    usage: LLMUsage,
    entry: PricingEntry,
    source: PricingSource = PricingSource.REGISTRY,
) -> CalculatedCost:
    """
    Price one usage record.

    Args:
        usage: Token usage reported for a call
        entry: Resolved price
        source: How the price was resolved

    Returns:
        CalculatedCost with the exact amount

    Example:
        >>> usage = LLMUsage(prompt_tokens=1000, completion_tokens=1000, model="gpt-4o")
        >>> calculate_cost(usage, entry).amount
        Decimal('0.0125')
    """
    if usage.provider_cost is not None:
        amount = usage.provider_cost
        source = PricingSource.PROVIDER_REPORTED
    else:
        amount = (
            Decimal(usage.prompt_tokens) / THOUSAND * entry.input_per_1k
            + Decimal(usage.completion_tokens) / THOUSAND * entry.output_per_1k
        )
    return CalculatedCost(
        amount=amount,
        currency=entry.currency,
        provider=entry.provider,
        model=usage.model,
        pricing_source=source,
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
    )


def estimate_cost(prompt_tokens: int, completion_tokens: int, entry: PricingEntry) -> Decimal:
    """Projected cost of a call that has not happened yet."""
    if prompt_tokens < 0 or completion_tokens < 0:
        raise ValueError("token counts must be >= 0")
    return (
        Decimal(prompt_tokens) / THOUSAND * entry.input_per_1k
        + Decimal(completion_tokens) / THOUSAND * entry.output_per_1k
    )


class CostTracker:
    """
    Converts usage into cost and records it in a ledger.

    Attributes:
        ledger: Ledger receiving cost events
        resolver: Price resolver
    """

    def __init__(self, ledger: CostLedger, resolver: PricingResolver) -> None:
        self.ledger = ledger
        self.resolver = resolver

    def price(
        self,
        provider: str,
        usage: LLMUsage,
        fallback: tuple[PricingEntry, PricingSource] | None = None,
    ) -> CalculatedCost:
        """
        Resolve a price for the usage's model and compute its cost.

        Args:
            provider: Provider that served the call
            usage: Usage reported for the call
            fallback: Price already resolved for the requested model, charged
                when the reported model has no registered price

        Raises:
            PricingError: If no price resolves under strict pricing, the
                provider did not report a cost, and no fallback is given
        """
        entry, source = self.resolver.resolve_for_usage(provider, usage, fallback=fallback)
        return calculate_cost(usage, entry, source)

    def estimate(
        self, provider: str, model: str, prompt_tokens: int, completion_tokens: int
    ) -> Decimal:
        """
        Estimate the cost of a call before making it.

        Raises:
            PricingError: If no price resolves under strict pricing
        """
        entry, _ = self.resolver.resolve(provider, model)
        return estimate_cost(prompt_tokens, completion_tokens, entry)

    def record(
        self,
        run_id: RunId,
        session_id: SessionId,
        cost: CalculatedCost,
        task_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> CostEvent:
        """Append a calculated cost to the ledger."""
        return self.ledger.append(
            run_id, session_id, cost, task_id=task_id, idempotency_key=idempotency_key
        )

    def record_usage(
        self,
        run_id: RunId,
        session_id: SessionId,
        provider: str,
        usage: LLMUsage,
        task_id: str | None = None,
        idempotency_key: str | None = None,
        fallback: tuple[PricingEntry, PricingSource] | None = None,
    ) -> CostEvent:
        """Price a usage record and append it in one step."""
        cost = self.price(provider, usage, fallback=fallback)
        return self.record(run_id, session_id, cost, task_id, idempotency_key)
