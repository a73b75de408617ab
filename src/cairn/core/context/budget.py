"""
Token budget bookkeeping for a single assembly call.

A TokenBudget is created per ContextBuilder invocation and never shared.
It tracks total capacity, tokens consumed so far, and optional per-section
reservations. The sum of reservations can never exceed the total, and
consumption can never exceed either the total or the consuming section's
reservation.
"""

from __future__ import annotations


class BudgetAllocationError(ValueError):
    """Raised when a reservation or consumption would overrun the budget."""


class TokenBudget:
    """
    Remaining capacity for context assembly.

    Example:
        >>> budget = TokenBudget(100)
        >>> budget.reserve("system", 40)
        >>> budget.consume("system", 35)
        >>> budget.remaining
        65
        >>> budget.remaining_for("system")
        5
    """

    def __init__(self, total: int) -> None:
        if total < 0:
            raise BudgetAllocationError(f"total must be >= 0, got {total}")
        self._total = total
        self._consumed = 0
        self._reserved: dict[str, int] = {}
        self._used: dict[str, int] = {}

    @property
    def total(self) -> int:
        return self._total

    @property
    def consumed(self) -> int:
        return self._consumed

    @property
    def remaining(self) -> int:
        """Tokens not yet consumed by any section."""
        return self._total - self._consumed

    @property
    def unreserved(self) -> int:
        """Tokens not promised to any section."""
        return self._total - sum(self._reserved.values())

    @property
    def allocations(self) -> dict[str, int]:
        """Copy of the per-section reservations."""
        return dict(self._reserved)

    def reserve(self, section: str, tokens: int) -> None:
        """
        Reserve a share of the budget for a section.

        Args:
            section: Section name
            tokens: Tokens to reserve (replaces any previous reservation)

        Raises:
            BudgetAllocationError: If tokens is negative or reservations
                would exceed the total
        """
        if tokens < 0:
            raise BudgetAllocationError(f"reservation must be >= 0, got {tokens}")
        current = self._reserved.get(section, 0)
        if self.unreserved + current - tokens < 0:
            raise BudgetAllocationError(
                f"Cannot reserve {tokens} tokens for {section}: "
                f"only {self.unreserved + current} unreserved"
            )
        self._reserved[section] = tokens

    def remaining_for(self, section: str) -> int:
        """
        Tokens a section can still consume.

        For a reserved section this is its reservation minus its usage. For
        an unreserved section it is whatever nobody else has reserved or
        consumed.
        """
        if section in self._reserved:
            return self._reserved[section] - self._used.get(section, 0)
        others_reserved_unused = sum(
            amount - self._used.get(name, 0) for name, amount in self._reserved.items()
        )
        return max(0, self.remaining - others_reserved_unused)

    def consume(self, section: str, tokens: int) -> None:
        """
        Record tokens used by a section.

        Raises:
            BudgetAllocationError: If tokens is negative or exceeds what the
                section may still consume
        """
        if tokens < 0:
            raise BudgetAllocationError(f"consumption must be >= 0, got {tokens}")
        available = self.remaining_for(section)
        if tokens > available:
            raise BudgetAllocationError(
                f"Section {section} needs {tokens} tokens but only {available} remain"
            )
        self._used[section] = self._used.get(section, 0) + tokens
        self._consumed += tokens

    def used_by(self, section: str) -> int:
        return self._used.get(section, 0)
