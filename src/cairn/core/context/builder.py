"""
Budget-aware context assembly.

The ContextBuilder runs every assembler for the sections a request carries,
then applies an assembly strategy to decide how much of each section
survives inside a fresh TokenBudget:

- greedy: sections in priority order (system > diffs > history > repo >
  events) are included whole while they fit; the first one that does not
  is truncated to what is left and everything after it is dropped
- balanced: each section gets a fixed share of the budget from the
  configured weights and is truncated to its own share; unused share is
  not redistributed
- conservative: balanced over the budget minus a headroom fraction, and
  the system section is never cut below ``min_system_tokens``

Truncation keeps the newest history turns and events, the most important
repository files, and the head and tail of each diff with its stats line.
Output order is always system, history, repo, diffs, events, and the same
inputs always produce byte-identical output.

Usage:
    >>> builder = ContextBuilder()
    >>> result = builder.assemble(sections, AssemblyStrategy.GREEDY, 4000)
    >>> result.report.total_tokens <= 4000
    True
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from cairn.core.context.assemblers import (
    assemble_diffs,
    assemble_events,
    assemble_history,
    assemble_repo,
    assemble_system,
    render_diff_stats,
    render_diff_stats_only,
    render_diffs,
    render_events,
    render_history,
)
from cairn.core.context.budget import TokenBudget
from cairn.core.context.models import (
    AssemblyReport,
    AssemblyResult,
    AssemblySections,
    AssemblyStrategy,
    ChatTurn,
    ContextMessage,
    SectionKind,
    SectionReport,
    SectionWeights,
)
from cairn.core.context.tokens import TokenCounter
from cairn.core.repo.renderer import render_summary

logger = logging.getLogger(__name__)

GREEDY_PRIORITY: tuple[SectionKind, ...] = (
    SectionKind.SYSTEM,
    SectionKind.DIFFS,
    SectionKind.HISTORY,
    SectionKind.REPO,
    SectionKind.EVENTS,
)

OUTPUT_ORDER: tuple[SectionKind, ...] = (
    SectionKind.SYSTEM,
    SectionKind.HISTORY,
    SectionKind.REPO,
    SectionKind.DIFFS,
    SectionKind.EVENTS,
)

HEADROOM_SECTION = "headroom"


class ContextAssemblyError(Exception):
    """Base class for assembly failures."""


class OverBudgetError(ContextAssemblyError):
    """
    Raised when a mandatory section cannot fit within its budget.

    Attributes:
        section: Section that did not fit
        required: Tokens the section needs (or its minimum viable size)
        available: Tokens that were available to it
    """

    def __init__(self, section: SectionKind, required: int, available: int) -> None:
        self.section = section
        self.required = required
        self.available = available
        super().__init__(
            f"{section.value} section needs {required} tokens but only {available} are available"
        )


@dataclass
class _Candidate:
    section: SectionKind
    full: ContextMessage
    full_tokens: int


class ContextBuilder:
    """
    Applies an assembly strategy to assembler outputs under a token budget.

    Attributes:
        counter: Token estimator
        model: Model id used for token estimates
        weights: Section shares for balanced/conservative
        headroom_fraction: Fraction of the budget conservative leaves unused
        min_system_tokens: Smallest system section conservative will accept
    """

    def __init__(
        self,
        counter: TokenCounter | None = None,
        model: str | None = None,
        weights: SectionWeights | None = None,
        headroom_fraction: float = 0.15,
        min_system_tokens: int = 64,
    ) -> None:
        if not 0.0 <= headroom_fraction < 1.0:
            raise ValueError(f"headroom_fraction must be in [0, 1), got {headroom_fraction}")
        if min_system_tokens < 0:
            raise ValueError(f"min_system_tokens must be >= 0, got {min_system_tokens}")
        self.counter = counter or TokenCounter()
        self.model = model
        self.weights = weights or SectionWeights()
        self.headroom_fraction = headroom_fraction
        self.min_system_tokens = min_system_tokens

    def count(self, text: str) -> int:
        return self.counter.count(text, self.model)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def assemble(
        self,
        sections: AssemblySections,
        strategy: AssemblyStrategy,
        total_budget: int,
    ) -> AssemblyResult:
        """
        Assemble sections into an ordered prompt that fits the budget.

        Args:
            sections: Domain inputs per section (absent sections are skipped)
            strategy: Assembly strategy
            total_budget: Token capacity of the whole prompt

        Returns:
            AssemblyResult with messages in output order and a report

        Raises:
            OverBudgetError: If the system section cannot fit
            ValueError: If total_budget is negative
        """
        if total_budget < 0:
            raise ValueError(f"total_budget must be >= 0, got {total_budget}")

        candidates = {c.section: c for c in self._candidates(sections)}
        budget = TokenBudget(total_budget)

        if strategy is AssemblyStrategy.GREEDY:
            chosen = self._greedy(candidates, sections, budget)
        elif strategy is AssemblyStrategy.BALANCED:
            chosen = self._proportional(candidates, sections, budget, conservative=False)
        elif strategy is AssemblyStrategy.CONSERVATIVE:
            chosen = self._proportional(candidates, sections, budget, conservative=True)
        else:
            raise ValueError(f"Unhandled assembly strategy: {strategy!r}")

        messages: list[ContextMessage] = []
        reports: list[SectionReport] = []
        for section in OUTPUT_ORDER:
            if section not in candidates:
                continue
            candidate = candidates[section]
            message = chosen.get(section)
            granted = self.count(message.content) if message is not None else 0
            if message is not None:
                messages.append(message)
            reports.append(
                SectionReport(
                    section=section,
                    requested_tokens=candidate.full_tokens,
                    granted_tokens=granted,
                    truncated=message is not None and message != candidate.full,
                    dropped=message is None,
                )
            )

        total_tokens = sum(r.granted_tokens for r in reports)
        logger.debug(
            f"Assembled {len(messages)} sections with {strategy.value}: "
            f"{total_tokens}/{total_budget} tokens"
        )
        return AssemblyResult(
            messages=messages,
            report=AssemblyReport(
                strategy=strategy,
                total_budget=total_budget,
                total_tokens=total_tokens,
                sections=reports,
            ),
        )

    def _candidates(self, sections: AssemblySections) -> list[_Candidate]:
        found = []
        for section in sections.present():
            if section is SectionKind.SYSTEM and sections.system is not None:
                message = assemble_system(sections.system)
            elif section is SectionKind.HISTORY and sections.history:
                message = assemble_history(sections.history)
            elif section is SectionKind.REPO and sections.repo is not None:
                message = assemble_repo(sections.repo)
            elif section is SectionKind.DIFFS and sections.diffs:
                message = assemble_diffs(sections.diffs)
            elif section is SectionKind.EVENTS and sections.events:
                message = assemble_events(sections.events)
            else:
                raise ValueError(f"Unhandled section: {section!r}")
            found.append(_Candidate(section, message, self.count(message.content)))
        return found

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _greedy(
        self,
        candidates: dict[SectionKind, _Candidate],
        sections: AssemblySections,
        budget: TokenBudget,
    ) -> dict[SectionKind, ContextMessage]:
        chosen: dict[SectionKind, ContextMessage] = {}
        exhausted = False

        for section in GREEDY_PRIORITY:
            candidate = candidates.get(section)
            if candidate is None:
                continue
            name = section.value

            if section is SectionKind.SYSTEM:
                if candidate.full_tokens > budget.remaining:
                    raise OverBudgetError(section, candidate.full_tokens, budget.remaining)
                budget.consume(name, candidate.full_tokens)
                chosen[section] = candidate.full
                continue

            if exhausted:
                continue

            if candidate.full_tokens <= budget.remaining:
                budget.consume(name, candidate.full_tokens)
                chosen[section] = candidate.full
                continue

            exhausted = True
            fitted = self._fit(candidate, sections, budget.remaining)
            if fitted is not None:
                budget.consume(name, self.count(fitted.content))
                chosen[section] = fitted

        return chosen

    def _proportional(
        self,
        candidates: dict[SectionKind, _Candidate],
        sections: AssemblySections,
        budget: TokenBudget,
        conservative: bool,
    ) -> dict[SectionKind, ContextMessage]:
        usable = budget.total
        if conservative:
            headroom = math.ceil(budget.total * self.headroom_fraction)
            budget.reserve(HEADROOM_SECTION, headroom)
            usable -= headroom

        shares = self._shares(list(candidates), usable)
        for section, share in shares.items():
            budget.reserve(section.value, share)

        chosen: dict[SectionKind, ContextMessage] = {}
        for section in OUTPUT_ORDER:
            candidate = candidates.get(section)
            if candidate is None:
                continue
            share = shares[section]
            name = section.value

            if candidate.full_tokens <= share:
                budget.consume(name, candidate.full_tokens)
                chosen[section] = candidate.full
                continue

            if section is SectionKind.SYSTEM and conservative and share < self.min_system_tokens:
                raise OverBudgetError(section, self.min_system_tokens, share)

            fitted = self._fit(candidate, sections, share)
            if fitted is None:
                if section is SectionKind.SYSTEM:
                    raise OverBudgetError(section, candidate.full_tokens, share)
                continue
            budget.consume(name, self.count(fitted.content))
            chosen[section] = fitted

        return chosen

    def _shares(self, present: Sequence[SectionKind], usable: int) -> dict[SectionKind, int]:
        weights = {section: self.weights.for_section(section) for section in present}
        total_weight = sum(weights.values())
        if present and total_weight <= 0:
            raise ValueError("Section weights for the requested sections sum to zero")
        return {
            section: math.floor(usable * weight / total_weight)
            for section, weight in weights.items()
        }

    # ------------------------------------------------------------------
    # Truncation
    # ------------------------------------------------------------------

    def _fit(
        self,
        candidate: _Candidate,
        sections: AssemblySections,
        limit: int,
    ) -> ContextMessage | None:
        """Shrink a section to ``limit`` tokens, or return None if nothing useful fits."""
        if limit <= 0:
            return None
        section = candidate.section

        if section is SectionKind.SYSTEM:
            text = self.counter.truncate_to_tokens(
                candidate.full.content, limit, self.model, keep="head"
            )
        elif section is SectionKind.HISTORY:
            text = self._fit_history(list(sections.history or []), limit)
        elif section is SectionKind.REPO:
            text = self._fit_repo(sections, limit)
        elif section is SectionKind.DIFFS:
            text = self._fit_diffs(sections, limit)
        elif section is SectionKind.EVENTS:
            text = self._fit_events(sections, limit)
        else:
            raise ValueError(f"Unhandled section: {section!r}")

        if not text or self.count(text) > limit:
            return None
        return candidate.full.model_copy(update={"content": text})

    def _fit_history(self, turns: list[ChatTurn], limit: int) -> str | None:
        for start in range(len(turns)):
            text = render_history(turns[start:])
            if self.count(text) <= limit:
                return text
        if not turns:
            return None
        newest = turns[-1]
        frame = render_history([newest.model_copy(update={"content": ""})])
        content_limit = limit - self.count(frame)
        if content_limit <= 0:
            return None
        content = self.counter.truncate_to_tokens(
            newest.content, content_limit, self.model, keep="tail"
        )
        if not content:
            return None
        return render_history([newest.model_copy(update={"content": content})])

    def _fit_events(self, sections: AssemblySections, limit: int) -> str | None:
        events = list(sections.events or [])
        for start in range(len(events)):
            text = render_events(events[start:])
            if self.count(text) <= limit:
                return text
        if not events:
            return None
        return self.counter.truncate_to_tokens(
            render_events(events[-1:]), limit, self.model, keep="head"
        )

    def _fit_repo(self, sections: AssemblySections, limit: int) -> str | None:
        summary = sections.repo
        if summary is None:
            return None
        found = self._largest_fitting(
            len(summary.files), lambda k: render_summary(summary, max_files=k), limit
        )
        if found is not None:
            return found
        return self.counter.truncate_to_tokens(
            render_summary(summary, max_files=0), limit, self.model, keep="head"
        )

    def _fit_diffs(self, sections: AssemblySections, limit: int) -> str | None:
        diffs = list(sections.diffs or [])
        longest = max((len(d.patch.splitlines()) for d in diffs), default=0)
        found = self._largest_fitting(longest, lambda k: render_diffs(diffs, k), limit)
        if found is not None:
            return found
        for text in (
            render_diff_stats_only(diffs),
            "# Code Changes\n" + render_diff_stats(diffs),
        ):
            if self.count(text) <= limit:
                return text
        return None

    def _largest_fitting(
        self, upper: int, render: Callable[[int], str], limit: int
    ) -> str | None:
        """Binary search the largest ``k`` in [0, upper] whose rendering fits."""
        best: str | None = None
        low, high = 0, upper
        while low <= high:
            mid = (low + high) // 2
            text = render(mid)
            if self.count(text) <= limit:
                best = text
                low = mid + 1
            else:
                high = mid - 1
        return best


def assemble(
    sections: AssemblySections,
    strategy: AssemblyStrategy,
    total_budget: int,
    builder: ContextBuilder | None = None,
) -> list[ContextMessage]:
    """Assemble sections and return only the ordered messages."""
    return (builder or ContextBuilder()).assemble(sections, strategy, total_budget).messages
