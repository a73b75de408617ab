"""
Token-budgeted context assembly.

Turns domain inputs (system instructions, chat history, a repository
summary, diffs, runtime events) into an ordered list of prompt messages
that fits a token budget under one of three strategies.

Modules:
    models: Sections, messages, strategies, and assembly reports.
    tokens: Character-ratio token estimation and truncation.
    budget: Per-assembly token accounting.
    assemblers: Per-section rendering.
    builder: Strategy-driven assembly.
"""

from cairn.core.context.budget import BudgetAllocationError, TokenBudget
from cairn.core.context.builder import (
    ContextAssemblyError,
    ContextBuilder,
    OverBudgetError,
    assemble,
)
from cairn.core.context.models import (
    AgentCapability,
    AgentRole,
    AssemblyReport,
    AssemblyResult,
    AssemblySections,
    AssemblyStrategy,
    ChangeType,
    ChatTurn,
    ContextMessage,
    EventType,
    GitDiff,
    MessageRole,
    RuntimeEvent,
    SectionKind,
    SectionReport,
    SectionWeights,
    SystemInput,
    ToolSpec,
)
from cairn.core.context.tokens import TokenCounter, context_window

__all__ = [
    # Models
    "AgentCapability",
    "AgentRole",
    "AssemblyReport",
    "AssemblyResult",
    "AssemblySections",
    "AssemblyStrategy",
    "ChangeType",
    "ChatTurn",
    "ContextMessage",
    "EventType",
    "GitDiff",
    "MessageRole",
    "RuntimeEvent",
    "SectionKind",
    "SectionReport",
    "SectionWeights",
    "SystemInput",
    "ToolSpec",
    # Tokens
    "BudgetAllocationError",
    "TokenBudget",
    "TokenCounter",
    "context_window",
    # Assembly
    "ContextAssemblyError",
    "ContextBuilder",
    "OverBudgetError",
    "assemble",
]
