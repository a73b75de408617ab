"""
Data models for context assembly.

Defines the domain inputs each assembler consumes (system instructions, chat
turns, diffs, runtime events), the ContextMessage they all produce, and the
request/result models of the ContextBuilder.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cairn.core.repo.models import RepoSummary


class MessageRole(str, Enum):
    """Role of a context message in the final prompt."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class SectionKind(str, Enum):
    """Assembly section a context message was produced for."""

    SYSTEM = "system"
    HISTORY = "history"
    REPO = "repo"
    DIFFS = "diffs"
    EVENTS = "events"


class AssemblyStrategy(str, Enum):
    """Policy governing how sections share the token budget."""

    GREEDY = "greedy"
    BALANCED = "balanced"
    CONSERVATIVE = "conservative"


class AgentRole(str, Enum):
    """Role the agent plays for the current turn."""

    PLANNER = "planner"
    CODER = "coder"
    REVIEWER = "reviewer"
    EXECUTOR = "executor"
    GENERIC = "generic"

    @property
    def description(self) -> str:
        """One-line description used in the system instructions."""
        if self is AgentRole.PLANNER:
            return "You are a planning agent. Break goals into small, verifiable steps."
        elif self is AgentRole.CODER:
            return "You are a coding agent. Make focused, working changes to the codebase."
        elif self is AgentRole.REVIEWER:
            return "You are a review agent. Find defects and risks in proposed changes."
        elif self is AgentRole.EXECUTOR:
            return "You are an execution agent. Run commands and report their results."
        elif self is AgentRole.GENERIC:
            return "You are a helpful software engineering agent."
        raise ValueError(f"Unhandled agent role: {self!r}")


class AgentCapability(str, Enum):
    """Capabilities granted to the agent for the current turn."""

    READ_FILES = "read_files"
    WRITE_FILES = "write_files"
    GIT = "git"
    RUN_TESTS = "run_tests"
    SEARCH = "search"
    EXECUTE_CODE = "execute_code"


class ChangeType(str, Enum):
    """Kind of change a diff describes."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class EventType(str, Enum):
    """Kinds of runtime events surfaced to the agent."""

    TOOL_CALL = "tool_call"
    TOOL_ERROR = "tool_error"
    TOOL_RESULT = "tool_result"
    EXECUTION_RESULT = "execution_result"
    USER_INTERRUPTION = "user_interruption"
    AGENT_SWITCH = "agent_switch"
    CHECKPOINT = "checkpoint"


class ContextMessage(BaseModel):
    """One unit of assembled prompt content."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def source(self) -> str | None:
        """Section tag recorded by the assembler that produced this message."""
        return self.metadata.get("source")


# ==============================================================================
# Assembler inputs
# ==============================================================================


class ToolSpec(BaseModel):
    """A tool the agent may call."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""


class SystemInput(BaseModel):
    """Inputs for the system instructions section."""

    model_config = ConfigDict(frozen=True)

    role: AgentRole = AgentRole.GENERIC
    instructions: str = ""
    goal: str | None = None
    capabilities: list[AgentCapability] = Field(default_factory=list)
    tools: list[ToolSpec] = Field(default_factory=list)


class ChatTurn(BaseModel):
    """One past turn of the conversation."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str


class GitDiff(BaseModel):
    """Change to a single file."""

    model_config = ConfigDict(frozen=True)

    path: str
    change_type: ChangeType = ChangeType.MODIFIED
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    patch: str = ""
    old_path: str | None = None


class RuntimeEvent(BaseModel):
    """Something that happened during the agent's previous turns."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    timestamp: datetime
    data: dict[str, Any] = Field(default_factory=dict)


class AssemblySections(BaseModel):
    """Optional domain inputs for each assembly section."""

    model_config = ConfigDict(frozen=True)

    system: SystemInput | None = None
    history: list[ChatTurn] | None = None
    repo: RepoSummary | None = None
    diffs: list[GitDiff] | None = None
    events: list[RuntimeEvent] | None = None

    def present(self) -> list[SectionKind]:
        """Sections that carry content, in output order."""
        found = []
        if self.system is not None:
            found.append(SectionKind.SYSTEM)
        if self.history:
            found.append(SectionKind.HISTORY)
        if self.repo is not None:
            found.append(SectionKind.REPO)
        if self.diffs:
            found.append(SectionKind.DIFFS)
        if self.events:
            found.append(SectionKind.EVENTS)
        return found


class SectionWeights(BaseModel):
    """Proportional budget shares used by the balanced and conservative strategies."""

    model_config = ConfigDict(frozen=True)

    system: float = Field(default=0.25, ge=0.0)
    diffs: float = Field(default=0.25, ge=0.0)
    history: float = Field(default=0.2, ge=0.0)
    repo: float = Field(default=0.2, ge=0.0)
    events: float = Field(default=0.1, ge=0.0)

    def for_section(self, section: SectionKind) -> float:
        if section is SectionKind.SYSTEM:
            return self.system
        elif section is SectionKind.HISTORY:
            return self.history
        elif section is SectionKind.REPO:
            return self.repo
        elif section is SectionKind.DIFFS:
            return self.diffs
        elif section is SectionKind.EVENTS:
            return self.events
        raise ValueError(f"Unhandled section: {section!r}")


# ==============================================================================
# Assembly results
# ==============================================================================


class SectionReport(BaseModel):
    """How one section fared during assembly."""

    model_config = ConfigDict(frozen=True)

    section: SectionKind
    requested_tokens: int
    granted_tokens: int
    truncated: bool = False
    dropped: bool = False


class AssemblyReport(BaseModel):
    """Summary of an assembly call."""

    model_config = ConfigDict(frozen=True)

    strategy: AssemblyStrategy
    total_budget: int
    total_tokens: int
    sections: list[SectionReport] = Field(default_factory=list)

    def for_section(self, section: SectionKind) -> SectionReport | None:
        """Get the report for one section, if it was requested."""
        for report in self.sections:
            if report.section == section:
                return report
        return None


class AssemblyResult(BaseModel):
    """Ordered prompt plus the report that explains it."""

    model_config = ConfigDict(frozen=True)

    messages: list[ContextMessage]
    report: AssemblyReport
