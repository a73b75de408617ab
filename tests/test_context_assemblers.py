"""Tests for section assemblers."""

from datetime import datetime, timezone

import pytest

from cairn.core.context.assemblers import (
    assemble_diffs,
    assemble_events,
    assemble_history,
    assemble_system,
    render_diff_stats_only,
    render_diffs,
    render_event,
    render_system,
)
from cairn.core.context.models import (
    AgentCapability,
    AgentRole,
    ChangeType,
    ChatTurn,
    EventType,
    GitDiff,
    MessageRole,
    RuntimeEvent,
    SystemInput,
    ToolSpec,
)

NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class TestSystemAssembler:
    """Tests for the system section."""

    def test_renders_all_parts(self) -> None:
        """Role, capabilities, goal, and tools all appear."""
        system = SystemInput(
            role=AgentRole.CODER,
            instructions="Prefer small commits.",
            goal="Fix the failing test",
            capabilities=[AgentCapability.GIT, AgentCapability.RUN_TESTS],
            tools=[ToolSpec(name="grep", description="search files"), ToolSpec(name="ls")],
        )
        text = render_system(system)
        assert text.startswith("# System Instructions")
        assert AgentRole.CODER.description in text
        assert "Prefer small commits." in text
        assert "## Capabilities\n\n- git\n- run_tests" in text
        assert "## Current Goal\n\nFix the failing test" in text
        assert "- grep: search files" in text
        assert "- ls" in text

    def test_minimal(self) -> None:
        """Empty optional parts are left out."""
        text = render_system(SystemInput())
        assert "## Capabilities" not in text
        assert "## Current Goal" not in text

    def test_message_tagged(self) -> None:
        """The message has the system role and source tag."""
        message = assemble_system(SystemInput())
        assert message.role is MessageRole.SYSTEM
        assert message.source == "system"


class TestHistoryAssembler:
    """Tests for the history section."""

    def test_oldest_first(self) -> None:
        """Turns are listed in input order."""
        message = assemble_history(
            [
                ChatTurn(role=MessageRole.USER, content="first"),
                ChatTurn(role=MessageRole.ASSISTANT, content="second"),
            ]
        )
        assert message.content.index("first") < message.content.index("second")
        assert "[assistant]" in message.content
        assert message.source == "history"


class TestDiffAssembler:
    """Tests for the diffs section."""

    def test_stats_line(self) -> None:
        """Aggregate stats open the section."""
        diffs = [
            GitDiff(path="a.py", additions=2, deletions=1, patch="+x\n+y\n-z"),
            GitDiff(path="b.py", change_type=ChangeType.ADDED, additions=1, patch="+new"),
        ]
        message = assemble_diffs(diffs)
        assert "Files changed: 2, +3 -1" in message.content
        assert "--- Diff: b.py ---\nType: added" in message.content
        assert message.source == "diffs"

    def test_rename_shows_old_path(self) -> None:
        """Renames mention the old path."""
        diff = GitDiff(path="new.py", change_type=ChangeType.RENAMED, old_path="old.py")
        assert "Type: renamed (from old.py)" in render_diffs([diff])

    def test_line_cap_keeps_head_and_tail(self) -> None:
        """Capped patches keep both ends around an omission marker."""
        patch = "\n".join(f"line {i}" for i in range(10))
        text = render_diffs([GitDiff(path="a.py", patch=patch)], max_lines_per_file=4)
        assert "line 0\nline 1\n[... 6 lines omitted ...]\nline 8\nline 9" in text

    def test_stats_only(self) -> None:
        """Stats-only rendering drops patch bodies."""
        diff = GitDiff(path="a.py", additions=5, deletions=2, patch="+secret")
        text = render_diff_stats_only([diff])
        assert "- a.py (modified) +5 -2" in text
        assert "secret" not in text


class TestEventAssembler:
    """Tests for the events section."""

    @pytest.mark.parametrize("event_type", list(EventType))
    def test_every_type_renders(self, event_type: EventType) -> None:
        """Each event type has a rendering."""
        text = render_event(RuntimeEvent(type=event_type, timestamp=NOW))
        assert text.startswith(f"[{event_type.value}] @ 2026-01-02T03:04:05")

    def test_tool_call_fields(self) -> None:
        """Structured data is dumped as sorted JSON."""
        event = RuntimeEvent(
            type=EventType.TOOL_CALL,
            timestamp=NOW,
            data={"tool": "grep", "input": {"pattern": "TODO", "path": "src"}},
        )
        text = render_event(event)
        assert "Tool: grep" in text
        assert 'Input: {"path": "src", "pattern": "TODO"}' in text

    def test_message_tagged(self) -> None:
        """Events are tool messages tagged with their section."""
        message = assemble_events([RuntimeEvent(type=EventType.CHECKPOINT, timestamp=NOW)])
        assert message.role is MessageRole.TOOL
        assert message.source == "events"
