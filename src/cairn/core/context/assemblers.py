"""
Section assemblers for context building.

Each ``assemble_*`` function turns one kind of domain input into a single
ContextMessage. Assemblers are pure: they know nothing about token budgets
and never decide what to cut. The ``render_*`` helpers they use accept an
optional view (a subset of items or a per-file line cap) so the
ContextBuilder can re-render a section smaller without re-implementing its
layout.

Key functions:
    assemble_system: System instructions, role, capabilities, goal, tools
    assemble_history: Conversation transcript, oldest turn first
    assemble_repo: Repository summary block
    assemble_diffs: Aggregate stats plus per-file diff blocks
    assemble_events: Recent runtime events, oldest first
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from cairn.core.context.models import (
    ChangeType,
    ChatTurn,
    ContextMessage,
    EventType,
    GitDiff,
    MessageRole,
    RuntimeEvent,
    SectionKind,
    SystemInput,
)
from cairn.core.repo.models import RepoSummary
from cairn.core.repo.renderer import render_summary

OMITTED_LINES_MARKER = "[... {count} lines omitted ...]"


def _message(role: MessageRole, section: SectionKind, content: str) -> ContextMessage:
    return ContextMessage(role=role, content=content, metadata={"source": section.value})


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


def render_system(system: SystemInput) -> str:
    """Render system instructions as markdown."""
    parts: list[str] = []

    parts.append("# System Instructions\n")
    parts.append(system.role.description)
    if system.instructions:
        parts.append("")
        parts.append(system.instructions.strip())

    if system.capabilities:
        parts.append("")
        parts.append("## Capabilities\n")
        for capability in system.capabilities:
            parts.append(f"- {capability.value}")

    if system.goal:
        parts.append("")
        parts.append("## Current Goal\n")
        parts.append(system.goal.strip())

    if system.tools:
        parts.append("")
        parts.append("## Available Tools\n")
        for tool in system.tools:
            desc = f": {tool.description}" if tool.description else ""
            parts.append(f"- {tool.name}{desc}")

    return "\n".join(parts)


def assemble_system(system: SystemInput) -> ContextMessage:
    return _message(MessageRole.SYSTEM, SectionKind.SYSTEM, render_system(system))


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def render_history(turns: Sequence[ChatTurn]) -> str:
    """Render a transcript of chat turns, oldest first."""
    parts = ["# Conversation History"]
    for turn in turns:
        parts.append("")
        parts.append(f"[{turn.role.value}]")
        parts.append(turn.content)
    return "\n".join(parts)


def assemble_history(turns: Sequence[ChatTurn]) -> ContextMessage:
    return _message(MessageRole.USER, SectionKind.HISTORY, render_history(turns))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


def assemble_repo(summary: RepoSummary) -> ContextMessage:
    return _message(MessageRole.USER, SectionKind.REPO, render_summary(summary))


# ---------------------------------------------------------------------------
# Diffs
# ---------------------------------------------------------------------------


def render_diff_stats(diffs: Sequence[GitDiff]) -> str:
    """Aggregate stats line for a set of diffs."""
    additions = sum(d.additions for d in diffs)
    deletions = sum(d.deletions for d in diffs)
    return f"Files changed: {len(diffs)}, +{additions} -{deletions}"


def _cap_lines(lines: list[str], max_lines: int | None) -> list[str]:
    """Keep the head and tail of ``lines``, cutting from the middle."""
    if max_lines is None or len(lines) <= max_lines:
        return lines
    head = (max_lines + 1) // 2
    tail = max_lines - head
    kept = lines[:head]
    kept.append(OMITTED_LINES_MARKER.format(count=len(lines) - max_lines))
    if tail:
        kept.extend(lines[-tail:])
    return kept


def _describe_change(diff: GitDiff) -> str:
    if diff.change_type is ChangeType.RENAMED and diff.old_path:
        return f"{diff.change_type.value} (from {diff.old_path})"
    if diff.change_type in (
        ChangeType.ADDED,
        ChangeType.MODIFIED,
        ChangeType.DELETED,
        ChangeType.RENAMED,
    ):
        return diff.change_type.value
    raise ValueError(f"Unhandled change type: {diff.change_type!r}")


def render_diffs(diffs: Sequence[GitDiff], max_lines_per_file: int | None = None) -> str:
    """
    Render diffs with stats always present.

    Args:
        diffs: Per-file diffs
        max_lines_per_file: Optional cap on patch lines kept per file; the
            middle of a longer patch is replaced with an omission marker

    Returns:
        Markdown text starting with the aggregate stats line
    """
    parts = ["# Code Changes", render_diff_stats(diffs)]
    for diff in diffs:
        parts.append("")
        parts.append(f"--- Diff: {diff.path} ---")
        parts.append(f"Type: {_describe_change(diff)}")
        parts.append(f"Stats: +{diff.additions} -{diff.deletions}")
        if diff.patch:
            parts.extend(_cap_lines(diff.patch.splitlines(), max_lines_per_file))
    return "\n".join(parts)


def render_diff_stats_only(diffs: Sequence[GitDiff]) -> str:
    """Render only the stats of each diff, with no patch bodies."""
    parts = ["# Code Changes", render_diff_stats(diffs)]
    for diff in diffs:
        parts.append(
            f"- {diff.path} ({_describe_change(diff)}) +{diff.additions} -{diff.deletions}"
        )
    return "\n".join(parts)


def assemble_diffs(diffs: Sequence[GitDiff]) -> ContextMessage:
    return _message(MessageRole.USER, SectionKind.DIFFS, render_diffs(diffs))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


def _dump(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, default=str)


def _event_fields(event: RuntimeEvent) -> list[str]:
    data = event.data
    if event.type is EventType.TOOL_CALL:
        return [f"Tool: {data.get('tool', 'unknown')}", f"Input: {_dump(data.get('input', {}))}"]
    elif event.type is EventType.TOOL_ERROR:
        return [f"Tool: {data.get('tool', 'unknown')}", f"Error: {_dump(data.get('error', ''))}"]
    elif event.type is EventType.TOOL_RESULT:
        return [f"Tool: {data.get('tool', 'unknown')}", f"Output: {_dump(data.get('output', ''))}"]
    elif event.type is EventType.EXECUTION_RESULT:
        return [
            f"Command: {data.get('command', '')}",
            f"Exit code: {data.get('exit_code', '')}",
            f"Output: {_dump(data.get('output', ''))}",
        ]
    elif event.type is EventType.USER_INTERRUPTION:
        return [f"Message: {_dump(data.get('message', ''))}"]
    elif event.type is EventType.AGENT_SWITCH:
        return [
            f"From: {data.get('from', '')}",
            f"To: {data.get('to', '')}",
            f"Reason: {data.get('reason', '')}",
        ]
    elif event.type is EventType.CHECKPOINT:
        return [f"Label: {data.get('label', '')}", f"Summary: {_dump(data.get('summary', ''))}"]
    raise ValueError(f"Unhandled event type: {event.type!r}")


def render_event(event: RuntimeEvent) -> str:
    lines = [f"[{event.type.value}] @ {event.timestamp.isoformat()}"]
    lines.extend(_event_fields(event))
    return "\n".join(lines)


def render_events(events: Sequence[RuntimeEvent]) -> str:
    """Render runtime events, oldest first."""
    parts = ["# Recent Events"]
    for event in events:
        parts.append("")
        parts.append(render_event(event))
    return "\n".join(parts)


def assemble_events(events: Sequence[RuntimeEvent]) -> ContextMessage:
    return _message(MessageRole.TOOL, SectionKind.EVENTS, render_events(events))
