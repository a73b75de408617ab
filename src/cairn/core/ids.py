"""
Opaque identifiers for runs and sessions.

RunId and SessionId are distinct NewTypes over ``str`` so a type checker
rejects passing one where the other is expected, or a bare string where
either is expected.

Usage:
    >>> from cairn.core.ids import new_run_id, new_session_id
    >>> run_id = new_run_id()
    >>> run_id.startswith("run-")
    True
"""

from __future__ import annotations

import uuid
from typing import NewType

RunId = NewType("RunId", str)
SessionId = NewType("SessionId", str)


def new_run_id() -> RunId:
    """Generate a globally unique run identifier."""
    return RunId(f"run-{uuid.uuid4().hex}")


def new_session_id() -> SessionId:
    """Generate a globally unique session identifier."""
    return SessionId(f"session-{uuid.uuid4().hex}")


__all__ = ["RunId", "SessionId", "new_run_id", "new_session_id"]
