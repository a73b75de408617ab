"""Core orchestration logic for cairn, independent of any interface."""
