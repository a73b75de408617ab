"""
Cairn - orchestration core for AI coding agents.

Assembles token-bounded prompts, dispatches them to metered model providers,
accounts for their cost against run and session budgets, and records an
execution timeline for every run.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
