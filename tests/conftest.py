"""
Pytest configuration and shared fixtures.

Provides fixtures for temp repositories, a scripted fake provider, the
model registry, cost ledger, and a run engine factory used across the
test suite.
"""

import asyncio
import os
from collections.abc import Callable
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from cairn.core.config.loader import clear_cache
from cairn.core.config.models import CairnConfig, ExecutionConfig, RetryConfig
from cairn.core.context.models import ContextMessage
from cairn.core.cost.ledger import CostLedger
from cairn.core.cost.models import BudgetPolicy, LLMUsage
from cairn.core.engine.provider import (
    ModelRegistry,
    ProviderConfig,
    ProviderOptions,
    ProviderResponse,
)
from cairn.core.engine.run_engine import RunEngine


# ==============================================================================
# Directory Fixtures
# ==============================================================================


def write_file(root: Path, relative: str, content: str = "x\n", mtime: float | None = None) -> Path:
    """Create a file (and its parents) under root."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def temp_repo(tmp_path):
    """
    Provide a small repository tree.

    Creates:
    - src/main.py, src/utils.py (source, main is an entry point)
    - tests/test_utils.py (test)
    - README.md, docs/guide.md (doc)
    - pyproject.toml (config)
    - node_modules/lib/index.js, .git/config, dist/bundle.min.js (excluded)
    """
    repo = tmp_path / "repo"
    repo.mkdir()
    write_file(repo, "src/main.py", "def main():\n    print('hi')\n")
    write_file(repo, "src/utils.py", "def add(a, b):\n    return a + b\n")
    write_file(repo, "tests/test_utils.py", "def test_add():\n    assert True\n")
    write_file(repo, "README.md", "# Demo\n")
    write_file(repo, "docs/guide.md", "Guide\n")
    write_file(repo, "pyproject.toml", "[project]\nname = 'demo'\n")
    write_file(repo, "node_modules/lib/index.js", "module.exports = 1\n")
    write_file(repo, ".git/config", "[core]\n")
    write_file(repo, "dist/bundle.min.js", "var a=1\n")
    return repo


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from the real user config and CAIRN_* variables."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for key in list(os.environ):
        if key.startswith("CAIRN_"):
            monkeypatch.delenv(key, raising=False)
    clear_cache()
    yield
    clear_cache()


# ==============================================================================
# Provider Fixtures
# ==============================================================================


def make_usage(
    prompt_tokens: int = 100,
    completion_tokens: int = 50,
    model: str = "gpt-4o",
    provider_cost: Decimal | None = None,
) -> LLMUsage:
    return LLMUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        model=model,
        provider_cost=provider_cost,
    )


class ScriptedProvider:
    """
    Fake provider that plays back a script of outcomes, one per call.

    Script items:
    - an exception instance: raised
    - a float: sleep that many seconds, then return the default response
    - ScriptedProvider.HANG: block until cancelled
    - anything else: returned as-is
    Once the script runs out every call returns the default response.
    """

    HANG = "hang"

    def __init__(
        self,
        model_id: str = "gpt-4o",
        script: list[Any] | None = None,
        usage: LLMUsage | None = None,
    ) -> None:
        self._model_id = model_id
        self.script = list(script or [])
        self.usage = usage or make_usage(model=model_id)
        self.calls: list[tuple[list[ContextMessage], ProviderOptions]] = []
        self.configs: list[ProviderConfig] = []

    @property
    def id(self) -> str:
        return f"scripted-{self._model_id}"

    @property
    def display_name(self) -> str:
        return "Scripted"

    @property
    def model_id(self) -> str:
        return self._model_id

    def factory(self, config: ProviderConfig) -> "ScriptedProvider":
        self.configs.append(config)
        return self

    async def execute(
        self, prompt: list[ContextMessage], options: ProviderOptions
    ) -> ProviderResponse:
        self.calls.append((prompt, options))
        outcome = self.script.pop(0) if self.script else None
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == self.HANG:
            await asyncio.Event().wait()
        if isinstance(outcome, float):
            await asyncio.sleep(outcome)
            outcome = None
        if outcome is None:
            return ProviderResponse(content="done", usage=self.usage)
        return outcome


@pytest.fixture
def scripted_provider():
    """Provide a ScriptedProvider for gpt-4o with an empty script."""
    return ScriptedProvider()


@pytest.fixture
def registry(scripted_provider):
    """Provide a ModelRegistry serving gpt-4o from the scripted provider."""
    registry = ModelRegistry()
    registry.register(
        "gpt-4o",
        scripted_provider.factory,
        ProviderConfig(provider="openai", api_key="sk-test"),
    )
    return registry


# ==============================================================================
# Engine Fixtures
# ==============================================================================


@pytest.fixture
def ledger():
    """Provide an empty CostLedger."""
    return CostLedger()


@pytest.fixture
def fast_config():
    """Provide a config with zero backoff and a short provider timeout."""
    return CairnConfig(
        retry=RetryConfig(max_retries=3, base_delay_seconds=0.0),
        execution=ExecutionConfig(
            provider_timeout_seconds=0.05,
            cancel_grace_seconds=0.05,
            max_completion_tokens=100,
        ),
    )


@pytest.fixture
def make_engine(registry, ledger, fast_config) -> Callable[..., RunEngine]:
    """
    Provide a factory for RunEngine instances sharing the fixtures' ledger.

    Usage:
        engine = make_engine(policy=BudgetPolicy(per_run_ceiling=Decimal("1")))
    """

    def _make(
        config: CairnConfig | None = None,
        policy: BudgetPolicy | None = None,
    ) -> RunEngine:
        config = config or fast_config
        if policy is not None:
            config = config.model_copy(
                update={
                    "budget": config.budget.model_copy(
                        update={
                            "per_run_ceiling": policy.per_run_ceiling,
                            "per_session_ceiling": policy.per_session_ceiling,
                            "enforcement_mode": policy.enforcement_mode,
                            "warning_threshold": policy.warning_threshold,
                        }
                    )
                }
            )
        return RunEngine(registry, config=config, ledger=ledger)

    return _make


@pytest.fixture
def usage_factory() -> Callable[..., LLMUsage]:
    """Provide make_usage for building LLMUsage records."""
    return make_usage
