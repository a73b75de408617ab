"""
Unit tests for configuration loading.

Tests multi-layer config merging, environment variable overrides,
provider secret resolution, caching, and layered .env loading.
"""

import json
import os
from decimal import Decimal

import pytest
from pydantic import ValidationError

from cairn.core.config import (
    clear_cache,
    get_project_config_path,
    get_user_config_path,
    load_config,
    load_layered_env,
)
from cairn.core.config.loader import (
    apply_env_overrides,
    deep_merge,
    load_json_file,
    resolve_provider_secrets,
)
from cairn.core.config.models import CairnConfig, ProviderSettings
from cairn.core.context.models import AssemblyStrategy
from cairn.core.cost.models import EnforcementMode

# ==============================================================================
# Helper Functions Tests
# ==============================================================================


class TestDeepMerge:
    """Test the deep_merge helper function."""

    def test_nested_merge(self):
        """Test merging nested dicts."""
        base = {"a": 1, "b": {"x": 10, "y": 20}}
        override = {"b": {"y": 30, "z": 40}, "c": 3}
        assert deep_merge(base, override) == {"a": 1, "b": {"x": 10, "y": 30, "z": 40}, "c": 3}

    def test_override_replaces_non_dict(self):
        """Test that non-dict values are replaced, not merged."""
        assert deep_merge({"a": [1, 2]}, {"a": [3]}) == {"a": [3]}

    def test_base_not_mutated(self):
        """Test that the base dict is left untouched."""
        base = {"b": {"x": 1}}
        deep_merge(base, {"b": {"x": 2}})
        assert base == {"b": {"x": 1}}


class TestLoadJsonFile:
    """Test JSON file loading."""

    def test_missing_file(self, tmp_path):
        """Test that a missing file returns None."""
        assert load_json_file(tmp_path / "nope.json") is None

    def test_invalid_json(self, tmp_path):
        """Test that invalid JSON returns None instead of raising."""
        path = tmp_path / "bad.json"
        path.write_text("{ not json")
        assert load_json_file(path) is None

    def test_non_object(self, tmp_path):
        """Test that a top-level list is ignored."""
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        assert load_json_file(path) is None


# ==============================================================================
# Environment Overrides Tests
# ==============================================================================


class TestEnvOverrides:
    """Test CAIRN_* environment overrides."""

    def test_strategy(self, monkeypatch):
        """Test CAIRN_STRATEGY sets the default strategy."""
        monkeypatch.setenv("CAIRN_STRATEGY", "Greedy")
        result = apply_env_overrides({})
        assert result["context"]["default_strategy"] == "greedy"

    def test_invalid_strategy_ignored(self, monkeypatch):
        """Test an unknown strategy is ignored."""
        monkeypatch.setenv("CAIRN_STRATEGY", "reckless")
        assert apply_env_overrides({}) == {}

    def test_ceilings(self, monkeypatch):
        """Test ceiling overrides are kept as exact decimals."""
        monkeypatch.setenv("CAIRN_RUN_CEILING", "1.25")
        monkeypatch.setenv("CAIRN_SESSION_CEILING", "10")
        result = apply_env_overrides({"budget": {"warning_threshold": 0.5}})
        assert result["budget"] == {
            "warning_threshold": 0.5,
            "per_run_ceiling": "1.25",
            "per_session_ceiling": "10",
        }

    @pytest.mark.parametrize("raw", ["abc", "-1", "NaN", "Infinity"])
    def test_invalid_ceiling_ignored(self, monkeypatch, raw):
        """Test malformed or negative ceilings are ignored."""
        monkeypatch.setenv("CAIRN_RUN_CEILING", raw)
        assert "budget" not in apply_env_overrides({})

    def test_enforcement_and_strict(self, monkeypatch):
        """Test enforcement mode and strict pricing overrides."""
        monkeypatch.setenv("CAIRN_ENFORCEMENT", "soft")
        monkeypatch.setenv("CAIRN_PRICING_STRICT", "true")
        result = apply_env_overrides({})
        assert result["budget"]["enforcement_mode"] == "soft"
        assert result["pricing"]["strict"] is True

    def test_strict_false(self, monkeypatch):
        """Test falsy strings disable strict pricing."""
        monkeypatch.setenv("CAIRN_PRICING_STRICT", "no")
        assert apply_env_overrides({})["pricing"]["strict"] is False

    def test_retries_and_timeout(self, monkeypatch):
        """Test retry and timeout overrides."""
        monkeypatch.setenv("CAIRN_MAX_RETRIES", "5")
        monkeypatch.setenv("CAIRN_PROVIDER_TIMEOUT", "2.5")
        result = apply_env_overrides({})
        assert result["retry"]["max_retries"] == 5
        assert result["execution"]["provider_timeout_seconds"] == 2.5

    def test_invalid_numbers_ignored(self, monkeypatch):
        """Test invalid retry and timeout values are ignored."""
        monkeypatch.setenv("CAIRN_MAX_RETRIES", "-2")
        monkeypatch.setenv("CAIRN_PROVIDER_TIMEOUT", "soon")
        assert apply_env_overrides({}) == {}


class TestProviderSecrets:
    """Test api_key_env resolution."""

    def test_reads_named_variable(self, monkeypatch):
        """Test api_key is filled from the named variable."""
        monkeypatch.setenv("MY_KEY", "sk-123")
        result = resolve_provider_secrets(
            {"providers": {"gpt-4o": {"provider": "openai", "api_key_env": "MY_KEY"}}}
        )
        assert result["providers"]["gpt-4o"]["api_key"] == "sk-123"

    def test_explicit_key_wins(self, monkeypatch):
        """Test an explicit api_key is not replaced."""
        monkeypatch.setenv("MY_KEY", "sk-env")
        settings = {"provider": "openai", "api_key": "sk-file", "api_key_env": "MY_KEY"}
        result = resolve_provider_secrets({"providers": {"gpt-4o": settings}})
        assert result["providers"]["gpt-4o"]["api_key"] == "sk-file"

    def test_missing_variable(self, monkeypatch):
        """Test a missing variable leaves api_key unset."""
        monkeypatch.delenv("MY_KEY", raising=False)
        result = resolve_provider_secrets(
            {"providers": {"gpt-4o": {"provider": "openai", "api_key_env": "MY_KEY"}}}
        )
        assert "api_key" not in result["providers"]["gpt-4o"]


# ==============================================================================
# Models Tests
# ==============================================================================


class TestCairnConfig:
    """Test CairnConfig validation."""

    def test_defaults(self):
        """Test default values."""
        config = CairnConfig()
        assert config.context.default_strategy is AssemblyStrategy.BALANCED
        assert config.budget.per_run_ceiling is None
        assert config.retry.max_retries == 3
        assert config.execution.max_completion_tokens == 1024

    def test_bare_provider_name(self):
        """Test a string provider entry becomes ProviderSettings."""
        config = CairnConfig(providers={"gpt-4o": "openai"})
        assert isinstance(config.providers["gpt-4o"], ProviderSettings)
        assert config.providers["gpt-4o"].provider == "openai"

    def test_to_policy(self):
        """Test the budget section builds a policy."""
        config = CairnConfig(budget={"per_run_ceiling": "1.00", "enforcement_mode": "soft"})
        policy = config.budget.to_policy()
        assert policy.per_run_ceiling == Decimal("1.00")
        assert policy.enforcement_mode is EnforcementMode.SOFT

    def test_invalid_values(self):
        """Test validation errors for out-of-range values."""
        with pytest.raises(ValidationError):
            CairnConfig(retry={"max_retries": -1})
        with pytest.raises(ValidationError):
            CairnConfig(context={"headroom_fraction": 1.0})


# ==============================================================================
# Loading Tests
# ==============================================================================


class TestLoadConfig:
    """Test the full loading chain."""

    def test_defaults_only(self, tmp_path):
        """Test loading with no config files."""
        config = load_config(project_dir=tmp_path, use_cache=False)
        assert config.context.default_strategy is AssemblyStrategy.BALANCED

    def test_user_then_project_then_env(self, tmp_path, monkeypatch):
        """Test precedence: env > project > user > defaults."""
        user_path = get_user_config_path()
        user_path.parent.mkdir(parents=True)
        user_path.write_text(
            json.dumps({"retry": {"max_retries": 7}, "context": {"default_strategy": "greedy"}})
        )
        project = tmp_path / "project"
        project.mkdir()
        get_project_config_path(project).write_text(
            json.dumps({"context": {"default_strategy": "conservative"}})
        )
        monkeypatch.setenv("CAIRN_MAX_RETRIES", "1")

        config = load_config(project_dir=project, use_cache=False)

        assert config.context.default_strategy is AssemblyStrategy.CONSERVATIVE
        assert config.retry.max_retries == 1
        assert config.retry.multiplier == 2.0

    def test_cache(self, tmp_path):
        """Test that cached config is returned until cleared."""
        first = load_config(project_dir=tmp_path)
        assert load_config(project_dir=tmp_path) is first
        clear_cache()
        assert load_config(project_dir=tmp_path) is not first

    def test_invalid_config_raises(self, tmp_path):
        """Test that invalid merged config raises ValidationError."""
        (tmp_path / ".cairn.json").write_text(json.dumps({"retry": {"max_retries": "many"}}))
        with pytest.raises(ValidationError):
            load_config(project_dir=tmp_path, use_cache=False)


# ==============================================================================
# Layered .env Tests
# ==============================================================================


@pytest.fixture
def scratch_env_keys():
    """Remove the variables .env tests write straight into os.environ."""
    keys = ("CAIRN_TEST_KEY", "CAIRN_TEST_OTHER")
    saved = {key: os.environ.pop(key, None) for key in keys}
    yield
    for key, value in saved.items():
        os.environ.pop(key, None)
        if value is not None:
            os.environ[key] = value


@pytest.mark.usefixtures("scratch_env_keys")
class TestLoadLayeredEnv:
    """Test .env layering."""

    def test_project_overrides_user(self, tmp_path):
        """Test later files win for keys they set."""
        user_env = tmp_path / "user.env"
        user_env.write_text("CAIRN_TEST_KEY=user\nCAIRN_TEST_OTHER=kept\n")
        project_env = tmp_path / ".env"
        project_env.write_text("CAIRN_TEST_KEY=project\n")

        loaded = load_layered_env(
            user_env_paths=[user_env], project_env_paths_override=[project_env]
        )

        assert loaded == {"CAIRN_TEST_KEY", "CAIRN_TEST_OTHER"}
        assert os.environ["CAIRN_TEST_KEY"] == "project"
        assert os.environ["CAIRN_TEST_OTHER"] == "kept"

    def test_exported_values_win(self, tmp_path, monkeypatch):
        """Test values already in the environment are never replaced."""
        monkeypatch.setenv("CAIRN_TEST_KEY", "shell")
        env_file = tmp_path / ".env"
        env_file.write_text("CAIRN_TEST_KEY=file\n")

        loaded = load_layered_env(user_env_paths=[], project_env_paths_override=[env_file])

        assert loaded == set()
        assert os.environ["CAIRN_TEST_KEY"] == "shell"

    def test_missing_files(self, tmp_path):
        """Test missing files are skipped."""
        assert load_layered_env(project_dir=tmp_path, user_env_paths=[]) == set()
