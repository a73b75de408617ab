"""Tests for the pricing registry and resolver."""

import json
from datetime import date, timedelta
from decimal import Decimal

import pytest

from cairn.core.config.models import PricingConfig
from cairn.core.cost.models import LLMUsage, PricingEntry, PricingSource
from cairn.core.cost.pricing import (
    ESTIMATED_INPUT_PER_1K,
    PricingError,
    PricingRegistry,
    PricingResolver,
    build_resolver,
    parse_entry,
)


def entry(provider: str, model: str, input_price: str = "0.001", output_price: str = "0.002"):
    return PricingEntry(
        provider=provider,
        model=model,
        input_per_1k=Decimal(input_price),
        output_per_1k=Decimal(output_price),
        effective_date=date(2026, 1, 1),
    )


class TestPricingEntry:
    """Tests for PricingEntry validation."""

    def test_keys_normalised(self) -> None:
        """Provider and model are lower-cased and stripped."""
        price = entry(" OpenAI ", "GPT-4o")
        assert price.key == "openai:gpt-4o"

    def test_wildcards(self) -> None:
        """Wildcard models mark provider defaults and the global fallback."""
        assert entry("openai", "*").is_provider_default
        assert entry("*", "*").is_global_fallback
        assert not entry("openai", "gpt-4o").is_provider_default

    def test_effective_date_required(self) -> None:
        """Entries without an effective date are rejected."""
        with pytest.raises(PricingError, match="acme:m1"):
            parse_entry({"provider": "acme", "model": "m1", "input_per_1k": 1, "output_per_1k": 1})

    def test_negative_price_rejected(self) -> None:
        """Prices must be non-negative."""
        with pytest.raises(PricingError):
            parse_entry(
                {
                    "provider": "acme",
                    "model": "m1",
                    "input_per_1k": "-1",
                    "output_per_1k": "1",
                    "effective_date": "2026-01-01",
                }
            )


class TestPricingRegistry:
    """Tests for PricingRegistry."""

    def test_seeded(self) -> None:
        """The default registry carries published prices."""
        registry = PricingRegistry()
        price = registry.get("openai", "gpt-4o")
        assert price is not None
        assert price.input_per_1k == Decimal("0.0025")
        assert price.output_per_1k == Decimal("0.01")

    def test_unseeded(self) -> None:
        """seed=False starts empty."""
        assert len(PricingRegistry(seed=False)) == 0

    def test_register_replaces(self) -> None:
        """Registering an existing key replaces the entry."""
        registry = PricingRegistry(seed=False)
        registry.register(entry("acme", "m1", "0.001"))
        registry.register(entry("acme", "m1", "0.009"))
        assert len(registry) == 1
        assert registry.get("ACME", "M1").input_per_1k == Decimal("0.009")

    def test_register_dict(self) -> None:
        """Raw dicts are validated on registration."""
        registry = PricingRegistry(seed=False)
        registry.register(
            {
                "provider": "acme",
                "model": "m1",
                "input_per_1k": "0.5",
                "output_per_1k": "1.5",
                "effective_date": "2026-01-01",
            }
        )
        assert "acme:m1" in registry

    def test_entries_sorted(self) -> None:
        """entries() is ordered by key."""
        registry = PricingRegistry([entry("b", "x"), entry("a", "y")], seed=False)
        assert [e.key for e in registry.entries()] == ["a:y", "b:x"]

    def test_load_from_json(self, tmp_path) -> None:
        """Prices load from a list or a {'prices': [...]} object."""
        path = tmp_path / "prices.json"
        raw = {
            "provider": "acme",
            "model": "m1",
            "input_per_1k": "0.1",
            "output_per_1k": "0.2",
            "effective_date": "2026-01-01",
        }
        path.write_text(json.dumps({"prices": [raw]}))
        registry = PricingRegistry(seed=False)
        assert registry.load_from_json(path) == 1
        assert registry.get("acme", "m1") is not None

    def test_load_from_bad_json(self, tmp_path) -> None:
        """Unreadable files raise PricingError."""
        path = tmp_path / "prices.json"
        path.write_text("{not json")
        with pytest.raises(PricingError):
            PricingRegistry(seed=False).load_from_json(path)
        with pytest.raises(PricingError):
            PricingRegistry(seed=False).load_from_json(tmp_path / "missing.json")

    def test_is_stale(self) -> None:
        """Entries older than the threshold are stale."""
        today = date(2026, 6, 1)
        fresh = entry("a", "b").model_copy(update={"effective_date": today - timedelta(days=10)})
        old = entry("a", "b").model_copy(update={"effective_date": today - timedelta(days=91)})
        assert not PricingRegistry.is_stale(fresh, today=today)
        assert PricingRegistry.is_stale(old, today=today)


class TestPricingResolver:
    """Tests for fallback resolution."""

    def test_exact(self) -> None:
        """Exact matches come from the registry."""
        resolved, source = PricingResolver(PricingRegistry()).resolve("openai", "gpt-4o")
        assert resolved.key == "openai:gpt-4o"
        assert source is PricingSource.REGISTRY

    def test_provider_default(self) -> None:
        """Unknown models use the provider's wildcard entry."""
        registry = PricingRegistry([entry("openai", "*")])
        resolved, source = PricingResolver(registry).resolve("openai", "gpt-9")
        assert resolved.key == "openai:*"
        assert source is PricingSource.PROVIDER_DEFAULT

    def test_global_fallback(self) -> None:
        """Unknown providers use the global wildcard entry."""
        registry = PricingRegistry([entry("*", "*")])
        resolved, source = PricingResolver(registry).resolve("acme", "m1")
        assert resolved.key == "*:*"
        assert source is PricingSource.GLOBAL_FALLBACK

    def test_provider_default_beats_global(self) -> None:
        """The provider wildcard is tried before the global one."""
        registry = PricingRegistry([entry("*", "*"), entry("acme", "*")])
        _, source = PricingResolver(registry).resolve("acme", "m1")
        assert source is PricingSource.PROVIDER_DEFAULT

    def test_strict_raises(self) -> None:
        """Strict resolvers raise when nothing matches."""
        resolver = PricingResolver(PricingRegistry(), strict=True)
        with pytest.raises(PricingError) as exc_info:
            resolver.resolve("acme", "m1")
        assert exc_info.value.provider == "acme"
        assert exc_info.value.model == "m1"
        assert not resolver.has_price("acme", "m1")

    def test_non_strict_estimates(self) -> None:
        """Non-strict resolvers fall back to an estimated price."""
        resolver = PricingResolver(PricingRegistry())
        resolved, source = resolver.resolve("acme", "m1")
        assert source is PricingSource.ESTIMATED
        assert resolved.input_per_1k == ESTIMATED_INPUT_PER_1K
        assert not resolver.has_price("acme", "m1")
        assert resolver.has_price("openai", "gpt-4o")

    def test_resolve_for_usage_table_price(self) -> None:
        """Usage without a reported cost resolves like resolve()."""
        usage = LLMUsage(prompt_tokens=10, completion_tokens=5, model="gpt-4o")
        resolved, source = PricingResolver(PricingRegistry()).resolve_for_usage("openai", usage)
        assert resolved.key == "openai:gpt-4o"
        assert source is PricingSource.REGISTRY

    def test_resolve_for_usage_provider_reported(self) -> None:
        """A reported cost is used even for unpriced models under strict pricing."""
        usage = LLMUsage(
            prompt_tokens=10, completion_tokens=5, model="m1", provider_cost=Decimal("0.02")
        )
        resolver = PricingResolver(PricingRegistry(), strict=True)
        resolved, source = resolver.resolve_for_usage("acme", usage)
        assert source is PricingSource.PROVIDER_REPORTED
        assert resolved.provider == "acme"

    def test_resolve_for_usage_falls_back_to_requested_price(self) -> None:
        """An unpriced reported model is charged at the price resolved before the call."""
        resolver = PricingResolver(PricingRegistry(), strict=True)
        requested = resolver.resolve("openai", "gpt-4o")
        usage = LLMUsage(prompt_tokens=10, completion_tokens=5, model="gpt-4o-2024-08-06")

        with pytest.raises(PricingError):
            resolver.resolve_for_usage("openai", usage)
        resolved, source = resolver.resolve_for_usage("openai", usage, fallback=requested)
        assert resolved.key == "openai:gpt-4o"
        assert source is PricingSource.REGISTRY

    def test_resolve_for_usage_fallback_beats_estimate(self) -> None:
        """Without strict pricing the fallback still wins over an estimate."""
        resolver = PricingResolver(PricingRegistry())
        requested = resolver.resolve("openai", "gpt-4o")
        usage = LLMUsage(prompt_tokens=10, completion_tokens=5, model="gpt-4o-latest")
        _, source = resolver.resolve_for_usage("openai", usage, fallback=requested)
        assert source is PricingSource.REGISTRY

    def test_resolve_for_usage_reported_model_priced(self) -> None:
        """A reported model with its own price is charged at that price."""
        resolver = PricingResolver(PricingRegistry())
        requested = resolver.resolve("openai", "gpt-4o")
        usage = LLMUsage(prompt_tokens=10, completion_tokens=5, model="gpt-4o-mini")
        resolved, _ = resolver.resolve_for_usage("openai", usage, fallback=requested)
        assert resolved.key == "openai:gpt-4o-mini"


class TestBuildResolver:
    """Tests for build_resolver."""

    def test_inline_entries_and_strict(self) -> None:
        """Inline entries are registered and strictness carried over."""
        config = PricingConfig(
            strict=True,
            entries=[
                {
                    "provider": "acme",
                    "model": "m1",
                    "input_per_1k": "0.1",
                    "output_per_1k": "0.2",
                    "effective_date": "2026-01-01",
                }
            ],
        )
        resolver = build_resolver(config)
        assert resolver.strict
        assert resolver.resolve("acme", "m1")[1] is PricingSource.REGISTRY

    def test_relative_prices_file(self, tmp_path) -> None:
        """A relative prices_file resolves against base_dir."""
        (tmp_path / "prices.json").write_text(
            json.dumps(
                [
                    {
                        "provider": "openai",
                        "model": "gpt-4o",
                        "input_per_1k": "9",
                        "output_per_1k": "9",
                        "effective_date": "2026-03-01",
                    }
                ]
            )
        )
        resolver = build_resolver(PricingConfig(prices_file="prices.json"), base_dir=tmp_path)
        resolved, _ = resolver.resolve("openai", "gpt-4o")
        assert resolved.input_per_1k == Decimal("9")
