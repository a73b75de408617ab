"""
Pricing registry and resolution.

PricingRegistry holds immutable per-1K-token prices keyed by
``provider:model``; it is seeded with a small table of published prices
and can be extended from configuration or a JSON file. PricingResolver
turns a (provider, model) pair into a PricingEntry:

    1. exact ``provider:model`` match
    2. provider default ``provider:*``
    3. global fallback ``*:*``

In strict mode a pair that resolves at none of these levels raises
PricingError before any call is charged. Otherwise the resolver falls back
to a conservative estimated price and logs a warning.

Usage:
    >>> registry = PricingRegistry()
    >>> resolver = PricingResolver(registry)
    >>> entry, source = resolver.resolve("openai", "gpt-4o")
    >>> entry.input_per_1k
    Decimal('0.0025')
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from cairn.core.cost.models import GLOBAL_WILDCARD, LLMUsage, PricingEntry, PricingSource

if TYPE_CHECKING:
    from cairn.core.config.models import PricingConfig

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_DAYS = 90

_SEED_DATE = date(2026, 2, 14)
_SEED_SOURCE = "published provider pricing"

ESTIMATED_INPUT_PER_1K = Decimal("0.005")
ESTIMATED_OUTPUT_PER_1K = Decimal("0.015")

DEFAULT_PRICES: tuple[tuple[str, str, str, str], ...] = (
    ("openai", "gpt-4o", "0.0025", "0.01"),
    ("openai", "gpt-4o-mini", "0.00015", "0.0006"),
    ("openai", "gpt-4-turbo", "0.01", "0.03"),
    ("anthropic", "claude-3-5-sonnet-20241022", "0.003", "0.015"),
    ("anthropic", "claude-3-5-haiku-20241022", "0.0008", "0.004"),
    ("anthropic", "claude-4.5-sonnet", "0.003", "0.015"),
    ("litellm", "llama-3.3-70b-versatile", "0.00088", "0.00088"),
)


class PricingError(Exception):
    """
    Raised when a price cannot be resolved or a pricing entry is invalid.

    Attributes:
        provider: Provider that was looked up (if any)
        model: Model that was looked up (if any)
    """

    def __init__(self, message: str, provider: str | None = None, model: str | None = None):
        self.provider = provider
        self.model = model
        super().__init__(message)


def parse_entry(data: dict[str, Any]) -> PricingEntry:
    """
    Validate a raw pricing entry.

    Raises:
        PricingError: If required fields (including effective_date) are
            missing or invalid
    """
    try:
        return PricingEntry.model_validate(data)
    except ValidationError as e:
        raise PricingError(
            f"Invalid pricing entry {data.get('provider')}:{data.get('model')}: {e}",
            provider=data.get("provider"),
            model=data.get("model"),
        ) from e


def estimated_entry(provider: str, model: str) -> PricingEntry:
    """Conservative placeholder price for a pair with no registered entry."""
    return PricingEntry(
        provider=provider,
        model=model,
        input_per_1k=ESTIMATED_INPUT_PER_1K,
        output_per_1k=ESTIMATED_OUTPUT_PER_1K,
        effective_date=date.today(),
        source="estimate",
    )


def default_entries() -> list[PricingEntry]:
    """Built-in seed prices."""
    return [
        PricingEntry(
            provider=provider,
            model=model,
            input_per_1k=Decimal(input_price),
            output_per_1k=Decimal(output_price),
            effective_date=_SEED_DATE,
            source=_SEED_SOURCE,
        )
        for provider, model, input_price, output_price in DEFAULT_PRICES
    ]


class PricingRegistry:
    """
    Store of immutable pricing entries keyed by ``provider:model``.

    Registering an entry with an existing key replaces it; entries
    themselves are never mutated.
    """

    def __init__(self, entries: Iterable[PricingEntry] | None = None, seed: bool = True) -> None:
        self._entries: dict[str, PricingEntry] = {}
        if seed:
            for entry in default_entries():
                self.register(entry)
        for entry in entries or []:
            self.register(entry)

    def register(self, entry: PricingEntry | dict[str, Any]) -> PricingEntry:
        """Add or replace a price."""
        if isinstance(entry, dict):
            entry = parse_entry(entry)
        if entry.key in self._entries:
            logger.debug(f"Replacing price for {entry.key}")
        self._entries[entry.key] = entry
        return entry

    def get(self, provider: str, model: str) -> PricingEntry | None:
        """Exact lookup, case-insensitive."""
        return self._entries.get(f"{provider.strip().lower()}:{model.strip().lower()}")

    def entries(self) -> list[PricingEntry]:
        """All entries sorted by key."""
        return [self._entries[key] for key in sorted(self._entries)]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def load_from_json(self, path: Path) -> int:
        """
        Register entries from a JSON file.

        The file holds either a list of entries or ``{"prices": [...]}``.

        Returns:
            Number of entries registered

        Raises:
            PricingError: If the file cannot be read or an entry is invalid
        """
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise PricingError(f"Cannot load pricing file {path}: {e}") from e
        if isinstance(data, dict):
            data = data.get("prices", [])
        if not isinstance(data, list):
            raise PricingError(f"Pricing file {path} must contain a list of entries")
        for raw in data:
            if not isinstance(raw, dict):
                raise PricingError(f"Pricing file {path} contains a non-object entry")
            self.register(raw)
        return len(data)

    @staticmethod
    def is_stale(
        entry: PricingEntry,
        today: date | None = None,
        max_age_days: int = DEFAULT_STALE_AFTER_DAYS,
    ) -> bool:
        """True if the entry's effective date is older than ``max_age_days``."""
        today = today or date.today()
        return (today - entry.effective_date).days > max_age_days


class PricingResolver:
    """
    Resolves prices with exact, provider-default, and global fallbacks.

    Attributes:
        registry: Backing registry
        strict: If True, unresolvable pairs raise instead of using an estimate
    """

    def __init__(self, registry: PricingRegistry, strict: bool = False) -> None:
        self.registry = registry
        self.strict = strict

    def resolve(self, provider: str, model: str) -> tuple[PricingEntry, PricingSource]:
        """
        Resolve the price for a provider/model pair.

        Returns:
            Tuple of the entry and which fallback level produced it

        Raises:
            PricingError: If nothing resolves and the resolver is strict
        """
        exact = self.registry.get(provider, model)
        if exact is not None:
            return exact, PricingSource.REGISTRY

        provider_default = self.registry.get(provider, GLOBAL_WILDCARD)
        if provider_default is not None:
            logger.info(f"Using provider default price for {provider}:{model}")
            return provider_default, PricingSource.PROVIDER_DEFAULT

        fallback = self.registry.get(GLOBAL_WILDCARD, GLOBAL_WILDCARD)
        if fallback is not None:
            logger.warning(f"Using global fallback price for {provider}:{model}")
            return fallback, PricingSource.GLOBAL_FALLBACK

        if self.strict:
            raise PricingError(
                f"No price registered for {provider}:{model} (strict pricing)",
                provider=provider,
                model=model,
            )

        logger.warning(f"No price for {provider}:{model}, using estimated pricing")
        return estimated_entry(provider, model), PricingSource.ESTIMATED

    def resolve_for_usage(
        self,
        provider: str,
        usage: LLMUsage,
        fallback: tuple[PricingEntry, PricingSource] | None = None,
    ) -> tuple[PricingEntry, PricingSource]:
        """
        Resolve the price to charge for a completed call.

        A cost reported by the provider takes precedence over any table
        price; the entry is then only used for currency and provider
        labels, so an unpriced model does not raise even when strict.

        Providers often report a dated or aliased model id (``gpt-4o`` is
        served as ``gpt-4o-2024-08-06``). When the reported id has no
        registered price, ``fallback`` (the price resolved for the
        requested model before the call) is charged instead of raising or
        estimating.
        """
        try:
            entry, source = self.resolve(provider, usage.model)
        except PricingError:
            if fallback is None and usage.provider_cost is None:
                raise
            entry, source = estimated_entry(provider, usage.model), PricingSource.ESTIMATED

        if source is PricingSource.ESTIMATED and fallback is not None:
            logger.info(
                f"No price for reported model {provider}:{usage.model}, "
                f"charging at {fallback[0].key}"
            )
            entry, source = fallback
        if usage.provider_cost is not None:
            return entry, PricingSource.PROVIDER_REPORTED
        return entry, source

    def has_price(self, provider: str, model: str) -> bool:
        """True if a registered price (exact or fallback) covers the pair."""
        try:
            _, source = self.resolve(provider, model)
        except PricingError:
            return False
        return source is not PricingSource.ESTIMATED


def build_resolver(config: PricingConfig, base_dir: Path | None = None) -> PricingResolver:
    """
    Build a resolver from pricing configuration.

    Seed prices are registered first, then ``prices_file`` (relative paths
    resolve against ``base_dir``), then inline ``entries``; later sources
    replace earlier ones for the same key.

    Raises:
        PricingError: If the prices file or an inline entry is invalid
    """
    registry = PricingRegistry()
    if config.prices_file:
        path = Path(config.prices_file).expanduser()
        if not path.is_absolute() and base_dir is not None:
            path = base_dir / path
        count = registry.load_from_json(path)
        logger.debug(f"Loaded {count} prices from {path}")
    for raw in config.entries:
        registry.register(raw)
    return PricingResolver(registry, strict=config.strict)
