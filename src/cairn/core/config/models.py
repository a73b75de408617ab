"""
Configuration data models for cairn.

These models define the structure of .cairn.json and
~/.config/cairn/config.json files, with validation and type safety via
Pydantic.
"""

from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cairn.core.context.models import AssemblyStrategy, SectionWeights
from cairn.core.cost.models import BudgetPolicy, EnforcementMode


class ContextConfig(BaseModel):
    """
    Context assembly settings.

    Controls how prompt sections share a model's token window.
    """
    default_strategy: AssemblyStrategy = Field(
        default=AssemblyStrategy.BALANCED,
        description="Assembly strategy: 'greedy', 'balanced' or 'conservative'"
    )
    weights: SectionWeights = Field(
        default_factory=SectionWeights,
        description="Budget share per section for balanced/conservative"
    )
    headroom_fraction: float = Field(
        default=0.15,
        ge=0.0,
        lt=1.0,
        description="Fraction of the budget conservative assembly leaves unused"
    )
    min_system_tokens: int = Field(
        default=64,
        ge=0,
        description="Conservative assembly fails rather than cut system below this"
    )
    chars_per_token: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Override the per-model characters-per-token ratio"
    )


class ScanConfig(BaseModel):
    """
    Repository scan defaults.

    Applied when a scan request doesn't specify its own limits.
    """
    include_patterns: list[str] = Field(
        default_factory=list,
        description="Only include files matching these globs (empty = all)"
    )
    exclude_patterns: list[str] = Field(
        default_factory=list,
        description="Extra globs to skip, on top of the built-in excludes"
    )
    max_depth: int = Field(default=8, ge=0, description="Maximum directory depth")
    max_files: int = Field(default=2000, ge=1, description="Maximum files to scan")
    max_total_size_bytes: int = Field(
        default=1_000_000,
        ge=0,
        description="Size cap for files included in a repository summary"
    )
    respect_gitignore: bool = Field(
        default=True,
        description="Apply the root .gitignore as extra excludes"
    )
    workers: int = Field(default=1, ge=1, description="Threads used to stat files")


class PricingConfig(BaseModel):
    """
    Pricing resolution settings.

    Extra entries override or extend the built-in price table.
    """
    strict: bool = Field(
        default=False,
        description="Fail instead of estimating when no price resolves"
    )
    stale_after_days: int = Field(
        default=90,
        ge=1,
        description="Flag prices older than this many days"
    )
    entries: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Additional pricing entries (provider, model, input_per_1k, ...)"
    )
    prices_file: Optional[str] = Field(
        default=None,
        description="Optional JSON file with pricing entries"
    )


class BudgetConfig(BaseModel):
    """
    Cost ceilings for runs and sessions.

    Controls spending limits for autonomous sessions.
    """
    per_run_ceiling: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Fail a run once its spend exceeds this amount (USD)"
    )
    per_session_ceiling: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Abort a session once its spend exceeds this amount (USD)"
    )
    enforcement_mode: EnforcementMode = Field(
        default=EnforcementMode.HARD,
        description="'hard' blocks calls over budget, 'soft' only logs"
    )
    warning_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Warn when spend reaches this fraction of a ceiling"
    )

    def to_policy(self) -> BudgetPolicy:
        """Build the immutable policy a session runs under."""
        return BudgetPolicy(
            per_run_ceiling=self.per_run_ceiling,
            per_session_ceiling=self.per_session_ceiling,
            enforcement_mode=self.enforcement_mode,
            warning_threshold=self.warning_threshold,
        )


class RetryConfig(BaseModel):
    """
    Retry behaviour for transient provider failures.
    """
    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay_seconds: float = Field(default=1.0, ge=0.0, description="First backoff delay")
    multiplier: float = Field(default=2.0, ge=1.0, description="Backoff growth factor")
    max_delay_seconds: float = Field(default=30.0, ge=0.0, description="Backoff cap")


class ExecutionConfig(BaseModel):
    """
    Provider call execution limits.
    """
    provider_timeout_seconds: float = Field(
        default=120.0,
        gt=0.0,
        description="Per-call timeout; a timeout is a retryable failure"
    )
    cancel_grace_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="How long a cancelled call may take to stop before it is orphaned"
    )
    max_completion_tokens: int = Field(
        default=1024,
        ge=1,
        description="Completion tokens requested per call (and assumed by the pre-check)"
    )


class ProviderSettings(BaseModel):
    """
    Deployment settings for one model id.

    Passed to that model's provider factory as a ProviderConfig.
    """
    provider: str = Field(description="Provider name used for pricing, e.g. 'openai'")
    api_key: Optional[str] = Field(default=None, description="Credential for the provider")
    api_key_env: Optional[str] = Field(
        default=None,
        description="Environment variable holding the credential (read at load time)"
    )
    endpoint: Optional[str] = Field(default=None, description="Base URL of the deployment")
    deployment: Optional[str] = Field(default=None, description="Deployment or region name")
    extra: dict[str, Any] = Field(default_factory=dict)


class CairnConfig(BaseModel):
    """
    Top-level cairn configuration.

    This is the root configuration model that encompasses all settings.
    It's loaded from defaults, user config, project config, and env vars.

    Example:
        >>> config = CairnConfig(
        ...     budget=BudgetConfig(per_run_ceiling=Decimal("1.00")),
        ...     providers={"gpt-4o": "openai"},
        ... )
        >>> config.providers["gpt-4o"].provider
        'openai'
    """
    context: ContextConfig = Field(
        default_factory=ContextConfig,
        description="Context assembly"
    )
    scan: ScanConfig = Field(
        default_factory=ScanConfig,
        description="Repository scanning"
    )
    pricing: PricingConfig = Field(
        default_factory=PricingConfig,
        description="Pricing resolution"
    )
    budget: BudgetConfig = Field(
        default_factory=BudgetConfig,
        description="Cost ceilings"
    )
    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Retry policy"
    )
    execution: ExecutionConfig = Field(
        default_factory=ExecutionConfig,
        description="Provider call limits"
    )
    providers: dict[str, ProviderSettings] = Field(
        default_factory=dict,
        description="Provider deployment settings keyed by model id"
    )

    model_config = ConfigDict(
        extra="allow",  # Allow extra fields for forward compatibility
        validate_assignment=True,  # Validate on field assignment
    )

    @field_validator('providers', mode='before')
    @classmethod
    def validate_providers(
        cls, v: dict[str, Union[str, dict, ProviderSettings]]
    ) -> dict[str, Union[dict, ProviderSettings]]:
        """Convert bare provider names to ProviderSettings."""
        if not isinstance(v, dict):
            return v
        return {
            model_id: {"provider": settings} if isinstance(settings, str) else settings
            for model_id, settings in v.items()
        }
