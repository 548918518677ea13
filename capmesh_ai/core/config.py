"""
Configuration Settings.

This module defines the engine configuration using Pydantic's BaseSettings.
All tunables are grouped into small models and bound from environment
variables (``CAPMESH_`` prefix, ``__`` between group and field, e.g.
``CAPMESH_THRESHOLD__EMA_BETA=0.2``) and from an optional ``.env`` file.
"""

from typing import Literal, Optional, Tuple

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =====================================================================
# Component Configuration Models
# =====================================================================


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""

    base_url: str = Field(
        default="https://api.openai.com/v1", description="Base URL of an OpenAI-compatible embeddings API"
    )
    model: str = Field(default="text-embedding-3-small", description="Embedding model name")
    api_key: Optional[str] = Field(default=None, description="API key sent as a bearer token")
    timeout_seconds: float = Field(default=5.0, gt=0, description="Per-call embedding timeout")
    cache_size: int = Field(default=4096, ge=1, description="Max cached text -> vector entries (LRU)")
    dimension: Optional[int] = Field(default=None, ge=1, description="Requested embedding width, if supported")

    model_config = {"populate_by_name": True}


class SearchConfig(BaseModel):
    """Hybrid search configuration."""

    candidate_multiplier: int = Field(default=2, ge=1, description="Semantic candidates fetched per requested result")
    relatedness_normalizer: float = Field(default=2.0, gt=0, description="Divisor applied to Adamic-Adar scores")
    min_alpha: float = Field(default=0.5, ge=0, le=1, description="Lower bound of the semantic blend weight")
    related_limit: int = Field(default=2, ge=0, description="Max often-before/often-after nodes per result")

    model_config = {"populate_by_name": True}


class PlannerConfig(BaseModel):
    """Hyperpath planner configuration."""

    max_cached_states: int = Field(default=64, ge=1, description="Max start sets with cached distance labels")
    strategy_window: int = Field(default=32, ge=1, description="Recent edits tracked by the strategy selector")
    default_deadline_seconds: float = Field(default=1.0, ge=0, description="Deadline used when none is given")
    capability_base_cost: float = Field(default=1.0, gt=0, description="Cost of traversing a capability as a unit")

    model_config = {"populate_by_name": True}


class ScorerConfig(BaseModel):
    """Multi-head scorer configuration."""

    projection_dim: int = Field(default=16, ge=1, description="Width of the learned semantic projection")
    min_examples_for_projection: int = Field(default=20, ge=1, description="Examples before the projection is used")
    min_examples_for_fusion: int = Field(default=20, ge=1, description="Examples before learned fusion is used")
    learning_rate: float = Field(default=0.05, gt=0, description="Gradient step size")
    batch_size: int = Field(default=32, ge=1, description="Replay batch size per training step")
    batches_per_pass: int = Field(default=4, ge=1, description="Replay batches per background pass")
    training_interval_seconds: float = Field(default=60.0, gt=0, description="Background training period")
    temporal_half_life_seconds: float = Field(default=3600.0, gt=0, description="Half-life of temporal signals")
    temporal_decay_scope: Literal["context", "global"] = Field(
        default="context", description="Decay co-occurrence per context or across all contexts"
    )
    seed: Optional[int] = Field(default=None, description="Seed for parameter initialisation and sampling")

    model_config = {"populate_by_name": True}


class ThresholdConfig(BaseModel):
    """Adaptive threshold configuration."""

    default_value: float = Field(default=0.92, description="Initial (cautious) threshold")
    min_value: float = Field(default=0.40, description="Lower clamp")
    max_value: float = Field(default=0.95, description="Upper clamp")
    target_band: Tuple[float, float] = Field(default=(0.80, 0.90), description="Target success-rate band")
    ema_beta: float = Field(default=0.3, gt=0, le=1, description="EMA smoothing factor")
    step_gain: float = Field(default=0.5, gt=0, description="Step size per unit of error")
    max_step: float = Field(default=0.05, gt=0, description="Largest single adjustment")
    update_batch_size: int = Field(default=10, ge=1, description="Outcomes per controller update")
    convergence_window: int = Field(default=5, ge=1, description="Updates the rate must stay in band")
    hold_release_window: int = Field(
        default=10, ge=1, description="Consecutive below-band updates before the value may rise above the band"
    )

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _check_bounds(self) -> "ThresholdConfig":
        low, high = self.target_band
        if not self.min_value <= self.default_value <= self.max_value:
            raise ValueError("default_value must lie within [min_value, max_value]")
        if not 0.0 <= low <= high <= 1.0:
            raise ValueError("target_band must be an ordered pair inside [0, 1]")
        return self


class EpisodicConfig(BaseModel):
    """Episodic store configuration."""

    buffer_size: int = Field(default=50, ge=1, description="Buffered events that trigger a flush")
    max_buffered_events: int = Field(default=5000, ge=1, description="Buffer bound; the oldest events are dropped beyond it")
    flush_interval_seconds: float = Field(default=5.0, gt=0, description="Periodic flush interval")
    max_events: int = Field(default=10000, ge=1, description="Retention bound by count")
    retention_days: float = Field(default=30.0, gt=0, description="Retention bound by age")
    prune_interval_seconds: float = Field(default=300.0, gt=0, description="Periodic pruning interval")
    priority_alpha: float = Field(default=0.6, ge=0, description="Priority exponent")
    priority_epsilon: float = Field(default=1e-6, gt=0, description="Floor added to prediction error")
    is_beta_start: float = Field(default=0.4, ge=0, le=1, description="Initial importance-sampling exponent")
    is_beta_anneal_steps: int = Field(default=10000, ge=1, description="Draws until the exponent reaches 1")

    model_config = {"populate_by_name": True}


class DatabaseConfig(BaseModel):
    """Persistence configuration."""

    url: Optional[str] = Field(default=None, description="Async SQLAlchemy URL; unset selects in-memory storage")
    echo: bool = Field(default=False, description="Echo SQL statements")
    snapshot_interval_seconds: float = Field(default=60.0, gt=0, description="Period between graph and threshold saves")
    snapshots_kept: int = Field(default=5, ge=1, description="Stored graph snapshots kept after a save")

    model_config = {"populate_by_name": True}


# =====================================================================
# Main Settings Class
# =====================================================================


class EngineSettings(BaseSettings):
    """
    Engine settings model.

    All groups are bound from environment variables and the .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="CAPMESH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = Field(default="INFO", description="Engine logging level")

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    scorer: ScorerConfig = Field(default_factory=ScorerConfig)
    threshold: ThresholdConfig = Field(default_factory=ThresholdConfig)
    episodic: EpisodicConfig = Field(default_factory=EpisodicConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
