import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class StoreConfig(BaseModel):
    db_path: str = Field(default_factory=lambda: os.path.join(os.path.expanduser("~"), ".curalease", "curation.db"))
    busy_timeout_ms: int = 5000  # Bounded wait on SQLite locks before StoreUnavailableError

    @field_validator("busy_timeout_ms")
    @classmethod
    def _positive_timeout(cls, v: int) -> int:
        return max(100, int(v))


class LeaseConfig(BaseModel):
    """Configuration for item leases."""
    ttl_seconds: int = 2 * 60 * 60  # Extended on every checkpoint/resume

    @field_validator("ttl_seconds")
    @classmethod
    def _valid_ttl(cls, v: int) -> int:
        v = int(v)
        if v <= 0:
            raise ValueError("ttl_seconds must be positive")
        return v


class ReaperConfig(BaseModel):
    """Configuration for the background reaper."""
    enabled: bool = True
    interval_seconds: int = 300
    abandon_after_seconds: int = 4 * 60 * 60  # Session inactivity before abandonment

    @field_validator("interval_seconds")
    @classmethod
    def _min_interval(cls, v: int) -> int:
        return max(1, int(v))

    @field_validator("abandon_after_seconds")
    @classmethod
    def _valid_abandon(cls, v: int) -> int:
        v = int(v)
        if v <= 0:
            raise ValueError("abandon_after_seconds must be positive")
        return v


class EligibilityConfig(BaseModel):
    """Domain filters a work item must pass to be handed out."""
    min_confidence: float = 0.8  # Strictly greater than
    min_length: int = 30
    max_length: int = 1000
    representatives_only: bool = True

    @field_validator("min_confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return min(1.0, max(0.0, float(v)))

    @model_validator(mode="after")
    def _ordered_bounds(self) -> "EligibilityConfig":
        if self.min_length > self.max_length:
            raise ValueError("min_length must not exceed max_length")
        return self


class AllocationConfig(BaseModel):
    default_batch_size: int = 10
    max_batch_size: int = 100

    @model_validator(mode="after")
    def _ordered_sizes(self) -> "AllocationConfig":
        if self.default_batch_size < 1 or self.max_batch_size < 1:
            raise ValueError("batch sizes must be positive")
        if self.default_batch_size > self.max_batch_size:
            self.default_batch_size = self.max_batch_size
        return self


class StatsConfig(BaseModel):
    window_days: int = 30
    recent_activity_limit: int = 10


class CurationConfig(BaseModel):
    """Top-level configuration for the curation service."""
    store: StoreConfig = Field(default_factory=StoreConfig)
    lease: LeaseConfig = Field(default_factory=LeaseConfig)
    reaper: ReaperConfig = Field(default_factory=ReaperConfig)
    eligibility: EligibilityConfig = Field(default_factory=EligibilityConfig)
    allocation: AllocationConfig = Field(default_factory=AllocationConfig)
    stats: StatsConfig = Field(default_factory=StatsConfig)

    @classmethod
    def in_memory(cls, **overrides) -> "CurationConfig":
        """Config backed by a private in-memory SQLite database."""
        config = cls(**overrides)
        config.store.db_path = ":memory:"
        return config

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "CurationConfig":
        """Build config from CURALEASE_* environment variables."""
        env = os.environ if environ is None else environ
        config = cls()
        if env.get("CURALEASE_DB_PATH"):
            config.store.db_path = os.path.expanduser(env["CURALEASE_DB_PATH"])
        if env.get("CURALEASE_BUSY_TIMEOUT_MS"):
            config.store = StoreConfig(db_path=config.store.db_path, busy_timeout_ms=int(env["CURALEASE_BUSY_TIMEOUT_MS"]))
        if env.get("CURALEASE_LEASE_TTL_SECONDS"):
            config.lease = LeaseConfig(ttl_seconds=int(env["CURALEASE_LEASE_TTL_SECONDS"]))
        reaper = config.reaper.model_dump()
        if env.get("CURALEASE_REAPER_ENABLED"):
            reaper["enabled"] = env["CURALEASE_REAPER_ENABLED"].strip().lower() in {"1", "true", "yes", "on"}
        if env.get("CURALEASE_REAPER_INTERVAL_SECONDS"):
            reaper["interval_seconds"] = int(env["CURALEASE_REAPER_INTERVAL_SECONDS"])
        if env.get("CURALEASE_ABANDON_AFTER_SECONDS"):
            reaper["abandon_after_seconds"] = int(env["CURALEASE_ABANDON_AFTER_SECONDS"])
        config.reaper = ReaperConfig(**reaper)
        if env.get("CURALEASE_MIN_CONFIDENCE"):
            eligibility = config.eligibility.model_dump()
            eligibility["min_confidence"] = float(env["CURALEASE_MIN_CONFIDENCE"])
            config.eligibility = EligibilityConfig(**eligibility)
        return config
