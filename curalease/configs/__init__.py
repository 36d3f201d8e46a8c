from curalease.configs.base import (
    AllocationConfig,
    CurationConfig,
    EligibilityConfig,
    LeaseConfig,
    ReaperConfig,
    StatsConfig,
    StoreConfig,
)

__all__ = [
    "AllocationConfig",
    "CurationConfig",
    "EligibilityConfig",
    "LeaseConfig",
    "ReaperConfig",
    "StatsConfig",
    "StoreConfig",
]
