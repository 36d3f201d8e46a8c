from curalease.core.allocator import AllocationResult, Allocator
from curalease.core.leases import LeaseManager
from curalease.core.ledger import DecisionLedger
from curalease.core.reaper import Reaper
from curalease.core.sessions import SessionCoordinator
from curalease.core.stats import CurationStats

__all__ = [
    "AllocationResult",
    "Allocator",
    "CurationStats",
    "DecisionLedger",
    "LeaseManager",
    "Reaper",
    "SessionCoordinator",
]
