"""curalease package exports.

curalease: leased work allocation and session coordination for concurrent
human curators reviewing a shared queue of work items.

Quick Start:
    from curalease import CurationService, CurationConfig

    service = CurationService(CurationConfig.in_memory())
    service.register_items([{"item_id": "1abc_A", "sequence_length": 120,
                             "best_confidence": 0.93, "evidence_count": 4}])
    batch = service.allocate("alice", batch_size=5)
    service.finalize(batch["session"]["session_id"], "commit")
"""

from curalease.configs.base import CurationConfig
from curalease.db.sqlite import CurationStore
from curalease.exceptions import (
    CurationError,
    InvalidTransitionError,
    LeaseConflictError,
    NotEligibleError,
    SessionNotActiveError,
    SessionNotFoundError,
    StoreUnavailableError,
)
from curalease.models import DecisionPayload, EvidenceProvenance, FinalizeAction, SessionStatus
from curalease.service import CurationService

__version__ = "0.1.0"
__all__ = [
    "CurationService",
    "CurationStore",
    "CurationConfig",
    # Models
    "DecisionPayload",
    "EvidenceProvenance",
    "FinalizeAction",
    "SessionStatus",
    # Errors
    "CurationError",
    "InvalidTransitionError",
    "LeaseConflictError",
    "NotEligibleError",
    "SessionNotActiveError",
    "SessionNotFoundError",
    "StoreUnavailableError",
]
