"""Status vocabularies and decision payload models."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    ABANDONED = "abandoned"      # Reaper timeout; resumable
    COMMITTED = "committed"      # Decisions folded into curation status
    DISCARDED = "discarded"      # Decisions kept for audit only
    COMPLETED = "completed"      # Revisit: reviewed, nothing folded


TERMINAL_STATUSES = frozenset({
    SessionStatus.ABANDONED,
    SessionStatus.COMMITTED,
    SessionStatus.DISCARDED,
    SessionStatus.COMPLETED,
})

RESUMABLE_STATUSES = frozenset({SessionStatus.IN_PROGRESS, SessionStatus.ABANDONED})


class FinalizeAction(str, Enum):
    COMMIT = "commit"
    DISCARD = "discard"
    REVISIT = "revisit"

    @property
    def final_status(self) -> SessionStatus:
        return _FINAL_STATUS[self]


_FINAL_STATUS = {
    FinalizeAction.COMMIT: SessionStatus.COMMITTED,
    FinalizeAction.DISCARD: SessionStatus.DISCARDED,
    FinalizeAction.REVISIT: SessionStatus.COMPLETED,
}


class EvidenceProvenance(BaseModel):
    """Pointers to the evidence a curator relied on."""
    primary_evidence_type: Optional[str] = None
    primary_evidence_source_id: Optional[str] = None
    reference_domain_id: Optional[str] = None
    evidence_confidence: Optional[float] = None
    evidence_evalue: Optional[float] = None


class DecisionPayload(BaseModel):
    """One curator's verdict on one work item."""
    has_domain: Optional[bool] = None
    domain_assigned_correctly: Optional[bool] = None
    boundaries_correct: Optional[bool] = None
    is_fragment: bool = False
    is_repeat_protein: bool = False
    confidence_level: int = Field(default=3, ge=1, le=5)
    flagged_for_review: bool = False
    review_time_seconds: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    evidence: EvidenceProvenance = Field(default_factory=EvidenceProvenance)

    @field_validator("notes")
    @classmethod
    def _strip_notes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    def to_row(self) -> Dict[str, Any]:
        row = self.model_dump(exclude={"evidence"})
        row.update(self.evidence.model_dump())
        return row
