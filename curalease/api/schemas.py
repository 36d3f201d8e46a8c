"""Pydantic schemas for the curalease HTTP API."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from curalease.models import DecisionPayload

FinalizeActionName = Literal["commit", "discard", "revisit"]
SessionStatusName = Literal["in_progress", "abandoned", "committed", "discarded", "completed"]


class WorkItemIn(BaseModel):
    item_id: str = Field(..., min_length=1)
    pdb_id: Optional[str] = Field(default=None)
    chain_id: Optional[str] = Field(default=None)
    sequence_length: int = Field(default=0, ge=0)
    best_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    evidence_count: int = Field(default=0, ge=0)
    is_representative: Optional[bool] = Field(default=None)


class RegisterItemsRequest(BaseModel):
    items: List[WorkItemIn] = Field(..., min_length=1)


class RegisterItemsResponse(BaseModel):
    registered: int


class AllocateRequest(BaseModel):
    curator_id: str = Field(..., min_length=1, description="Curator requesting a batch")
    batch_size: Optional[int] = Field(default=None, ge=1, description="Items wanted; clamped to the configured maximum")


class CheckpointRequest(BaseModel):
    cursor_index: int = Field(..., ge=0)
    decisions: List[Optional[Dict[str, Any]]] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None)


class FinalizeRequest(BaseModel):
    action: FinalizeActionName
    final_notes: Optional[str] = Field(default=None)


class DecisionRequest(DecisionPayload):
    item_id: str = Field(..., min_length=1)

    def to_payload(self) -> DecisionPayload:
        return DecisionPayload(**self.model_dump(exclude={"item_id"}))


class SweepResponse(BaseModel):
    reaped_leases: List[str]
    abandoned_sessions: List[str]
    swept_at: str
    errors: List[Dict[str, str]] = Field(default_factory=list)


class ErrorBody(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    error: ErrorBody
