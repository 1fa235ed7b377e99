"""Pydantic models for generated edits and their review state."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ProposalStatus(str, Enum):
    """Status of a proposal in the review queue."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# status_reason recorded when a newer proposal replaces a pending one
SUPERSEDED = "superseded"


class GenerationResult(BaseModel):
    """Output of a single text-generation call."""

    formatted_text: str = Field(description="Proposed replacement text")
    reason: str = Field(default="", description="Service's explanation of the edit")
    confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Model identity, timing and token usage when reported",
    )

    model_config = {"frozen": True}


class Proposal(BaseModel):
    """A candidate edit to one field of a canonical record."""

    proposal_id: str = Field(description="Unique proposal identifier (uuid4)")
    record_id: str = Field(description="Target record identifier")
    field: str = Field(default="text", description="Record field this proposal replaces")
    current_value: str = Field(description="Field value at generation time")
    proposed_value: str = Field(description="Replacement text")
    reason: str = Field(default="", max_length=500)
    confidence: float = Field(ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: ProposalStatus = Field(default=ProposalStatus.PENDING)
    status_reason: str | None = Field(default=None)
    created_at: datetime
    decided_at: datetime | None = Field(default=None)

    model_config = {"frozen": True}

    @property
    def is_pending(self) -> bool:
        return self.status == ProposalStatus.PENDING
