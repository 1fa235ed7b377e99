"""Pydantic models for the processing ledger and the audit event log."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class LedgerState(BaseModel):
    """On-disk shape of the processing ledger.

    Serialized as ``{"processedIds": [...], "lastRun": "..."}``.
    """

    processed_ids: list[str] = Field(default_factory=list, alias="processedIds")
    last_run: datetime | None = Field(default=None, alias="lastRun")

    model_config = {"populate_by_name": True}


EventType = Literal[
    "CLEANUP_RUN_STARTED",
    "CLEANUP_RUN_FINISHED",
    "PROPOSAL_CREATED",
    "PROPOSAL_SUPERSEDED",
    "GENERATION_FAILED",
    "PROPOSAL_APPROVED",
    "PROPOSAL_REJECTED",
    "LEDGER_RESET",
    "RECORDS_IMPORTED",
]


class CleanupEvent(BaseModel):
    """Append-only audit event.

    Written as JSONL to <state_dir>/events.jsonl.
    Never mutate or delete; only append.
    """

    event_id: str = Field(description="Unique event identifier (uuid4)")
    run_id: str = Field(description="Run/session identifier (uuid4)")
    ts: datetime = Field(description="Event timestamp (ISO8601 UTC)")
    event_type: EventType = Field(description="Event type")
    record_id: str | None = Field(default=None, description="Related record ID if applicable")
    proposal_id: str | None = Field(default=None, description="Related proposal ID if applicable")
    payload: dict = Field(default_factory=dict, description="Event-specific data")

    model_config = {"frozen": True}
