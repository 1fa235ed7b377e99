"""Pydantic models for lexicon cleanup."""

from .ledger import CleanupEvent, EventType, LedgerState
from .proposal import SUPERSEDED, GenerationResult, Proposal, ProposalStatus
from .record import CURATABLE_FIELDS, LexiconRecord
from .report import CleanupReport

__all__ = [
    # Records
    "CURATABLE_FIELDS",
    "LexiconRecord",
    # Proposals
    "GenerationResult",
    "Proposal",
    "ProposalStatus",
    "SUPERSEDED",
    # Ledger / events
    "LedgerState",
    "CleanupEvent",
    "EventType",
    # Runs
    "CleanupReport",
]
