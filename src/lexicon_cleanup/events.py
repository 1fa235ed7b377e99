"""Append-only audit log of cleanup pipeline events."""

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from .models.ledger import CleanupEvent, EventType

logger = logging.getLogger(__name__)


class EventLog:
    """Append-only event writer.

    Writes events to <state_dir>/events.jsonl.
    Never truncates or rewrites; only appends.
    """

    def __init__(self, events_path: Path, run_id: str | None = None):
        """Initialize event log.

        Args:
            events_path: Path to events.jsonl file
            run_id: Optional run ID; if None, generates a new uuid4
        """
        self.events_path = events_path
        self.run_id = run_id or str(uuid.uuid4())

    def append_event(
        self,
        event_type: EventType,
        payload: dict | None = None,
        record_id: str | None = None,
        proposal_id: str | None = None,
    ) -> CleanupEvent:
        """Append an event to the log.

        Returns:
            The created CleanupEvent
        """
        self.events_path.parent.mkdir(parents=True, exist_ok=True)

        event = CleanupEvent(
            event_id=str(uuid.uuid4()),
            run_id=self.run_id,
            ts=datetime.now(timezone.utc),
            event_type=event_type,
            record_id=record_id,
            proposal_id=proposal_id,
            payload=payload or {},
        )

        # JSONL: one JSON object per line
        with open(self.events_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(event.model_dump(mode="json")) + "\n")

        return event


def read_events_tail(events_path: Path, n: int = 20) -> list[CleanupEvent]:
    """Read the last N events, skipping malformed lines with a warning."""
    if not events_path.exists():
        return []

    with open(events_path, "r", encoding="utf-8") as f:
        lines = f.readlines()

    events: list[CleanupEvent] = []
    malformed_count = 0

    for line in lines[-n:]:
        line = line.strip()
        if not line:
            continue

        try:
            events.append(CleanupEvent(**json.loads(line)))
        except (json.JSONDecodeError, ValueError) as e:
            malformed_count += 1
            logger.warning(f"Skipping malformed event line: {e}")

    if malformed_count > 0:
        logger.warning(f"Skipped {malformed_count} malformed event line(s)")

    return events
