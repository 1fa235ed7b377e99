"""Processing ledger: which records have already been run through generation."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .models.ledger import LedgerState

logger = logging.getLogger(__name__)


class ProcessingLedger:
    """Durable set of processed record ids.

    Loaded once, flushed to disk after every mutation so an abrupt stop
    loses at most the in-flight mark. A record id is listed at most once.
    """

    def __init__(self, ledger_file: Path, state: LedgerState | None = None):
        self.ledger_file = ledger_file
        self._state = state or LedgerState()
        # Lookup index over the ordered id list
        self._ids = set(self._state.processed_ids)

    @classmethod
    def load(cls, ledger_file: Path) -> "ProcessingLedger":
        """Load the ledger from JSON, starting empty if it is absent or unreadable."""
        if not ledger_file.exists():
            logger.info(f"Ledger file {ledger_file} does not exist, starting empty")
            return cls(ledger_file)

        try:
            with open(ledger_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            state = LedgerState.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Failed to load ledger file {ledger_file}: {e}, starting empty")
            return cls(ledger_file)

        # Collapse duplicates a hand-edited file might contain, keeping first-seen order
        state.processed_ids = list(dict.fromkeys(state.processed_ids))
        return cls(ledger_file, state)

    @property
    def last_run(self) -> datetime | None:
        return self._state.last_run

    def is_processed(self, record_id: str) -> bool:
        """Check if a record has already been processed."""
        return record_id in self._ids

    def mark_processed(self, record_id: str) -> None:
        """Mark a record as processed. Marking an already-present id is a no-op."""
        if record_id in self._ids:
            return
        self._state.processed_ids.append(record_id)
        self._ids.add(record_id)
        self._state.last_run = datetime.now(timezone.utc)
        self.flush()
        logger.debug(f"Marked record {record_id} as processed")

    def list_processed(self) -> set[str]:
        """Snapshot of all processed record ids."""
        return set(self._ids)

    def reset(self) -> None:
        """Forget every processed id, forcing a full reprocessing pass."""
        self._state = LedgerState(processed_ids=[], last_run=datetime.now(timezone.utc))
        self._ids = set()
        self.flush()
        logger.info("Processing ledger reset")

    def stats(self) -> dict:
        return {
            "total_processed": len(self._ids),
            "last_run": self._state.last_run,
        }

    def flush(self) -> None:
        """Write the ledger atomically using a temporary file."""
        self.ledger_file.parent.mkdir(parents=True, exist_ok=True)

        data = self._state.model_dump(mode="json", by_alias=True)

        temp_file = self.ledger_file.with_suffix(".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)

            temp_file.replace(self.ledger_file)
        except OSError as e:
            logger.error(f"Failed to save ledger to {self.ledger_file}: {e}")
            temp_file.unlink(missing_ok=True)
            raise
