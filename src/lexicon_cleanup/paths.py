"""Path management for the lexicon cleanup state directory."""

from pathlib import Path

from .config import CleanupConfig


class StatePaths:
    """Manages file locations inside the state directory."""

    def __init__(self, state_dir: Path):
        """Initialize state paths from root directory.

        Args:
            state_dir: Directory holding the ledger, database and event log
        """
        self.root = state_dir

        self.ledger_file = state_dir / "processed.json"
        self.database_file = state_dir / "lexicon.sqlite"
        self.events_file = state_dir / "events.jsonl"

    @classmethod
    def from_config(cls, config: CleanupConfig) -> "StatePaths":
        """Create StatePaths from a CleanupConfig."""
        return cls(config.state_dir)

