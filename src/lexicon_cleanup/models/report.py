"""Summary of a cleanup run."""

from dataclasses import dataclass, field


@dataclass
class CleanupReport:
    selected: int = 0
    proposed: int = 0
    failed: int = 0
    batches: int = 0
    proposal_ids: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    def record_success(self, proposal_id: str) -> None:
        self.proposed += 1
        self.proposal_ids.append(proposal_id)

    def record_failure(self, record_id: str, message: str) -> None:
        self.failed += 1
        self.failures[record_id] = message

    def merge(self, other: "CleanupReport") -> None:
        """Fold another pass's counts into this report."""
        self.selected += other.selected
        self.proposed += other.proposed
        self.failed += other.failed
        self.batches += other.batches
        self.proposal_ids.extend(other.proposal_ids)
        self.failures.update(other.failures)
