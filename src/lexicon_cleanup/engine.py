"""Cleanup engine: drives generation passes and human approval.

Per record, a pass moves ``selected -> generating -> (proposed | failed)``.
A proposed record gets its proposal written and then its ledger entry; a
failed record gets neither and is picked up again on the next run.
"""

import logging
import re
import time
from typing import Callable, Optional

from .config import CleanupConfig
from .errors import GenerationError, InvalidStateError, NotFoundError
from .events import EventLog
from .ledger import ProcessingLedger
from .llm.client import TextGenerationClient, get_generation_client
from .models.proposal import GenerationResult, Proposal
from .models.record import LexiconRecord
from .models.report import CleanupReport
from .paths import StatePaths
from .store import ProposalStore

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")


def content_preserved(original: str, proposed: str) -> bool:
    """True if two texts differ only in whitespace and line breaks."""
    return _WS_RE.sub(" ", original).strip() == _WS_RE.sub(" ", proposed).strip()


class CleanupEngine:
    """Orchestrates the proposal lifecycle over a store, a ledger and a client.

    Collaborators are injectable; anything not supplied is built from the
    config on ``initialize()``. Use as a context manager so resources are
    released on every exit path::

        with CleanupEngine(config) as engine:
            report = engine.run_cleanup_pass()
    """

    def __init__(
        self,
        config: CleanupConfig,
        *,
        store: Optional[ProposalStore] = None,
        ledger: Optional[ProcessingLedger] = None,
        client: Optional[TextGenerationClient] = None,
        events: Optional[EventLog] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.paths = StatePaths.from_config(config)
        self.store = store
        self.ledger = ledger
        self.client = client
        self.events = events
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, *, with_client: bool = True) -> None:
        """Connect the store, load the ledger and build the generation client.

        On failure, anything already acquired is released before the error
        propagates.

        Args:
            with_client: Build a generation client if none was injected.
                Review and approval never call the service.

        Raises:
            StoreConnectionError: If the store cannot be opened
            ValueError: If the configured engine needs a missing API key
        """
        try:
            if self.store is None:
                self.store = ProposalStore(self.paths.database_file)
            self.store.connect()
            if self.ledger is None:
                self.ledger = ProcessingLedger.load(self.paths.ledger_file)
            if self.events is None:
                self.events = EventLog(self.paths.events_file)
            if self.client is None and with_client:
                self.client = get_generation_client(self.config.engine, self.config.generation)
        except Exception:
            self.cleanup()
            raise
        logger.info("Cleanup engine initialized")

    def cleanup(self) -> None:
        """Release acquired resources. Safe after a partial initialize() and when repeated."""
        if self.store is not None:
            self.store.close()

    def __enter__(self) -> "CleanupEngine":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def _require_ready(self) -> tuple[ProposalStore, ProcessingLedger, EventLog]:
        if self.store is None or not self.store.is_connected or self.ledger is None or self.events is None:
            raise RuntimeError("CleanupEngine is not initialized")
        return self.store, self.ledger, self.events

    # ------------------------------------------------------------------
    # Generation passes
    # ------------------------------------------------------------------

    def run_cleanup_pass(
        self,
        batch_size: Optional[int] = None,
        skip_ids: Optional[set[str]] = None,
    ) -> CleanupReport:
        """Generate proposals for up to batch_size unprocessed records.

        Per-record GenerationErrors are logged and counted; they never stop
        the batch. Any other error propagates.

        Args:
            batch_size: Maximum records to select (default: from config)
            skip_ids: Record ids to leave out of this pass in addition to
                the ledger, e.g. records that already failed in this run

        Raises:
            ValueError: If batch_size is less than 1
        """
        store, ledger, events = self._require_ready()
        if self.client is None:
            raise RuntimeError("No generation client configured")

        limit = self.config.batch_size if batch_size is None else batch_size
        if limit < 1:
            raise ValueError(f"batch_size must be at least 1, got {limit}")
        field = self.config.field
        report = CleanupReport(batches=1)

        stats = ledger.stats()
        logger.info(f"Already processed: {stats['total_processed']} record(s), last run: {stats['last_run']}")

        excluded = ledger.list_processed()
        if skip_ids:
            excluded |= skip_ids
        records = store.get_unprocessed_records(excluded, limit=limit)
        report.selected = len(records)
        events.append_event(
            "CLEANUP_RUN_STARTED",
            {"batch_size": limit, "selected": len(records), "field": field, "engine": self.client.engine_name},
        )

        if not records:
            logger.info("No new records to process")

        for index, record in enumerate(records):
            if index > 0 and self.config.request_delay_seconds:
                self._sleep(self.config.request_delay_seconds)

            try:
                generated = self._generate_with_retries(record, field)
            except GenerationError as e:
                logger.warning(f"Generation failed for {record.record_id} ({record.title}): {e}")
                report.record_failure(record.record_id, str(e))
                events.append_event("GENERATION_FAILED", {"error": str(e)}, record_id=record.record_id)
                continue

            proposal = self._write_proposal(record, generated, field)
            # Ledger entry only after the proposal is durably stored
            ledger.mark_processed(record.record_id)
            report.record_success(proposal.proposal_id)
            logger.info(
                f"Proposal {proposal.proposal_id} saved for {record.record_id} "
                f"(confidence: {proposal.confidence * 100:.1f}%)"
            )

        events.append_event(
            "CLEANUP_RUN_FINISHED",
            {"selected": report.selected, "proposed": report.proposed, "failed": report.failed},
        )
        if report.failed:
            logger.warning(f"{report.failed} of {report.selected} record(s) failed generation")
        return report

    def run_until_exhausted(
        self,
        batch_size: Optional[int] = None,
        max_batches: Optional[int] = None,
    ) -> CleanupReport:
        """Repeat passes until nothing is left to select.

        A record that fails is attempted once per call; later passes skip it
        so it neither blocks the records behind it nor burns more requests.
        It stays out of the ledger and is retried on the next run.
        """
        total = CleanupReport()
        failed_ids: set[str] = set()
        while max_batches is None or total.batches < max_batches:
            report = self.run_cleanup_pass(batch_size, skip_ids=failed_ids)
            total.merge(report)
            failed_ids.update(report.failures)
            if report.selected == 0:
                break
        return total

    def _generate_with_retries(self, record: LexiconRecord, field: str) -> GenerationResult:
        attempts = self.config.max_attempts
        attempt = 1
        while True:
            try:
                generated = self.client.generate_formatting(record, field)
                if self.config.require_content_preserved and not content_preserved(
                    record.field_value(field), generated.formatted_text
                ):
                    raise GenerationError("Content changes detected in generated text")
                return generated
            except GenerationError as e:
                if attempt >= attempts:
                    raise
                logger.info(f"Attempt {attempt}/{attempts} failed for {record.record_id}: {e}; retrying")
                self._sleep(self.config.retry_delay_seconds)
                attempt += 1

    def _write_proposal(self, record: LexiconRecord, generated: GenerationResult, field: str) -> Proposal:
        store, _, events = self._require_ready()
        previous = store.get_pending_for_record(record.record_id)
        proposal = store.create_proposal(record, generated, field)
        if previous is not None:
            events.append_event(
                "PROPOSAL_SUPERSEDED",
                {"superseded_by": proposal.proposal_id},
                record_id=record.record_id,
                proposal_id=previous.proposal_id,
            )
        events.append_event(
            "PROPOSAL_CREATED",
            {
                "field": field,
                "confidence": proposal.confidence,
                "model": proposal.metadata.get("model"),
            },
            record_id=record.record_id,
            proposal_id=proposal.proposal_id,
        )
        return proposal

    # ------------------------------------------------------------------
    # Review and decisions
    # ------------------------------------------------------------------

    def review_proposals(self, filter_field: Optional[str] = None) -> list[Proposal]:
        """Pending proposals for human review. Read-only."""
        store, _, _ = self._require_ready()
        return store.list_pending(filter_field)

    def approve_proposal(self, proposal_id: str) -> Proposal:
        """Apply a pending proposal to its record.

        Raises:
            NotFoundError: Unknown proposal id
            InvalidStateError: Proposal already decided
        """
        store, _, events = self._require_ready()
        proposal = store.approve_proposal(proposal_id)
        events.append_event(
            "PROPOSAL_APPROVED",
            {"field": proposal.field},
            record_id=proposal.record_id,
            proposal_id=proposal.proposal_id,
        )
        logger.info(f"Approved and applied proposal {proposal_id}")
        return proposal

    def reject_proposal(self, proposal_id: str, reason: Optional[str] = None) -> Proposal:
        store, _, events = self._require_ready()
        proposal = store.reject_proposal(proposal_id, reason)
        events.append_event(
            "PROPOSAL_REJECTED",
            {"reason": reason},
            record_id=proposal.record_id,
            proposal_id=proposal.proposal_id,
        )
        logger.info(f"Rejected proposal {proposal_id}")
        return proposal

    def approve_all(self, filter_field: Optional[str] = None) -> tuple[list[Proposal], dict[str, str]]:
        """Approve every pending proposal, collecting per-proposal errors."""
        approved: list[Proposal] = []
        errors: dict[str, str] = {}
        for proposal in self.review_proposals(filter_field):
            try:
                approved.append(self.approve_proposal(proposal.proposal_id))
            except (NotFoundError, InvalidStateError) as e:
                logger.warning(f"Could not approve {proposal.proposal_id}: {e}")
                errors[proposal.proposal_id] = str(e)
        return approved, errors

    def reset_ledger(self) -> int:
        """Clear the processing ledger. Returns how many entries were dropped."""
        _, ledger, events = self._require_ready()
        dropped = len(ledger.list_processed())
        ledger.reset()
        events.append_event("LEDGER_RESET", {"dropped": dropped})
        return dropped
