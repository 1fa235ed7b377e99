"""Pytest fixtures for lexicon cleanup tests."""

import pytest

from lexicon_cleanup.config import CleanupConfig
from lexicon_cleanup.engine import CleanupEngine
from lexicon_cleanup.errors import GenerationError
from lexicon_cleanup.llm.client import TextGenerationClient
from lexicon_cleanup.models.proposal import GenerationResult
from lexicon_cleanup.models.record import LexiconRecord
from lexicon_cleanup.store import ProposalStore


class StubFormattingClient(TextGenerationClient):
    """Scriptable generation client.

    outputs maps record_id to the text to propose; other records get their
    whitespace collapsed. failures maps record_id to how many upcoming
    calls for that record should raise GenerationError.
    """

    def __init__(self):
        self.outputs: dict[str, str] = {}
        self.failures: dict[str, int] = {}
        self.calls: list[str] = []

    @property
    def engine_name(self) -> str:
        return "stub"

    def generate_formatting(self, record: LexiconRecord, field: str = "text") -> GenerationResult:
        self.calls.append(record.record_id)
        remaining = self.failures.get(record.record_id, 0)
        if remaining > 0:
            self.failures[record.record_id] = remaining - 1
            raise GenerationError(f"service unavailable for {record.record_id}")

        value = record.field_value(field)
        return GenerationResult(
            formatted_text=self.outputs.get(record.record_id, " ".join(value.split())),
            reason="stub formatting",
            confidence=0.8,
            metadata={"provider": "stub", "model": "stub-model"},
        )


@pytest.fixture
def state_dir(tmp_path):
    """Temporary state directory (not created up front)."""
    return tmp_path / "state"


@pytest.fixture
def cleanup_config(state_dir):
    """CleanupConfig pointing at the temporary state directory, with no delays."""
    return CleanupConfig(
        state_dir=state_dir,
        engine="fake",
        retry_delay_seconds=0.0,
        request_delay_seconds=0.0,
    )


@pytest.fixture
def store(state_dir):
    """Connected ProposalStore, closed after the test."""
    proposal_store = ProposalStore(state_dir / "lexicon.sqlite")
    proposal_store.connect()
    yield proposal_store
    proposal_store.close()


@pytest.fixture
def stub_client():
    return StubFormattingClient()


@pytest.fixture
def sleeps():
    """Delays requested by the engine, in order."""
    return []


@pytest.fixture
def engine(cleanup_config, stub_client, sleeps):
    """Initialized CleanupEngine using the stub client and a recording sleep."""
    cleanup_engine = CleanupEngine(cleanup_config, client=stub_client, sleep=sleeps.append)
    cleanup_engine.initialize()
    yield cleanup_engine
    cleanup_engine.cleanup()


def seed_records(store: ProposalStore, *records: tuple[str, str]) -> None:
    """Insert (record_id, text) pairs in order."""
    for record_id, text in records:
        store.upsert_record(LexiconRecord(record_id=record_id, title=record_id.upper(), text=text))


@pytest.fixture
def seed():
    return seed_records
