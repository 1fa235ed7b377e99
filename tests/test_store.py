"""Tests for the SQLite proposal store."""

import threading

import pytest

from lexicon_cleanup.errors import InvalidStateError, NotFoundError, StoreConnectionError
from lexicon_cleanup.models.proposal import SUPERSEDED, GenerationResult, ProposalStatus
from lexicon_cleanup.models.record import LexiconRecord
from lexicon_cleanup.store import ProposalStore


def _generated(text: str, confidence: float = 0.8) -> GenerationResult:
    return GenerationResult(formatted_text=text, reason="tidy", confidence=confidence, metadata={"model": "m"})


def test_upsert_keeps_insertion_order(store, seed):
    """Test that updating a record keeps its original position."""
    seed(store, ("r1", "one"), ("r2", "two"), ("r3", "three"))
    store.upsert_record(LexiconRecord(record_id="r1", title="R1", text="one, edited"))

    records = store.get_unprocessed_records(set())

    assert [r.record_id for r in records] == ["r1", "r2", "r3"]
    assert records[0].text == "one, edited"
    assert records[0].updated_at is not None
    assert store.count_records() == 3


def test_get_unprocessed_records_excludes_and_limits(store, seed):
    seed(store, ("r1", "a"), ("r2", "b"), ("r3", "c"), ("r4", "d"))

    records = store.get_unprocessed_records({"r1", "r3"}, limit=1)

    assert [r.record_id for r in records] == ["r2"]


def test_get_record_unknown_returns_none(store):
    assert store.get_record("nope") is None
    assert store.get_proposal("nope") is None


def test_create_proposal_snapshots_current_value(store, seed):
    seed(store, ("r1", "foo  bar"))
    record = store.get_record("r1")

    proposal = store.create_proposal(record, _generated("Foo Bar"))

    assert proposal.status == ProposalStatus.PENDING
    assert proposal.is_pending
    assert proposal.current_value == "foo  bar"
    assert proposal.proposed_value == "Foo Bar"
    assert store.get_proposal(proposal.proposal_id) == proposal
    # Generation never touches the record
    assert store.get_record("r1").text == "foo  bar"


def test_create_proposal_for_unknown_record(store):
    record = LexiconRecord(record_id="ghost", text="boo")

    with pytest.raises(NotFoundError):
        store.create_proposal(record, _generated("Boo"))

    assert store.count_by_status()["pending"] == 0


def test_create_proposal_unsupported_field(store, seed):
    seed(store, ("r1", "x"))

    with pytest.raises(ValueError):
        store.create_proposal(store.get_record("r1"), _generated("X"), field="aliases")


def test_new_proposal_supersedes_pending_one(store, seed):
    """Test that a second proposal marks the first rejected as superseded."""
    seed(store, ("r1", "foo  bar"))
    record = store.get_record("r1")

    first = store.create_proposal(record, _generated("Foo bar"))
    second = store.create_proposal(record, _generated("Foo Bar"))

    assert store.get_pending_for_record("r1").proposal_id == second.proposal_id
    old = store.get_proposal(first.proposal_id)
    assert old.status == ProposalStatus.REJECTED
    assert old.status_reason == SUPERSEDED
    assert old.decided_at is not None
    history = store.list_proposals_for_record("r1")
    assert [p.proposal_id for p in history] == [first.proposal_id, second.proposal_id]


def test_list_pending_filters_by_field_and_change(store, seed):
    seed(store, ("r1", "foo  bar"), ("r2", "already clean"))
    store.create_proposal(store.get_record("r1"), _generated("Foo Bar"))
    store.create_proposal(store.get_record("r2"), _generated("already clean"))

    assert len(store.list_pending()) == 2
    changed = store.list_pending("text")
    assert [p.record_id for p in changed] == ["r1"]
    assert store.list_pending("title") == []
    assert len(store.list_pending(limit=1)) == 1

    with pytest.raises(ValueError):
        store.list_pending("aliases")


def test_approve_applies_value_and_marks_approved(store, seed):
    seed(store, ("r1", "foo  bar"))
    proposal = store.create_proposal(store.get_record("r1"), _generated("Foo Bar"))

    approved = store.approve_proposal(proposal.proposal_id)

    assert approved.status == ProposalStatus.APPROVED
    assert approved.decided_at is not None
    assert store.get_record("r1").text == "Foo Bar"
    assert store.list_pending() == []


def test_approve_title_proposal(store, seed):
    seed(store, ("r1", "body"))
    proposal = store.create_proposal(store.get_record("r1"), _generated("Title Case"), field="title")

    store.approve_proposal(proposal.proposal_id)

    record = store.get_record("r1")
    assert record.title == "Title Case"
    assert record.text == "body"


def test_approve_twice_raises_invalid_state(store, seed):
    seed(store, ("r1", "foo  bar"))
    proposal = store.create_proposal(store.get_record("r1"), _generated("Foo Bar"))
    store.approve_proposal(proposal.proposal_id)
    store.upsert_record(LexiconRecord(record_id="r1", title="R1", text="edited by hand"))

    with pytest.raises(InvalidStateError):
        store.approve_proposal(proposal.proposal_id)

    assert store.get_record("r1").text == "edited by hand"


def test_approve_unknown_id_raises_not_found(store, seed):
    seed(store, ("r1", "foo  bar"))

    with pytest.raises(NotFoundError):
        store.approve_proposal("does-not-exist")

    assert store.get_record("r1").text == "foo  bar"


def test_failed_approval_rolls_back_status(store, seed):
    """Test that the status flip is undone when the field cannot be applied."""
    seed(store, ("r1", "foo"))
    proposal = store.create_proposal(store.get_record("r1"), _generated("Foo"))
    # Retarget the stored proposal at a field the store cannot write
    store._conn.execute(
        "UPDATE proposals SET field = 'aliases' WHERE proposal_id = ?", (proposal.proposal_id,)
    )

    with pytest.raises(ValueError):
        store.approve_proposal(proposal.proposal_id)

    assert store.get_proposal(proposal.proposal_id).status == ProposalStatus.PENDING
    assert store.get_record("r1").text == "foo"


def test_reject_leaves_record_untouched(store, seed):
    seed(store, ("r1", "foo  bar"))
    proposal = store.create_proposal(store.get_record("r1"), _generated("Foo Bar"))

    rejected = store.reject_proposal(proposal.proposal_id, "changed wording")

    assert rejected.status == ProposalStatus.REJECTED
    assert rejected.status_reason == "changed wording"
    assert store.get_record("r1").text == "foo  bar"
    with pytest.raises(InvalidStateError):
        store.approve_proposal(proposal.proposal_id)
    with pytest.raises(NotFoundError):
        store.reject_proposal("does-not-exist")


def test_count_by_status(store, seed):
    seed(store, ("r1", "a"), ("r2", "b"), ("r3", "c"))
    p1 = store.create_proposal(store.get_record("r1"), _generated("A"))
    p2 = store.create_proposal(store.get_record("r2"), _generated("B"))
    store.create_proposal(store.get_record("r3"), _generated("C"))
    store.approve_proposal(p1.proposal_id)
    store.reject_proposal(p2.proposal_id)

    assert store.count_by_status() == {"pending": 1, "approved": 1, "rejected": 1}


def test_data_survives_reconnect(state_dir, seed):
    db_path = state_dir / "lexicon.sqlite"
    with ProposalStore(db_path) as first:
        seed(first, ("r1", "foo"))
        proposal = first.create_proposal(first.get_record("r1"), _generated("Foo"))

    with ProposalStore(db_path) as second:
        assert second.get_proposal(proposal.proposal_id) is not None
        assert second.get_pending_for_record("r1").proposed_value == "Foo"


def test_operations_require_connection(state_dir):
    store = ProposalStore(state_dir / "lexicon.sqlite")

    with pytest.raises(StoreConnectionError):
        store.count_records()

    # Closing an unopened store is a no-op
    store.close()
    assert not store.is_connected


def test_connect_failure_raises_store_connection_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = ProposalStore(blocker / "lexicon.sqlite")

    with pytest.raises(StoreConnectionError):
        store.connect()

    assert not store.is_connected


def test_concurrent_approvals_apply_once(state_dir, seed):
    """Test that two racing approvals of one proposal produce one success."""
    db_path = state_dir / "lexicon.sqlite"
    with ProposalStore(db_path) as setup:
        seed(setup, ("r1", "foo  bar"))
        proposal = setup.create_proposal(setup.get_record("r1"), _generated("Foo Bar"))

    stores = [ProposalStore(db_path), ProposalStore(db_path)]
    for s in stores:
        s.connect()

    barrier = threading.Barrier(len(stores))
    outcomes: list[str] = []
    lock = threading.Lock()

    def approve(s: ProposalStore) -> None:
        barrier.wait()
        try:
            s.approve_proposal(proposal.proposal_id)
            result = "approved"
        except InvalidStateError:
            result = "invalid"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=approve, args=(s,)) for s in stores]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    try:
        assert sorted(outcomes) == ["approved", "invalid"]
        assert stores[0].get_record("r1").text == "Foo Bar"
        assert stores[0].get_proposal(proposal.proposal_id).status == ProposalStatus.APPROVED
    finally:
        for s in stores:
            s.close()
