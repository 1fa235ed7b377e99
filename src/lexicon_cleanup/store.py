"""SQLite-backed store for canonical lexicon records and their proposals.

Supersede policy: creating a proposal for a record that already has a
pending one marks the older proposal ``rejected`` with status_reason
``superseded`` in the same transaction. Proposals are never deleted.

One store instance (and so one connection) per thread. Writers are
serialized by SQLite; every write runs inside ``BEGIN IMMEDIATE``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from .errors import InvalidStateError, NotFoundError, StoreConnectionError
from .models.proposal import SUPERSEDED, GenerationResult, Proposal, ProposalStatus
from .models.record import CURATABLE_FIELDS, LexiconRecord

logger = logging.getLogger(__name__)

# Column names cannot be bound as parameters; one statement per curatable field.
_APPLY_SQL = {
    field: f"UPDATE records SET {field} = ?, updated_at = ? WHERE record_id = ?"
    for field in CURATABLE_FIELDS
}


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def _json_loads(text: str) -> Any:
    return json.loads(text) if text else {}


def _row_to_record(row: sqlite3.Row) -> LexiconRecord:
    return LexiconRecord(
        record_id=row["record_id"],
        title=row["title"],
        text=row["text"],
        url_slug=row["url_slug"],
        updated_at=row["updated_at"],
    )


def _row_to_proposal(row: sqlite3.Row) -> Proposal:
    return Proposal(
        proposal_id=row["proposal_id"],
        record_id=row["record_id"],
        field=row["field"],
        current_value=row["current_value"],
        proposed_value=row["proposed_value"],
        reason=row["reason"],
        confidence=row["confidence"],
        metadata=_json_loads(row["metadata_json"]),
        status=ProposalStatus(row["status"]),
        status_reason=row["status_reason"],
        created_at=row["created_at"],
        decided_at=row["decided_at"],
    )


class ProposalStore:
    def __init__(self, db_path: Path, busy_timeout_seconds: float = 30.0):
        self.db_path = db_path
        self.busy_timeout_seconds = busy_timeout_seconds
        self._conn: Optional[sqlite3.Connection] = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> None:
        """Open the database and ensure the schema exists.

        Raises:
            StoreConnectionError: If the database cannot be opened
        """
        if self._conn is not None:
            return
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode: transactions are opened explicitly below
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_seconds,
                isolation_level=None,
                check_same_thread=False,
            )
        except (OSError, sqlite3.Error) as e:
            raise StoreConnectionError(f"Cannot open store at {self.db_path}: {e}") from e

        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            self._ensure_schema(conn)
        except sqlite3.Error as e:
            conn.close()
            raise StoreConnectionError(f"Cannot initialize store at {self.db_path}: {e}") from e

        self._conn = conn
        logger.debug(f"Connected to store {self.db_path}")

    def close(self) -> None:
        """Close the connection. Safe to call when not connected."""
        if self._conn is None:
            return
        try:
            self._conn.close()
        finally:
            self._conn = None
            logger.debug(f"Closed store {self.db_path}")

    def __enter__(self) -> "ProposalStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS records(
              seq INTEGER PRIMARY KEY AUTOINCREMENT,
              record_id TEXT NOT NULL UNIQUE,
              title TEXT NOT NULL,
              text TEXT NOT NULL,
              url_slug TEXT,
              updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS proposals(
              proposal_id TEXT PRIMARY KEY,
              record_id TEXT NOT NULL REFERENCES records(record_id),
              field TEXT NOT NULL,
              current_value TEXT NOT NULL,
              proposed_value TEXT NOT NULL,
              reason TEXT NOT NULL,
              confidence REAL NOT NULL,
              metadata_json TEXT NOT NULL,
              status TEXT NOT NULL CHECK(status IN ('pending', 'approved', 'rejected')),
              status_reason TEXT,
              created_at TEXT NOT NULL,
              decided_at TEXT
            );

            CREATE UNIQUE INDEX IF NOT EXISTS proposals_one_pending_per_record
              ON proposals(record_id) WHERE status = 'pending';

            CREATE INDEX IF NOT EXISTS proposals_status_created
              ON proposals(status, created_at);
            """
        )

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreConnectionError("Store is not connected; call connect() first")
        return self._conn

    @contextmanager
    def _write_transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._require_conn()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Canonical records
    # ------------------------------------------------------------------

    def upsert_record(self, record: LexiconRecord) -> LexiconRecord:
        """Insert a record, or update it in place keeping its original order."""
        updated_at = record.updated_at.isoformat() if record.updated_at else _iso_now()
        with self._write_transaction() as conn:
            conn.execute(
                """
                INSERT INTO records(record_id, title, text, url_slug, updated_at)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(record_id) DO UPDATE SET
                  title=excluded.title,
                  text=excluded.text,
                  url_slug=excluded.url_slug,
                  updated_at=excluded.updated_at
                """,
                (record.record_id, record.title, record.text, record.url_slug, updated_at),
            )
        return record.model_copy(update={"updated_at": datetime.fromisoformat(updated_at)})

    def get_record(self, record_id: str) -> Optional[LexiconRecord]:
        row = self._require_conn().execute(
            "SELECT * FROM records WHERE record_id = ?", (record_id,)
        ).fetchone()
        return _row_to_record(row) if row is not None else None

    def count_records(self) -> int:
        row = self._require_conn().execute("SELECT COUNT(1) AS n FROM records").fetchone()
        return int(row["n"])

    def get_unprocessed_records(
        self,
        exclude_ids: Iterable[str],
        limit: Optional[int] = None,
    ) -> list[LexiconRecord]:
        """Records whose id is not excluded, in insertion order.

        The order is stable across runs, so an interrupted pass resumes
        roughly where it stopped.
        """
        excluded = set(exclude_ids)
        records: list[LexiconRecord] = []
        cursor = self._require_conn().execute("SELECT * FROM records ORDER BY seq")
        for row in cursor:
            if row["record_id"] in excluded:
                continue
            records.append(_row_to_record(row))
            if limit is not None and len(records) >= limit:
                break
        cursor.close()
        return records

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def create_proposal(
        self,
        record: LexiconRecord,
        generated: GenerationResult,
        field: str = "text",
    ) -> Proposal:
        """Insert a new pending proposal, superseding any pending one for the record.

        Raises:
            NotFoundError: If the record is not in the store
        """
        if field not in CURATABLE_FIELDS:
            raise ValueError(f"Unsupported field: {field}")

        proposal = Proposal(
            proposal_id=str(uuid.uuid4()),
            record_id=record.record_id,
            field=field,
            current_value=record.field_value(field),
            proposed_value=generated.formatted_text,
            reason=generated.reason[:500],
            confidence=generated.confidence,
            metadata=dict(generated.metadata),
            status=ProposalStatus.PENDING,
            created_at=_iso_now(),
        )

        with self._write_transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM records WHERE record_id = ?", (record.record_id,)
            ).fetchone()
            if exists is None:
                raise NotFoundError(f"Record not found: {record.record_id}")

            superseded = conn.execute(
                """
                UPDATE proposals
                SET status = 'rejected', status_reason = ?, decided_at = ?
                WHERE record_id = ? AND status = 'pending'
                """,
                (SUPERSEDED, proposal.created_at.isoformat(), record.record_id),
            ).rowcount
            if superseded:
                logger.info(f"Superseded {superseded} pending proposal(s) for record {record.record_id}")

            conn.execute(
                """
                INSERT INTO proposals(
                  proposal_id, record_id, field, current_value, proposed_value,
                  reason, confidence, metadata_json, status, status_reason,
                  created_at, decided_at
                ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, 'pending', NULL, ?, NULL)
                """,
                (
                    proposal.proposal_id,
                    proposal.record_id,
                    proposal.field,
                    proposal.current_value,
                    proposal.proposed_value,
                    proposal.reason,
                    proposal.confidence,
                    _json_dumps(proposal.metadata),
                    proposal.created_at.isoformat(),
                ),
            )

        return proposal

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        row = self._require_conn().execute(
            "SELECT * FROM proposals WHERE proposal_id = ?", (proposal_id,)
        ).fetchone()
        return _row_to_proposal(row) if row is not None else None

    def get_pending_for_record(self, record_id: str) -> Optional[Proposal]:
        row = self._require_conn().execute(
            "SELECT * FROM proposals WHERE record_id = ? AND status = 'pending'", (record_id,)
        ).fetchone()
        return _row_to_proposal(row) if row is not None else None

    def list_proposals_for_record(self, record_id: str) -> list[Proposal]:
        rows = self._require_conn().execute(
            "SELECT * FROM proposals WHERE record_id = ? ORDER BY created_at, rowid", (record_id,)
        ).fetchall()
        return [_row_to_proposal(r) for r in rows]

    def list_pending(self, filter_field: Optional[str] = None, limit: Optional[int] = None) -> list[Proposal]:
        """Pending proposals, oldest first.

        With filter_field, only proposals targeting that field whose proposed
        value differs from the record's current value of it.
        """
        if filter_field is None:
            sql = "SELECT p.* FROM proposals p WHERE p.status = 'pending' ORDER BY p.created_at, p.rowid"
            params: tuple = ()
        else:
            if filter_field not in CURATABLE_FIELDS:
                raise ValueError(f"Unsupported field: {filter_field}")
            sql = """
                SELECT p.* FROM proposals p
                JOIN records r ON r.record_id = p.record_id
                WHERE p.status = 'pending'
                  AND p.field = ?
                  AND p.proposed_value != CASE p.field WHEN 'title' THEN r.title ELSE r.text END
                ORDER BY p.created_at, p.rowid
            """
            params = (filter_field,)

        if limit is not None:
            sql += " LIMIT ?"
            params = params + (int(limit),)

        rows = self._require_conn().execute(sql, params).fetchall()
        return [_row_to_proposal(r) for r in rows]

    def approve_proposal(self, proposal_id: str) -> Proposal:
        """Apply a pending proposal to its record and mark it approved.

        Record mutation and status change commit together or not at all.

        Raises:
            NotFoundError: If the proposal (or its record) does not exist
            InvalidStateError: If the proposal is not pending
        """
        decided_at = _iso_now()
        with self._write_transaction() as conn:
            row = conn.execute(
                "SELECT * FROM proposals WHERE proposal_id = ?", (proposal_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Proposal not found: {proposal_id}")
            if row["status"] != ProposalStatus.PENDING.value:
                raise InvalidStateError(f"Proposal {proposal_id} is already {row['status']}")

            flipped = conn.execute(
                """
                UPDATE proposals SET status = 'approved', decided_at = ?
                WHERE proposal_id = ? AND status = 'pending'
                """,
                (decided_at, proposal_id),
            ).rowcount
            if flipped != 1:
                raise InvalidStateError(f"Proposal {proposal_id} is no longer pending")

            field = row["field"]
            if field not in _APPLY_SQL:
                raise ValueError(f"Unsupported field: {field}")
            applied = conn.execute(
                _APPLY_SQL[field], (row["proposed_value"], decided_at, row["record_id"])
            ).rowcount
            if applied != 1:
                raise NotFoundError(f"Record not found: {row['record_id']}")

            updated = conn.execute(
                "SELECT * FROM proposals WHERE proposal_id = ?", (proposal_id,)
            ).fetchone()

        return _row_to_proposal(updated)

    def reject_proposal(self, proposal_id: str, reason: Optional[str] = None) -> Proposal:
        """Mark a pending proposal rejected. The record is left untouched.

        Raises:
            NotFoundError: If the proposal does not exist
            InvalidStateError: If the proposal is not pending
        """
        with self._write_transaction() as conn:
            row = conn.execute(
                "SELECT status FROM proposals WHERE proposal_id = ?", (proposal_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Proposal not found: {proposal_id}")
            if row["status"] != ProposalStatus.PENDING.value:
                raise InvalidStateError(f"Proposal {proposal_id} is already {row['status']}")

            conn.execute(
                """
                UPDATE proposals SET status = 'rejected', status_reason = ?, decided_at = ?
                WHERE proposal_id = ? AND status = 'pending'
                """,
                (reason, _iso_now(), proposal_id),
            )
            updated = conn.execute(
                "SELECT * FROM proposals WHERE proposal_id = ?", (proposal_id,)
            ).fetchone()

        return _row_to_proposal(updated)

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ProposalStatus}
        rows = self._require_conn().execute(
            "SELECT status, COUNT(1) AS n FROM proposals GROUP BY status"
        ).fetchall()
        for row in rows:
            counts[row["status"]] = int(row["n"])
        return counts
