"""Validation Log — append-only record of every Sigma gate decision.

Each call to the gate leaves exactly one record, whatever the outcome.
Records live in memory; when a database path is configured they are
mirrored to SQLite on `flush()`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import aiosqlite
from pydantic import BaseModel, Field

from evos.types import Outcome, SubjectKind, new_id


class ValidationRecord(BaseModel):
    """A single, immutable audit entry."""

    id: str = Field(default_factory=new_id)
    seq: int
    tick: int = 0
    subject_id: str
    subject_kind: SubjectKind
    proposal_id: str = ""
    score: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
    outcome: Outcome
    policy: str = ""
    amended_payload: dict[str, Any] | None = None

    model_config = {"frozen": True}

    @property
    def passed(self) -> bool:
        return self.outcome != Outcome.REJECTED


class ValidationLog:
    """In-memory append-only log with an optional SQLite mirror."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._db_path = str(db_path) if db_path else None
        self._records: list[ValidationRecord] = []
        self._persisted = 0
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the mirror database and create the table if needed."""
        if not self._db_path:
            return
        self._db = await aiosqlite.connect(self._db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS validation_log (
                id TEXT PRIMARY KEY,
                seq INTEGER NOT NULL,
                tick INTEGER NOT NULL,
                subject_id TEXT NOT NULL,
                subject_kind TEXT NOT NULL,
                proposal_id TEXT,
                score REAL NOT NULL,
                rationale TEXT,
                outcome TEXT NOT NULL,
                policy TEXT,
                amended_payload TEXT
            )
        """)
        await self._db.commit()

    def append(self, **fields: Any) -> ValidationRecord:
        """Create and append the next record (sequence numbers start at 1)."""
        record = ValidationRecord(seq=len(self._records) + 1, **fields)
        self._records.append(record)
        return record

    async def flush(self) -> int:
        """Write records not yet mirrored. Returns how many were written."""
        if self._db is None:
            return 0
        pending = self._records[self._persisted:]
        for record in pending:
            await self._db.execute(
                """INSERT OR IGNORE INTO validation_log
                   (id, seq, tick, subject_id, subject_kind, proposal_id,
                    score, rationale, outcome, policy, amended_payload)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.seq,
                    record.tick,
                    record.subject_id,
                    record.subject_kind.value,
                    record.proposal_id,
                    record.score,
                    record.rationale,
                    record.outcome.value,
                    record.policy,
                    json.dumps(record.amended_payload, default=str)
                    if record.amended_payload is not None else None,
                ),
            )
        await self._db.commit()
        self._persisted += len(pending)
        return len(pending)

    async def persisted_count(self) -> int:
        """Rows currently in the mirror database."""
        if self._db is None:
            return 0
        async with self._db.execute("SELECT COUNT(*) FROM validation_log") as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    # ── Queries ──────────────────────────────────────────────────────────────

    def records(self) -> list[ValidationRecord]:
        return list(self._records)

    def latest(self, limit: int = 10) -> list[ValidationRecord]:
        """Most recent first."""
        return list(reversed(self._records[-limit:])) if limit > 0 else []

    def window(self, size: int) -> list[ValidationRecord]:
        """The trailing `size` records, oldest first."""
        return self._records[-size:] if size > 0 else []

    def for_subject(self, subject_id: str) -> list[ValidationRecord]:
        return [r for r in self._records if r.subject_id == subject_id]

    def get(self, record_id: str) -> ValidationRecord | None:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def approval_rate(self, size: int) -> float:
        """Share of the trailing window that passed (approved or modified).

        An empty log has rejected nothing, so its rate is 1.0.
        """
        window = self.window(size)
        if not window:
            return 1.0
        return sum(1 for r in window if r.passed) / len(window)

    def mean_score(self, size: int) -> float:
        window = self.window(size)
        if not window:
            return 1.0
        return sum(r.score for r in window) / len(window)

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"ValidationLog(records={len(self._records)}, persisted={self._persisted})"
