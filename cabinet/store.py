"""Session, transcript, minister and rating persistence.

Two implementations share the ``DeliberationStore`` protocol: ``InMemoryStore``
for tests and one-shot runs, and ``SqliteStore`` for a durable local database.
Turn appends are idempotent on (brief_id, index) and ratings are upserted on
(brief_id, minister_id); deduplication is the store's job, not the caller's.
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Protocol

from cabinet.errors import StoreWriteError
from cabinet.models import (
    Brief,
    BriefContext,
    BriefStatus,
    Decision,
    Minister,
    MinisterStatus,
    Phase,
    Rating,
    ReputationState,
    StatusChange,
    Turn,
    Vote,
)
from config.config_loader import MinisterSeed

logger = logging.getLogger(__name__)

_STATUS_ORDER = {BriefStatus.QUEUED: 0, BriefStatus.RUNNING: 1, BriefStatus.DONE: 2}


def _new_id() -> str:
    return uuid.uuid4().hex


def check_transition(old: BriefStatus, new: BriefStatus) -> None:
    """Brief status only moves forward: queued -> running -> done."""
    if _STATUS_ORDER[new] < _STATUS_ORDER[old]:
        raise ValueError(f"Illegal brief status transition: {old.value} -> {new.value}")


class DeliberationStore(Protocol):
    def create_brief(self, title: str, context: BriefContext) -> Brief: ...
    def get_brief(self, brief_id: str) -> Brief | None: ...
    def list_briefs(self) -> list[Brief]: ...
    def set_brief_status(self, brief_id: str, status: BriefStatus, error: str | None = None) -> Brief: ...
    def append_turn(self, turn: Turn) -> bool: ...
    def list_turns(self, brief_id: str) -> list[Turn]: ...
    def save_minister(self, minister: Minister) -> None: ...
    def get_minister(self, minister_id: str) -> Minister | None: ...
    def list_ministers(self, include_disabled: bool = False) -> list[Minister]: ...
    def update_reputation(self, minister_id: str, state: ReputationState) -> None: ...
    def upsert_rating(self, rating: Rating) -> Rating | None: ...
    def list_ratings(self, brief_id: str | None = None, minister_id: str | None = None) -> list[Rating]: ...
    def log_status_change(self, change: StatusChange) -> None: ...
    def list_status_changes(self, minister_id: str | None = None) -> list[StatusChange]: ...
    def record_decision(self, decision: Decision) -> None: ...
    def get_decision(self, brief_id: str) -> Decision | None: ...


def seed_cabinet(store: DeliberationStore, seeds: list[MinisterSeed]) -> list[Minister]:
    """Insert the default cabinet when the store has no ministers yet."""
    existing = store.list_ministers(include_disabled=True)
    if existing:
        return existing
    ministers = [
        Minister(
            id=_new_id(),
            name=seed.name,
            role=seed.role,
            system_prompt=seed.system_prompt,
            model=seed.model,
            temperature=seed.temperature,
            seat_index=seat,
        )
        for seat, seed in enumerate(seeds)
    ]
    for minister in ministers:
        store.save_minister(minister)
    logger.info("Seeded default cabinet with %d ministers", len(ministers))
    return ministers


class InMemoryStore:
    """Dict-backed store. Everything is lost when the process exits."""

    def __init__(self) -> None:
        self._briefs: dict[str, Brief] = {}
        self._turns: dict[str, dict[int, Turn]] = {}
        self._ministers: dict[str, Minister] = {}
        self._ratings: dict[tuple[str, str], Rating] = {}
        self._changes: list[StatusChange] = []
        self._decisions: dict[str, Decision] = {}

    def create_brief(self, title: str, context: BriefContext) -> Brief:
        brief = Brief(id=_new_id(), title=title, context=context)
        self._briefs[brief.id] = brief
        return replace(brief)

    def get_brief(self, brief_id: str) -> Brief | None:
        brief = self._briefs.get(brief_id)
        return replace(brief) if brief else None

    def list_briefs(self) -> list[Brief]:
        return sorted((replace(b) for b in self._briefs.values()), key=lambda b: b.created_at)

    def set_brief_status(self, brief_id: str, status: BriefStatus, error: str | None = None) -> Brief:
        brief = self._briefs.get(brief_id)
        if brief is None:
            raise KeyError(brief_id)
        check_transition(brief.status, status)
        brief.status = status
        if error is not None:
            brief.error = error
        return replace(brief)

    def append_turn(self, turn: Turn) -> bool:
        turns = self._turns.setdefault(turn.brief_id, {})
        if turn.index in turns:
            return False
        turns[turn.index] = turn
        return True

    def list_turns(self, brief_id: str) -> list[Turn]:
        turns = self._turns.get(brief_id, {})
        return [turns[i] for i in sorted(turns)]

    def save_minister(self, minister: Minister) -> None:
        self._ministers[minister.id] = replace(minister)

    def get_minister(self, minister_id: str) -> Minister | None:
        minister = self._ministers.get(minister_id)
        return replace(minister) if minister else None

    def delete_minister(self, minister_id: str) -> None:
        self._ministers.pop(minister_id, None)

    def list_ministers(self, include_disabled: bool = False) -> list[Minister]:
        ministers = [replace(m) for m in self._ministers.values() if include_disabled or m.enabled]
        return sorted(ministers, key=lambda m: m.seat_index)

    def update_reputation(self, minister_id: str, state: ReputationState) -> None:
        minister = self._ministers.get(minister_id)
        if minister is None:
            raise KeyError(minister_id)
        minister.reputation = state

    def upsert_rating(self, rating: Rating) -> Rating | None:
        key = (rating.brief_id, rating.minister_id)
        previous = self._ratings.get(key)
        self._ratings[key] = replace(rating)
        return previous

    def list_ratings(self, brief_id: str | None = None, minister_id: str | None = None) -> list[Rating]:
        return [
            replace(r)
            for (b, m), r in self._ratings.items()
            if (brief_id is None or b == brief_id) and (minister_id is None or m == minister_id)
        ]

    def log_status_change(self, change: StatusChange) -> None:
        self._changes.append(change)

    def list_status_changes(self, minister_id: str | None = None) -> list[StatusChange]:
        return [c for c in self._changes if minister_id is None or c.minister_id == minister_id]

    def record_decision(self, decision: Decision) -> None:
        self._decisions[decision.brief_id] = decision

    def get_decision(self, brief_id: str) -> Decision | None:
        return self._decisions.get(brief_id)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS briefs (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    context TEXT NOT NULL,
    status TEXT NOT NULL,
    error TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS ministers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    role TEXT NOT NULL,
    system_prompt TEXT NOT NULL,
    model TEXT NOT NULL,
    temperature REAL NOT NULL,
    enabled INTEGER NOT NULL,
    seat_index INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    warnings INTEGER NOT NULL DEFAULT 0,
    consecutive_low INTEGER NOT NULL DEFAULT 0,
    rating_sum INTEGER NOT NULL DEFAULT 0,
    rating_count INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS turns (
    brief_id TEXT NOT NULL,
    turn_index INTEGER NOT NULL,
    phase TEXT NOT NULL,
    content TEXT NOT NULL,
    speaker_id TEXT,
    speaker_name TEXT,
    vote TEXT,
    responding_to TEXT,
    model TEXT,
    has_evidence INTEGER NOT NULL DEFAULT 0,
    has_interjection INTEGER NOT NULL DEFAULT 0,
    is_error INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    PRIMARY KEY (brief_id, turn_index)
);
CREATE TABLE IF NOT EXISTS ratings (
    brief_id TEXT NOT NULL,
    minister_id TEXT NOT NULL,
    rating INTEGER NOT NULL,
    feedback TEXT,
    was_helpful INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (brief_id, minister_id)
);
CREATE TABLE IF NOT EXISTS performance_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    minister_id TEXT NOT NULL,
    event TEXT NOT NULL,
    old_status TEXT NOT NULL,
    new_status TEXT NOT NULL,
    reason TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS decisions (
    brief_id TEXT PRIMARY KEY,
    chosen_option TEXT NOT NULL,
    notes TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_ratings_minister ON ratings(minister_id);
CREATE INDEX IF NOT EXISTS idx_perf_minister ON performance_log(minister_id);
"""


class SqliteStore:
    """SQLite-backed store. Use ":memory:" for an in-memory database."""

    def __init__(self, db_path: str | Path = "cabinet.db") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        with self.transaction() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Opened cabinet store at %s", self.db_path)

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self):
        """Commit on success, roll back and raise StoreWriteError on database errors."""
        try:
            yield self._conn
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise StoreWriteError(f"SQLite write failed: {exc}") from exc

    # briefs

    @staticmethod
    def _row_to_brief(row: sqlite3.Row) -> Brief:
        ctx = json.loads(row["context"])
        return Brief(
            id=row["id"],
            title=row["title"],
            context=BriefContext(
                goals=ctx.get("goals", ""),
                constraints=ctx.get("constraints", ""),
                values=list(ctx.get("values", [])),
                evidence=list(ctx.get("evidence", [])),
            ),
            status=BriefStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            error=row["error"],
        )

    def create_brief(self, title: str, context: BriefContext) -> Brief:
        brief = Brief(id=_new_id(), title=title, context=context)
        payload = {
            "goals": context.goals,
            "constraints": context.constraints,
            "values": context.values,
            "evidence": context.evidence,
        }
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO briefs (id, title, context, status, error, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (brief.id, title, json.dumps(payload), brief.status.value, None, brief.created_at.isoformat()),
            )
        return brief

    def get_brief(self, brief_id: str) -> Brief | None:
        row = self._conn.execute("SELECT * FROM briefs WHERE id = ?", (brief_id,)).fetchone()
        return self._row_to_brief(row) if row else None

    def list_briefs(self) -> list[Brief]:
        rows = self._conn.execute("SELECT * FROM briefs ORDER BY created_at").fetchall()
        return [self._row_to_brief(r) for r in rows]

    def set_brief_status(self, brief_id: str, status: BriefStatus, error: str | None = None) -> Brief:
        brief = self.get_brief(brief_id)
        if brief is None:
            raise KeyError(brief_id)
        check_transition(brief.status, status)
        with self.transaction() as conn:
            conn.execute(
                "UPDATE briefs SET status = ?, error = COALESCE(?, error) WHERE id = ?",
                (status.value, error, brief_id),
            )
        brief.status = status
        if error is not None:
            brief.error = error
        return brief

    # transcript

    def append_turn(self, turn: Turn) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO turns (
                    brief_id, turn_index, phase, content, speaker_id, speaker_name, vote,
                    responding_to, model, has_evidence, has_interjection, is_error, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    turn.brief_id,
                    turn.index,
                    turn.phase.value,
                    turn.content,
                    turn.speaker_id,
                    turn.speaker_name,
                    turn.vote.value if turn.vote else None,
                    turn.responding_to,
                    turn.model,
                    int(turn.has_evidence),
                    int(turn.has_interjection),
                    int(turn.is_error),
                    turn.created_at.isoformat(),
                ),
            )
        return cursor.rowcount == 1

    def list_turns(self, brief_id: str) -> list[Turn]:
        rows = self._conn.execute(
            "SELECT * FROM turns WHERE brief_id = ? ORDER BY turn_index", (brief_id,)
        ).fetchall()
        return [
            Turn(
                brief_id=r["brief_id"],
                index=r["turn_index"],
                phase=Phase(r["phase"]),
                content=r["content"],
                speaker_id=r["speaker_id"],
                speaker_name=r["speaker_name"],
                vote=Vote(r["vote"]) if r["vote"] else None,
                responding_to=r["responding_to"],
                model=r["model"],
                has_evidence=bool(r["has_evidence"]),
                has_interjection=bool(r["has_interjection"]),
                is_error=bool(r["is_error"]),
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    # ministers

    @staticmethod
    def _row_to_minister(row: sqlite3.Row) -> Minister:
        return Minister(
            id=row["id"],
            name=row["name"],
            role=row["role"],
            system_prompt=row["system_prompt"],
            model=row["model"],
            temperature=row["temperature"],
            enabled=bool(row["enabled"]),
            seat_index=row["seat_index"],
            reputation=ReputationState(
                status=MinisterStatus(row["status"]),
                warnings=row["warnings"],
                consecutive_low=row["consecutive_low"],
                rating_sum=row["rating_sum"],
                rating_count=row["rating_count"],
            ),
        )

    def save_minister(self, minister: Minister) -> None:
        rep = minister.reputation
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO ministers (
                    id, name, role, system_prompt, model, temperature, enabled, seat_index,
                    status, warnings, consecutive_low, rating_sum, rating_count
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name, role = excluded.role,
                    system_prompt = excluded.system_prompt, model = excluded.model,
                    temperature = excluded.temperature, enabled = excluded.enabled,
                    seat_index = excluded.seat_index
                """,
                (
                    minister.id, minister.name, minister.role, minister.system_prompt,
                    minister.model, minister.temperature, int(minister.enabled), minister.seat_index,
                    rep.status.value, rep.warnings, rep.consecutive_low, rep.rating_sum, rep.rating_count,
                ),
            )

    def get_minister(self, minister_id: str) -> Minister | None:
        row = self._conn.execute("SELECT * FROM ministers WHERE id = ?", (minister_id,)).fetchone()
        return self._row_to_minister(row) if row else None

    def delete_minister(self, minister_id: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM ministers WHERE id = ?", (minister_id,))

    def list_ministers(self, include_disabled: bool = False) -> list[Minister]:
        query = "SELECT * FROM ministers"
        if not include_disabled:
            query += " WHERE enabled = 1"
        rows = self._conn.execute(query + " ORDER BY seat_index").fetchall()
        return [self._row_to_minister(r) for r in rows]

    def update_reputation(self, minister_id: str, state: ReputationState) -> None:
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE ministers SET status = ?, warnings = ?, consecutive_low = ?,
                    rating_sum = ?, rating_count = ?
                WHERE id = ?
                """,
                (
                    state.status.value, state.warnings, state.consecutive_low,
                    state.rating_sum, state.rating_count, minister_id,
                ),
            )
        if cursor.rowcount == 0:
            raise KeyError(minister_id)

    # ratings, performance log, decisions

    @staticmethod
    def _row_to_rating(row: sqlite3.Row) -> Rating:
        return Rating(
            brief_id=row["brief_id"],
            minister_id=row["minister_id"],
            rating=row["rating"],
            feedback=row["feedback"],
            was_helpful=bool(row["was_helpful"]),
        )

    def upsert_rating(self, rating: Rating) -> Rating | None:
        row = self._conn.execute(
            "SELECT * FROM ratings WHERE brief_id = ? AND minister_id = ?",
            (rating.brief_id, rating.minister_id),
        ).fetchone()
        previous = self._row_to_rating(row) if row else None
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO ratings (brief_id, minister_id, rating, feedback, was_helpful)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(brief_id, minister_id) DO UPDATE SET
                    rating = excluded.rating, feedback = excluded.feedback,
                    was_helpful = excluded.was_helpful
                """,
                (rating.brief_id, rating.minister_id, rating.rating, rating.feedback, int(rating.was_helpful)),
            )
        return previous

    def list_ratings(self, brief_id: str | None = None, minister_id: str | None = None) -> list[Rating]:
        clauses, params = [], []
        if brief_id is not None:
            clauses.append("brief_id = ?")
            params.append(brief_id)
        if minister_id is not None:
            clauses.append("minister_id = ?")
            params.append(minister_id)
        query = "SELECT * FROM ratings"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        return [self._row_to_rating(r) for r in self._conn.execute(query, params).fetchall()]

    def log_status_change(self, change: StatusChange) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO performance_log (minister_id, event, old_status, new_status, reason, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    change.minister_id, change.event, change.old_status.value,
                    change.new_status.value, change.reason, change.created_at.isoformat(),
                ),
            )

    def list_status_changes(self, minister_id: str | None = None) -> list[StatusChange]:
        query = "SELECT * FROM performance_log"
        params: tuple = ()
        if minister_id is not None:
            query += " WHERE minister_id = ?"
            params = (minister_id,)
        rows = self._conn.execute(query + " ORDER BY id", params).fetchall()
        return [
            StatusChange(
                minister_id=r["minister_id"],
                event=r["event"],
                old_status=MinisterStatus(r["old_status"]),
                new_status=MinisterStatus(r["new_status"]),
                reason=r["reason"],
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    def record_decision(self, decision: Decision) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO decisions (brief_id, chosen_option, notes, created_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(brief_id) DO UPDATE SET
                    chosen_option = excluded.chosen_option, notes = excluded.notes
                """,
                (decision.brief_id, decision.chosen_option, decision.notes, decision.created_at.isoformat()),
            )

    def get_decision(self, brief_id: str) -> Decision | None:
        row = self._conn.execute("SELECT * FROM decisions WHERE brief_id = ?", (brief_id,)).fetchone()
        if row is None:
            return None
        return Decision(
            brief_id=row["brief_id"],
            chosen_option=row["chosen_option"],
            notes=row["notes"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
