"""Append-only decision store.

Decisions live in the shared ``keeper.db``. Ids are assigned at write time
from an AUTOINCREMENT sequence, so they are strictly increasing and never
reused. Triggers refuse UPDATE and DELETE on stored decisions; corrections
are made by writing a new decision.

Approved extensions also bump ``seed_usage`` counters inside the same
transaction, which serializes concurrent increments of the same seed.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import pathlib
import re
from typing import TYPE_CHECKING

import keeper.db
import keeper.engine.models
import keeper.errors

if TYPE_CHECKING:
    import sqlite3

logger = logging.getLogger("keeper.engine.store")


_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS decisions (
    seq        INTEGER PRIMARY KEY AUTOINCREMENT,
    status     TEXT NOT NULL,
    mode       TEXT NOT NULL,
    title      TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    body       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS seed_usage (
    kind  TEXT NOT NULL,
    name  TEXT NOT NULL,
    scope TEXT NOT NULL DEFAULT '',
    count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (kind, name, scope)
);

CREATE TRIGGER IF NOT EXISTS decisions_no_update
BEFORE UPDATE ON decisions
BEGIN
    SELECT RAISE(ABORT, 'decisions are append-only');
END;

CREATE TRIGGER IF NOT EXISTS decisions_no_delete
BEFORE DELETE ON decisions
BEGIN
    SELECT RAISE(ABORT, 'decisions are append-only');
END;
"""

_ID_PATTERN = re.compile(r"^(?:ADR-)?(\d+)$", re.IGNORECASE)


def _init_schema(conn: sqlite3.Connection) -> None:
    """Create the decisions and seed_usage tables."""
    conn.executescript(_SCHEMA_SQL)


keeper.db.register_schema(_init_schema)


def parse_id(decision_id: str) -> int:
    """Parse ``001``, ``1`` or ``ADR-001`` into a sequence number."""
    match = _ID_PATTERN.match(str(decision_id).strip())
    if match is None:
        raise keeper.errors.ValidationError(f"malformed decision id {decision_id!r}")
    return int(match.group(1))


def _row_to_decision(row: sqlite3.Row) -> keeper.engine.models.Decision:
    data = json.loads(row["body"])
    data["id"] = keeper.engine.models.format_id(row["seq"])
    return keeper.engine.models.Decision.from_dict(data)


class DecisionStore:
    """Decision log for one project root."""

    def __init__(self, root: pathlib.Path | None = None) -> None:
        self.root = root if root is not None else pathlib.Path.cwd()

    @property
    def path(self) -> pathlib.Path:
        return keeper.db.get_db_path(self.root)

    def exists(self) -> bool:
        """Return True if the store has been created."""
        return self.path.exists()

    def _next_seq(self, conn: sqlite3.Connection) -> int:
        row = conn.execute(
            "SELECT seq FROM sqlite_sequence WHERE name = 'decisions'"
        ).fetchone()
        return (row["seq"] if row is not None else 0) + 1

    def write(self, decision: keeper.engine.models.Decision) -> str:
        """Append *decision* and return its assigned id.

        A caller-supplied id is accepted only if it is the next id; an id
        that is already taken raises ``ConflictError``.
        """
        with keeper.db.get_db(self.root) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                seq = self._next_seq(conn)
                if decision.id is not None:
                    wanted = parse_id(decision.id)
                    if wanted < seq:
                        raise keeper.errors.ConflictError(
                            f"decision {decision.id} already exists"
                        )
                    if wanted != seq:
                        raise keeper.errors.ConflictError(
                            f"decision {decision.id} is not the next id "
                            f"({keeper.engine.models.format_id(seq)})"
                        )
                new_id = keeper.engine.models.format_id(seq)
                stored = dataclasses.replace(decision, id=new_id)
                conn.execute(
                    "INSERT INTO decisions"
                    " (seq, status, mode, title, created_at, body)"
                    " VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        seq,
                        str(stored.status),
                        str(stored.mode),
                        stored.title,
                        stored.created_at,
                        json.dumps(stored.to_dict(), sort_keys=True),
                    ),
                )
                if stored.status is keeper.engine.models.Status.APPROVED:
                    self._bump_usage(conn, stored)
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
        logger.info("Wrote decision %s (%s)", new_id, decision.status)
        return new_id

    def _bump_usage(
        self, conn: sqlite3.Connection, decision: keeper.engine.models.Decision
    ) -> None:
        for entries in decision.extensions.values():
            for name, body in entries.items():
                conn.execute(
                    "INSERT INTO seed_usage (kind, name, scope, count) "
                    "VALUES (?, ?, ?, 1) "
                    "ON CONFLICT (kind, name, scope) DO UPDATE SET count = count + 1",
                    (body["kind"], name, body.get("scope") or ""),
                )

    def read(self, decision_id: str) -> keeper.engine.models.Decision:
        seq = parse_id(decision_id)
        conn = keeper.db.get_connection(self.root)
        if conn is None:
            raise keeper.errors.NotFound(f"decision {decision_id} not found")
        try:
            row = conn.execute(
                "SELECT seq, body FROM decisions WHERE seq = ?", (seq,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise keeper.errors.NotFound(f"decision {decision_id} not found")
        return _row_to_decision(row)

    def latest(self) -> keeper.engine.models.Decision:
        """Return the most recently written decision."""
        conn = keeper.db.get_connection(self.root)
        if conn is None:
            raise keeper.errors.NotFound("no decisions recorded")
        try:
            row = conn.execute(
                "SELECT seq, body FROM decisions ORDER BY seq DESC LIMIT 1"
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise keeper.errors.NotFound("no decisions recorded")
        return _row_to_decision(row)

    def history(self) -> list[keeper.engine.models.Decision]:
        """Return every decision, oldest first."""
        conn = keeper.db.get_connection(self.root)
        if conn is None:
            return []
        try:
            rows = conn.execute(
                "SELECT seq, body FROM decisions ORDER BY seq"
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_decision(r) for r in rows]

    def usage_counts(
        self,
    ) -> dict[tuple[keeper.engine.models.Kind, str, str | None], int]:
        """Return persisted extension counts keyed like the registry."""
        conn = keeper.db.get_connection(self.root)
        if conn is None:
            return {}
        try:
            rows = conn.execute(
                "SELECT kind, name, scope, count FROM seed_usage"
            ).fetchall()
        finally:
            conn.close()
        counts = {}
        for r in rows:
            kind = keeper.engine.models.Kind(r["kind"])
            counts[(kind, r["name"], r["scope"] or None)] = r["count"]
        return counts
