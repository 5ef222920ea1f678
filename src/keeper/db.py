"""Shared SQLite database for keeper subsystems.

Single database at ``<root>/.keeper/keeper.db``. Each subsystem owns its
tables but shares the connection. Schema is initialized lazily on first
connect.
"""

from __future__ import annotations

import contextlib
import pathlib
import sqlite3
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

_SCHEMA_INITIALIZERS: list[Callable[[sqlite3.Connection], None]] = []

# Seconds a writer waits on a locked database before giving up.
_BUSY_TIMEOUT = 10.0


def register_schema(init_fn: Callable[[sqlite3.Connection], None]) -> None:
    """Register a schema initializer.

    Each subsystem calls this at module level to register its
    ``CREATE TABLE IF NOT EXISTS`` statements. All registered
    initializers run on every ``get_db()`` call.
    """
    _SCHEMA_INITIALIZERS.append(init_fn)


def get_db_path(root: pathlib.Path | None = None) -> pathlib.Path:
    """Return the path to ``.keeper/keeper.db`` under *root* (or cwd)."""
    if root is None:
        root = pathlib.Path.cwd()
    return root / ".keeper" / "keeper.db"


def _init_schemas(conn: sqlite3.Connection) -> None:
    """Run all registered schema initializers."""
    for init_fn in _SCHEMA_INITIALIZERS:
        init_fn(conn)


def _connect(db_path: pathlib.Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=_BUSY_TIMEOUT)
    conn.row_factory = sqlite3.Row
    return conn


@contextlib.contextmanager
def get_db(root: pathlib.Path | None = None) -> Generator[sqlite3.Connection]:
    """Yield a connection to ``keeper.db``, creating schema if needed.

    The connection is closed when the context manager exits.
    """
    db_path = get_db_path(root)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(db_path)
    try:
        _init_schemas(conn)
        yield conn
    finally:
        conn.close()


def get_connection(root: pathlib.Path | None = None) -> sqlite3.Connection | None:
    """Open a connection to ``keeper.db`` if the file exists.

    Returns ``None`` when the database file has not been created yet.
    The caller is responsible for closing the connection.
    """
    db_path = get_db_path(root)
    if not db_path.exists():
        return None
    conn = _connect(db_path)
    _init_schemas(conn)
    return conn
