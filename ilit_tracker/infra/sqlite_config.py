"""Connection setup for the local SQLite file."""
from __future__ import annotations

import sqlite3

_ALLOWED_PRAGMAS = frozenset({"foreign_keys", "journal_mode", "synchronous", "busy_timeout"})


def _set_pragma(conn: sqlite3.Connection, name: str, value: str) -> None:
    """Run one whitelisted PRAGMA.

    >>> import sqlite3
    >>> _set_pragma(sqlite3.connect(":memory:"), "foreign_keys", "ON")
    """
    if name not in _ALLOWED_PRAGMAS:
        raise ValueError(f"Unsupported PRAGMA: {name}")
    conn.execute(f"PRAGMA {name} = {value};")


def configure_connection(conn: sqlite3.Connection) -> sqlite3.Connection:
    """Apply the row factory and PRAGMAs every connection needs.

    The driver never opens transactions implicitly (``isolation_level=None``);
    callers issue ``BEGIN`` and ``SAVEPOINT`` themselves.

    Example::

        >>> import sqlite3
        >>> connection = configure_connection(sqlite3.connect(":memory:"))
        >>> connection.execute("PRAGMA foreign_keys;").fetchone()[0]
        1
    """

    conn.isolation_level = None
    conn.row_factory = sqlite3.Row
    _set_pragma(conn, "foreign_keys", "ON")
    _set_pragma(conn, "journal_mode", "WAL")
    _set_pragma(conn, "synchronous", "NORMAL")
    _set_pragma(conn, "busy_timeout", "5000")
    return conn


__all__ = ["configure_connection"]
