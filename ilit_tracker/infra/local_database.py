# file: ilit_tracker/infra/local_database.py
"""Local SQLite database holding policies and the settings singleton.

A thin layer over :mod:`sqlite3`. The schema is created deterministically and
its version is recorded in ``schema_meta`` and checked on every
initialization; older files are migrated forward in place.

Quick use:

>>> db = LocalDatabase(Path("ilit_tracker.db"))  # doctest: +SKIP
>>> db.initialize()  # doctest: +SKIP
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from ilit_tracker.infra.errors import DatabaseOperationError, SchemaVersionMismatchError
from ilit_tracker.infra.sqlite_config import configure_connection

_SCHEMA_VERSION = 2
_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

POLICIES_TABLE = "ilit_policies"
SETTINGS_TABLE = "app_settings"
SETTINGS_ROW_ID = "primary"

logger = logging.getLogger(__name__)


class LocalDatabase:
    """Connection factory and schema owner for the local database file."""

    def __init__(self, path: Path | str) -> None:
        if str(path) == ":memory:" or str(path).startswith("file::memory:"):
            # each connect() opens its own connection
            raise ValueError("LocalDatabase needs a file path; ':memory:' is not supported")
        self.path = Path(path)

    def _open_connection(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return configure_connection(sqlite3.connect(str(self.path)))

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a configured connection and close it afterwards."""

        conn = self._open_connection()
        try:
            yield conn
        finally:
            conn.close()

    @staticmethod
    @contextmanager
    def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        """``BEGIN IMMEDIATE`` … ``COMMIT``; any exception rolls back and propagates."""

        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    def initialize(self) -> None:
        """Create or migrate the schema; idempotent.

        Raises:
            SchemaVersionMismatchError: the file was written by a newer build.
            DatabaseOperationError: any SQLite failure.
        """

        try:
            with self.connect() as conn, self.transaction(conn):
                self._ensure_schema_meta_table(conn)
                existing_version = self._get_schema_version(conn)
                if existing_version is None:
                    self._ensure_schema(conn)
                    self._ensure_schema_meta_row(conn, version=_SCHEMA_VERSION)
                elif existing_version < _SCHEMA_VERSION:
                    self._migrate_schema(conn, from_version=existing_version)
                elif existing_version > _SCHEMA_VERSION:
                    raise SchemaVersionMismatchError(
                        expected_version=_SCHEMA_VERSION,
                        actual_version=existing_version,
                        message="Database schema is newer than this application",
                    )
                self._ensure_schema(conn)
                self._validate_schema_version(conn)
        except sqlite3.Error as exc:
            raise DatabaseOperationError(f"Failed to prepare database at {self.path}") from exc
        logger.debug("Local DB schema ensured at %s", self.path)

    def schema_version(self) -> int | None:
        with self.connect() as conn:
            self._ensure_schema_meta_table(conn)
            return self._get_schema_version(conn)

    @staticmethod
    def _ensure_schema(conn: sqlite3.Connection) -> None:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {POLICIES_TABLE} (
                id TEXT PRIMARY KEY,
                ilit_name TEXT NOT NULL CHECK (length(ilit_name) > 0),
                insured_name TEXT,
                trustees TEXT,
                insurance_company TEXT,
                policy_number TEXT,
                frequency TEXT,
                notes TEXT,
                premium_due_date TEXT,
                premium_amount REAL CHECK (premium_amount IS NULL OR premium_amount >= 0),
                gift_date TEXT,
                gift_date_source TEXT CHECK (gift_date_source IN ('derived', 'explicit')),
                crummey_letter_send_date TEXT,
                send_date_source TEXT CHECK (send_date_source IN ('derived', 'explicit')),
                crummey_letter_sent_date TEXT,
                crummey_sent INTEGER,
                status TEXT NOT NULL DEFAULT 'Pending',
                status_overridden INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{POLICIES_TABLE}_due ON {POLICIES_TABLE}(premium_due_date)"
        )
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{POLICIES_TABLE}_ilit_name ON {POLICIES_TABLE}(ilit_name)"
        )
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {SETTINGS_TABLE} (
                id TEXT PRIMARY KEY CHECK (id = '{SETTINGS_ROW_ID}'),
                reminder_days_before INTEGER NOT NULL CHECK (reminder_days_before >= 1),
                updated_at TEXT NOT NULL
            )
            """
        )

    @staticmethod
    def _ensure_schema_meta_table(conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_meta (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                schema_version INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )

    @staticmethod
    def _ensure_schema_meta_row(conn: sqlite3.Connection, *, version: int) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO schema_meta (id, schema_version, created_at) VALUES (1, ?, ?)",
            (version, utc_now_iso()),
        )

    @staticmethod
    def _get_schema_version(conn: sqlite3.Connection) -> int | None:
        row = conn.execute("SELECT schema_version FROM schema_meta WHERE id = 1").fetchone()
        return int(row[0]) if row is not None else None

    @staticmethod
    def _validate_schema_version(conn: sqlite3.Connection) -> None:
        actual = LocalDatabase._get_schema_version(conn)
        if actual != _SCHEMA_VERSION:
            raise SchemaVersionMismatchError(
                expected_version=_SCHEMA_VERSION,
                actual_version=-1 if actual is None else actual,
                message="Database schema version does not match the application",
            )

    def _migrate_schema(self, conn: sqlite3.Connection, *, from_version: int) -> None:
        version = from_version
        while version < _SCHEMA_VERSION:
            if version == 1:
                self._migrate_v1_to_v2(conn)
                version = 2
                continue
            raise SchemaVersionMismatchError(
                expected_version=_SCHEMA_VERSION,
                actual_version=version,
                message="Unsupported database schema version",
            )

    def _migrate_v1_to_v2(self, conn: sqlite3.Connection) -> None:
        """Add provenance, override and note columns.

        Dates written by v1 get no provenance (``NULL``); reconciliation treats
        them like derived dates.
        """

        existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({POLICIES_TABLE})")}
        additions = {
            "notes": "TEXT",
            "gift_date_source": "TEXT CHECK (gift_date_source IN ('derived', 'explicit'))",
            "send_date_source": "TEXT CHECK (send_date_source IN ('derived', 'explicit'))",
            "crummey_sent": "INTEGER",
            "status_overridden": "INTEGER NOT NULL DEFAULT 0",
        }
        for column, ddl in additions.items():
            if column not in existing:
                conn.execute(f"ALTER TABLE {POLICIES_TABLE} ADD COLUMN {column} {ddl}")
        conn.execute("UPDATE schema_meta SET schema_version = ? WHERE id = 1", (2,))
        logger.info("Migrated local DB schema 1 -> 2 at %s", self.path)


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with a ``Z`` suffix."""

    return datetime.now(timezone.utc).strftime(_ISO_FORMAT)


__all__ = [
    "LocalDatabase",
    "POLICIES_TABLE",
    "SETTINGS_ROW_ID",
    "SETTINGS_TABLE",
    "utc_now_iso",
]
