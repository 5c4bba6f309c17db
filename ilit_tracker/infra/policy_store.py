"""SQLite implementation of the policy store."""
from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple

import pandas as pd

from ilit_tracker.core.common.types import PolicyRecord, PolicyStatus, StatusValue
from ilit_tracker.core.ports import PolicyFilter, PolicyPatch, UpdateResult
from ilit_tracker.infra.errors import DatabaseOperationError
from ilit_tracker.infra.local_database import POLICIES_TABLE, LocalDatabase, utc_now_iso
from ilit_tracker.infra.logging_ext import log_step

logger = logging.getLogger(__name__)

COLUMNS: Tuple[str, ...] = tuple(PolicyRecord(ilit_name="").to_row())
_KEY_COLUMNS = frozenset(COLUMNS) - {"id", "created_at", "updated_at", "status_overridden"}
_ORDER_BY = "premium_due_date IS NULL, premium_due_date, ilit_name, id"
_INSERT_SQL = (
    f"INSERT INTO {POLICIES_TABLE} ({', '.join(COLUMNS)}) "
    f"VALUES ({', '.join(':' + name for name in COLUMNS)})"
)
_SELECT_SQL = f"SELECT {', '.join(COLUMNS)} FROM {POLICIES_TABLE}"


def _sql_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _record_params(record: PolicyRecord, now: str) -> Dict[str, Any]:
    row = {name: _sql_value(value) for name, value in record.to_row().items()}
    row["id"] = row["id"] or uuid.uuid4().hex
    row["created_at"] = row["created_at"] or now
    row["updated_at"] = now
    return row


def _serialize_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    columns: Dict[str, Any] = {}
    for name, value in changes.items():
        if name == "status":
            if isinstance(value, StatusValue):
                columns["status"] = value.status.value
                columns["status_overridden"] = int(value.overridden)
            else:
                columns["status"] = PolicyStatus(value).value
            continue
        if name not in COLUMNS or name in {"id", "created_at", "updated_at"}:
            raise ValueError(f"Field cannot be patched: '{name}'")
        columns[name] = _sql_value(value)
    return columns


class SQLitePolicyStore:
    """Policies in the ``ilit_policies`` table.

    ``insert_many`` and ``upsert_by_key`` are all-or-nothing; ``update_many``
    isolates every id in its own savepoint.
    """

    def __init__(self, db: LocalDatabase) -> None:
        self._db = db

    def insert_many(self, records: Iterable[PolicyRecord]) -> int:
        now = utc_now_iso()
        count = 0

        def _params() -> Iterator[Dict[str, Any]]:
            nonlocal count
            for record in records:
                count += 1
                yield _record_params(record, now)

        with log_step(logger, "insert policies"):
            try:
                with self._db.connect() as conn, self._db.transaction(conn):
                    conn.executemany(_INSERT_SQL, _params())
            except sqlite3.Error as exc:
                raise DatabaseOperationError("Bulk insert of policies failed; nothing was written") from exc
        logger.info("Inserted %d policies", count)
        return count

    def create(self, record: PolicyRecord) -> PolicyRecord:
        """Insert one policy under a new id and return it as stored."""

        params = _record_params(record.replace(id=None, created_at=None), utc_now_iso())
        try:
            with self._db.connect() as conn, self._db.transaction(conn):
                conn.execute(_INSERT_SQL, params)
                row = conn.execute(f"{_SELECT_SQL} WHERE id = ?", (params["id"],)).fetchone()
        except sqlite3.Error as exc:
            raise DatabaseOperationError("Creating policy failed") from exc
        logger.info("Created policy %s", params["id"])
        return PolicyRecord.from_row(dict(row))

    def read_all(self, filter: PolicyFilter | None = None) -> List[PolicyRecord]:
        clauses: List[str] = []
        params: List[Any] = []
        if filter is not None:
            if filter.has_premium_due_date is True:
                clauses.append("premium_due_date IS NOT NULL")
            elif filter.has_premium_due_date is False:
                clauses.append("premium_due_date IS NULL")
            if filter.ilit_name is not None:
                clauses.append("ilit_name = ?")
                params.append(filter.ilit_name)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"{_SELECT_SQL}{where} ORDER BY {_ORDER_BY}"
        try:
            with self._db.connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseOperationError("Reading policies failed") from exc
        return [PolicyRecord.from_row(dict(row)) for row in rows]

    def get(self, record_id: str) -> PolicyRecord | None:
        try:
            with self._db.connect() as conn:
                row = conn.execute(
                    f"{_SELECT_SQL} WHERE id = ?", (record_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise DatabaseOperationError(f"Reading policy {record_id} failed") from exc
        return None if row is None else PolicyRecord.from_row(dict(row))

    def update_many(self, patches: Iterable[PolicyPatch]) -> Dict[str, UpdateResult]:
        """Apply each patch in its own savepoint and report per id."""

        results: Dict[str, UpdateResult] = {}
        now = utc_now_iso()
        try:
            with self._db.connect() as conn, self._db.transaction(conn):
                for patch in patches:
                    results[patch.record_id] = self._apply_patch(conn, patch, now)
        except sqlite3.Error as exc:
            raise DatabaseOperationError("Updating policies failed") from exc
        return results

    @staticmethod
    def _apply_patch(conn: sqlite3.Connection, patch: PolicyPatch, now: str) -> UpdateResult:
        try:
            columns = _serialize_changes(patch.changes)
        except ValueError as exc:
            return UpdateResult(ok=False, error=str(exc))
        columns["updated_at"] = now
        assignments = ", ".join(f"{name} = :{name}" for name in columns)
        conn.execute("SAVEPOINT policy_patch")
        try:
            cursor = conn.execute(
                f"UPDATE {POLICIES_TABLE} SET {assignments} WHERE id = :patch_id",
                {**columns, "patch_id": patch.record_id},
            )
        except sqlite3.Error as exc:
            conn.execute("ROLLBACK TO policy_patch")
            conn.execute("RELEASE policy_patch")
            logger.warning("Update of policy %s failed: %s", patch.record_id, exc)
            return UpdateResult(ok=False, error=str(exc))
        conn.execute("RELEASE policy_patch")
        if cursor.rowcount == 0:
            return UpdateResult(ok=False, error="policy not found")
        return UpdateResult(ok=True)

    def upsert_by_key(self, key: Sequence[str], records: Iterable[PolicyRecord]) -> int:
        """Update the matching row, insert otherwise.

        A record that carries the id of a stored row updates that row;
        otherwise the row whose ``key`` fields match is updated. ``NULL`` key
        values match ``NULL`` (``IS`` comparison). Matched rows are overwritten
        with the record as given, so callers merge first (see
        :func:`ilit_tracker.core.ingestion.merge_reimported`).
        """

        key = tuple(key)
        unknown = [name for name in key if name not in _KEY_COLUMNS]
        if not key or unknown:
            raise ValueError(f"Invalid upsert key: {list(key)}")
        lookup = f"SELECT id, created_at FROM {POLICIES_TABLE} WHERE " + " AND ".join(
            f"{name} IS :{name}" for name in key
        ) + " LIMIT 1"
        by_id = f"SELECT id FROM {POLICIES_TABLE} WHERE id = ?"
        update_columns = [name for name in COLUMNS if name not in {"id", "created_at"}]
        update = (
            f"UPDATE {POLICIES_TABLE} SET {', '.join(f'{name} = :{name}' for name in update_columns)} "
            "WHERE id = :id"
        )

        now = utc_now_iso()
        count = 0
        with log_step(logger, "upsert policies"):
            try:
                with self._db.connect() as conn, self._db.transaction(conn):
                    for record in records:
                        params = _record_params(record, now)
                        existing = None
                        if record.id is not None:
                            existing = conn.execute(by_id, (record.id,)).fetchone()
                        if existing is None:
                            existing = conn.execute(lookup, {name: params[name] for name in key}).fetchone()
                        if existing is None:
                            conn.execute(_INSERT_SQL, params)
                        else:
                            params["id"] = existing["id"]
                            conn.execute(update, params)
                        count += 1
            except sqlite3.Error as exc:
                raise DatabaseOperationError("Bulk upsert of policies failed; nothing was written") from exc
        return count

    def delete(self, record_id: str) -> bool:
        try:
            with self._db.connect() as conn, self._db.transaction(conn):
                cursor = conn.execute(f"DELETE FROM {POLICIES_TABLE} WHERE id = ?", (record_id,))
        except sqlite3.Error as exc:
            raise DatabaseOperationError(f"Deleting policy {record_id} failed") from exc
        return cursor.rowcount > 0

    def load_frame(self) -> pd.DataFrame:
        """All policies as a DataFrame (dates parsed, booleans as nullable)."""

        try:
            with self._db.connect() as conn:
                frame = pd.read_sql_query(
                    f"SELECT {', '.join(COLUMNS)} FROM {POLICIES_TABLE} ORDER BY {_ORDER_BY}", conn
                )
        except (sqlite3.Error, pd.errors.DatabaseError) as exc:
            raise DatabaseOperationError("Loading policies into a frame failed") from exc
        for column in ("premium_due_date", "gift_date", "crummey_letter_send_date", "crummey_letter_sent_date"):
            frame[column] = pd.to_datetime(frame[column], errors="coerce").dt.date
        for column in ("crummey_sent", "status_overridden"):
            frame[column] = frame[column].astype("boolean")
        return frame


__all__ = ["COLUMNS", "SQLitePolicyStore"]
