"""SQLite implementation of the settings singleton."""
from __future__ import annotations

import logging
import sqlite3

from ilit_tracker.core.common.types import DEFAULT_REMINDER_LEAD_DAYS, Settings
from ilit_tracker.infra.errors import DatabaseOperationError
from ilit_tracker.infra.local_database import SETTINGS_ROW_ID, SETTINGS_TABLE, LocalDatabase, utc_now_iso

logger = logging.getLogger(__name__)


class SQLiteSettingsStore:
    """The single ``app_settings`` row (id ``primary``)."""

    def __init__(self, db: LocalDatabase, *, default_lead_days: int = DEFAULT_REMINDER_LEAD_DAYS) -> None:
        self._db = db
        self._default = Settings(reminder_lead_days=default_lead_days)

    def get(self) -> Settings:
        """Read the settings row, creating it with the default on first read."""

        try:
            with self._db.connect() as conn, self._db.transaction(conn):
                row = conn.execute(
                    f"SELECT reminder_days_before FROM {SETTINGS_TABLE} WHERE id = ?", (SETTINGS_ROW_ID,)
                ).fetchone()
                if row is None:
                    conn.execute(
                        f"INSERT INTO {SETTINGS_TABLE} (id, reminder_days_before, updated_at) VALUES (?, ?, ?)",
                        (SETTINGS_ROW_ID, self._default.reminder_lead_days, utc_now_iso()),
                    )
                    logger.info("Created default settings (reminder_lead_days=%d)", self._default.reminder_lead_days)
                    return self._default
        except sqlite3.Error as exc:
            raise DatabaseOperationError("Reading settings failed") from exc
        return Settings(reminder_lead_days=int(row["reminder_days_before"]))

    def set(self, settings: Settings) -> None:
        try:
            with self._db.connect() as conn, self._db.transaction(conn):
                conn.execute(
                    f"""
                    INSERT INTO {SETTINGS_TABLE} (id, reminder_days_before, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        reminder_days_before = excluded.reminder_days_before,
                        updated_at = excluded.updated_at
                    """,
                    (SETTINGS_ROW_ID, settings.reminder_lead_days, utc_now_iso()),
                )
        except sqlite3.Error as exc:
            raise DatabaseOperationError("Saving settings failed") from exc
        logger.info("Saved settings (reminder_lead_days=%d)", settings.reminder_lead_days)


__all__ = ["SQLiteSettingsStore"]
