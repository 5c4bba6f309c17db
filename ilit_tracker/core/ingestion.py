"""Bulk import: tabular source → normalized, derived, classified policies.

Rows are streamed straight into the store; nothing is materialized between the
source and the bulk insert. Settings are read once and held for the whole run.

With an upsert key, a row that matches a stored policy is folded into it by
:func:`merge_reimported`, so re-importing a sheet never undoes what was
recorded since the last import (a sent letter, a status override, a send date
typed by hand).
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterator, List, Mapping, Sequence, Tuple

from ilit_tracker.core.common.columns import DEFAULT_COLUMN_ALIASES, resolve_columns
from ilit_tracker.core.common.errors import IngestionAbortedError
from ilit_tracker.core.common.types import DateSource, PolicyRecord, StatusValue
from ilit_tracker.core.derivation import derive_dates
from ilit_tracker.core.normalizer import SKIP_BLANK, Skipped, normalize_row
from ilit_tracker.core.ports import PolicyStore, SettingsStore, TabularSource
from ilit_tracker.core.status import DEFAULT_DUE_SOON_DAYS, apply_status

__all__ = ["ImportReport", "UPSERT_KEY_FIELDS", "ingest", "merge_reimported"]

# header row is row 1 in the sheet
_FIRST_DATA_ROW = 2

UPSERT_KEY_FIELDS = frozenset(PolicyRecord(ilit_name="").to_row()) - {
    "id",
    "created_at",
    "updated_at",
    "status_overridden",
}

# set by "mark sent", never cleared by an import
_LETTER_FIELDS = ("crummey_letter_sent_date", "crummey_sent")
_DATE_SOURCES = {"gift_date": "gift_date_source", "crummey_letter_send_date": "send_date_source"}
_NOT_MERGED = frozenset({"id", "created_at", "updated_at", "status", *_DATE_SOURCES, *_DATE_SOURCES.values()})


@dataclass(frozen=True)
class ImportReport:
    """Counts a user sees after an import; never a bare success flag."""

    rows_read: int
    rows_skipped: int
    rows_inserted: int
    blank_rows: int = 0
    skipped_rows: Tuple[Skipped, ...] = field(default=())
    unmapped_fields: Tuple[str, ...] = field(default=())
    unknown_headers: Tuple[str, ...] = field(default=())
    lead_days: int | None = None


class _Counter:
    def __init__(self) -> None:
        self.read = 0
        self.blank = 0
        self.skipped: List[Skipped] = []


def merge_reimported(stored: PolicyRecord, incoming: PolicyRecord, lead_days: int) -> PolicyRecord:
    """Fold a re-imported row into the stored policy it matched.

    Rules:
        * cells the row supplies replace stored values, absent cells keep them;
        * a stored sent date / sent flag is kept;
        * the row's status override wins, else a stored override is kept,
          else the status is left to the classifier;
        * a gift or send date the row supplies explicitly wins, else a stored
          explicit date is kept, else it is derived from the merged due date.

    Returns:
        PolicyRecord: the merged record with the stored ``id``; its status
        still has to be classified.
    """

    changes: Dict[str, object] = {}
    for item in dataclasses.fields(PolicyRecord):
        name = item.name
        if name in _NOT_MERGED:
            continue
        if name in _LETTER_FIELDS and getattr(stored, name) is not None:
            continue
        value = getattr(incoming, name)
        if value is not None:
            changes[name] = value

    if incoming.status.overridden:
        changes["status"] = incoming.status
    elif not stored.status.overridden:
        changes["status"] = StatusValue()

    for date_field, source_field in _DATE_SOURCES.items():
        if getattr(incoming, source_field) is DateSource.EXPLICIT:
            changes[date_field] = getattr(incoming, date_field)
            changes[source_field] = DateSource.EXPLICIT
        elif getattr(stored, source_field) is not DateSource.EXPLICIT or getattr(stored, date_field) is None:
            changes[date_field] = None
            changes[source_field] = None
    return derive_dates(stored.replace(**changes), lead_days)


def _key_of(record: PolicyRecord, key: Sequence[str]) -> Tuple[object, ...]:
    row = record.to_row()
    return tuple(row[name] for name in key)


def ingest(
    source: TabularSource,
    store: PolicyStore,
    settings_store: SettingsStore,
    *,
    today: date,
    aliases: Mapping[str, Tuple[str, ...]] | None = None,
    upsert_key: Sequence[str] | None = None,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> ImportReport:
    """Import every row of ``source`` into ``store`` as one batch.

    Args:
        source: parsed tabular data (header row + data rows).
        store: destination; ``insert_many`` must be all-or-nothing.
        settings_store: read once for the reminder lead time.
        today: reference date for status classification.
        aliases: column alias table; defaults to the built-in table.
        upsert_key: when given, rows are upserted on these fields instead of
            inserted; a matched policy is merged with :func:`merge_reimported`.
        due_soon_days: classifier threshold.

    Returns:
        ImportReport: rows read, skipped and inserted, plus diagnostics.

    Raises:
        ValueError: ``upsert_key`` names a field that cannot identify a row.
        IngestionAbortedError: the bulk write failed; the store error is
            chained and nothing from the batch is kept.
    """

    key = tuple(upsert_key or ())
    if any(name not in UPSERT_KEY_FIELDS for name in key):
        raise ValueError(f"Invalid upsert key: {list(key)}")
    lead_days = settings_store.get().reminder_lead_days
    column_map = resolve_columns(list(source.headers()), aliases or DEFAULT_COLUMN_ALIASES)
    counter = _Counter()
    stored: Dict[Tuple[object, ...], PolicyRecord] = {}

    def _records() -> Iterator[PolicyRecord]:
        for offset, row in enumerate(source.rows()):
            outcome = normalize_row(row, column_map, lead_days, row_number=offset + _FIRST_DATA_ROW)
            if isinstance(outcome, Skipped):
                if outcome.reason == SKIP_BLANK:
                    counter.blank += 1
                else:
                    counter.read += 1
                    counter.skipped.append(outcome)
                continue
            counter.read += 1
            match = stored.get(_key_of(outcome, key)) if key else None
            if match is not None:
                outcome = merge_reimported(match, outcome, lead_days)
            yield apply_status(outcome, today, lead_days, due_soon_days=due_soon_days)

    try:
        if key:
            for record in store.read_all():
                stored.setdefault(_key_of(record, key), record)
            inserted = store.upsert_by_key(key, _records())
        else:
            inserted = store.insert_many(_records())
    except Exception as exc:
        raise IngestionAbortedError(
            rows_read=counter.read,
            rows_skipped=len(counter.skipped),
            message=f"Import aborted, no rows were kept: {exc}",
        ) from exc

    return ImportReport(
        rows_read=counter.read,
        rows_skipped=len(counter.skipped),
        rows_inserted=inserted,
        blank_rows=counter.blank,
        skipped_rows=tuple(counter.skipped),
        unmapped_fields=column_map.unmapped,
        unknown_headers=column_map.unknown_headers,
        lead_days=lead_days,
    )
