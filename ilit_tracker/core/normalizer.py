"""Row normalizer: one raw spreadsheet row → :class:`PolicyRecord` or :class:`Skipped`.

The normalizer only knows canonical field names; where each field lives in a
particular sheet comes from the :class:`ColumnMap`.

A sheet may carry its own gift or send dates. They are kept as ``explicit``
unless a ``... Date Source`` cell says ``derived``, in which case they are
recomputed. A ``Status`` cell is taken as a user override only when the row
says so (``Status Overridden`` is true) or when it comes from a dedicated
``statusOverride`` column; otherwise the status is classified as usual.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Sequence

from ilit_tracker.core.common.coercers import (
    coerce_amount,
    coerce_boolean,
    coerce_date,
    coerce_string,
    flatten_cell,
    is_missing,
)
from ilit_tracker.core.common.columns import CANONICAL_FIELDS, ColumnMap
from ilit_tracker.core.common.errors import MissingRequiredFieldError
from ilit_tracker.core.common.types import DateSource, PolicyRecord, StatusValue, parse_status
from ilit_tracker.core.derivation import derive_dates

__all__ = [
    "FIELD_TYPES",
    "QUALIFIER_TYPES",
    "SKIP_BLANK",
    "SKIP_MISSING_ILIT_NAME",
    "Skipped",
    "build_record",
    "coerce_fields",
    "normalize_row",
]

SKIP_BLANK = "blank"
SKIP_MISSING_ILIT_NAME = "missing_ilit_name"


def _coerce_non_negative_amount(value: object) -> float | None:
    amount = coerce_amount(value)
    if amount is None or amount < 0:
        return None
    return amount


def _coerce_date_source(value: object) -> DateSource | None:
    text = coerce_string(value)
    if text is None:
        return None
    try:
        return DateSource(text.lower())
    except ValueError:
        return None


_COERCERS: Dict[str, Callable[[object], Any]] = {
    "string": coerce_string,
    "date": coerce_date,
    "amount": _coerce_non_negative_amount,
    "boolean": coerce_boolean,
    "status": parse_status,
    "date_source": _coerce_date_source,
}

FIELD_TYPES: Mapping[str, str] = {
    "ilit_name": "string",
    "insured_name": "string",
    "trustees": "string",
    "insurance_company": "string",
    "policy_number": "string",
    "frequency": "string",
    "notes": "string",
    "premium_due_date": "date",
    "premium_amount": "amount",
    "gift_date": "date",
    "crummey_letter_send_date": "date",
    "crummey_letter_sent_date": "date",
    "crummey_sent": "boolean",
    "status": "status",
}

# Cells that qualify other cells of the same row; never stored themselves.
QUALIFIER_TYPES: Mapping[str, str] = {
    "status_override": "status",
    "status_overridden": "boolean",
    "gift_date_source": "date_source",
    "send_date_source": "date_source",
}

_DATE_SOURCES = {
    "gift_date": "gift_date_source",
    "crummey_letter_send_date": "send_date_source",
}


@dataclass(frozen=True)
class Skipped:
    """A row left out of the batch, with the reason."""

    row_number: int | None
    reason: str


def coerce_fields(raw: Mapping[str, object]) -> Dict[str, Any]:
    """Coerce a ``{canonical_field: raw_value}`` mapping; absent values are dropped.

    Raises:
        ValueError: a key is not a canonical field.
    """

    values: Dict[str, Any] = {}
    for name, value in raw.items():
        kind = FIELD_TYPES.get(name) or QUALIFIER_TYPES.get(name)
        if kind is None:
            raise ValueError(f"Unknown policy field: '{name}'")
        if kind == "status" and isinstance(value, StatusValue):
            values[name] = value.status
            continue
        coerced = _COERCERS[kind](flatten_cell(value))
        if coerced is not None:
            values[name] = coerced
    return values


def _to_record(values: Mapping[str, Any], lead_days: int, *, status_is_override: bool) -> PolicyRecord:
    fields = dict(values)
    override = fields.pop("status_override", None)
    status = fields.pop("status", None)
    if fields.pop("status_overridden", None) is True or status_is_override:
        override = override or status
    if override is not None:
        fields["status"] = StatusValue.override(override)
    for date_field, source_field in _DATE_SOURCES.items():
        source = fields.pop(source_field, None)
        if date_field not in fields:
            continue
        if source is DateSource.DERIVED:
            # recomputed below from the due date and the current lead time
            del fields[date_field]
        else:
            fields[source_field] = DateSource.EXPLICIT
    return derive_dates(PolicyRecord(**fields), lead_days)


def _cell(row: Mapping[str, Any] | Sequence[Any], column_map: ColumnMap, name: str) -> object:
    column = column_map.get(name)
    if column is None:
        return None
    if isinstance(row, Mapping):
        return row.get(column.header)
    if column.index < len(row):
        return row[column.index]
    return None


def _is_blank(row: Mapping[str, Any] | Sequence[Any]) -> bool:
    cells = row.values() if isinstance(row, Mapping) else row
    return all(is_missing(flatten_cell(cell)) for cell in cells)


def normalize_row(
    row: Mapping[str, Any] | Sequence[Any],
    column_map: ColumnMap,
    lead_days: int,
    *,
    row_number: int | None = None,
) -> PolicyRecord | Skipped:
    """Normalize one row and fill its derived dates.

    Args:
        row: ``{header: cell}`` or a positional sequence of cells.
        column_map: resolution of the sheet's header row.
        lead_days: reminder lead time for the derived send date.
        row_number: position in the source, carried into :class:`Skipped`.

    Returns:
        PolicyRecord | Skipped: ``Skipped`` when the row is blank or has no
        ``ilit_name`` after coercion.

    Example::

        >>> from ilit_tracker.core.common.columns import resolve_columns
        >>> cmap = resolve_columns(["ilitName", "premiumDueDate", "premiumAmount"])
        >>> record = normalize_row(["Smith ILIT", "03/15/2026", "$2,500.00"], cmap, 30)
        >>> record.premium_amount, str(record.crummey_letter_send_date)
        (2500.0, '2026-02-13')
    """

    if _is_blank(row):
        return Skipped(row_number=row_number, reason=SKIP_BLANK)
    raw = {name: _cell(row, column_map, name) for name in CANONICAL_FIELDS if column_map.get(name) is not None}
    values = coerce_fields(raw)
    if not values.get("ilit_name"):
        return Skipped(row_number=row_number, reason=SKIP_MISSING_ILIT_NAME)
    return _to_record(values, lead_days, status_is_override=False)


def build_record(fields: Mapping[str, object], lead_days: int) -> PolicyRecord:
    """Manual-entry path: same coercion as import, but a missing name raises.

    A ``status`` given here is always a user override.

    Raises:
        MissingRequiredFieldError: ``ilit_name`` is absent after coercion.
    """

    values = coerce_fields(fields)
    if not values.get("ilit_name"):
        raise MissingRequiredFieldError(func="build_record", column="ilit_name", value=fields.get("ilit_name"))
    return _to_record(values, lead_days, status_is_override=True)
