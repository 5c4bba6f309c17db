"""Value-level coercers for user-authored spreadsheet cells.

Every function here is total: a malformed cell becomes ``None`` ("absent")
instead of raising, so one bad cell never aborts a batch.

Example::

    >>> coerce_date("03/15/2026")
    datetime.date(2026, 3, 15)
    >>> coerce_amount("$2,500.00")
    2500.0
    >>> coerce_boolean("Not Sent")
    False
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from numbers import Number
from typing import Any, Iterable, Mapping

import numpy as np
import pandas as pd

__all__ = [
    "EXCEL_EPOCH",
    "coerce_amount",
    "coerce_boolean",
    "coerce_date",
    "coerce_string",
    "flatten_cell",
    "is_missing",
]

EXCEL_EPOCH = date(1899, 12, 30)

_WHITESPACE = re.compile(r"\s+")
_US_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2}|\d{4})$")
_SERIAL_TEXT = re.compile(r"^\d+(\.\d+)?$")
_TEXTUAL_DATE_FORMATS: tuple[str, ...] = (
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y/%m/%d",
)
_TRUE_TOKENS = frozenset({"yes", "true", "1", "sent", "y"})
_FALSE_TOKENS = frozenset({"no", "false", "0", "not sent", "n"})
_CURRENCY_PUNCTUATION = re.compile(r"[$,]")


def is_missing(value: object) -> bool:
    """``True`` for ``None``, NaN/NaT/``pd.NA`` and blank strings."""

    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        missing = pd.isna(value)
    except (TypeError, ValueError):
        return False
    return bool(missing) if isinstance(missing, (bool, np.bool_)) else False


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def _is_real_number(value: object) -> bool:
    return isinstance(value, Number) and not isinstance(value, (bool, np.bool_))


def _from_serial(serial: float) -> date | None:
    if not math.isfinite(serial):
        return None
    try:
        return EXCEL_EPOCH + timedelta(days=math.floor(serial))
    except OverflowError:
        return None


def _parse_iso(text: str) -> date | None:
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _parse_textual(text: str) -> date | None:
    for fmt in _TEXTUAL_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _parse_us_date(text: str) -> date | None:
    match = _US_DATE.match(text)
    if match is None:
        return None
    month, day, year_text = match.groups()
    year = int(f"20{year_text}") if len(year_text) == 2 else int(year_text)
    try:
        return date(year, int(month), int(day))
    except ValueError:
        return None


def coerce_date(value: object) -> date | None:
    """Read a calendar date from a native date, a serial day count or text.

    Text is tried as ISO / textual dates first, then as strict ``M/D/YYYY`` or
    ``M-D-YYYY`` (two-digit years become ``20YY``), then as a serial number.

    Args:
        value: raw cell value.

    Returns:
        date | None: the calendar date, or ``None`` when nothing parses.
    """

    if is_missing(value):
        return None
    if isinstance(value, np.datetime64):
        value = pd.Timestamp(value)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if _is_real_number(value):
        return _from_serial(float(value))  # type: ignore[arg-type]
    if not isinstance(value, str):
        return None

    text = _collapse(value)
    parsed = _parse_iso(text) or _parse_textual(text) or _parse_us_date(text)
    if parsed is not None:
        return parsed
    if _SERIAL_TEXT.match(text):
        return _from_serial(float(text))
    return None


def coerce_amount(value: object) -> float | None:
    """Read a non-formatted or US-punctuated amount (``$`` and ``,`` stripped).

    Example::

        >>> coerce_amount("1,200") == 1200.0
        True
        >>> coerce_amount("n/a") is None
        True
    """

    if is_missing(value):
        return None
    if _is_real_number(value):
        number = float(value)  # type: ignore[arg-type]
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None
    cleaned = _CURRENCY_PUNCTUATION.sub("", value).strip()
    if not cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def coerce_boolean(value: object) -> bool | None:
    """Map yes/no style tokens to booleans; anything else is absent."""

    if is_missing(value):
        return None
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if _is_real_number(value):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    if not isinstance(value, str):
        return None
    token = _collapse(value).lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return None


def coerce_string(value: object) -> str | None:
    """Trim and collapse whitespace; blank becomes ``None``.

    Numeric identifiers typed into a numeric cell keep their textual form
    (``12345.0`` → ``"12345"``).
    """

    if is_missing(value):
        return None
    if isinstance(value, str):
        text = _collapse(value)
    elif isinstance(value, (datetime, date)):
        text = value.isoformat()
    elif isinstance(value, (float, np.floating)) and math.isfinite(value) and float(value).is_integer():
        text = str(int(value))
    else:
        text = _collapse(str(value))
    return text or None


def _join_runs(runs: Iterable[Any]) -> str:
    parts: list[str] = []
    for run in runs:
        if isinstance(run, Mapping):
            parts.append(str(run.get("text", "")))
        else:
            parts.append(str(getattr(run, "text", run)))
    return "".join(parts)


def flatten_cell(value: object) -> object:
    """Reduce a composite spreadsheet cell to the plain value it displays.

    Formula cells yield their cached result (never the formula text); rich
    text yields its concatenated runs; hyperlink-like ``{"text": ...}`` cells
    yield their text. Scalars are returned unchanged.

    Example::

        >>> flatten_cell({"formula": "A1+1", "result": 46096})
        46096
        >>> flatten_cell({"richText": [{"text": "Smith "}, {"text": "ILIT"}]})
        'Smith ILIT'
    """

    if isinstance(value, Mapping):
        if "result" in value or "formula" in value or "sharedFormula" in value:
            return flatten_cell(value.get("result"))
        if "richText" in value:
            return _join_runs(value.get("richText") or ())
        if "text" in value:
            return flatten_cell(value.get("text"))
        return None
    # rich-text cells arrive as a list of str / TextBlock runs
    if isinstance(value, (list, tuple)):
        return _join_runs(value)
    if isinstance(value, str) and value.startswith("="):
        return None
    return value
