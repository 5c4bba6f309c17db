"""Declarative header aliases and the column resolver.

The alias table is the only place that knows how a spreadsheet may spell a
canonical field. Resolution is a lookup over that table, so a new spelling is
a data change (``column_aliases`` in ``config/engine.json``), never a code
change.

Example::

    >>> column_map = resolve_columns(["ILIT Name", "Premium  Due Date", "Premium Amount"])
    >>> column_map.get("premium_due_date").index
    1
    >>> "ilit_name" in column_map.mapped
    True
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

__all__ = [
    "CANONICAL_FIELDS",
    "DEFAULT_COLUMN_ALIASES",
    "ColumnMap",
    "ResolvedColumn",
    "build_alias_table",
    "normalize_header",
    "resolve_columns",
]

AliasTable = Mapping[str, Tuple[str, ...]]

_WHITESPACE = re.compile(r"\s+")

# ---------------------------------------------------------------------------
# Canonical fields and their accepted spellings (priority order)
# ---------------------------------------------------------------------------
DEFAULT_COLUMN_ALIASES: AliasTable = {
    "ilit_name": ("ilitName", "ilit_name", "ilit.name", "ilit name", "ilit", "trust name", "trust"),
    "insured_name": ("insuredName", "insured_name", "insured.name", "insured name", "insured"),
    "trustees": ("trustees", "trustee", "trustee(s)"),
    "insurance_company": (
        "insuranceCompany",
        "insurance_company",
        "insurance.company",
        "insurance company",
        "carrier",
        "company",
    ),
    "policy_number": ("policyNumber", "policy_number", "policy.number", "policy number", "policy#", "policy #", "policy no"),
    "frequency": ("frequency", "paymentFrequency", "payment.frequency", "payment frequency"),
    "premium_due_date": (
        "premiumDueDate",
        "premium_due_date",
        "premium.due.date",
        "premium due date",
        "duedate",
        "due date",
    ),
    "premium_amount": ("premiumAmount", "premium_amount", "premium.amount", "premium amount", "amount", "premium"),
    "gift_date": ("giftDate", "gift_date", "gift.date", "gift date"),
    "crummey_letter_send_date": (
        "crummeyLetterSendDate",
        "crummey_letter_send_date",
        "crummey letter send date",
        "letter send date",
        "send date",
    ),
    "crummey_letter_sent_date": (
        "crummeyLetterSentDate",
        "crummey_letter_sent_date",
        "crummey letter sent date",
        "letter sent date",
        "sent date",
    ),
    "crummey_sent": ("crummeySent", "crummey_sent", "crummey sent", "letter sent", "sent"),
    "notes": ("notes", "note", "comments"),
    # a plain status cell only counts when the row also flags it as overridden
    "status": ("status",),
    "status_overridden": ("statusOverridden", "status_overridden", "status overridden"),
    "status_override": ("statusOverride", "status_override", "status.override", "status override", "override status"),
    "gift_date_source": ("giftDateSource", "gift_date_source", "gift date source"),
    "send_date_source": ("sendDateSource", "send_date_source", "send date source"),
}

CANONICAL_FIELDS: Tuple[str, ...] = tuple(DEFAULT_COLUMN_ALIASES)


def normalize_header(text: object) -> str:
    """Lowercase and collapse whitespace; ``None`` becomes ``""``.

    Example::

        >>> normalize_header("  Premium   Due Date ")
        'premium due date'
    """

    if text is None:
        return ""
    return _WHITESPACE.sub(" ", str(text)).strip().lower()


def build_alias_table(overrides: Mapping[str, Iterable[str]] | None = None) -> Dict[str, Tuple[str, ...]]:
    """Merge configured spellings onto :data:`DEFAULT_COLUMN_ALIASES`.

    Configured spellings are appended after the defaults (so the defaults keep
    priority) and duplicates are dropped after normalization.

    Args:
        overrides: ``{canonical_field: [alias, ...]}``.

    Returns:
        Dict[str, Tuple[str, ...]]: a complete alias table.

    Raises:
        ValueError: when a key is not a canonical field.
    """

    table: Dict[str, Tuple[str, ...]] = {name: tuple(aliases) for name, aliases in DEFAULT_COLUMN_ALIASES.items()}
    if not overrides:
        return table
    for name, extra in overrides.items():
        if name not in table:
            raise ValueError(f"Unknown canonical field in column aliases: '{name}'")
        if isinstance(extra, str):
            extra = (extra,)
        seen = {normalize_header(alias) for alias in table[name]}
        merged: List[str] = list(table[name])
        for alias in extra:
            key = normalize_header(alias)
            if key and key not in seen:
                seen.add(key)
                merged.append(str(alias))
        table[name] = tuple(merged)
    return table


@dataclass(frozen=True)
class ResolvedColumn:
    """Position and original spelling of the header a field resolved to."""

    index: int
    header: str


@dataclass(frozen=True)
class ColumnMap:
    """Outcome of :func:`resolve_columns` for one header row."""

    columns: Mapping[str, ResolvedColumn | None]
    headers: Tuple[str, ...] = ()
    unknown_headers: Tuple[str, ...] = field(default=())

    def get(self, name: str) -> ResolvedColumn | None:
        return self.columns.get(name)

    @property
    def mapped(self) -> Tuple[str, ...]:
        return tuple(name for name, column in self.columns.items() if column is not None)

    @property
    def unmapped(self) -> Tuple[str, ...]:
        return tuple(name for name, column in self.columns.items() if column is None)


def resolve_columns(headers: Sequence[object], aliases: AliasTable | None = None) -> ColumnMap:
    """Map each canonical field to the source column that carries it.

    For every field the first alias (in declared order) found in the header
    row wins; when a header is repeated its first occurrence is used.

    Args:
        headers: raw header row, in column order.
        aliases: alias table; defaults to :data:`DEFAULT_COLUMN_ALIASES`.

    Returns:
        ColumnMap: resolution per canonical field plus the headers that no
        alias claimed.
    """

    table = DEFAULT_COLUMN_ALIASES if aliases is None else aliases
    raw_headers = tuple("" if header is None else str(header) for header in headers)

    positions: Dict[str, int] = {}
    for index, header in enumerate(raw_headers):
        key = normalize_header(header)
        if key and key not in positions:
            positions[key] = index

    columns: Dict[str, ResolvedColumn | None] = {}
    claimed: set[int] = set()
    for name, spellings in table.items():
        resolved: ResolvedColumn | None = None
        for alias in spellings:
            index = positions.get(normalize_header(alias))
            if index is not None:
                resolved = ResolvedColumn(index=index, header=raw_headers[index])
                claimed.add(index)
                break
        columns[name] = resolved

    unknown = tuple(
        header
        for index, header in enumerate(raw_headers)
        if normalize_header(header) and index not in claimed and positions.get(normalize_header(header)) == index
    )
    return ColumnMap(columns=columns, headers=raw_headers, unknown_headers=unknown)
