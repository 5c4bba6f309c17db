"""Collaborator protocols the core depends on.

The core never opens files or databases; it talks to these structural types.
Infra provides the SQLite and spreadsheet implementations, tests provide
in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Protocol, Sequence, Union, runtime_checkable

from ilit_tracker.core.common.types import PolicyRecord, Settings

__all__ = [
    "PolicyFilter",
    "PolicyPatch",
    "PolicyStore",
    "SettingsStore",
    "TabularSource",
    "UpdateResult",
]

Row = Union[Mapping[str, Any], Sequence[Any]]


@dataclass(frozen=True)
class PolicyFilter:
    """Selection for :meth:`PolicyStore.read_all`; ``None`` means "any"."""

    has_premium_due_date: bool | None = None
    ilit_name: str | None = None

    def matches(self, record: PolicyRecord) -> bool:
        if self.has_premium_due_date is not None:
            if (record.premium_due_date is not None) != self.has_premium_due_date:
                return False
        if self.ilit_name is not None and record.ilit_name != self.ilit_name:
            return False
        return True


@dataclass(frozen=True)
class PolicyPatch:
    """Column changes for one stored policy, keyed by canonical field name."""

    record_id: str
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class UpdateResult:
    """Per-id outcome of :meth:`PolicyStore.update_many`."""

    ok: bool
    error: str | None = None


@runtime_checkable
class TabularSource(Protocol):
    """Already-parsed tabular cells; the file format is the source's business."""

    def headers(self) -> Sequence[str]:
        ...

    def rows(self) -> Iterable[Row]:
        ...


@runtime_checkable
class PolicyStore(Protocol):
    def insert_many(self, records: Iterable[PolicyRecord]) -> int:
        """Insert every record or none; returns the inserted count."""
        ...

    def create(self, record: PolicyRecord) -> PolicyRecord:
        """Insert one record; the store assigns ``id`` and timestamps and returns it as stored."""
        ...

    def read_all(self, filter: PolicyFilter | None = None) -> list[PolicyRecord]:
        ...

    def get(self, record_id: str) -> PolicyRecord | None:
        ...

    def update_many(self, patches: Iterable[PolicyPatch]) -> Mapping[str, UpdateResult]:
        """Apply each patch independently; one failure never blocks the others."""
        ...

    def upsert_by_key(self, key: Sequence[str], records: Iterable[PolicyRecord]) -> int:
        ...

    def delete(self, record_id: str) -> bool:
        ...


@runtime_checkable
class SettingsStore(Protocol):
    def get(self) -> Settings:
        """Current settings; the default row is created on first read."""
        ...

    def set(self, settings: Settings) -> None:
        ...
