"""Error model of the infra layer (database and source files)."""
from __future__ import annotations

from dataclasses import dataclass


class InfraError(RuntimeError):
    """Base of every infra error."""


@dataclass(eq=True)
class SchemaVersionMismatchError(InfraError):
    """The database schema is newer than this build understands."""

    expected_version: int
    actual_version: int
    message: str

    def __str__(self) -> str:
        return f"{self.message} (expected={self.expected_version}, actual={self.actual_version})"


@dataclass(eq=True)
class DatabaseOperationError(InfraError):
    """A SQLite operation failed; the ``sqlite3`` error is the ``__cause__``."""

    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(eq=True)
class SourceReadError(InfraError):
    """A spreadsheet or CSV file could not be opened or parsed."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.message}: {self.path}"


__all__ = [
    "InfraError",
    "SchemaVersionMismatchError",
    "DatabaseOperationError",
    "SourceReadError",
]
