"""Domain errors for the policy derivation core."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class DomainError(Exception):
    """Base of every domain error."""


@dataclass(eq=False)
class BaseDomainError(DomainError):
    """Error enriched with context for debugging and reporting.

    Attributes:
        func: name of the function where the error was raised.
        column: canonical field name, when relevant.
        value: raw value that caused the error.
        row_index: 1-based input row number, when available.
    """

    func: str
    column: str | None = None
    value: Any | None = None
    row_index: int | None = None

    def __str__(self) -> str:  # pragma: no cover - simple rendering
        parts: list[str] = [self.__class__.__name__, f"func={self.func}"]
        if self.column is not None:
            parts.append(f"column={self.column}")
        if self.value is not None:
            parts.append(f"value={self.value!r}")
        if self.row_index is not None:
            parts.append(f"row_index={self.row_index}")
        return " ".join(parts)


class InvalidLeadDaysError(BaseDomainError):
    """reminder_lead_days is not an integer >= 1."""


class MissingRequiredFieldError(BaseDomainError):
    """A required field (ilit_name) is absent on a manually entered record."""


class RecordNotFoundError(BaseDomainError):
    """No stored policy has the requested identifier."""


class IngestionAbortedError(DomainError):
    """The bulk write of an import batch failed; nothing from the batch was kept.

    The underlying store error is chained as ``__cause__``.
    """

    def __init__(self, *, rows_read: int, rows_skipped: int, message: str) -> None:
        super().__init__(message)
        self.rows_read = rows_read
        self.rows_skipped = rows_skipped
        self.message = message

    def __str__(self) -> str:
        return f"{self.message} (rows_read={self.rows_read}, rows_skipped={self.rows_skipped})"


__all__ = [
    "DomainError",
    "BaseDomainError",
    "InvalidLeadDaysError",
    "MissingRequiredFieldError",
    "RecordNotFoundError",
    "IngestionAbortedError",
]
