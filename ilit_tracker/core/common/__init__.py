"""Shared types, errors, coercers and column resolution."""

from __future__ import annotations

from .errors import (
    BaseDomainError,
    DomainError,
    IngestionAbortedError,
    InvalidLeadDaysError,
    MissingRequiredFieldError,
    RecordNotFoundError,
)
from .types import DateSource, PolicyRecord, PolicyStatus, Settings, StatusValue

__all__ = [
    "BaseDomainError",
    "DateSource",
    "DomainError",
    "IngestionAbortedError",
    "InvalidLeadDaysError",
    "MissingRequiredFieldError",
    "PolicyRecord",
    "PolicyStatus",
    "RecordNotFoundError",
    "Settings",
    "StatusValue",
]
