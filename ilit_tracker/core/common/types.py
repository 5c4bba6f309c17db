"""Data contracts of the ILIT policy domain (core only, no I/O).

This module holds the record types and their tiny helpers. Status is stored as
a tagged value so that classification only ever replaces a *derived* status
and never a user override.

Example:
    >>> from datetime import date
    >>> record = PolicyRecord(ilit_name="Smith ILIT", premium_due_date=date(2026, 3, 15))
    >>> record.status
    StatusValue(status=<PolicyStatus.PENDING: 'Pending'>, overridden=False)
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping

from .errors import InvalidLeadDaysError

__all__ = [
    "DEFAULT_REMINDER_LEAD_DAYS",
    "PolicyStatus",
    "StatusValue",
    "DateSource",
    "PolicyRecord",
    "Settings",
    "parse_status",
    "status_or_pending",
    "validate_lead_days",
]

DEFAULT_REMINDER_LEAD_DAYS = 30

_STATUS_KEY = re.compile(r"[\s_\-]+")


class PolicyStatus(str, Enum):
    """Closed lifecycle enumeration of a policy."""

    NOT_STARTED = "NotStarted"
    PENDING = "Pending"
    DUE_SOON = "DueSoon"
    OVERDUE = "Overdue"
    LETTER_SENT = "LetterSent"
    PAID = "Paid"


_STATUS_LOOKUP: Dict[str, PolicyStatus] = {
    _STATUS_KEY.sub("", member.value).lower(): member for member in PolicyStatus
}


def parse_status(value: object) -> PolicyStatus | None:
    """Read a status spelling; ``None`` when it is not one of the closed values.

    Example::

        >>> parse_status("letter sent")
        <PolicyStatus.LETTER_SENT: 'LetterSent'>
        >>> parse_status("archived") is None
        True
    """

    if isinstance(value, PolicyStatus):
        return value
    if value is None:
        return None
    key = _STATUS_KEY.sub("", str(value)).lower()
    return _STATUS_LOOKUP.get(key)


def status_or_pending(value: object) -> PolicyStatus:
    """Consumer-side reading: unknown or missing values count as ``Pending``."""

    return parse_status(value) or PolicyStatus.PENDING


@dataclass(frozen=True)
class StatusValue:
    """Tagged status: either derived by the classifier or set by a user."""

    status: PolicyStatus = PolicyStatus.PENDING
    overridden: bool = False

    @classmethod
    def derived(cls, status: PolicyStatus) -> "StatusValue":
        return cls(status=status, overridden=False)

    @classmethod
    def override(cls, status: PolicyStatus) -> "StatusValue":
        return cls(status=status, overridden=True)


class DateSource(str, Enum):
    """Provenance of a date that may be either computed or user-entered."""

    DERIVED = "derived"
    EXPLICIT = "explicit"


def _parse_date_source(value: object) -> DateSource | None:
    if value is None or value == "":
        return None
    return DateSource(str(value))


def _iso_or_none(value: date | datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


@dataclass(frozen=True)
class PolicyRecord:
    """One insurance policy owned by an irrevocable trust."""

    ilit_name: str
    id: str | None = None
    insured_name: str | None = None
    trustees: str | None = None
    insurance_company: str | None = None
    policy_number: str | None = None
    frequency: str | None = None
    notes: str | None = None
    premium_due_date: date | None = None
    premium_amount: float | None = None
    gift_date: date | None = None
    gift_date_source: DateSource | None = None
    crummey_letter_send_date: date | None = None
    send_date_source: DateSource | None = None
    crummey_letter_sent_date: date | None = None
    crummey_sent: bool | None = None
    status: StatusValue = field(default_factory=StatusValue)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def replace(self, **changes: Any) -> "PolicyRecord":
        """Return a copy with ``changes`` applied."""

        return dataclasses.replace(self, **changes)

    def to_row(self) -> Dict[str, Any]:
        """Flatten into a plain dictionary (ISO strings for dates and timestamps)."""

        return {
            "id": self.id,
            "ilit_name": self.ilit_name,
            "insured_name": self.insured_name,
            "trustees": self.trustees,
            "insurance_company": self.insurance_company,
            "policy_number": self.policy_number,
            "frequency": self.frequency,
            "notes": self.notes,
            "premium_due_date": _iso_or_none(self.premium_due_date),
            "premium_amount": self.premium_amount,
            "gift_date": _iso_or_none(self.gift_date),
            "gift_date_source": self.gift_date_source.value if self.gift_date_source else None,
            "crummey_letter_send_date": _iso_or_none(self.crummey_letter_send_date),
            "send_date_source": self.send_date_source.value if self.send_date_source else None,
            "crummey_letter_sent_date": _iso_or_none(self.crummey_letter_sent_date),
            "crummey_sent": self.crummey_sent,
            "status": self.status.status.value,
            "status_overridden": self.status.overridden,
            "created_at": _iso_or_none(self.created_at),
            "updated_at": _iso_or_none(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PolicyRecord":
        """Rebuild a record from :meth:`to_row` output or a stored row.

        Unknown stored status strings are read as ``Pending``.
        """

        def _date(key: str) -> date | None:
            raw = row.get(key)
            if raw is None or raw == "":
                return None
            if isinstance(raw, datetime):
                return raw.date()
            if isinstance(raw, date):
                return raw
            return date.fromisoformat(str(raw)[:10])

        def _timestamp(key: str) -> datetime | None:
            raw = row.get(key)
            if raw is None or raw == "":
                return None
            if isinstance(raw, datetime):
                return raw
            return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))

        def _optional_bool(key: str) -> bool | None:
            raw = row.get(key)
            return None if raw is None else bool(raw)

        amount = row.get("premium_amount")
        return cls(
            id=None if row.get("id") is None else str(row["id"]),
            ilit_name=str(row.get("ilit_name") or ""),
            insured_name=row.get("insured_name"),
            trustees=row.get("trustees"),
            insurance_company=row.get("insurance_company"),
            policy_number=row.get("policy_number"),
            frequency=row.get("frequency"),
            notes=row.get("notes"),
            premium_due_date=_date("premium_due_date"),
            premium_amount=None if amount is None else float(amount),
            gift_date=_date("gift_date"),
            gift_date_source=_parse_date_source(row.get("gift_date_source")),
            crummey_letter_send_date=_date("crummey_letter_send_date"),
            send_date_source=_parse_date_source(row.get("send_date_source")),
            crummey_letter_sent_date=_date("crummey_letter_sent_date"),
            crummey_sent=_optional_bool("crummey_sent"),
            status=StatusValue(
                status=status_or_pending(row.get("status")),
                overridden=bool(row.get("status_overridden") or False),
            ),
            created_at=_timestamp("created_at"),
            updated_at=_timestamp("updated_at"),
        )


def validate_lead_days(value: object) -> int:
    """Validate a reminder lead time; rejects booleans, fractions and values < 1.

    Example::

        >>> validate_lead_days(45)
        45
    """

    if isinstance(value, bool):
        raise InvalidLeadDaysError(func="validate_lead_days", column="reminder_lead_days", value=value)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or value < 1:
        raise InvalidLeadDaysError(func="validate_lead_days", column="reminder_lead_days", value=value)
    return value


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration singleton."""

    reminder_lead_days: int = DEFAULT_REMINDER_LEAD_DAYS

    def __post_init__(self) -> None:
        object.__setattr__(self, "reminder_lead_days", validate_lead_days(self.reminder_lead_days))
