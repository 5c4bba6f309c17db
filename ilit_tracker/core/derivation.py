"""Derived date calculator: gift date and Crummey letter send date.

Both dates hang off ``premium_due_date``; without it they stay absent and are
never defaulted to ``today`` or any other sentinel.

Example::

    >>> from datetime import date
    >>> from ilit_tracker.core.common.types import PolicyRecord
    >>> record = derive_dates(PolicyRecord(ilit_name="Smith ILIT", premium_due_date=date(2026, 3, 15)), 30)
    >>> record.gift_date, record.crummey_letter_send_date
    (datetime.date(2026, 3, 14), datetime.date(2026, 2, 13))
"""

from __future__ import annotations

from datetime import date, timedelta

from ilit_tracker.core.common.types import DateSource, PolicyRecord, validate_lead_days

__all__ = [
    "GIFT_OFFSET_DAYS",
    "derive_dates",
    "gift_date_for",
    "rederive_after_edit",
    "send_date_for",
]

GIFT_OFFSET_DAYS = 1


def gift_date_for(due: date | None) -> date | None:
    """The day before the premium is due."""

    if due is None:
        return None
    return due - timedelta(days=GIFT_OFFSET_DAYS)


def send_date_for(due: date | None, lead_days: int) -> date | None:
    """``lead_days`` calendar days before the premium is due."""

    if due is None:
        return None
    return due - timedelta(days=validate_lead_days(lead_days))


def derive_dates(record: PolicyRecord, lead_days: int) -> PolicyRecord:
    """Fill absent derived dates from ``premium_due_date``.

    Dates already present are left as they are, which makes the function
    idempotent for a fixed ``lead_days``.

    Args:
        record: the policy to complete.
        lead_days: reminder lead time in days (>= 1).

    Returns:
        PolicyRecord: the same record when nothing changes, otherwise a copy.
    """

    lead_days = validate_lead_days(lead_days)
    due = record.premium_due_date
    if due is None:
        return record

    changes: dict[str, object] = {}
    if record.gift_date is None:
        changes["gift_date"] = gift_date_for(due)
        changes["gift_date_source"] = DateSource.DERIVED
    if record.crummey_letter_send_date is None:
        changes["crummey_letter_send_date"] = send_date_for(due, lead_days)
        changes["send_date_source"] = DateSource.DERIVED
    return record.replace(**changes) if changes else record


def _recompute(current: date | None, source: DateSource | None, fresh: date | None) -> tuple[date | None, DateSource | None]:
    if source is DateSource.EXPLICIT and current is not None:
        return current, source
    if fresh is None:
        return None, None
    return fresh, DateSource.DERIVED


def rederive_after_edit(record: PolicyRecord, lead_days: int) -> PolicyRecord:
    """Recompute derived dates after ``premium_due_date`` was edited.

    Only dates whose provenance is not ``explicit`` move; when the due date
    was removed they are cleared.
    """

    lead_days = validate_lead_days(lead_days)
    due = record.premium_due_date
    gift, gift_source = _recompute(record.gift_date, record.gift_date_source, gift_date_for(due))
    send, send_source = _recompute(
        record.crummey_letter_send_date,
        record.send_date_source,
        send_date_for(due, lead_days) if due is not None else None,
    )
    return record.replace(
        gift_date=gift,
        gift_date_source=gift_source,
        crummey_letter_send_date=send,
        send_date_source=send_source,
    )
