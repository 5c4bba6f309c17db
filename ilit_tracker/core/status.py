"""Status classifier.

A pure function of ``(record, today, lead_days)``; the first matching rule
wins:

1. a user override is returned unchanged;
2. a recorded sent date (or a spreadsheet "sent" flag) → ``LetterSent``;
3. no premium due date → ``NotStarted``;
4. due date in the past → ``Overdue``;
5. send date reached → ``DueSoon``;
6. due within ``due_soon_days`` → ``DueSoon``;
7. otherwise → ``Pending``.
"""

from __future__ import annotations

from datetime import date

from ilit_tracker.core.common.types import PolicyRecord, PolicyStatus, StatusValue, validate_lead_days

__all__ = ["DEFAULT_DUE_SOON_DAYS", "apply_status", "classify", "days_until_due"]

DEFAULT_DUE_SOON_DAYS = 7


def days_until_due(record: PolicyRecord, today: date) -> int | None:
    """Whole days from ``today`` to the premium due date (negative when past)."""

    if record.premium_due_date is None:
        return None
    return (record.premium_due_date - today).days


def classify(
    record: PolicyRecord,
    today: date,
    lead_days: int,
    *,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> PolicyStatus:
    """Classify ``record`` as of ``today``.

    Example::

        >>> from datetime import date
        >>> record = PolicyRecord(ilit_name="Smith ILIT", premium_due_date=date(2026, 3, 25))
        >>> classify(record, date(2026, 3, 15), 30)
        <PolicyStatus.PENDING: 'Pending'>
    """

    validate_lead_days(lead_days)
    if record.status.overridden:
        return record.status.status
    if record.crummey_letter_sent_date is not None or record.crummey_sent is True:
        return PolicyStatus.LETTER_SENT
    remaining = days_until_due(record, today)
    if remaining is None:
        return PolicyStatus.NOT_STARTED
    if remaining < 0:
        return PolicyStatus.OVERDUE
    send_date = record.crummey_letter_send_date
    if send_date is not None and send_date <= today:
        return PolicyStatus.DUE_SOON
    if remaining <= due_soon_days:
        return PolicyStatus.DUE_SOON
    # due within lead_days and beyond it both read as Pending
    return PolicyStatus.PENDING


def apply_status(
    record: PolicyRecord,
    today: date,
    lead_days: int,
    *,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> PolicyRecord:
    """Return ``record`` with a fresh derived status; overrides are untouched."""

    if record.status.overridden:
        return record
    fresh = StatusValue.derived(classify(record, today, lead_days, due_soon_days=due_soon_days))
    if fresh == record.status:
        return record
    return record.replace(status=fresh)
