"""Read models: reminders, letter schedule, client roll-up and dashboard counts.

Every view takes ``today`` explicitly and works over an iterable of records.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Tuple

from ilit_tracker.core.common.types import PolicyRecord

__all__ = [
    "ACTION_LETTER",
    "ACTION_PREMIUM",
    "LETTER_PENDING",
    "LETTER_SENT",
    "UNKNOWN_CLIENT",
    "ActionItem",
    "ClientSummary",
    "DashboardStats",
    "LetterItem",
    "client_summaries",
    "dashboard_stats",
    "due_reminders",
    "letter_schedule",
    "upcoming_actions",
]

ACTION_LETTER = "letter"
ACTION_PREMIUM = "premium"
LETTER_PENDING = "pending"
LETTER_SENT = "sent"
UNKNOWN_CLIENT = "Unknown"


def _letter_outstanding(record: PolicyRecord) -> bool:
    return record.crummey_letter_send_date is not None and record.crummey_letter_sent_date is None


def _days(target: date, today: date) -> int:
    return (target - today).days


def due_reminders(records: Iterable[PolicyRecord], today: date) -> List[PolicyRecord]:
    """Letters whose send date has arrived and that were not sent yet.

    Ordered by send date, then ILIT name.
    """

    due = [
        record
        for record in records
        if _letter_outstanding(record) and record.crummey_letter_send_date <= today  # type: ignore[operator]
    ]
    due.sort(key=lambda record: (record.crummey_letter_send_date, record.ilit_name))
    return due


@dataclass(frozen=True)
class ActionItem:
    kind: str
    record: PolicyRecord
    action_date: date
    days_until_action: int


def upcoming_actions(
    records: Iterable[PolicyRecord],
    today: date,
    *,
    letter_window_days: int = 30,
    premium_window_days: int = 60,
) -> List[ActionItem]:
    """Letters to send and premiums to pay in the coming windows.

    Overdue letters are included with ``days_until_action == 0``; past
    premiums are not (they show up as ``Overdue`` instead).
    """

    items: List[ActionItem] = []
    for record in records:
        if _letter_outstanding(record):
            send_date = record.crummey_letter_send_date
            days = _days(send_date, today)  # type: ignore[arg-type]
            if days <= letter_window_days:
                items.append(ActionItem(ACTION_LETTER, record, send_date, max(0, days)))  # type: ignore[arg-type]
        if record.premium_due_date is not None:
            days = _days(record.premium_due_date, today)
            if 0 <= days <= premium_window_days:
                items.append(ActionItem(ACTION_PREMIUM, record, record.premium_due_date, days))
    items.sort(key=lambda item: (item.days_until_action, item.action_date, item.kind))
    return items


@dataclass(frozen=True)
class LetterItem:
    state: str
    record: PolicyRecord
    days_until_send: int


def letter_schedule(records: Iterable[PolicyRecord], today: date) -> List[LetterItem]:
    """Every policy with a send date; pending letters first, soonest first."""

    items = [
        LetterItem(
            state=LETTER_SENT if record.crummey_letter_sent_date is not None else LETTER_PENDING,
            record=record,
            days_until_send=max(0, _days(record.crummey_letter_send_date, today)),  # type: ignore[arg-type]
        )
        for record in records
        if record.crummey_letter_send_date is not None
    ]
    items.sort(key=lambda item: (item.state != LETTER_PENDING, item.days_until_send, item.record.ilit_name))
    return items


@dataclass(frozen=True)
class ClientSummary:
    insured_name: str
    policy_count: int
    total_premium: float
    upcoming_premiums: Tuple[PolicyRecord, ...] = field(default=())
    pending_letters: Tuple[PolicyRecord, ...] = field(default=())


def client_summaries(
    records: Iterable[PolicyRecord],
    today: date,
    *,
    premium_window_days: int = 60,
) -> List[ClientSummary]:
    """Policies grouped by insured name (``"Unknown"`` when absent), sorted by name."""

    grouped: Dict[str, List[PolicyRecord]] = defaultdict(list)
    for record in records:
        grouped[record.insured_name or UNKNOWN_CLIENT].append(record)

    summaries: List[ClientSummary] = []
    for name in sorted(grouped, key=str.casefold):
        policies = grouped[name]
        upcoming = tuple(
            record
            for record in policies
            if record.premium_due_date is not None and 0 <= _days(record.premium_due_date, today) <= premium_window_days
        )
        pending = tuple(record for record in policies if _letter_outstanding(record) and record.crummey_letter_send_date <= today)  # type: ignore[operator]
        summaries.append(
            ClientSummary(
                insured_name=name,
                policy_count=len(policies),
                total_premium=sum(record.premium_amount or 0.0 for record in policies),
                upcoming_premiums=upcoming,
                pending_letters=pending,
            )
        )
    return summaries


@dataclass(frozen=True)
class DashboardStats:
    total_policies: int = 0
    total_outstanding_premiums: float = 0.0
    premiums_due_30_days: int = 0
    premiums_due_60_days: int = 0
    letters_to_send: int = 0
    letters_sent: int = 0
    overdue_policies: int = 0


def dashboard_stats(records: Iterable[PolicyRecord], today: date) -> DashboardStats:
    """Headline counts.

    ``premiums_due_60_days`` counts days 31..60 only, so the two windows do
    not overlap.
    """

    counts = dict.fromkeys(
        ("total", "due_30", "due_60", "to_send", "sent", "overdue"),
        0,
    )
    outstanding = 0.0
    for record in records:
        counts["total"] += 1
        outstanding += record.premium_amount or 0.0
        if record.premium_due_date is not None:
            days = _days(record.premium_due_date, today)
            if days < 0:
                counts["overdue"] += 1
            elif days <= 30:
                counts["due_30"] += 1
            elif days <= 60:
                counts["due_60"] += 1
        if record.crummey_letter_send_date is not None:
            if record.crummey_letter_sent_date is not None:
                counts["sent"] += 1
            elif record.crummey_letter_send_date <= today:
                counts["to_send"] += 1
    return DashboardStats(
        total_policies=counts["total"],
        total_outstanding_premiums=outstanding,
        premiums_due_30_days=counts["due_30"],
        premiums_due_60_days=counts["due_60"],
        letters_to_send=counts["to_send"],
        letters_sent=counts["sent"],
        overdue_policies=counts["overdue"],
    )
