from __future__ import annotations

from datetime import date

import pytest

from ilit_tracker.core.common.types import PolicyRecord, PolicyStatus, StatusValue, parse_status, status_or_pending
from ilit_tracker.core.derivation import derive_dates
from ilit_tracker.core.status import apply_status, classify, days_until_due

TODAY = date(2026, 3, 15)


def _record(due: date | None, **extra) -> PolicyRecord:
    return derive_dates(PolicyRecord(ilit_name="Smith ILIT", premium_due_date=due, **extra), 30)


def test_ten_days_out_without_send_date_is_pending() -> None:
    record = PolicyRecord(ilit_name="Smith ILIT", premium_due_date=date(2026, 3, 25))
    assert classify(record, TODAY, 30) is PolicyStatus.PENDING


@pytest.mark.parametrize(
    "due, expected",
    [
        (None, PolicyStatus.NOT_STARTED),
        (date(2026, 3, 14), PolicyStatus.OVERDUE),
        (date(2026, 3, 15), PolicyStatus.DUE_SOON),
        (date(2026, 3, 22), PolicyStatus.DUE_SOON),
        (date(2026, 4, 14), PolicyStatus.DUE_SOON),
        (date(2026, 4, 15), PolicyStatus.PENDING),
        (date(2026, 9, 1), PolicyStatus.PENDING),
    ],
)
def test_classification_table(due, expected) -> None:
    assert classify(_record(due), TODAY, 30) is expected


def test_letter_sent_wins_over_dates() -> None:
    assert classify(_record(date(2026, 3, 1), crummey_letter_sent_date=date(2026, 2, 1)), TODAY, 30) is (
        PolicyStatus.LETTER_SENT
    )
    assert classify(_record(date(2026, 3, 1), crummey_sent=True), TODAY, 30) is PolicyStatus.LETTER_SENT


def test_override_is_returned_and_never_replaced() -> None:
    record = _record(date(2026, 3, 1), status=StatusValue.override(PolicyStatus.PAID))
    assert classify(record, TODAY, 30) is PolicyStatus.PAID
    assert apply_status(record, TODAY, 30) is record


def test_apply_status_sets_derived_value() -> None:
    record = apply_status(_record(date(2026, 3, 1)), TODAY, 30)
    assert record.status == StatusValue.derived(PolicyStatus.OVERDUE)


def test_due_soon_threshold_is_configurable() -> None:
    record = PolicyRecord(ilit_name="Smith ILIT", premium_due_date=date(2026, 3, 25))
    assert classify(record, TODAY, 5, due_soon_days=10) is PolicyStatus.DUE_SOON


def test_days_until_due() -> None:
    assert days_until_due(_record(date(2026, 3, 25)), TODAY) == 10
    assert days_until_due(_record(None), TODAY) is None


def test_status_parsing() -> None:
    assert parse_status("Due Soon") is PolicyStatus.DUE_SOON
    assert parse_status("not_started") is PolicyStatus.NOT_STARTED
    assert parse_status("archived") is None
    assert status_or_pending("archived") is PolicyStatus.PENDING
