from __future__ import annotations

from datetime import date

import pytest

from ilit_tracker.core.common.errors import InvalidLeadDaysError
from ilit_tracker.core.common.types import DateSource, PolicyRecord, PolicyStatus, StatusValue
from ilit_tracker.core.derivation import derive_dates
from ilit_tracker.core.reconciliation import (
    OUTCOME_FAILED,
    OUTCOME_PRESERVED,
    OUTCOME_UNCHANGED,
    OUTCOME_UPDATED,
    change_lead_time,
    plan_recalculation,
    recalculate,
)
from ilit_tracker.core.status import apply_status

TODAY = date(2025, 12, 1)


def _policy(record_id: str, due: date | None, **extra) -> PolicyRecord:
    record = derive_dates(PolicyRecord(ilit_name=f"{record_id} ILIT", id=record_id, premium_due_date=due, **extra), 30)
    return apply_status(record, TODAY, 30)


def test_change_lead_time_moves_derived_send_dates(store_factory, fake_settings) -> None:
    store = store_factory([_policy("a", date(2026, 3, 15))])

    report = change_lead_time(45, fake_settings, store, today=TODAY)

    assert report.updated_count == 1
    assert report.failed_count == 0
    assert fake_settings.settings.reminder_lead_days == 45
    assert store.records["a"].crummey_letter_send_date == date(2026, 1, 29)
    assert store.records["a"].send_date_source is DateSource.DERIVED


def test_invalid_lead_time_writes_nothing(store_factory, fake_settings) -> None:
    store = store_factory([_policy("a", date(2026, 3, 15))])
    with pytest.raises(InvalidLeadDaysError):
        change_lead_time(0, fake_settings, store, today=TODAY)
    assert fake_settings.writes == []
    assert store.update_calls == 0


def test_failure_is_isolated_to_one_record(store_factory, fake_settings) -> None:
    store = store_factory(
        [
            _policy("a", date(2026, 3, 15)),
            _policy("b", date(2026, 4, 15)),
            _policy("c", date(2026, 5, 15)),
        ]
    )
    store.fail_ids.add("b")
    store.raise_ids.add("c")

    report = change_lead_time(45, fake_settings, store, today=TODAY)

    assert report.updated_count == 1
    assert {result.record_id for result in report.failures} == {"b", "c"}
    assert all(result.outcome == OUTCOME_FAILED and result.error for result in report.failures)
    assert store.records["a"].crummey_letter_send_date == date(2026, 1, 29)
    assert store.records["b"].crummey_letter_send_date == date(2026, 3, 16)
    assert "ConnectionError" in next(r.error for r in report.failures if r.record_id == "c")


def test_explicit_send_date_preserved_unless_forced(store_factory) -> None:
    explicit = _policy(
        "x",
        date(2026, 3, 15),
        crummey_letter_send_date=date(2026, 1, 5),
        send_date_source=DateSource.EXPLICIT,
    )
    store = store_factory([explicit])

    report = recalculate([explicit], 45, store, today=TODAY)
    assert report.results[0].outcome == OUTCOME_PRESERVED
    assert store.records["x"].crummey_letter_send_date == date(2026, 1, 5)

    forced = recalculate([explicit], 45, store, today=TODAY, force=True)
    assert forced.updated_count == 1
    assert store.records["x"].crummey_letter_send_date == date(2026, 1, 29)
    assert store.records["x"].send_date_source is DateSource.DERIVED


def test_dates_without_provenance_are_recomputed() -> None:
    legacy = PolicyRecord(
        ilit_name="Legacy ILIT",
        id="old",
        premium_due_date=date(2026, 3, 15),
        crummey_letter_send_date=date(2026, 2, 13),
    )
    plan = next(plan_recalculation([legacy], 45, TODAY))
    assert plan.outcome == OUTCOME_UPDATED
    assert plan.new_send_date == date(2026, 1, 29)


def test_unchanged_records_are_not_written(store_factory) -> None:
    record = _policy("a", date(2026, 3, 15))
    store = store_factory([record])
    report = recalculate([record], 30, store, today=TODAY)
    assert report.results[0].outcome == OUTCOME_UNCHANGED
    assert report.updated_count == 0
    assert store.update_calls == 0


def test_status_is_reclassified_but_override_kept() -> None:
    # 60 days out: Pending at lead 30, DueSoon once the send date moves before today
    derived = _policy("d", date(2026, 1, 30))
    overridden = _policy("o", date(2026, 1, 30), status=StatusValue.override(PolicyStatus.PAID))

    plans = {plan.record_id: plan for plan in plan_recalculation([derived, overridden], 60, TODAY)}

    assert plans["d"].patch.changes["status"] == StatusValue.derived(PolicyStatus.DUE_SOON)
    assert "status" not in plans["o"].patch.changes


def test_records_without_due_date_are_skipped() -> None:
    assert list(plan_recalculation([_policy("n", None)], 45, TODAY)) == []


def test_record_without_id_is_reported_failed_not_updated(store_factory) -> None:
    store = store_factory([_policy("a", date(2026, 3, 15))])
    unsaved = _policy("b", date(2026, 3, 15)).replace(id=None)

    report = recalculate([unsaved, store.records["a"]], 45, store, today=TODAY)

    assert report.updated_count == 1
    assert [result.outcome for result in report.results] == [OUTCOME_FAILED, OUTCOME_UPDATED]
    assert report.results[0].record_id is None
    assert "no id" in report.results[0].error
    assert report.results[0].new_send_date == date(2026, 2, 13)
