from __future__ import annotations

from datetime import date

import pandas as pd
import pytest

from ilit_tracker.core.common.types import DateSource, PolicyRecord, PolicyStatus, StatusValue
from ilit_tracker.core.derivation import derive_dates
from ilit_tracker.core.ports import PolicyFilter, PolicyPatch, PolicyStore
from ilit_tracker.infra.errors import DatabaseOperationError
from ilit_tracker.infra.policy_store import SQLitePolicyStore


def _policy(name: str, due: date | None = None, **extra) -> PolicyRecord:
    return derive_dates(PolicyRecord(ilit_name=name, premium_due_date=due, **extra), 30)


def test_store_satisfies_protocol(policy_store: SQLitePolicyStore) -> None:
    assert isinstance(policy_store, PolicyStore)


def test_create_assigns_id_and_timestamps(policy_store: SQLitePolicyStore) -> None:
    created = policy_store.create(_policy("Smith ILIT", date(2026, 3, 15)).replace(id="caller-chosen"))

    assert created.id and created.id != "caller-chosen"
    assert created.created_at is not None
    assert policy_store.get(created.id) == created
    assert created.crummey_letter_send_date == date(2026, 2, 13)


def test_insert_and_read_round_trip(policy_store: SQLitePolicyStore) -> None:
    record = _policy(
        "Smith ILIT",
        date(2026, 3, 15),
        premium_amount=2500.0,
        crummey_sent=False,
        status=StatusValue.override(PolicyStatus.PAID),
    )
    assert policy_store.insert_many([record]) == 1

    [stored] = policy_store.read_all()
    assert stored.id
    assert stored.created_at is not None
    assert stored.replace(id=None, created_at=None, updated_at=None) == record


def test_insert_is_all_or_nothing(policy_store: SQLitePolicyStore) -> None:
    good = _policy("Good ILIT")
    bad = PolicyRecord(ilit_name="")  # violates the ilit_name CHECK
    with pytest.raises(DatabaseOperationError):
        policy_store.insert_many([good, bad])
    assert policy_store.read_all() == []


def test_read_all_filters(policy_store: SQLitePolicyStore) -> None:
    policy_store.insert_many([_policy("A", date(2026, 3, 15)), _policy("B"), _policy("A")])
    assert len(policy_store.read_all(PolicyFilter(has_premium_due_date=True))) == 1
    assert len(policy_store.read_all(PolicyFilter(has_premium_due_date=False))) == 2
    assert len(policy_store.read_all(PolicyFilter(ilit_name="A"))) == 2


def test_update_many_isolates_failing_patch(policy_store: SQLitePolicyStore) -> None:
    policy_store.insert_many([_policy("A", date(2026, 3, 15)), _policy("B", date(2026, 4, 15))])
    a, b = policy_store.read_all()

    results = policy_store.update_many(
        [
            PolicyPatch(a.id, {"crummey_letter_send_date": date(2026, 1, 29), "send_date_source": DateSource.DERIVED}),
            PolicyPatch(b.id, {"premium_amount": -1.0}),
            PolicyPatch("missing", {"notes": "x"}),
            PolicyPatch(a.id + "x", {"created_at": "2020-01-01"}),
        ]
    )

    assert results[a.id].ok
    assert not results[b.id].ok
    assert results["missing"].error == "policy not found"
    assert not results[a.id + "x"].ok
    assert policy_store.get(a.id).crummey_letter_send_date == date(2026, 1, 29)
    assert policy_store.get(b.id).premium_amount is None


def test_update_status_value(policy_store: SQLitePolicyStore) -> None:
    policy_store.insert_many([_policy("A", date(2026, 3, 15))])
    [a] = policy_store.read_all()
    policy_store.update_many([PolicyPatch(a.id, {"status": StatusValue.override(PolicyStatus.PAID)})])
    assert policy_store.get(a.id).status == StatusValue.override(PolicyStatus.PAID)


def test_upsert_by_key(policy_store: SQLitePolicyStore) -> None:
    key = ("ilit_name", "policy_number")
    assert policy_store.upsert_by_key(key, [_policy("A", policy_number="P1", premium_amount=100.0)]) == 1
    policy_store.upsert_by_key(key, [_policy("A", policy_number="P1", premium_amount=200.0), _policy("B")])

    rows = {record.ilit_name: record for record in policy_store.read_all()}
    assert rows["A"].premium_amount == 200.0
    assert len(rows) == 2

    with pytest.raises(ValueError):
        policy_store.upsert_by_key(("id",), [])


def test_upsert_prefers_the_record_id_over_the_key(policy_store: SQLitePolicyStore) -> None:
    policy_store.insert_many([_policy("A", policy_number="P1"), _policy("B", policy_number="P2")])
    stored = {record.ilit_name: record for record in policy_store.read_all()}

    renumbered = stored["A"].replace(policy_number="P9", premium_amount=75.0)
    policy_store.upsert_by_key(("policy_number",), [renumbered])

    after = {record.ilit_name: record for record in policy_store.read_all()}
    assert len(after) == 2
    assert after["A"].id == stored["A"].id
    assert after["A"].policy_number == "P9"
    assert after["A"].created_at == stored["A"].created_at


def test_delete(policy_store: SQLitePolicyStore) -> None:
    policy_store.insert_many([_policy("A")])
    [a] = policy_store.read_all()
    assert policy_store.delete(a.id)
    assert not policy_store.delete(a.id)
    assert policy_store.get(a.id) is None


def test_load_frame_types(policy_store: SQLitePolicyStore) -> None:
    policy_store.insert_many([_policy("A", date(2026, 3, 15), crummey_sent=True), _policy("B")])
    frame = policy_store.load_frame()
    assert list(frame["ilit_name"]) == ["A", "B"]
    assert frame.loc[0, "premium_due_date"] == date(2026, 3, 15)
    assert str(frame["crummey_sent"].dtype) == "boolean"
    assert frame.loc[0, "crummey_sent"]
    assert pd.isna(frame.loc[1, "crummey_sent"])


def test_failed_batch_rolls_back_through_ingest(policy_store: SQLitePolicyStore, settings_store, monkeypatch) -> None:
    import sqlite3

    from ilit_tracker.core.common.errors import IngestionAbortedError
    from ilit_tracker.core.ingestion import ingest
    from ilit_tracker.infra import policy_store as policy_store_module
    from ilit_tracker.infra.sources import FrameTabularSource

    real_params = policy_store_module._record_params

    def flaky_params(record, now):
        if record.ilit_name == "Second ILIT":
            raise sqlite3.IntegrityError("simulated constraint failure")
        return real_params(record, now)

    monkeypatch.setattr(policy_store_module, "_record_params", flaky_params)
    source = FrameTabularSource(pd.DataFrame({"ilitName": ["First ILIT", "Second ILIT", "Third ILIT"]}))

    with pytest.raises(IngestionAbortedError) as info:
        ingest(source, policy_store, settings_store, today=date(2025, 12, 1))

    assert isinstance(info.value.__cause__, DatabaseOperationError)
    assert policy_store.read_all() == []


def test_load_frame_columns(policy_store: SQLitePolicyStore) -> None:
    from ilit_tracker.infra.policy_store import COLUMNS

    frame = policy_store.load_frame()
    pd.testing.assert_index_equal(frame.columns, pd.Index(list(COLUMNS)))
    assert frame.empty
