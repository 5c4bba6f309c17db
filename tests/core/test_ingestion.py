from __future__ import annotations

from datetime import date

import pandas as pd
import pytest

from ilit_tracker.core.common.errors import IngestionAbortedError
from ilit_tracker.core.common.types import DateSource, PolicyRecord, PolicyStatus, StatusValue
from ilit_tracker.core.derivation import derive_dates
from ilit_tracker.core.ingestion import ingest, merge_reimported
from ilit_tracker.core.normalizer import SKIP_MISSING_ILIT_NAME
from ilit_tracker.core.operations import edit_policy, mark_letter_sent, patch_for
from ilit_tracker.infra.sources import FrameTabularSource


class ListSource:
    def __init__(self, headers, rows) -> None:
        self._headers = headers
        self._rows = rows

    def headers(self):
        return self._headers

    def rows(self):
        return iter(self._rows)


def test_import_counts_and_derivation(fake_store, fake_settings, today) -> None:
    source = ListSource(
        ["ILIT Name", "Premium Due Date", "Premium Amount", "Beneficiary"],
        [
            ["Smith ILIT", "03/15/2026", "$2,500.00", "x"],
            ["", "04/01/2026", "100", "y"],
            [None, None, None, None],
            ["Johnson ILIT", "12/05/2025", "450", None],
        ],
    )

    report = ingest(source, fake_store, fake_settings, today=today)

    assert report.rows_read == 3
    assert report.rows_skipped == 1
    assert report.rows_inserted == 2
    assert report.blank_rows == 1
    assert report.skipped_rows[0].row_number == 3
    assert report.skipped_rows[0].reason == SKIP_MISSING_ILIT_NAME
    assert report.unknown_headers == ("Beneficiary",)
    assert "insured_name" in report.unmapped_fields
    assert report.lead_days == 30
    assert fake_settings.reads == 1

    stored = {record.ilit_name: record for record in fake_store.read_all()}
    assert stored["Smith ILIT"].crummey_letter_send_date == date(2026, 2, 13)
    assert stored["Smith ILIT"].status.status is PolicyStatus.PENDING
    assert stored["Johnson ILIT"].status.status is PolicyStatus.DUE_SOON


def test_store_failure_aborts_with_chained_cause(fake_store, fake_settings, today) -> None:
    fake_store.fail_insert = True
    source = ListSource(["ilitName"], [["A ILIT"], ["B ILIT"]])

    with pytest.raises(IngestionAbortedError) as info:
        ingest(source, fake_store, fake_settings, today=today)

    assert isinstance(info.value.__cause__, RuntimeError)
    assert info.value.rows_read == 2
    assert fake_store.read_all() == []


def test_upsert_key_updates_existing_rows(fake_store, fake_settings, today) -> None:
    first = FrameTabularSource(pd.DataFrame({"ilitName": ["A ILIT"], "premiumAmount": ["100"]}))
    second = FrameTabularSource(pd.DataFrame({"ilitName": ["A ILIT"], "premiumAmount": ["250"]}))

    ingest(first, fake_store, fake_settings, today=today, upsert_key=("ilit_name",))
    report = ingest(second, fake_store, fake_settings, today=today, upsert_key=("ilit_name",))

    assert report.rows_inserted == 1
    assert [record.premium_amount for record in fake_store.read_all()] == [250.0]


def test_reimport_keeps_letter_override_and_explicit_dates(fake_store, fake_settings, today) -> None:
    frame = pd.DataFrame(
        {
            "ilitName": ["A ILIT", "B ILIT"],
            "policyNumber": ["P1", "P2"],
            "premiumDueDate": ["03/15/2026", "04/15/2026"],
            "premiumAmount": ["100", "200"],
        }
    )
    ingest(FrameTabularSource(frame), fake_store, fake_settings, today=today, upsert_key=("policy_number",))
    first = {record.policy_number: record for record in fake_store.read_all()}
    sent = mark_letter_sent(first["P1"], date(2026, 2, 10), lead_days=30, today=today)
    paid = edit_policy(
        first["P2"], {"status": "Paid", "crummey_letter_send_date": "2026-03-01"}, lead_days=30, today=today
    )
    fake_store.update_many([patch_for(first["P1"], sent), patch_for(first["P2"], paid)])

    frame.loc[0, "premiumAmount"] = "150"
    report = ingest(FrameTabularSource(frame), fake_store, fake_settings, today=today, upsert_key=("policy_number",))

    after = {record.policy_number: record for record in fake_store.read_all()}
    assert report.rows_inserted == 2
    assert len(after) == 2
    assert after["P1"].id == first["P1"].id
    assert after["P1"].premium_amount == 150.0
    assert after["P1"].crummey_letter_sent_date == date(2026, 2, 10)
    assert after["P1"].crummey_sent is True
    assert after["P1"].status == StatusValue.derived(PolicyStatus.LETTER_SENT)
    assert after["P2"].status == StatusValue.override(PolicyStatus.PAID)
    assert after["P2"].crummey_letter_send_date == date(2026, 3, 1)
    assert after["P2"].send_date_source is DateSource.EXPLICIT


def test_merge_takes_row_values_and_rederives_from_new_due_date() -> None:
    stored = derive_dates(
        PolicyRecord(ilit_name="A ILIT", id="a", notes="call first", premium_due_date=date(2026, 3, 15)), 30
    )
    incoming = derive_dates(PolicyRecord(ilit_name="A ILIT", premium_due_date=date(2026, 4, 15)), 30)

    merged = merge_reimported(stored, incoming, 30)

    assert merged.id == "a"
    assert merged.notes == "call first"
    assert merged.premium_due_date == date(2026, 4, 15)
    assert merged.gift_date == date(2026, 4, 14)
    assert merged.crummey_letter_send_date == date(2026, 3, 16)
    assert merged.send_date_source is DateSource.DERIVED


def test_invalid_upsert_key_is_rejected_before_reading(fake_store, fake_settings, today) -> None:
    with pytest.raises(ValueError, match="upsert key"):
        ingest(ListSource(["ilitName"], [["A ILIT"]]), fake_store, fake_settings, today=today, upsert_key=("id",))
    assert fake_settings.reads == 0


def test_custom_aliases(fake_store, fake_settings, today) -> None:
    from ilit_tracker.core.common.columns import build_alias_table

    source = ListSource(["Trust Title"], [["Aliased ILIT"]])
    report = ingest(
        source,
        fake_store,
        fake_settings,
        today=today,
        aliases=build_alias_table({"ilit_name": ["trust title"]}),
    )
    assert report.rows_inserted == 1
