from __future__ import annotations

from datetime import date
from pathlib import Path

from openpyxl import load_workbook

from ilit_tracker.core.common.columns import resolve_columns
from ilit_tracker.core.common.types import DateSource, PolicyRecord, PolicyStatus, StatusValue
from ilit_tracker.core.derivation import derive_dates
from ilit_tracker.core.ingestion import ingest
from ilit_tracker.core.reconciliation import change_lead_time
from ilit_tracker.core.status import apply_status
from ilit_tracker.infra.exporter import EXPORT_HEADERS, TEMPLATE_HEADERS, export_policies_xlsx, write_import_template
from ilit_tracker.infra.local_database import LocalDatabase
from ilit_tracker.infra.policy_store import SQLitePolicyStore
from ilit_tracker.infra.settings_store import SQLiteSettingsStore
from ilit_tracker.infra.sources import ExcelTabularSource


def test_template_headers_resolve_to_fields(tmp_path: Path) -> None:
    path = write_import_template(tmp_path / "out" / "template.xlsx")
    workbook = load_workbook(path)
    assert workbook.sheetnames == ["ILIT Template", "Instructions"]
    sheet = workbook["ILIT Template"]
    assert [cell.value for cell in sheet[1]] == list(TEMPLATE_HEADERS)
    assert sheet["A2"].value == "Smith Family ILIT"

    cmap = resolve_columns(ExcelTabularSource(path).headers())
    assert "ilit_name" in cmap.mapped
    assert "premium_due_date" in cmap.mapped
    assert cmap.unknown_headers == ()


def test_export_writes_display_headers_and_formats(tmp_path: Path, policy_store: SQLitePolicyStore) -> None:
    policy_store.insert_many(
        [derive_dates(PolicyRecord(ilit_name="Smith ILIT", premium_due_date=date(2026, 3, 15), premium_amount=2500.0), 30)]
    )
    path = export_policies_xlsx(policy_store.load_frame(), tmp_path / "export.xlsx")

    sheet = load_workbook(path)["Policies"]
    headers = [cell.value for cell in sheet[1]]
    assert headers[:2] == [EXPORT_HEADERS["id"], EXPORT_HEADERS["ilit_name"]]
    due_column = headers.index("Premium Due Date") + 1
    due_cell = sheet.cell(row=2, column=due_column)
    assert due_cell.value.date() == date(2026, 3, 15)
    assert due_cell.number_format == "mm/dd/yyyy"
    assert sorted(item.name for item in tmp_path.glob("*.xlsx")) == ["export.xlsx"]


def test_export_round_trips_through_import_aliases(tmp_path: Path, policy_store: SQLitePolicyStore) -> None:
    policy_store.insert_many([PolicyRecord(ilit_name="Round Trip ILIT")])
    path = export_policies_xlsx(policy_store.load_frame(), tmp_path / "export.xlsx")
    cmap = resolve_columns(ExcelTabularSource(path, sheet_name="Policies").headers())
    assert cmap.get("ilit_name").header == "ILIT Name"
    assert cmap.get("crummey_letter_send_date").header == "Crummey Letter Send Date"
    assert cmap.get("status_overridden").header == "Status Overridden"
    assert cmap.get("send_date_source").header == "Send Date Source"
    assert cmap.unknown_headers == ("ID", "Created At", "Updated At")


def test_exported_workbook_reimports_status_and_provenance(tmp_path: Path, policy_store: SQLitePolicyStore) -> None:
    exported_on = date(2025, 12, 1)
    derived = apply_status(
        derive_dates(PolicyRecord(ilit_name="Derived ILIT", premium_due_date=date(2026, 3, 15)), 30), exported_on, 30
    )
    pinned = derive_dates(
        PolicyRecord(
            ilit_name="Pinned ILIT",
            premium_due_date=date(2026, 3, 15),
            crummey_letter_send_date=date(2026, 1, 5),
            send_date_source=DateSource.EXPLICIT,
            status=StatusValue.override(PolicyStatus.PAID),
        ),
        30,
    )
    policy_store.insert_many([derived, pinned])
    path = export_policies_xlsx(policy_store.load_frame(), tmp_path / "export.xlsx")

    fresh = LocalDatabase(tmp_path / "fresh.db")
    fresh.initialize()
    store, settings = SQLitePolicyStore(fresh), SQLiteSettingsStore(fresh)
    later = date(2026, 3, 20)
    ingest(ExcelTabularSource(path), store, settings, today=later)

    imported = {record.ilit_name: record for record in store.read_all()}
    assert imported["Derived ILIT"].status == StatusValue.derived(PolicyStatus.OVERDUE)
    assert imported["Derived ILIT"].gift_date_source is DateSource.DERIVED
    assert imported["Derived ILIT"].send_date_source is DateSource.DERIVED
    assert imported["Pinned ILIT"].status == StatusValue.override(PolicyStatus.PAID)
    assert imported["Pinned ILIT"].crummey_letter_send_date == date(2026, 1, 5)
    assert imported["Pinned ILIT"].send_date_source is DateSource.EXPLICIT

    change_lead_time(45, settings, store, today=later)

    after = {record.ilit_name: record for record in store.read_all()}
    assert after["Derived ILIT"].crummey_letter_send_date == date(2026, 1, 29)
    assert after["Derived ILIT"].status == StatusValue.derived(PolicyStatus.OVERDUE)
    assert after["Pinned ILIT"].crummey_letter_send_date == date(2026, 1, 5)
