"""Headless command line interface for the ILIT policy tracker.

This module owns all I/O: it opens the database and the source files, reads
the wall clock (unless ``--today`` is given) and hands plain values to the
core.

Example::

    >>> from ilit_tracker.infra import cli
    >>> cli.main(["--db", "ilit.db", "import", "policies.xlsx"])  # doctest: +SKIP
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterable, Sequence

import pandas as pd

from ilit_tracker import __version__
from ilit_tracker.core.common.errors import DomainError, RecordNotFoundError
from ilit_tracker.core.common.types import PolicyRecord
from ilit_tracker.core.config_loader import EngineConfig, get_engine_config
from ilit_tracker.core.ingestion import ImportReport, ingest
from ilit_tracker.core.operations import (
    clear_letter_sent,
    create_policy,
    edit_policy,
    mark_letter_sent,
    patch_for,
)
from ilit_tracker.core.ports import PolicyFilter
from ilit_tracker.core.reconciliation import ReconciliationReport, change_lead_time, recalculate
from ilit_tracker.core.views import (
    client_summaries,
    dashboard_stats,
    due_reminders,
    letter_schedule,
    upcoming_actions,
)
from ilit_tracker.infra.errors import InfraError
from ilit_tracker.infra.exporter import export_policies_xlsx, write_import_template
from ilit_tracker.infra.local_database import LocalDatabase
from ilit_tracker.infra.logging import configure_logging, install_exception_hook
from ilit_tracker.infra.logging_ext import log_step
from ilit_tracker.infra.policy_store import SQLitePolicyStore
from ilit_tracker.infra.settings_store import SQLiteSettingsStore
from ilit_tracker.infra.sources import open_source

APP_NAME = "ilit-tracker"
_DEFAULT_DB_PATH = Path("ilit_tracker.db")
_DEFAULT_CONFIG_PATH = Path("config/engine.json")
_DEFAULT_LOGGING_CONFIG = Path("config/logging.yaml")
_LIST_COLUMNS = (
    "id",
    "ilit_name",
    "insured_name",
    "premium_due_date",
    "premium_amount",
    "gift_date",
    "crummey_letter_send_date",
    "crummey_letter_sent_date",
    "status",
)

logger = logging.getLogger(__name__)


class _Context:
    """Collaborators shared by every sub-command of one invocation."""

    def __init__(self, args: argparse.Namespace) -> None:
        self.args = args
        self.config: EngineConfig = get_engine_config(args.config)
        self.today: date = args.today or date.today()
        self.db = LocalDatabase(Path(args.db))
        self.db.initialize()
        self.policies = SQLitePolicyStore(self.db)
        self.settings = SQLiteSettingsStore(
            self.db, default_lead_days=self.config.default_reminder_lead_days
        )

    @property
    def lead_days(self) -> int:
        return self.settings.get().reminder_lead_days

    def require(self, record_id: str) -> PolicyRecord:
        record = self.policies.get(record_id)
        if record is None:
            raise RecordNotFoundError(func="cli", column="id", value=record_id)
        return record


def _parse_assignments(pairs: Iterable[str]) -> Dict[str, str]:
    """``["ilit_name=Smith ILIT", ...]`` → ``{"ilit_name": "Smith ILIT"}``."""

    fields: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Expected FIELD=VALUE, got '{pair}'")
        fields[name.strip()] = value
    return fields


def _records_frame(records: Sequence[PolicyRecord], columns: Sequence[str] = _LIST_COLUMNS) -> pd.DataFrame:
    frame = pd.DataFrame([record.to_row() for record in records], columns=list(PolicyRecord(ilit_name="").to_row()))
    return frame.loc[:, list(columns)]


def _print_frame(frame: pd.DataFrame, *, fmt: str = "table") -> None:
    if frame.empty:
        print("(no rows)")
        return
    if fmt == "csv":
        print(frame.to_csv(index=False), end="")
    else:
        print(frame.to_string(index=False))


def _print_import_report(report: ImportReport) -> None:
    print(f"rows read:     {report.rows_read}")
    print(f"rows skipped:  {report.rows_skipped}")
    print(f"rows inserted: {report.rows_inserted}")
    if report.blank_rows:
        print(f"blank rows:    {report.blank_rows}")
    print(f"lead days:     {report.lead_days}")
    for skipped in report.skipped_rows:
        print(f"  skipped row {skipped.row_number}: {skipped.reason}")
    if report.unknown_headers:
        print(f"unrecognized columns: {', '.join(report.unknown_headers)}")


def _print_reconciliation(report: ReconciliationReport) -> None:
    print(f"updated: {report.updated_count}")
    for result in report.failures:
        print(f"  failed {result.record_id}: {result.error}", file=sys.stderr)


def _run_import(ctx: _Context) -> int:
    source = open_source(ctx.args.path, sheet_name=ctx.args.sheet)
    upsert_key = tuple(ctx.args.upsert_key.split(",")) if ctx.args.upsert_key else None
    with log_step(logger, f"import {ctx.args.path}"):
        report = ingest(
            source,
            ctx.policies,
            ctx.settings,
            today=ctx.today,
            aliases=ctx.config.column_aliases,
            upsert_key=upsert_key,
            due_soon_days=ctx.config.due_soon_days,
        )
    logger.info(
        "Import finished: read=%d skipped=%d inserted=%d", report.rows_read, report.rows_skipped, report.rows_inserted
    )
    _print_import_report(report)
    return 0


def _run_list(ctx: _Context) -> int:
    records = ctx.policies.read_all(PolicyFilter(ilit_name=ctx.args.ilit) if ctx.args.ilit else None)
    _print_frame(_records_frame(records), fmt=ctx.args.format)
    return 0


def _run_settings(ctx: _Context) -> int:
    if ctx.args.settings_command == "show":
        print(f"reminder_lead_days: {ctx.lead_days}")
        return 0
    with log_step(logger, f"change lead time to {ctx.args.days}"):
        report = change_lead_time(
            ctx.args.days,
            ctx.settings,
            ctx.policies,
            today=ctx.today,
            force=ctx.args.force,
            due_soon_days=ctx.config.due_soon_days,
        )
    print(f"reminder_lead_days: {ctx.args.days}")
    _print_reconciliation(report)
    return 0 if report.failed_count == 0 else 1


def _run_recalculate(ctx: _Context) -> int:
    records = ctx.policies.read_all(PolicyFilter(has_premium_due_date=True))
    with log_step(logger, "recalculate send dates"):
        report = recalculate(
            records,
            ctx.lead_days,
            ctx.policies,
            today=ctx.today,
            force=ctx.args.force,
            due_soon_days=ctx.config.due_soon_days,
        )
    _print_reconciliation(report)
    return 0 if report.failed_count == 0 else 1


def _save(ctx: _Context, before: PolicyRecord, after: PolicyRecord) -> int:
    patch = patch_for(before, after)
    if patch is None:
        print("no changes")
        return 0
    outcome = ctx.policies.update_many([patch]).get(patch.record_id)
    if outcome is None or not outcome.ok:
        print(f"update failed: {outcome.error if outcome else 'no result'}", file=sys.stderr)
        return 1
    print(f"{after.id}: {after.status.status.value}")
    return 0


def _run_add(ctx: _Context) -> int:
    record = create_policy(
        _parse_assignments(ctx.args.fields),
        ctx.policies,
        lead_days=ctx.lead_days,
        today=ctx.today,
        due_soon_days=ctx.config.due_soon_days,
    )
    print(record.id)
    return 0


def _run_edit(ctx: _Context) -> int:
    before = ctx.require(ctx.args.id)
    fields: Dict[str, object] = dict(_parse_assignments(ctx.args.fields))
    after = edit_policy(
        before, fields, lead_days=ctx.lead_days, today=ctx.today, due_soon_days=ctx.config.due_soon_days
    )
    return _save(ctx, before, after)


def _run_mark_sent(ctx: _Context) -> int:
    before = ctx.require(ctx.args.id)
    if ctx.args.clear:
        after = clear_letter_sent(
            before, lead_days=ctx.lead_days, today=ctx.today, due_soon_days=ctx.config.due_soon_days
        )
    else:
        after = mark_letter_sent(
            before,
            ctx.args.on or ctx.today,
            lead_days=ctx.lead_days,
            today=ctx.today,
            due_soon_days=ctx.config.due_soon_days,
        )
    return _save(ctx, before, after)


def _run_delete(ctx: _Context) -> int:
    if not ctx.policies.delete(ctx.args.id):
        raise RecordNotFoundError(func="cli", column="id", value=ctx.args.id)
    print(f"deleted {ctx.args.id}")
    return 0


def _run_reminders(ctx: _Context) -> int:
    records = ctx.policies.read_all()
    print("Letters due:")
    _print_frame(_records_frame(due_reminders(records, ctx.today)))
    if ctx.args.upcoming:
        actions = upcoming_actions(
            records,
            ctx.today,
            letter_window_days=ctx.config.letter_window_days,
            premium_window_days=ctx.config.premium_window_days,
        )
        frame = pd.DataFrame(
            [
                {
                    "action": item.kind,
                    "date": item.action_date.isoformat(),
                    "in_days": item.days_until_action,
                    "ilit_name": item.record.ilit_name,
                    "id": item.record.id,
                }
                for item in actions
            ]
        )
        print("\nUpcoming:")
        _print_frame(frame)
    return 0


def _run_letters(ctx: _Context) -> int:
    items = letter_schedule(ctx.policies.read_all(), ctx.today)
    frame = pd.DataFrame(
        [
            {
                "state": item.state,
                "send_date": item.record.crummey_letter_send_date.isoformat(),  # type: ignore[union-attr]
                "days_until_send": item.days_until_send,
                "ilit_name": item.record.ilit_name,
                "id": item.record.id,
            }
            for item in items
        ]
    )
    _print_frame(frame)
    return 0


def _run_clients(ctx: _Context) -> int:
    summaries = client_summaries(
        ctx.policies.read_all(), ctx.today, premium_window_days=ctx.config.premium_window_days
    )
    frame = pd.DataFrame(
        [
            {
                "insured_name": summary.insured_name,
                "policies": summary.policy_count,
                "total_premium": summary.total_premium,
                "upcoming_premiums": len(summary.upcoming_premiums),
                "pending_letters": len(summary.pending_letters),
            }
            for summary in summaries
        ]
    )
    _print_frame(frame)
    return 0


def _run_dashboard(ctx: _Context) -> int:
    stats = dashboard_stats(ctx.policies.read_all(), ctx.today)
    for name, value in vars(stats).items():
        print(f"{name}: {value}")
    return 0


def _run_export(ctx: _Context) -> int:
    path = export_policies_xlsx(ctx.policies.load_frame(), ctx.args.path)
    print(f"exported to {path}")
    return 0


def _run_template(ctx: _Context) -> int:
    path = write_import_template(ctx.args.path)
    print(f"template written to {path}")
    return 0


_RUNNERS: Dict[str, Callable[[_Context], int]] = {
    "import": _run_import,
    "list": _run_list,
    "settings": _run_settings,
    "recalculate": _run_recalculate,
    "add": _run_add,
    "edit": _run_edit,
    "mark-sent": _run_mark_sent,
    "delete": _run_delete,
    "reminders": _run_reminders,
    "letters": _run_letters,
    "clients": _run_clients,
    "dashboard": _run_dashboard,
    "export": _run_export,
    "template": _run_template,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME, description="ILIT policy and Crummey letter tracker")
    parser.add_argument("--db", default=str(_DEFAULT_DB_PATH), help="SQLite database file")
    parser.add_argument("--config", default=str(_DEFAULT_CONFIG_PATH), help="engine config (JSON)")
    parser.add_argument("--logging-config", default=str(_DEFAULT_LOGGING_CONFIG), help="logging config (YAML)")
    parser.add_argument("--log-dir", default=None, help="directory for log files and error reports")
    parser.add_argument("--today", type=date.fromisoformat, default=None, help="reference date (YYYY-MM-DD)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    import_cmd = sub.add_parser("import", help="import policies from .xlsx or .csv")
    import_cmd.add_argument("path")
    import_cmd.add_argument("--sheet", default=None, help="worksheet name (default: first)")
    import_cmd.add_argument(
        "--upsert-key", default=None, help="comma separated fields; matching rows are updated instead of inserted"
    )

    list_cmd = sub.add_parser("list", help="list stored policies")
    list_cmd.add_argument("--ilit", default=None, help="only this ILIT name")
    list_cmd.add_argument("--format", choices=("table", "csv"), default="table")

    settings_cmd = sub.add_parser("settings", help="show or change the reminder lead time")
    settings_sub = settings_cmd.add_subparsers(dest="settings_command", required=True)
    settings_sub.add_parser("show")
    set_cmd = settings_sub.add_parser("set", help="change the lead time and recalculate send dates")
    set_cmd.add_argument("days", type=int)
    set_cmd.add_argument("--force", action="store_true", help="also overwrite user-entered send dates")

    recalc_cmd = sub.add_parser("recalculate", help="re-derive send dates with the current lead time")
    recalc_cmd.add_argument("--force", action="store_true", help="also overwrite user-entered send dates")

    add_cmd = sub.add_parser("add", help="add a policy: FIELD=VALUE ...")
    add_cmd.add_argument("fields", nargs="+")

    edit_cmd = sub.add_parser("edit", help="edit a policy: ID FIELD=VALUE ...")
    edit_cmd.add_argument("id")
    edit_cmd.add_argument("fields", nargs="+")

    mark_cmd = sub.add_parser("mark-sent", help="record that the Crummey letter was sent")
    mark_cmd.add_argument("id")
    mark_cmd.add_argument("--on", type=date.fromisoformat, default=None, help="sent date (default: today)")
    mark_cmd.add_argument("--clear", action="store_true", help="remove the sent date")

    delete_cmd = sub.add_parser("delete", help="delete a policy")
    delete_cmd.add_argument("id")

    reminders_cmd = sub.add_parser("reminders", help="letters that should go out now")
    reminders_cmd.add_argument("--upcoming", action="store_true", help="also list upcoming letters and premiums")

    sub.add_parser("letters", help="Crummey letter schedule")
    sub.add_parser("clients", help="policies grouped by insured")
    sub.add_parser("dashboard", help="headline counts")

    export_cmd = sub.add_parser("export", help="export all policies to .xlsx")
    export_cmd.add_argument("path")

    template_cmd = sub.add_parser("template", help="write a blank import template")
    template_cmd.add_argument("path")
    return parser


def main(argv: Sequence[str] | None = None, *, install_hooks: bool = False) -> int:
    """CLI entry point; 0 is success, 1 partial failure, 2 a reported error."""

    parser = _build_parser()
    args = parser.parse_args(argv)
    context = configure_logging(
        app_name=APP_NAME,
        app_version=__version__,
        logger_name="ilit_tracker",
        config_path=args.logging_config,
        log_dir=args.log_dir,
    ).for_invocation(sys.argv[1:] if argv is None else argv, args.db)
    if install_hooks:
        install_exception_hook(logging.getLogger("ilit_tracker"), context)
    try:
        ctx = _Context(args)
        return _RUNNERS[args.command](ctx)
    except (DomainError, InfraError, ValueError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"❌ {exc}", file=sys.stderr)
        return 2


def run() -> int:
    """Console-script entry with the crash reporter installed."""

    return main(install_hooks=True)


if __name__ == "__main__":
    raise SystemExit(run())
