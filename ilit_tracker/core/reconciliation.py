"""Reconciliation: re-derive send dates after the reminder lead time changes.

Send dates carry their provenance. A ``derived`` date (or a legacy date with
no recorded provenance) is overwritten with ``premium_due_date - lead_days``;
an ``explicit`` date typed by a user is kept unless ``force`` is set. Derived
statuses are re-classified against the new dates, overrides are never touched.

Each record is written on its own, so one failed write is reported against
that record while the rest of the batch proceeds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Iterator, List, Tuple

from ilit_tracker.core.common.types import DateSource, PolicyRecord, Settings, validate_lead_days
from ilit_tracker.core.derivation import send_date_for
from ilit_tracker.core.ports import PolicyFilter, PolicyPatch, PolicyStore, SettingsStore
from ilit_tracker.core.status import DEFAULT_DUE_SOON_DAYS, apply_status

__all__ = [
    "OUTCOME_FAILED",
    "OUTCOME_PRESERVED",
    "OUTCOME_UNCHANGED",
    "OUTCOME_UPDATED",
    "RecalculationPlan",
    "ReconciliationReport",
    "RecordResult",
    "change_lead_time",
    "plan_recalculation",
    "recalculate",
]

OUTCOME_UPDATED = "updated"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_PRESERVED = "preserved"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class RecalculationPlan:
    """What reconciliation intends to do with one record."""

    record_id: str | None
    outcome: str
    previous_send_date: date | None
    new_send_date: date | None
    patch: PolicyPatch | None = None
    error: str | None = None


@dataclass(frozen=True)
class RecordResult:
    """Per-record outcome of a reconciliation run."""

    record_id: str | None
    outcome: str
    previous_send_date: date | None = None
    new_send_date: date | None = None
    error: str | None = None


@dataclass(frozen=True)
class ReconciliationReport:
    """Aggregate outcome; ``updated_count`` counts successful writes."""

    updated_count: int
    results: Tuple[RecordResult, ...] = field(default=())

    @property
    def failures(self) -> Tuple[RecordResult, ...]:
        return tuple(result for result in self.results if result.outcome == OUTCOME_FAILED)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


def _plan_one(
    record: PolicyRecord,
    lead_days: int,
    today: date,
    force: bool,
    due_soon_days: int,
) -> RecalculationPlan:
    previous = record.crummey_letter_send_date
    keep_explicit = record.send_date_source is DateSource.EXPLICIT and previous is not None and not force
    if keep_explicit:
        updated = record
    else:
        updated = record.replace(
            crummey_letter_send_date=send_date_for(record.premium_due_date, lead_days),
            send_date_source=DateSource.DERIVED,
        )
    updated = apply_status(updated, today, lead_days, due_soon_days=due_soon_days)

    changes: dict[str, object] = {}
    if updated.crummey_letter_send_date != previous or updated.send_date_source != record.send_date_source:
        changes["crummey_letter_send_date"] = updated.crummey_letter_send_date
        changes["send_date_source"] = updated.send_date_source
    if updated.status != record.status:
        changes["status"] = updated.status

    if changes and record.id is None:
        return RecalculationPlan(
            record_id=None,
            outcome=OUTCOME_FAILED,
            previous_send_date=previous,
            new_send_date=previous,
            error="record has no id and cannot be written",
        )
    if keep_explicit:
        outcome = OUTCOME_PRESERVED
    elif changes:
        outcome = OUTCOME_UPDATED
    else:
        outcome = OUTCOME_UNCHANGED
    return RecalculationPlan(
        record_id=record.id,
        outcome=outcome,
        previous_send_date=previous,
        new_send_date=updated.crummey_letter_send_date,
        patch=PolicyPatch(record_id=record.id, changes=changes) if changes else None,
    )


def plan_recalculation(
    records: Iterable[PolicyRecord],
    new_lead_days: int,
    today: date,
    *,
    force: bool = False,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> Iterator[RecalculationPlan]:
    """Lazily plan the recalculation of ``records``; no persistence.

    Records without a premium due date are skipped.

    Example::

        >>> from ilit_tracker.core.common.types import PolicyRecord, DateSource
        >>> record = PolicyRecord(
        ...     ilit_name="Smith ILIT", id="a1", premium_due_date=date(2026, 3, 15),
        ...     crummey_letter_send_date=date(2026, 2, 13), send_date_source=DateSource.DERIVED,
        ... )
        >>> plan = next(plan_recalculation([record], 45, date(2025, 12, 1)))
        >>> plan.outcome, plan.new_send_date
        ('updated', datetime.date(2026, 1, 29))
    """

    lead_days = validate_lead_days(new_lead_days)
    for record in records:
        if record.premium_due_date is None:
            continue
        yield _plan_one(record, lead_days, today, force, due_soon_days)


def recalculate(
    records: Iterable[PolicyRecord],
    new_lead_days: int,
    store: PolicyStore,
    *,
    today: date,
    force: bool = False,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> ReconciliationReport:
    """Plan and persist the recalculation one record at a time.

    A failure writing one record, whether reported by the store or raised by
    it, is recorded against that record only.

    Returns:
        ReconciliationReport: successful write count plus a result per record.
    """

    results: List[RecordResult] = []
    updated_count = 0
    for plan in plan_recalculation(records, new_lead_days, today, force=force, due_soon_days=due_soon_days):
        if plan.patch is None:
            results.append(
                RecordResult(
                    record_id=plan.record_id,
                    outcome=plan.outcome,
                    previous_send_date=plan.previous_send_date,
                    new_send_date=plan.new_send_date,
                    error=plan.error,
                )
            )
            continue

        error: str | None = None
        try:
            outcome = store.update_many([plan.patch]).get(plan.patch.record_id)
        except Exception as exc:  # isolate the failure to this record
            error = f"{type(exc).__name__}: {exc}"
        else:
            if outcome is None:
                error = "store returned no result for this record"
            elif not outcome.ok:
                error = outcome.error or "update failed"

        if error is None:
            updated_count += 1
            results.append(
                RecordResult(
                    record_id=plan.record_id,
                    outcome=plan.outcome,
                    previous_send_date=plan.previous_send_date,
                    new_send_date=plan.new_send_date,
                )
            )
        else:
            results.append(
                RecordResult(
                    record_id=plan.record_id,
                    outcome=OUTCOME_FAILED,
                    previous_send_date=plan.previous_send_date,
                    new_send_date=plan.previous_send_date,
                    error=error,
                )
            )
    return ReconciliationReport(updated_count=updated_count, results=tuple(results))


def change_lead_time(
    new_lead_days: int,
    settings_store: SettingsStore,
    store: PolicyStore,
    *,
    today: date,
    force: bool = False,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> ReconciliationReport:
    """Validate and persist a new lead time, then reconcile every dated record.

    Raises:
        InvalidLeadDaysError: before anything is written.
    """

    settings = Settings(reminder_lead_days=new_lead_days)
    settings_store.set(settings)
    records = store.read_all(PolicyFilter(has_premium_due_date=True))
    return recalculate(
        records,
        settings.reminder_lead_days,
        store,
        today=today,
        force=force,
        due_soon_days=due_soon_days,
    )
