"""Policy lifecycle operations: manual entry, field edits and letter tracking.

Apart from :func:`create_policy`, these are pure record transformations; use
:func:`patch_for` to turn a before/after pair into a store patch.
"""

from __future__ import annotations

import dataclasses
from datetime import date
from typing import Any, Dict, Mapping

from ilit_tracker.core.common.errors import MissingRequiredFieldError
from ilit_tracker.core.common.types import DateSource, PolicyRecord, StatusValue
from ilit_tracker.core.derivation import derive_dates, rederive_after_edit
from ilit_tracker.core.normalizer import FIELD_TYPES, build_record, coerce_fields
from ilit_tracker.core.ports import PolicyPatch, PolicyStore
from ilit_tracker.core.status import DEFAULT_DUE_SOON_DAYS, apply_status

__all__ = [
    "clear_letter_sent",
    "create_policy",
    "edit_policy",
    "mark_letter_sent",
    "patch_for",
]

_DATE_SOURCE_FIELDS = {
    "gift_date": "gift_date_source",
    "crummey_letter_send_date": "send_date_source",
}
_BOOKKEEPING_FIELDS = frozenset({"id", "created_at", "updated_at"})


def create_policy(
    fields: Mapping[str, object],
    store: PolicyStore,
    *,
    lead_days: int,
    today: date,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> PolicyRecord:
    """Validate, derive, classify and insert a manually entered policy.

    Returns:
        PolicyRecord: the stored record, with the id the store assigned.

    Raises:
        MissingRequiredFieldError: no ``ilit_name``.
    """

    record = build_record(fields, lead_days)
    record = apply_status(record, today, lead_days, due_soon_days=due_soon_days)
    return store.create(record)


def edit_policy(
    record: PolicyRecord,
    changes: Mapping[str, object],
    *,
    lead_days: int,
    today: date,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> PolicyRecord:
    """Apply user edits to ``record``.

    Edited ``gift_date``/``crummey_letter_send_date`` become explicit; clearing
    one hands it back to derivation. ``status`` sets an override, ``None``
    clears it. A changed ``premium_due_date`` moves the derived dates.

    Raises:
        MissingRequiredFieldError: the edit clears ``ilit_name``.
        ValueError: an unknown field name.
    """

    updates: Dict[str, Any] = {}
    cleared = {name for name, value in changes.items() if value is None or value == ""}
    coerced = coerce_fields({name: value for name, value in changes.items() if name not in cleared})

    for name in changes:
        if name not in FIELD_TYPES:
            raise ValueError(f"Unknown policy field: '{name}'")
        if name == "status":
            status = coerced.get("status")
            if status is None and name not in cleared:
                raise ValueError(f"Unknown policy status: {changes[name]!r}")
            updates["status"] = StatusValue() if status is None else StatusValue.override(status)
            continue
        updates[name] = coerced.get(name)
        if name in _DATE_SOURCE_FIELDS:
            updates[_DATE_SOURCE_FIELDS[name]] = None if updates[name] is None else DateSource.EXPLICIT

    if "ilit_name" in changes and not updates.get("ilit_name"):
        raise MissingRequiredFieldError(func="edit_policy", column="ilit_name", value=changes.get("ilit_name"))

    edited = record.replace(**updates)
    if "premium_due_date" in changes:
        edited = rederive_after_edit(edited, lead_days)
    else:
        edited = derive_dates(edited, lead_days)
    return apply_status(edited, today, lead_days, due_soon_days=due_soon_days)


def mark_letter_sent(
    record: PolicyRecord,
    sent_on: date,
    *,
    lead_days: int,
    today: date,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> PolicyRecord:
    """Record that the Crummey letter went out on ``sent_on``."""

    updated = record.replace(crummey_letter_sent_date=sent_on, crummey_sent=True)
    return apply_status(updated, today, lead_days, due_soon_days=due_soon_days)


def clear_letter_sent(
    record: PolicyRecord,
    *,
    lead_days: int,
    today: date,
    due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
) -> PolicyRecord:
    """Undo :func:`mark_letter_sent`."""

    updated = record.replace(crummey_letter_sent_date=None, crummey_sent=None)
    return apply_status(updated, today, lead_days, due_soon_days=due_soon_days)


def patch_for(before: PolicyRecord, after: PolicyRecord) -> PolicyPatch | None:
    """Field-level difference between two versions of a stored record."""

    if before.id is None:
        return None
    changes = {
        item.name: getattr(after, item.name)
        for item in dataclasses.fields(PolicyRecord)
        if item.name not in _BOOKKEEPING_FIELDS and getattr(after, item.name) != getattr(before, item.name)
    }
    if not changes:
        return None
    return PolicyPatch(record_id=before.id, changes=changes)
