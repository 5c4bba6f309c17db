from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence

import pytest

from ilit_tracker.core.common.types import PolicyRecord, Settings
from ilit_tracker.core.ports import PolicyFilter, PolicyPatch, UpdateResult
from ilit_tracker.infra.local_database import LocalDatabase
from ilit_tracker.infra.policy_store import SQLitePolicyStore
from ilit_tracker.infra.settings_store import SQLiteSettingsStore

TODAY = date(2025, 12, 1)


class FakePolicyStore:
    """In-memory policy store with failure injection per record id."""

    def __init__(self, records: Iterable[PolicyRecord] = ()) -> None:
        self.records: Dict[str, PolicyRecord] = {}
        self.fail_ids: set[str] = set()
        self.raise_ids: set[str] = set()
        self.fail_insert = False
        self.update_calls = 0
        for record in records:
            assert record.id is not None
            self.records[record.id] = record

    def insert_many(self, records: Iterable[PolicyRecord]) -> int:
        staged: List[PolicyRecord] = []
        for record in records:
            staged.append(record.replace(id=record.id or f"r{len(self.records) + len(staged) + 1}"))
        if self.fail_insert:
            raise RuntimeError("disk full")
        for record in staged:
            self.records[record.id] = record  # type: ignore[index]
        return len(staged)

    def create(self, record: PolicyRecord) -> PolicyRecord:
        stored = record.replace(id=f"r{len(self.records) + 1}")
        self.records[stored.id] = stored  # type: ignore[index]
        return stored

    def read_all(self, filter: PolicyFilter | None = None) -> List[PolicyRecord]:
        return [record for record in self.records.values() if filter is None or filter.matches(record)]

    def get(self, record_id: str) -> PolicyRecord | None:
        return self.records.get(record_id)

    def update_many(self, patches: Iterable[PolicyPatch]) -> Mapping[str, UpdateResult]:
        results: Dict[str, UpdateResult] = {}
        for patch in patches:
            self.update_calls += 1
            if patch.record_id in self.raise_ids:
                raise ConnectionError("store unavailable")
            if patch.record_id in self.fail_ids:
                results[patch.record_id] = UpdateResult(ok=False, error="constraint failed")
                continue
            current = self.records.get(patch.record_id)
            if current is None:
                results[patch.record_id] = UpdateResult(ok=False, error="policy not found")
                continue
            self.records[patch.record_id] = current.replace(**dict(patch.changes))
            results[patch.record_id] = UpdateResult(ok=True)
        return results

    def upsert_by_key(self, key: Sequence[str], records: Iterable[PolicyRecord]) -> int:
        count = 0
        for record in records:
            match = self.records.get(record.id) if record.id else None
            if match is None:
                match = next(
                    (
                        existing
                        for existing in self.records.values()
                        if all(getattr(existing, name) == getattr(record, name) for name in key)
                    ),
                    None,
                )
            if match is None:
                self.insert_many([record])
            else:
                self.records[match.id] = record.replace(id=match.id)  # type: ignore[index]
            count += 1
        return count

    def delete(self, record_id: str) -> bool:
        return self.records.pop(record_id, None) is not None


class FakeSettingsStore:
    def __init__(self, lead_days: int = 30) -> None:
        self.settings = Settings(reminder_lead_days=lead_days)
        self.reads = 0
        self.writes: List[Settings] = []

    def get(self) -> Settings:
        self.reads += 1
        return self.settings

    def set(self, settings: Settings) -> None:
        self.writes.append(settings)
        self.settings = settings


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def fake_store() -> FakePolicyStore:
    return FakePolicyStore()


@pytest.fixture
def fake_settings() -> FakeSettingsStore:
    return FakeSettingsStore()


@pytest.fixture
def database(tmp_path: Path) -> LocalDatabase:
    db = LocalDatabase(tmp_path / "ilit.db")
    db.initialize()
    return db


@pytest.fixture
def policy_store(database: LocalDatabase) -> SQLitePolicyStore:
    return SQLitePolicyStore(database)


@pytest.fixture
def settings_store(database: LocalDatabase) -> SQLiteSettingsStore:
    return SQLiteSettingsStore(database)


@pytest.fixture
def store_factory():
    return FakePolicyStore
