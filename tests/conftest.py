"""Shared fixtures for the warehouse test-suite.

Every test gets its own SQLite cache and export directory under ``tmp_path``
and talks to a fake remote client unless it patches ``requests`` itself, so
no test ever reaches the network.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import pytest

from warehouse.config import AppConfig
from warehouse.database import SQLiteRepository
from warehouse.models import LoginResult, Transaction, TransactionKind

TEST_SCRIPT_URL = "https://script.google.com/macros/s/test-deployment/exec"


def make_tx(record_id: str, date: str = "2024-03-01", kind: TransactionKind = TransactionKind.USAGE, **fields: Any) -> Transaction:
    """Compact record factory used across the test modules."""

    fields.setdefault("material_name", f"Material {record_id}")
    return Transaction(id=record_id, date=date, kind=kind, **fields)


class FakeRemote:
    """Stand-in for :class:`warehouse.remote_client.RemoteClient`."""

    def __init__(self, records: Optional[list[Transaction]] = None) -> None:
        self.records = list(records or [])
        self.write_ok = True
        self.authorized = True
        self.upserts: list[tuple[Transaction, str]] = []
        self.deletes: list[tuple[str, Optional[TransactionKind]]] = []
        self.fetches = 0

    @property
    def is_configured(self) -> bool:
        return True

    def fetch_all(self, cancel=None) -> list[Transaction]:
        self.fetches += 1
        return list(self.records)

    def upsert(self, tx: Transaction, action: str) -> bool:
        self.upserts.append((tx, action))
        if self.write_ok:
            self.records = [item for item in self.records if item.id != tx.id] + [tx]
        return self.write_ok

    def delete(self, record_id: str, kind: Optional[TransactionKind] = None) -> bool:
        self.deletes.append((record_id, kind))
        if self.write_ok:
            self.records = [item for item in self.records if item.id != record_id]
        return self.write_ok

    def login(self, username: str, password: str) -> LoginResult:
        if self.authorized:
            return LoginResult(authorized=True)
        return LoginResult(authorized=False, message="wrong password")


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        project_root=tmp_path,
        script_url=TEST_SCRIPT_URL,
        database_file=tmp_path / "cache.db",
        export_dir=tmp_path / "exports",
        retry_delay=0.0,
    )


@pytest.fixture
def repository(config: AppConfig):
    repo = SQLiteRepository(config.database_file)
    repo.initialise_schema()
    yield repo
    repo.close()


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()
