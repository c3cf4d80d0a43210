"""In-memory record store mirrored to the local SQLite cache.

Every local mutation advances a revision clock and stamps the ids it touched.
A refresh captures the clock before it starts fetching; when the remote
snapshot arrives, ids touched after that point keep their local state so a
slow refresh cannot undo a newer optimistic edit.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Optional, TypeVar

from .database import SQLiteRepository
from .models import Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RecordStore:
    """Ordered collection of transactions; the single source for the views."""

    def __init__(self, repository: Optional[SQLiteRepository] = None) -> None:
        self._repository = repository
        self._records: list[Transaction] = []
        self._clock = 0
        self._touched: dict[str, int] = {}
        self._pending: set[str] = set()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @property
    def revision(self) -> int:
        return self._clock

    def snapshot(self) -> list[Transaction]:
        with self._lock:
            return list(self._records)

    def get(self, record_id: str) -> Optional[Transaction]:
        with self._lock:
            for tx in self._records:
                if tx.id == record_id:
                    return tx
        return None

    def index_of(self, record_id: str) -> Optional[int]:
        with self._lock:
            for index, tx in enumerate(self._records):
                if tx.id == record_id:
                    return index
        return None

    def is_pending(self, record_id: str) -> bool:
        return record_id in self._pending

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Local mutations
    # ------------------------------------------------------------------
    def load_cached(self) -> list[Transaction]:
        """Seed memory from the durable cache (startup path)."""

        if self._repository is None:
            return self.snapshot()
        cached = self._repository.load_records()
        with self._lock:
            self._records = cached
        logger.info("Loaded %d cached records", len(cached))
        return self.snapshot()

    def commit(self, records: Iterable[Transaction], touched: Iterable[str], pending: bool = False) -> None:
        """Install the result of a local mutation and persist it."""

        with self._lock:
            self._clock += 1
            self._records = list(records)
            for record_id in touched:
                self._touched[record_id] = self._clock
                if pending:
                    self._pending.add(record_id)
            self._persist()

    def apply(
        self,
        change: Callable[[list[Transaction]], tuple[list[Transaction], Iterable[str], T]],
        pending: bool = False,
    ) -> T:
        """Run ``change`` on the current records and commit its result atomically.

        ``change`` returns the next record list, the ids it touched and a
        value handed back to the caller.  Holding the lock across the read and
        the commit keeps a concurrent :meth:`reconcile` from being overwritten.
        """

        with self._lock:
            records, touched, result = change(list(self._records))
            self.commit(records, touched, pending)
            return result

    def settle(self, record_id: str) -> None:
        """Drop the pending marker once the remote write has answered."""

        with self._lock:
            self._pending.discard(record_id)

    def restore(self, record_id: str, previous: Optional[Transaction], index: Optional[int]) -> None:
        """Put back ``previous`` (or remove ``record_id`` when it did not exist)."""

        with self._lock:
            records = [tx for tx in self._records if tx.id != record_id]
            if previous is not None:
                position = index if index is not None else 0
                records.insert(min(max(position, 0), len(records)), previous)
            self._pending.discard(record_id)
            self.commit(records, touched=[record_id])

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    def begin_refresh(self) -> int:
        return self._clock

    def reconcile(self, remote: Iterable[Transaction], since: int) -> list[Transaction]:
        """Replace local state with ``remote`` except for ids edited after ``since``."""

        remote = list(remote)
        with self._lock:
            local_wins = {
                record_id
                for record_id, stamp in self._touched.items()
                if stamp > since or record_id in self._pending
            }
            local_by_id = {tx.id: tx for tx in self._records}

            merged: list[Transaction] = []
            placed: set[str] = set()
            for tx in remote:
                if tx.id in local_wins:
                    local = local_by_id.get(tx.id)
                    if local is not None and tx.id not in placed:
                        merged.append(local)
                        placed.add(tx.id)
                    continue
                if tx.id in placed:
                    continue
                merged.append(tx)
                placed.add(tx.id)

            fresh_local = [
                tx for tx in self._records if tx.id in local_wins and tx.id not in placed
            ]
            merged = fresh_local + merged
            if local_wins:
                logger.info("Kept %d locally newer records during refresh", len(local_wins))

            self._records = merged
            self._touched = {
                record_id: stamp for record_id, stamp in self._touched.items() if record_id in local_wins
            }
            self._persist()
            return list(merged)

    def clear(self) -> None:
        with self._lock:
            self._records = []
            self._touched.clear()
            self._pending.clear()
            if self._repository is not None:
                self._repository.clear_records()

    def _persist(self) -> None:
        if self._repository is not None:
            self._repository.replace_records(self._records)
