"""Optimistic writes and their reconciliation with the remote store.

:func:`apply_upsert` and :func:`apply_delete` are pure and compute the next
record list.  :class:`MutationCoordinator` installs that list in the
:class:`~warehouse.store.RecordStore` first, then calls the remote endpoint;
a confirmed write triggers a full refetch, a failed one restores the previous
local state when ``rollback_on_failure`` is enabled.
"""
from __future__ import annotations

import logging
import random
import string
import threading
import time
from dataclasses import replace
from typing import Callable, Iterable, Optional

from .config import AppConfig
from .dates import DEFAULT_TIMEZONE, is_valid_date, normalise_date, today
from .models import (
    DEFAULT_ACCOUNT_CATEGORY,
    SCRAP_MARKER,
    SYSTEM_OPERATOR,
    BatchOutcome,
    MutationOutcome,
    Transaction,
    TransactionKind,
)
from .remote_client import RemoteClient
from .store import RecordStore

logger = logging.getLogger(__name__)

UNAUTHENTICATED = "unauthenticated"
REMOTE_FAILURE = "remote_write_failed"
SCRAP_NOTE_PREFIX = f"【{SCRAP_MARKER}】"


def new_record_id(kind: TransactionKind, batch: bool = False, now_ms: Optional[int] = None) -> str:
    """Generate an id: ``TX<ms>``, ``RP<ms>`` for repairs, ``TX-B<ms><5 chars>`` for batches."""

    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    if batch:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
        return f"TX-B{stamp}{suffix}"
    prefix = "RP" if kind is TransactionKind.REPAIR else "TX"
    return f"{prefix}{stamp}"


def prepare_for_save(
    tx: Transaction,
    operator: str,
    current_date: str,
    existing: Optional[Transaction] = None,
    timezone: str = DEFAULT_TIMEZONE,
) -> Transaction:
    """Return the record exactly as it will be stored.

    Stamps id, date and operator defaults, blanks every field outside the
    record's kind and derives ``total`` for quantity-priced kinds.
    """

    record_id = tx.id.strip() or new_record_id(tx.kind)
    record_date = normalise_date(tx.date, timezone)
    if not is_valid_date(record_date):
        record_date = current_date
    if existing is not None and existing.operator:
        stamped_operator = existing.operator
    else:
        stamped_operator = operator or SYSTEM_OPERATOR

    quantity = max(0, int(tx.quantity or 0))
    unit_price = max(0.0, float(tx.unit_price or 0))
    prepared = replace(
        tx,
        id=record_id,
        date=record_date,
        operator=stamped_operator,
        material_name=tx.material_name.strip(),
        material_number=tx.material_number.strip(),
        machine_number=tx.machine_number.strip(),
        note=tx.note.strip(),
    )

    if tx.kind is TransactionKind.REPAIR:
        note = prepared.note
        if tx.is_scrapped and SCRAP_MARKER not in note:
            note = f"{SCRAP_NOTE_PREFIX}{note}".strip()
        return replace(
            prepared,
            quantity=quantity or 1,
            unit_price=unit_price,
            total=max(0.0, float(tx.total or 0)),
            note=note,
            account_category="",
            is_received=False,
            sent_date=normalise_date(tx.sent_date, timezone),
            repair_date=normalise_date(tx.repair_date, timezone),
            install_date=normalise_date(tx.install_date, timezone),
        )

    return replace(
        prepared,
        quantity=quantity,
        unit_price=unit_price,
        total=quantity * unit_price,
        account_category=tx.account_category.strip() or DEFAULT_ACCOUNT_CATEGORY,
        is_received=tx.is_received if tx.kind is TransactionKind.INBOUND else False,
        sn="",
        fault_reason="",
        is_scrapped=False,
        sent_date="",
        repair_date="",
        install_date="",
    )


def apply_upsert(
    records: Iterable[Transaction],
    tx: Transaction,
    operator: str = "",
    current_date: Optional[str] = None,
    timezone: str = DEFAULT_TIMEZONE,
) -> tuple[list[Transaction], MutationOutcome, Transaction]:
    """Insert ``tx`` or replace the record sharing its id.

    Returns the next record list, the outcome and the record as stored.
    Inserts go to the head of the list; updates keep their position.
    """

    records = list(records)
    existing = next((item for item in records if item.id == tx.id), None) if tx.id else None
    prepared = prepare_for_save(tx, operator, current_date or today(timezone), existing, timezone)

    if existing is not None:
        updated = [prepared if item.id == prepared.id else item for item in records]
        return updated, MutationOutcome(success=True, action="update", record_id=prepared.id), prepared
    return [prepared, *records], MutationOutcome(success=True, action="insert", record_id=prepared.id), prepared


def apply_delete(records: Iterable[Transaction], record_id: str) -> tuple[list[Transaction], MutationOutcome]:
    """Drop every record with ``record_id``; an unknown id is a successful no-op."""

    remaining = [item for item in records if item.id != record_id]
    return remaining, MutationOutcome(success=True, action="delete", record_id=record_id)


class MutationCoordinator:
    """Serialises every write through the store and the remote client."""

    def __init__(
        self,
        config: AppConfig,
        store: RecordStore,
        client: RemoteClient,
        current_user: Callable[[], Optional[str]],
        reconcile: Callable[[], object],
    ) -> None:
        self._config = config
        self._store = store
        self._client = client
        self._current_user = current_user
        self._reconcile = reconcile
        self._lock = threading.RLock()

    def upsert(self, tx: Transaction, reconcile: bool = True) -> MutationOutcome:
        with self._lock:
            return self._upsert(tx, reconcile)

    def _upsert(self, tx: Transaction, reconcile: bool) -> MutationOutcome:
        user = self._current_user()
        if not user:
            return MutationOutcome(success=False, action="insert", record_id=tx.id, reason=UNAUTHENTICATED)

        def change(records: list[Transaction]):
            previous, previous_index = _find(records, tx.id)
            updated, outcome, prepared = apply_upsert(
                records,
                tx,
                operator=user,
                current_date=today(self._config.timezone),
                timezone=self._config.timezone,
            )
            return updated, [prepared.id], (outcome, prepared, previous, previous_index)

        outcome, prepared, previous, previous_index = self._store.apply(change, pending=True)

        ok = self._client.upsert(prepared, outcome.action)
        self._store.settle(prepared.id)
        if ok:
            logger.info("%s %s confirmed", outcome.action.capitalize(), prepared.id)
            if reconcile:
                self._reconcile()
            return outcome
        return self._failed(outcome, previous, previous_index)

    def delete(self, record_id: str) -> MutationOutcome:
        with self._lock:
            return self._delete(record_id)

    def _delete(self, record_id: str) -> MutationOutcome:
        if not self._current_user():
            return MutationOutcome(success=False, action="delete", record_id=record_id, reason=UNAUTHENTICATED)

        def change(records: list[Transaction]):
            previous, previous_index = _find(records, record_id)
            remaining, outcome = apply_delete(records, record_id)
            return remaining, [record_id], (outcome, previous, previous_index)

        outcome, previous, previous_index = self._store.apply(change, pending=True)

        ok = self._client.delete(record_id, previous.kind if previous is not None else None)
        self._store.settle(record_id)
        if ok:
            logger.info("Delete %s confirmed", record_id)
            self._reconcile()
            return outcome
        return self._failed(outcome, previous, previous_index)

    def save_batch(self, rows: Iterable[Transaction]) -> BatchOutcome:
        """Save several new rows, then reconcile once.

        Rows without a material name are skipped.  Every saved row receives a
        fresh batch id.
        """

        if not self._current_user():
            return BatchOutcome(success=False)

        batch = BatchOutcome(success=True)
        with self._lock:
            for row in rows:
                if not row.material_name.strip():
                    batch.skipped += 1
                    continue
                fresh = replace(row, id=new_record_id(row.kind, batch=True))
                batch.outcomes.append(self._upsert(fresh, reconcile=False))

            if batch.saved:
                self._reconcile()
        batch.success = all(outcome.success for outcome in batch.outcomes)
        return batch

    def _failed(
        self,
        outcome: MutationOutcome,
        previous: Optional[Transaction],
        previous_index: Optional[int],
    ) -> MutationOutcome:
        outcome.success = False
        outcome.reason = REMOTE_FAILURE
        if self._config.rollback_on_failure:
            self._store.restore(outcome.record_id, previous, previous_index)
            outcome.rolled_back = True
            logger.warning("Remote %s of %s failed; local change rolled back", outcome.action, outcome.record_id)
        else:
            logger.warning("Remote %s of %s failed; local change kept", outcome.action, outcome.record_id)
        return outcome


def _find(records: list[Transaction], record_id: str) -> tuple[Optional[Transaction], Optional[int]]:
    if not record_id:
        return None, None
    for index, item in enumerate(records):
        if item.id == record_id:
            return item, index
    return None, None


__all__ = [
    "MutationCoordinator",
    "apply_delete",
    "apply_upsert",
    "new_record_id",
    "prepare_for_save",
]
