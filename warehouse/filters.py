"""Filter engine computing the record views.

The stages run in a fixed order: status, view scope, date range, keyword,
then the sort.  A non-``all`` status filter is a cross-cutting query and
replaces the tab-implied view scope instead of narrowing it.
"""
from __future__ import annotations

from typing import Callable, Iterable

from .dates import sortable_date
from .models import FilterState, Transaction, TransactionKind

_STATUS_PREDICATES: dict[str, Callable[[Transaction], bool]] = {
    "pending_inbound": lambda tx: tx.is_pending_inbound,
    "scrapped": lambda tx: tx.is_scrapped,
    "repairing": lambda tx: tx.is_repairing,
}


def filter_records(records: Iterable[Transaction], state: FilterState) -> list[Transaction]:
    """Return the records visible under ``state``, newest first."""

    keyword = state.keyword.strip().lower()
    status_predicate = _STATUS_PREDICATES.get(state.status_filter)

    selected = [
        tx
        for tx in records
        if _passes_status_or_view(tx, state, status_predicate)
        and _within_dates(tx, state.start_date, state.end_date)
        and _matches_keyword(tx, keyword)
    ]
    return sort_records(selected)


def sort_records(records: Iterable[Transaction]) -> list[Transaction]:
    """Order by date descending, ties broken by id descending."""

    return sorted(records, key=lambda tx: (sortable_date(tx.date), tx.id), reverse=True)


def _passes_status_or_view(
    tx: Transaction,
    state: FilterState,
    status_predicate: Callable[[Transaction], bool] | None,
) -> bool:
    if status_predicate is not None:
        return status_predicate(tx)

    if state.active_view == "records":
        if tx.kind is TransactionKind.REPAIR or tx.is_scrapped:
            return False
        if state.category_filter != "all" and tx.kind.name != state.category_filter:
            return False
    elif state.active_view == "repairs":
        return tx.kind is TransactionKind.REPAIR
    return True


def _within_dates(tx: Transaction, start_date: str, end_date: str) -> bool:
    day = sortable_date(tx.date)
    if start_date and day < start_date:
        return False
    if end_date and day > end_date:
        return False
    return True


def _matches_keyword(tx: Transaction, keyword: str) -> bool:
    if not keyword:
        return True
    haystacks = (tx.material_name, tx.material_number, tx.sn, tx.machine_number, tx.operator)
    return any(keyword in (value or "").lower() for value in haystacks)


__all__ = ["filter_records", "sort_records"]
