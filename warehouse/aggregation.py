"""Aggregations backing the dashboard and the repair centre.

All functions are pure: they read a record sequence plus an
:class:`~warehouse.models.AggregationScope` and return plain dataclasses.
Rankings use :func:`sorted`, which is stable, so groups with equal values keep
the order in which they were first encountered in the record set.
"""
from __future__ import annotations

from typing import Iterable, Optional

from .dates import split_year_month
from .models import (
    AggregationScope,
    CategoryShare,
    DashboardSummary,
    KindScope,
    MonthBucket,
    RepairRank,
    Transaction,
    TransactionKind,
    UNCLASSIFIED_CATEGORY,
)

ALL = "all"


def monthly_trend(records: Iterable[Transaction], scope: AggregationScope) -> list[MonthBucket]:
    """Sum ``total`` per calendar month of ``scope.year``.

    The result is dense: always twelve buckets, January first, months without
    data carrying ``0``.
    """

    label_year = scope.year if scope.year != ALL else "*"
    buckets = [MonthBucket(month=index, label=f"{label_year}-{index:02d}") for index in range(1, 13)]
    for tx in records:
        if not scope.kinds.matches(tx.kind):
            continue
        year, month = split_year_month(tx.date)
        if scope.year != ALL and year != scope.year:
            continue
        try:
            month_index = int(month)
        except ValueError:
            continue
        if 1 <= month_index <= 12:
            buckets[month_index - 1].amount += tx.total
    return buckets


def category_distribution(records: Iterable[Transaction], scope: AggregationScope) -> list[CategoryShare]:
    """Group the scoped records by machine category and sum their totals."""

    sums: dict[str, float] = {}
    for tx in records:
        if not scope.kinds.matches(tx.kind) or not _in_year_month(tx, scope.year, scope.month):
            continue
        name = tx.machine_category or UNCLASSIFIED_CATEGORY
        sums[name] = sums.get(name, 0.0) + tx.total

    grand_total = sum(sums.values())
    shares = [
        CategoryShare(
            name=name,
            value=value,
            percent=(value / grand_total) * 100 if grand_total > 0 else 0.0,
        )
        for name, value in sums.items()
    ]
    return sorted(shares, key=lambda share: share.value, reverse=True)


def repair_ranking(records: Iterable[Transaction], scope: AggregationScope) -> list[RepairRank]:
    """Rank materials by how many repair tickets they received.

    ``scope.mode`` selects the window: ``"standard"`` uses year and month,
    ``"custom"`` uses the explicit date range.  A ``limit`` of ``-1`` returns
    every material.
    """

    counts: dict[str, int] = {}
    for tx in records:
        if tx.kind is not TransactionKind.REPAIR:
            continue
        if scope.mode == "custom":
            if scope.start_date and tx.date < scope.start_date:
                continue
            if scope.end_date and tx.date > scope.end_date:
                continue
        elif not _in_year_month(tx, scope.year, scope.month):
            continue
        counts[tx.material_name] = counts.get(tx.material_name, 0) + 1

    ranking = sorted(
        (RepairRank(name=name, count=count) for name, count in counts.items()),
        key=lambda rank: rank.count,
        reverse=True,
    )
    if scope.limit < 0:
        return ranking
    return ranking[: scope.limit]


def dashboard_summary(
    records: Iterable[Transaction],
    year: str,
    today: str,
    kinds: KindScope = KindScope.INBOUND,
) -> DashboardSummary:
    """Year totals plus, for the current year only, the current month's totals."""

    current_year, current_month = split_year_month(today)
    summary = DashboardSummary(year=year, is_current_year=year == current_year)
    for tx in records:
        if not kinds.matches(tx.kind):
            continue
        tx_year, tx_month = split_year_month(tx.date)
        if tx_year != year:
            continue
        summary.year_amount += tx.total
        summary.year_count += 1
        if summary.is_current_year and tx_month == current_month:
            summary.month_amount += tx.total
            summary.month_count += 1
    return summary


def available_years(
    records: Iterable[Transaction],
    today: str,
    include_upcoming: bool = False,
) -> list[str]:
    """Years present in the data, newest first.

    The dashboard passes ``include_upcoming=True`` so the current and the next
    year are always selectable.  Without it, an empty data set still yields
    the current year.
    """

    current_year, _ = split_year_month(today)
    years: set[str] = set()
    if include_upcoming:
        years.add(current_year)
        years.add(str(int(current_year) + 1))
    for tx in records:
        year, _ = split_year_month(tx.date)
        if len(year) == 4 and year.isdigit():
            years.add(year)
    if not years:
        years.add(current_year)
    return sorted(years, reverse=True)


def _in_year_month(tx: Transaction, year: str, month: Optional[str]) -> bool:
    tx_year, tx_month = split_year_month(tx.date)
    if year != ALL and tx_year != year:
        return False
    if month and month != ALL and tx_month != month:
        return False
    return True


__all__ = [
    "available_years",
    "category_distribution",
    "dashboard_summary",
    "monthly_trend",
    "repair_ranking",
]
