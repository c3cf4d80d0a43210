from __future__ import annotations

import pytest

from conftest import make_tx

from warehouse.aggregation import (
    available_years,
    category_distribution,
    dashboard_summary,
    monthly_trend,
    repair_ranking,
)
from warehouse.models import AggregationScope, KindScope, TransactionKind

INBOUND = TransactionKind.INBOUND
USAGE = TransactionKind.USAGE
REPAIR = TransactionKind.REPAIR


def test_monthly_trend_is_always_twelve_buckets():
    records = [make_tx("1", "2024-03-05", total=100.0), make_tx("2", "2024-03-20", total=50.0)]
    trend = monthly_trend(records, AggregationScope(year="2024"))

    assert len(trend) == 12
    assert [bucket.month for bucket in trend] == list(range(1, 13))
    assert trend[0].label == "2024-01"
    assert trend[2].amount == 150.0
    assert sum(bucket.amount for bucket in trend) == 150.0


def test_monthly_trend_of_empty_set_is_zero_filled():
    trend = monthly_trend([], AggregationScope(year="2024"))
    assert len(trend) == 12
    assert all(bucket.amount == 0 for bucket in trend)


def test_monthly_trend_respects_year_and_kind_scope():
    records = [
        make_tx("1", "2024-01-05", INBOUND, total=10.0),
        make_tx("2", "2024-01-06", USAGE, total=20.0),
        make_tx("3", "2023-01-06", INBOUND, total=40.0),
    ]
    scoped = monthly_trend(records, AggregationScope(year="2024", kinds=KindScope.INBOUND))
    assert sum(bucket.amount for bucket in scoped) == 10.0

    every_year = monthly_trend(records, AggregationScope())
    assert every_year[0].label == "*-01"
    assert every_year[0].amount == 70.0


def test_category_distribution_sorts_by_value_and_computes_percent():
    records = [
        make_tx("1", "2024-02-01", machine_category="BA", total=300.0),
        make_tx("2", "2024-02-02", machine_category="CX", total=100.0),
        make_tx("3", "2024-02-03", machine_category="", total=100.0),
    ]
    shares = category_distribution(records, AggregationScope(year="2024", month="02"))

    assert [share.name for share in shares] == ["BA", "CX", "未分類"]
    assert shares[0].percent == pytest.approx(60.0)
    assert sum(share.percent for share in shares) == pytest.approx(100.0)


def test_category_distribution_with_zero_total_has_zero_percent():
    records = [make_tx("1", machine_category="BA", total=0.0)]
    shares = category_distribution(records, AggregationScope())
    assert shares[0].percent == 0.0


def test_category_distribution_month_filter():
    records = [
        make_tx("1", "2024-02-01", machine_category="BA", total=1.0),
        make_tx("2", "2024-03-01", machine_category="CX", total=1.0),
    ]
    shares = category_distribution(records, AggregationScope(year="2024", month="03"))
    assert [share.name for share in shares] == ["CX"]


def test_repair_ranking_counts_repairs_in_the_window():
    records = [
        make_tx("1", "2025-03-01", REPAIR, material_name="Widget"),
        make_tx("2", "2025-03-02", REPAIR, material_name="Sprocket"),
        make_tx("3", "2025-03-03", REPAIR, material_name="Widget"),
        make_tx("4", "2025-03-04", USAGE, material_name="Sprocket"),
    ]
    ranking = repair_ranking(records, AggregationScope(year="2025", limit=5))
    assert [(rank.name, rank.count) for rank in ranking] == [("Widget", 2), ("Sprocket", 1)]


def test_repair_ranking_ties_keep_first_seen_order():
    records = [
        make_tx("1", "2025-01-01", REPAIR, material_name="Gear"),
        make_tx("2", "2025-01-02", REPAIR, material_name="Axle"),
        make_tx("3", "2025-01-03", REPAIR, material_name="Belt"),
        make_tx("4", "2025-01-04", REPAIR, material_name="Belt"),
    ]
    ranking = repair_ranking(records, AggregationScope(limit=-1))
    assert [rank.name for rank in ranking] == ["Belt", "Gear", "Axle"]


def test_repair_ranking_limit():
    records = [make_tx(str(index), "2025-01-01", REPAIR, material_name=f"M{index}") for index in range(8)]
    assert len(repair_ranking(records, AggregationScope())) == 5
    assert len(repair_ranking(records, AggregationScope(limit=-1))) == 8


def test_repair_ranking_custom_range_ignores_year():
    records = [
        make_tx("1", "2024-12-31", REPAIR, material_name="Out"),
        make_tx("2", "2025-01-01", REPAIR, material_name="In"),
        make_tx("3", "2025-01-31", REPAIR, material_name="In"),
    ]
    scope = AggregationScope(year="2024", mode="custom", start_date="2025-01-01", end_date="2025-01-31")
    assert [(rank.name, rank.count) for rank in repair_ranking(records, scope)] == [("In", 2)]


def test_dashboard_summary_for_the_current_year():
    records = [
        make_tx("1", "2024-05-02", INBOUND, total=100.0),
        make_tx("2", "2024-01-02", INBOUND, total=50.0),
        make_tx("3", "2024-05-03", USAGE, total=999.0),
    ]
    summary = dashboard_summary(records, "2024", today="2024-05-20")
    assert summary.is_current_year
    assert (summary.year_amount, summary.year_count) == (150.0, 2)
    assert (summary.month_amount, summary.month_count) == (100.0, 1)


def test_dashboard_summary_for_a_past_year_has_no_month_figures():
    records = [make_tx("1", "2023-05-02", INBOUND, total=100.0)]
    summary = dashboard_summary(records, "2023", today="2024-05-20")
    assert not summary.is_current_year
    assert summary.year_amount == 100.0
    assert summary.month_count == 0


def test_available_years():
    records = [make_tx("1", "2021-05-02"), make_tx("2", "broken")]
    assert available_years(records, today="2024-01-01") == ["2021"]
    assert available_years(records, today="2024-01-01", include_upcoming=True) == ["2025", "2024", "2021"]
    assert available_years([], today="2024-01-01") == ["2024"]
