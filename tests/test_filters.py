from __future__ import annotations

from dataclasses import replace

from conftest import make_tx

from warehouse.filters import filter_records, sort_records
from warehouse.models import FilterState, TransactionKind

INBOUND = TransactionKind.INBOUND
USAGE = TransactionKind.USAGE
CONSTRUCTION = TransactionKind.CONSTRUCTION
REPAIR = TransactionKind.REPAIR


def _mixed_records():
    return [
        make_tx("in-1", "2024-03-01", INBOUND, is_received=False, material_name="Cable"),
        make_tx("in-2", "2024-03-02", INBOUND, is_received=True, material_name="Bolt"),
        make_tx("use-1", "2024-03-03", USAGE, material_name="Screen", machine_number="M-07"),
        make_tx("con-1", "2024-02-11", CONSTRUCTION, material_name="Frame"),
        make_tx("rp-1", "2024-03-04", REPAIR, material_name="Board", sn="SN-900"),
        make_tx("rp-2", "2024-03-05", REPAIR, material_name="Board", repair_date="2024-03-09"),
        make_tx("rp-3", "2024-03-06", REPAIR, material_name="Fan", is_scrapped=True),
    ]


def _ids(records):
    return [tx.id for tx in records]


def test_pending_inbound_scenario():
    records = [make_tx("1", "2024-03-01", INBOUND, is_received=False)]
    result = filter_records(records, FilterState(status_filter="pending_inbound"))
    assert _ids(result) == ["1"]


def test_same_date_ties_break_by_id_descending():
    records = [
        make_tx("a", "2024-01-10"),
        make_tx("b", "2024-01-10"),
        make_tx("c", "2024-01-09"),
    ]
    assert _ids(filter_records(records, FilterState())) == ["b", "a", "c"]


def test_filtering_is_deterministic_and_idempotent():
    records = _mixed_records()
    state = FilterState(active_view="records", keyword="  b ")
    first = filter_records(records, state)
    assert first == filter_records(records, state)
    assert filter_records(first, state) == first


def test_status_filters_only_return_their_kind():
    records = _mixed_records()
    pending = filter_records(records, FilterState(status_filter="pending_inbound"))
    assert _ids(pending) == ["in-1"]
    assert all(tx.kind is INBOUND for tx in pending)

    repairing = filter_records(records, FilterState(status_filter="repairing"))
    assert _ids(repairing) == ["rp-1"]

    scrapped = filter_records(records, FilterState(status_filter="scrapped"))
    assert _ids(scrapped) == ["rp-3"]


def test_status_filter_overrides_the_tab_scope():
    records = _mixed_records()
    # The records tab normally hides repairs; a status query still finds them.
    state = FilterState(active_view="records", status_filter="repairing", category_filter="USAGE")
    assert _ids(filter_records(records, state)) == ["rp-1"]


def test_repairs_view_only_returns_repairs():
    result = filter_records(_mixed_records(), FilterState(active_view="repairs"))
    assert result
    assert all(tx.kind is REPAIR for tx in result)


def test_records_view_hides_repairs_and_scrapped_and_applies_category():
    records = _mixed_records() + [make_tx("use-x", "2024-03-07", USAGE, is_scrapped=True)]
    state = FilterState(active_view="records")
    assert _ids(filter_records(records, state)) == ["use-1", "in-2", "in-1", "con-1"]

    only_usage = replace(state, category_filter="USAGE")
    assert _ids(filter_records(records, only_usage)) == ["use-1"]


def test_category_filter_is_ignored_outside_the_records_view():
    state = FilterState(active_view="dashboard", category_filter="USAGE")
    assert len(filter_records(_mixed_records(), state)) == len(_mixed_records())


def test_date_bounds_are_inclusive():
    records = [
        make_tx("before", "2024-02-29"),
        make_tx("start", "2024-03-01"),
        make_tx("end", "2024-03-31"),
        make_tx("after", "2024-04-01"),
    ]
    state = FilterState(start_date="2024-03-01", end_date="2024-03-31")
    assert _ids(filter_records(records, state)) == ["end", "start"]


def test_open_ended_date_range():
    records = [make_tx("old", "2023-12-31"), make_tx("new", "2024-01-01")]
    assert _ids(filter_records(records, FilterState(start_date="2024-01-01"))) == ["new"]
    assert _ids(filter_records(records, FilterState(end_date="2023-12-31"))) == ["old"]


def test_keyword_matches_any_searchable_field_case_insensitively():
    records = _mixed_records() + [make_tx("op", "2024-01-01", operator="Simon")]
    assert _ids(filter_records(records, FilterState(keyword="sn-9"))) == ["rp-1"]
    assert _ids(filter_records(records, FilterState(keyword="m-07"))) == ["use-1"]
    assert _ids(filter_records(records, FilterState(keyword="SIMON"))) == ["op"]


def test_blank_keyword_is_a_no_op():
    records = _mixed_records()
    assert len(filter_records(records, FilterState(keyword="   "))) == len(records)


def test_keyword_and_dates_combine():
    records = _mixed_records()
    state = FilterState(keyword="board", start_date="2024-03-05")
    assert _ids(filter_records(records, state)) == ["rp-2"]


def test_malformed_dates_sort_last():
    records = [make_tx("broken", "not-a-date"), make_tx("empty", ""), make_tx("ok", "2020-01-01")]
    assert _ids(sort_records(records))[0] == "ok"


def test_malformed_dates_fall_below_any_start_bound():
    records = [make_tx("broken", "not-a-date"), make_tx("old", "2020-01-01"), make_tx("new", "2024-02-01")]
    assert _ids(filter_records(records, FilterState(start_date="2024-01-01"))) == ["new"]
    assert _ids(filter_records(records, FilterState(end_date="2021-01-01"))) == ["old", "broken"]
