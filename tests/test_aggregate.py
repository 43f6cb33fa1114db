from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ledgerviz.aggregate import (
    aggregate,
    aggregate_categories,
    bucket_start,
    build_time_series,
    check_conservation,
    iter_buckets,
    split_categories,
)
from ledgerviz.config import DateRange
from ledgerviz.errors import ConservationError
from ledgerviz.models import AggregationResult, CategoryAggregate, CategorySplit, Granularity, TimeSeries
from tests.helpers.files import tx

D = Decimal


@pytest.mark.parametrize(
    ("day", "granularity", "expected"),
    [
        (date(2023, 5, 17), Granularity.DAILY, date(2023, 5, 17)),
        (date(2023, 5, 17), Granularity.WEEKLY, date(2023, 5, 15)),  # Wednesday -> Monday
        (date(2023, 5, 15), Granularity.WEEKLY, date(2023, 5, 15)),
        (date(2023, 5, 21), Granularity.WEEKLY, date(2023, 5, 15)),  # Sunday
        (date(2023, 5, 17), Granularity.MONTHLY, date(2023, 5, 1)),
    ],
)
def test_bucket_start(day, granularity, expected):
    assert bucket_start(day, granularity) == expected


def test_monthly_buckets_cross_year_end():
    buckets = list(iter_buckets(date(2022, 11, 20), date(2023, 2, 1), Granularity.MONTHLY))
    assert buckets == [
        (date(2022, 11, 1), date(2022, 11, 30)),
        (date(2022, 12, 1), date(2022, 12, 31)),
        (date(2023, 1, 1), date(2023, 1, 31)),
        (date(2023, 2, 1), date(2023, 2, 28)),
    ]


def test_weekly_buckets_are_seven_days():
    buckets = list(iter_buckets(date(2023, 1, 1), date(2023, 1, 16), Granularity.WEEKLY))
    assert [b[0] for b in buckets] == [date(2022, 12, 26), date(2023, 1, 2), date(2023, 1, 9), date(2023, 1, 16)]
    assert all((end - start).days == 6 for start, end in buckets)


def test_daily_series_fills_gaps_with_zero():
    series = build_time_series(
        [tx("2023-01-01", "10.00", "Food"), tx("2023-01-04", "-2.50", "Fuel")],
        Granularity.DAILY,
    )
    assert series.pairs() == [
        (date(2023, 1, 1), D("10.00")),
        (date(2023, 1, 2), D(0)),
        (date(2023, 1, 3), D(0)),
        (date(2023, 1, 4), D("-2.50")),
    ]
    assert [p.count for p in series] == [1, 0, 0, 1]
    assert [p.cumulative for p in series] == [D("10.00"), D("10.00"), D("10.00"), D("7.50")]


def test_explicit_bounds_extend_the_bucket_list():
    series = build_time_series(
        [tx("2023-02-10", "1", "X")],
        Granularity.MONTHLY,
        start=date(2023, 1, 15),
        end=date(2023, 3, 2),
    )
    assert [p.start for p in series] == [date(2023, 1, 1), date(2023, 2, 1), date(2023, 3, 1)]
    assert [p.total for p in series] == [D(0), D(1), D(0)]


def test_category_stats_and_order():
    cats = aggregate_categories(
        [
            tx("2023-01-01", "10.00", "food"),
            tx("2023-01-02", "-4.00", "Bills"),
            tx("2023-01-03", "2.50", "food"),
            tx("2023-01-04", "-1.00", "Bills"),
            tx("2023-01-05", "7", "Zoo"),
        ]
    )
    assert list(cats) == ["Bills", "food", "Zoo"]
    assert cats["food"].total == D("12.50")
    assert cats["food"].count == 2
    assert cats["Bills"].minimum == D("-4.00")
    assert cats["Bills"].maximum == D("-1.00")
    with pytest.raises(KeyError):
        cats["Missing"]


def test_split_income_and_expenses():
    split = split_categories(
        [
            tx("2023-01-01", "3000", "Salary"),
            tx("2023-01-02", "-600", "Rent"),
            tx("2023-01-03", "-300", "Food"),
            tx("2023-01-04", "-100", "Fuel"),
            tx("2023-01-05", "20", "Food"),  # refund
        ]
    )
    assert [(s.category, s.total) for s in split.expenses] == [
        ("Rent", D("-600")),
        ("Food", D("-300")),
        ("Fuel", D("-100")),
    ]
    assert [s.percentage for s in split.expenses] == [D("60.00"), D("30.00"), D("10.00")]
    assert [s.category for s in split.income] == ["Salary", "Food"]
    top = split_categories([tx("2023-01-01", "-1", "A"), tx("2023-01-01", "-2", "B")], top_n=1)
    assert [s.category for s in top.expenses] == ["B"]


def test_end_to_end_aggregate_three_rows():
    txs = [
        tx("2023-01-01", "10.00", "Food"),
        tx("2023-01-01", "10.00", "Food"),
        tx("2023-01-02", "-5.00", "Transport"),
    ]
    result = aggregate(txs, granularity=Granularity.DAILY)
    assert result.time_series.pairs() == [(date(2023, 1, 1), D("20.00")), (date(2023, 1, 2), D("-5.00"))]
    assert result.categories["Food"].total == D("20.00")
    assert result.categories["Food"].count == 2
    assert result.categories["Transport"].total == D("-5.00")
    assert result.categories["Transport"].count == 1
    assert result.category_series("Food").pairs() == [(date(2023, 1, 1), D("20.00")), (date(2023, 1, 2), D(0))]


def test_date_range_filter_is_inclusive():
    txs = [tx(f"2023-01-0{d}", str(d), "X") for d in range(1, 6)]
    result = aggregate(txs, granularity=Granularity.DAILY, date_range=DateRange(start=date(2023, 1, 2), end=date(2023, 1, 4)))
    assert result.time_series.total == D(9)
    assert [p.start.day for p in result.time_series] == [2, 3, 4]


def test_empty_selection_is_explicitly_empty():
    result = aggregate(
        [tx("2023-01-01", "1", "X")],
        granularity=Granularity.DAILY,
        date_range=DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31)),
    )
    assert result.is_empty
    assert result.time_series.is_empty
    assert result.categories.is_empty
    assert aggregate([]).is_empty


def test_conservation_holds_across_views():
    txs = [
        tx("2023-01-01", "0.10", "A"),
        tx("2023-01-08", "0.20", "B"),
        tx("2023-02-03", "-0.30", "A"),
        tx("2023-03-30", "1234567.89", "C"),
    ]
    for granularity in Granularity:
        result = aggregate(txs, granularity=granularity)
        expected = sum((t.amount for t in txs), D(0))
        assert result.time_series.total == expected
        assert result.categories.total == expected
        assert result.time_series.points[-1].cumulative == expected


def test_conservation_violation_raises():
    bad = AggregationResult(
        granularity=Granularity.DAILY,
        start=None,
        end=None,
        time_series=TimeSeries(granularity=Granularity.DAILY),
        categories=CategoryAggregate(),
        split=CategorySplit(),
    )
    with pytest.raises(ConservationError):
        check_conservation(bad, [tx("2023-01-01", "1", "X")])


def test_top_n_does_not_change_totals():
    txs = [tx("2023-01-01", "-1", "A"), tx("2023-01-01", "-2", "B"), tx("2023-01-01", "-3", "C")]
    result = aggregate(txs, top_n=2)
    assert [s.category for s in result.split.expenses] == ["C", "B"]
    assert result.categories.total == D(-6)


@pytest.mark.parametrize(
    ("day", "granularity", "bucket"),
    [
        ("9999-12-31", Granularity.DAILY, (date(9999, 12, 31), date.max)),
        ("9999-12-31", Granularity.WEEKLY, (date(9999, 12, 27), date.max)),
        ("9999-12-15", Granularity.MONTHLY, (date(9999, 12, 1), date.max)),
    ],
)
def test_last_representable_bucket_ends_at_date_max(day, granularity, bucket):
    assert list(iter_buckets(date.fromisoformat(day), date.max, granularity)) == [bucket]
    result = aggregate([tx(day, "1.00", "Food")], granularity=granularity)
    assert [(p.start, p.end) for p in result.time_series] == [bucket]
    assert result.time_series.total == D("1.00")


def test_buckets_run_up_to_date_max_with_explicit_end():
    result = aggregate(
        [tx("9999-12-29", "2.00", "Food")],
        granularity=Granularity.DAILY,
        date_range=DateRange(end=date.max),
    )
    assert [p.start.day for p in result.time_series] == [29, 30, 31]
    assert result.time_series.points[-1].cumulative == D("2.00")


def test_empty_buckets_share_the_run_precision():
    txs = [tx("2023-01-01", "10.00", "Food"), tx("2023-01-03", "-5.25", "Fuel")]
    series = build_time_series(txs, Granularity.DAILY, precision=2)
    assert [str(p.total) for p in series] == ["10.00", "0.00", "-5.25"]
    by_category = dict(aggregate(txs, granularity=Granularity.DAILY, precision=3).by_category)
    assert [str(p.total) for p in by_category["Fuel"]] == ["0.000", "0.000", "-5.250"]


def test_opening_balance_offsets_cumulative_only():
    txs = [tx("2023-01-05", "10.00", "Food"), tx("2023-03-01", "-4.00", "Fuel")]
    result = aggregate(txs, opening_balance=D("100.00"))
    assert [str(p.cumulative) for p in result.time_series] == ["110.00", "110.00", "106.00"]
    assert result.time_series.total == D("6.00")
    assert result.category_series("Food").points[-1].cumulative == D("10.00")
    assert result.opening_balance == D("100.00")
    assert str(aggregate(txs, opening_balance=D("1.005")).opening_balance) == "1.01"
    assert str(aggregate([], opening_balance=D("7")).opening_balance) == "7.00"


def test_account_filter_selects_named_accounts():
    txs = [
        tx("2023-01-01", "10.00", "Food", account="Checking"),
        tx("2023-01-02", "-3.00", "Fuel", account="  credit   card "),
        tx("2023-01-03", "7.00", "Food"),
    ]
    result = aggregate(txs, granularity=Granularity.DAILY, accounts=["checking"])
    assert result.time_series.total == D("10.00")
    assert list(result.categories) == ["Food"]

    both = aggregate(txs, granularity=Granularity.DAILY, accounts=["CHECKING", "Credit Card"])
    assert both.categories.count == 2
    assert aggregate(txs).categories.count == 3
    assert aggregate(txs, accounts=["Savings"]).is_empty
