"""Time-bucketed and per-category aggregation over canonical transactions.

All arithmetic is :class:`~decimal.Decimal`. Transactions arrive already
quantized to the run's precision, so sums are exact and the conservation
check compares with ``==``.

Bucket conventions
------------------
- ``daily``: one bucket per calendar day.
- ``weekly``: ISO weeks, starting Monday.
- ``monthly``: calendar months, starting on the 1st.

A bucket is labelled by its start date even when the requested range starts
mid-bucket; ``BucketPoint.end`` is the inclusive last day of the bucket.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Iterator, Sequence
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from .config import DateRange
from .errors import ConservationError
from .logging_setup import get_logger
from .models import (
    AggregationResult,
    BucketPoint,
    CategoryAggregate,
    CategoryShare,
    CategorySplit,
    CategoryStats,
    Granularity,
    TimeSeries,
    Transaction,
    category_key,
)

_logger = get_logger("ledgerviz.aggregate")

_ZERO = Decimal(0)
_HUNDRED = Decimal(100)


# ---------------------------------------------------------------------------
# Buckets
# ---------------------------------------------------------------------------


def bucket_start(d: date, granularity: Granularity) -> date:
    """First day of the bucket containing ``d``."""

    if granularity is Granularity.DAILY:
        return d
    if granularity is Granularity.WEEKLY:
        return d - timedelta(days=d.weekday())
    return d.replace(day=1)


def next_bucket_start(start: date, granularity: Granularity) -> date | None:
    """First day of the following bucket, or ``None`` past ``date.max``."""

    if granularity is Granularity.MONTHLY:
        if start.month < 12:
            return date(start.year, start.month + 1, 1)
        return date(start.year + 1, 1, 1) if start.year < date.max.year else None
    step = timedelta(days=1 if granularity is Granularity.DAILY else 7)
    return start + step if start <= date.max - step else None


def iter_buckets(first: date, last: date, granularity: Granularity) -> Iterator[tuple[date, date]]:
    """Yield ``(start, inclusive_end)`` for every bucket touching ``[first, last]``."""

    if first > last:
        return
    start = bucket_start(first, granularity)
    while start <= last:
        nxt = next_bucket_start(start, granularity)
        if nxt is None:
            yield start, date.max
            return
        yield start, nxt - timedelta(days=1)
        start = nxt


def _span(
    transactions: Sequence[Transaction], start: date | None, end: date | None
) -> tuple[date, date]:
    first = start if start is not None else min(t.date for t in transactions)
    last = end if end is not None else max(t.date for t in transactions)
    return first, last


def _zero(precision: int) -> Decimal:
    # Empty buckets carry a zero with the same exponent as filled ones.
    return _ZERO.quantize(Decimal(1).scaleb(-precision))


def _series_from_totals(
    granularity: Granularity,
    buckets: Sequence[tuple[date, date]],
    totals: Sequence[Decimal],
    counts: Sequence[int],
    opening_balance: Decimal = _ZERO,
) -> TimeSeries:
    points: list[BucketPoint] = []
    running = opening_balance
    for (b_start, b_end), total, count in zip(buckets, totals, counts, strict=True):
        running += total
        points.append(
            BucketPoint(start=b_start, end=b_end, total=total, count=count, cumulative=running)
        )
    return TimeSeries(granularity=granularity, points=tuple(points))


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------


def build_time_series(
    transactions: Sequence[Transaction],
    granularity: Granularity,
    *,
    start: date | None = None,
    end: date | None = None,
    precision: int = 2,
    opening_balance: Decimal = _ZERO,
) -> TimeSeries:
    """Sum and count ``transactions`` into a gap-free bucket list.

    The buckets span ``start``/``end`` when given, otherwise the first and
    last transaction dates. Transactions outside the span are ignored; callers
    normally filter first. No transactions means no buckets.
    ``cumulative`` starts from ``opening_balance``.
    """

    if not transactions:
        return TimeSeries(granularity=granularity)
    first, last = _span(transactions, start, end)
    buckets = list(iter_buckets(first, last, granularity))
    index = {b_start: i for i, (b_start, _) in enumerate(buckets)}
    totals = [_zero(precision)] * len(buckets)
    counts = [0] * len(buckets)
    for tx in transactions:
        i = index.get(bucket_start(tx.date, granularity))
        if i is None:
            continue
        totals[i] += tx.amount
        counts[i] += 1
    return _series_from_totals(granularity, buckets, totals, counts, opening_balance)


def category_time_series(
    transactions: Sequence[Transaction],
    granularity: Granularity,
    *,
    start: date | None = None,
    end: date | None = None,
    precision: int = 2,
) -> tuple[tuple[str, TimeSeries], ...]:
    """One series per category over the same buckets as :func:`build_time_series`."""

    if not transactions:
        return ()
    first, last = _span(transactions, start, end)
    buckets = list(iter_buckets(first, last, granularity))
    index = {b_start: i for i, (b_start, _) in enumerate(buckets)}
    totals: dict[str, list[Decimal]] = {}
    counts: dict[str, list[int]] = {}
    for tx in transactions:
        i = index.get(bucket_start(tx.date, granularity))
        if i is None:
            continue
        if tx.category not in totals:
            totals[tx.category] = [_zero(precision)] * len(buckets)
            counts[tx.category] = [0] * len(buckets)
        totals[tx.category][i] += tx.amount
        counts[tx.category][i] += 1
    return tuple(
        (name, _series_from_totals(granularity, buckets, totals[name], counts[name]))
        for name in sorted(totals, key=_category_order)
    )


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def _category_order(name: str) -> tuple[str, str]:
    return (name.casefold(), name)


def aggregate_categories(transactions: Iterable[Transaction]) -> CategoryAggregate:
    """Per-category sum, count, min and max, ordered by case-folded name."""

    stats: dict[str, list] = {}
    for tx in transactions:
        s = stats.get(tx.category)
        if s is None:
            stats[tx.category] = [tx.amount, 1, tx.amount, tx.amount]
            continue
        s[0] += tx.amount
        s[1] += 1
        s[2] = min(s[2], tx.amount)
        s[3] = max(s[3], tx.amount)
    return CategoryAggregate(
        entries=tuple(
            (name, CategoryStats(total=s[0], count=s[1], minimum=s[2], maximum=s[3]))
            for name, s in sorted(stats.items(), key=lambda kv: _category_order(kv[0]))
        )
    )


def _shares(
    totals: dict[str, Decimal], *, top_n: int | None, quantum: Decimal
) -> tuple[CategoryShare, ...]:
    side_total = sum((abs(v) for v in totals.values()), _ZERO)
    ranked = sorted(totals.items(), key=lambda kv: (-abs(kv[1]), *_category_order(kv[0])))
    if top_n is not None:
        ranked = ranked[:top_n]
    out: list[CategoryShare] = []
    for name, total in ranked:
        pct = _ZERO if side_total == 0 else abs(total) * _HUNDRED / side_total
        out.append(
            CategoryShare(
                category=name,
                total=total,
                percentage=pct.quantize(quantum, rounding=ROUND_HALF_UP),
            )
        )
    return tuple(out)


def split_categories(
    transactions: Iterable[Transaction],
    *,
    top_n: int | None = None,
    precision: int = 2,
) -> CategorySplit:
    """Separate income (positive amounts) from expenses (negative amounts).

    A category with both refunds and purchases appears on both sides.
    Percentages are relative to their own side and rounded for display only;
    ``top_n`` keeps the largest categories of each side.
    """

    income: defaultdict[str, Decimal] = defaultdict(lambda: _ZERO)
    expenses: defaultdict[str, Decimal] = defaultdict(lambda: _ZERO)
    for tx in transactions:
        if tx.amount > 0:
            income[tx.category] += tx.amount
        elif tx.amount < 0:
            expenses[tx.category] += tx.amount
    quantum = Decimal(1).scaleb(-precision)
    return CategorySplit(
        income=_shares(income, top_n=top_n, quantum=quantum),
        expenses=_shares(expenses, top_n=top_n, quantum=quantum),
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def filter_range(
    transactions: Iterable[Transaction], date_range: DateRange | None
) -> list[Transaction]:
    if date_range is None:
        return list(transactions)
    return [t for t in transactions if date_range.contains(t.date)]


def filter_accounts(
    transactions: Iterable[Transaction], accounts: Iterable[str] | None
) -> list[Transaction]:
    """Keep transactions whose account is one of ``accounts``.

    Names compare like category spellings (whitespace-collapsed, case-folded).
    ``None`` keeps everything; transactions without an account never match an
    explicit filter.
    """

    if accounts is None:
        return list(transactions)
    wanted = {category_key(a) for a in accounts}
    return [t for t in transactions if t.account is not None and category_key(t.account) in wanted]


def aggregate(
    transactions: Sequence[Transaction],
    *,
    granularity: Granularity = Granularity.MONTHLY,
    date_range: DateRange | None = None,
    top_n: int | None = None,
    precision: int = 2,
    accounts: Sequence[str] | None = None,
    opening_balance: Decimal = _ZERO,
) -> AggregationResult:
    """Filter to ``date_range`` and ``accounts`` and build every aggregate view.

    An empty selection is a valid, explicitly empty result: no buckets and no
    categories, whatever bounds were requested. ``opening_balance`` offsets
    the cumulative column of the overall series only and is quantized to
    ``precision`` like the amounts; bucket totals and the per-category series
    are unaffected.
    """

    date_range = date_range or DateRange()
    opening_balance = opening_balance.quantize(
        Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP
    )
    included = filter_accounts(filter_range(transactions, date_range), accounts)
    if not included:
        _logger.info("aggregate:empty transactions=%d", len(transactions))
        return AggregationResult(
            granularity=granularity,
            start=date_range.start,
            end=date_range.end,
            time_series=TimeSeries(granularity=granularity),
            categories=CategoryAggregate(),
            split=CategorySplit(),
            opening_balance=opening_balance,
        )

    first, last = _span(included, date_range.start, date_range.end)
    series = build_time_series(
        included,
        granularity,
        start=first,
        end=last,
        precision=precision,
        opening_balance=opening_balance,
    )
    result = AggregationResult(
        granularity=granularity,
        start=first,
        end=last,
        time_series=series,
        categories=aggregate_categories(included),
        split=split_categories(included, precision=precision),
        by_category=category_time_series(
            included, granularity, start=first, end=last, precision=precision
        ),
        opening_balance=opening_balance,
    )
    check_conservation(result, included)
    if top_n is not None:
        result = AggregationResult(
            granularity=result.granularity,
            start=result.start,
            end=result.end,
            time_series=result.time_series,
            categories=result.categories,
            split=split_categories(included, top_n=top_n, precision=precision),
            by_category=result.by_category,
            opening_balance=result.opening_balance,
        )
    _logger.info(
        "aggregate:done granularity=%s buckets=%d categories=%d transactions=%d",
        granularity.value,
        len(series),
        len(result.categories),
        len(included),
    )
    return result


def check_conservation(result: AggregationResult, included: Sequence[Transaction]) -> None:
    """Raise :class:`ConservationError` unless every view sums to the same total."""

    expected = sum((t.amount for t in included), _ZERO)
    views = {
        "time_series": result.time_series.total,
        "categories": result.categories.total,
        "split": sum((s.total for s in (*result.split.income, *result.split.expenses)), _ZERO),
        "by_category": sum((s.total for _, s in result.by_category), _ZERO),
    }
    counts = {
        "time_series": sum(p.count for p in result.time_series),
        "categories": result.categories.count,
    }
    for view, total in views.items():
        if total != expected:
            raise ConservationError(f"{view} total {total} != transaction total {expected}")
    for view, count in counts.items():
        if count != len(included):
            raise ConservationError(f"{view} count {count} != transaction count {len(included)}")


__all__ = [
    "aggregate",
    "aggregate_categories",
    "bucket_start",
    "build_time_series",
    "category_time_series",
    "check_conservation",
    "filter_accounts",
    "filter_range",
    "iter_buckets",
    "next_bucket_start",
    "split_categories",
]
