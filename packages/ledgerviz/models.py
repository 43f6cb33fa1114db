"""Data models and type aliases for ``ledgerviz``.

Every record that crosses a stage boundary is a frozen ``dataclass``: once a
:class:`Transaction` is built it is safe to share by reference between worker
threads and the single-threaded reconciler. Monetary values are always
:class:`~decimal.Decimal`; nothing in the pipeline uses binary floats for
money.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from types import MappingProxyType
from typing import Any, TypeAlias

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class RejectReason(StrEnum):
    """Reason codes attached to every :class:`RejectedRow`."""

    MISSING_REQUIRED_FIELD = "missing_required_field"
    UNPARSEABLE_DATE = "unparseable_date"
    UNPARSEABLE_AMOUNT = "unparseable_amount"
    EMPTY_CATEGORY = "empty_category"
    MALFORMED_ROW = "malformed_row"


class Granularity(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Locale(StrEnum):
    """Tie-break for numeric dates that read validly both ways.

    ``DAY_FIRST`` resolves ``01/05/2023`` to 1 May, ``MONTH_FIRST`` to 5 Jan.
    """

    DAY_FIRST = "day_first"
    MONTH_FIRST = "month_first"


class SourceFormat(StrEnum):
    DELIMITED = "delimited"
    SPREADSHEET = "spreadsheet"


# ---------------------------------------------------------------------------
# Parser output
# ---------------------------------------------------------------------------

# Header name for sources with a header row, 0-based position otherwise.
FieldKey: TypeAlias = str | int


@dataclass(frozen=True, slots=True)
class RowLocation:
    """Where a row came from: source, file, optional sheet and 1-based row."""

    source_id: str
    path: str
    row: int
    sheet: str | None = None

    def describe(self) -> str:
        where = f"{self.path}[{self.sheet}]" if self.sheet else self.path
        return f"{where}:{self.row}"


@dataclass(frozen=True, slots=True)
class RawRow:
    """One untyped row as read from a source.

    ``fields`` keeps the original cell values: text for delimited files and
    the workbook's native types (``str``, ``int``, ``float``, ``datetime``)
    for spreadsheets. ``cells`` holds the same values in column order, so a
    0-based position can address a column even when ``fields`` is keyed by
    header name. ``anomaly`` is set when the parser noticed a structural
    problem with the row; the normalizer rejects such rows explicitly.
    """

    location: RowLocation
    fields: Mapping[FieldKey, Any]
    anomaly: str | None = None
    cells: tuple[Any, ...] = ()


# ---------------------------------------------------------------------------
# Normalizer output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transaction:
    """The atomic, immutable unit flowing from the normalizer onwards."""

    date: date
    amount: Decimal
    category: str
    description: str | None
    source_id: str
    location: RowLocation | None = field(default=None, compare=False)
    account: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.date, datetime) or not isinstance(self.date, date):
            raise ValueError(f"Transaction.date must be a calendar date, got {self.date!r}")
        if not isinstance(self.amount, Decimal) or not self.amount.is_finite():
            raise ValueError(f"Transaction.amount must be a finite Decimal, got {self.amount!r}")
        if not self.category or not self.category.strip():
            raise ValueError("Transaction.category must be non-empty")
        if self.account is not None and not self.account.strip():
            raise ValueError("Transaction.account must be None or non-empty")


@dataclass(frozen=True, slots=True)
class RejectedRow:
    """A row that could not become a :class:`Transaction`, with its reason."""

    row: RawRow
    reason: RejectReason
    detail: str = ""

    @property
    def location(self) -> RowLocation:
        return self.row.location


# ---------------------------------------------------------------------------
# Reconciler output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategoryAliasTable:
    """Case-folded raw spelling -> canonical display name.

    Built once by the reconciler and read-only afterwards. ``version`` counts
    the entries added while building, so two tables built from the same
    input order compare equal.
    """

    entries: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    explicit_keys: frozenset[str] = frozenset()
    version: int = 0

    def resolve(self, category: str) -> str | None:
        return self.entries.get(category_key(category))

    def is_explicit(self, category: str) -> bool:
        return category_key(category) in self.explicit_keys

    def as_dict(self) -> dict[str, str]:
        return dict(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CategoryAliasTable):
            return NotImplemented
        return (
            dict(self.entries) == dict(other.entries)
            and self.explicit_keys == other.explicit_keys
            and self.version == other.version
        )

    def __hash__(self) -> int:
        return hash((tuple(self.entries.items()), self.explicit_keys, self.version))


def category_key(category: str) -> str:
    """Comparison key for category spellings: collapsed whitespace, case-folded."""

    return " ".join(category.split()).casefold()


@dataclass(frozen=True, slots=True)
class SourceBatch:
    """Fully materialized output of parsing and normalizing one source."""

    source_id: str
    path: str
    transactions: tuple[Transaction, ...] = ()
    rejected: tuple[RejectedRow, ...] = ()
    rows_seen: int = 0
    # Sheets of a workbook that could not be read while the rest could.
    failures: tuple[SourceFailure, ...] = ()


@dataclass(frozen=True, slots=True)
class DuplicateRecord:
    """A cross-source duplicate that was dropped in favour of ``kept``."""

    dropped: Transaction
    kept: Transaction


# ---------------------------------------------------------------------------
# Aggregation output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BucketPoint:
    """One bucket of a :class:`TimeSeries`; ``end`` is the inclusive last day."""

    start: date
    end: date
    total: Decimal
    count: int
    cumulative: Decimal


@dataclass(frozen=True, slots=True)
class TimeSeries:
    """Contiguous, strictly increasing buckets; empty buckets carry zero."""

    granularity: Granularity
    points: tuple[BucketPoint, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.points

    @property
    def total(self) -> Decimal:
        return sum((p.total for p in self.points), Decimal(0))

    def pairs(self) -> list[tuple[date, Decimal]]:
        """``(bucket_start, total)`` pairs in bucket order."""

        return [(p.start, p.total) for p in self.points]

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[BucketPoint]:
        return iter(self.points)


@dataclass(frozen=True, slots=True)
class CategoryStats:
    total: Decimal
    count: int
    minimum: Decimal
    maximum: Decimal


@dataclass(frozen=True, slots=True)
class CategoryAggregate(Mapping[str, CategoryStats]):
    """Canonical category -> :class:`CategoryStats`, in a fixed order.

    Entries are ordered by case-folded category name so renderers never need
    to re-sort.
    """

    entries: tuple[tuple[str, CategoryStats], ...] = ()

    def __getitem__(self, category: str) -> CategoryStats:
        for name, stats in self.entries:
            if name == category:
                return stats
        raise KeyError(category)

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def total(self) -> Decimal:
        return sum((s.total for _, s in self.entries), Decimal(0))

    @property
    def count(self) -> int:
        return sum(s.count for _, s in self.entries)


@dataclass(frozen=True, slots=True)
class CategoryShare:
    """A category's total and its percentage of one side (income or expenses)."""

    category: str
    total: Decimal
    percentage: Decimal


@dataclass(frozen=True, slots=True)
class CategorySplit:
    """Income (positive) and expense (negative) totals per category.

    Each side is sorted by magnitude, largest first.
    """

    income: tuple[CategoryShare, ...] = ()
    expenses: tuple[CategoryShare, ...] = ()


@dataclass(frozen=True, slots=True)
class AggregationResult:
    """Everything the chart renderer consumes for one run."""

    granularity: Granularity
    start: date | None
    end: date | None
    time_series: TimeSeries
    categories: CategoryAggregate
    split: CategorySplit
    by_category: tuple[tuple[str, TimeSeries], ...] = ()
    opening_balance: Decimal = Decimal(0)

    @property
    def is_empty(self) -> bool:
        return self.time_series.is_empty and self.categories.is_empty

    def category_series(self, category: str) -> TimeSeries:
        for name, series in self.by_category:
            if name == category:
                return series
        raise KeyError(category)


# ---------------------------------------------------------------------------
# Diagnostics and run result
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SourceFailure:
    """A source, or one sheet of a workbook source, that could not be read."""

    source_id: str
    path: str
    reason: str
    sheet: str | None = None

    def describe(self) -> str:
        return f"{self.source_id}[{self.sheet}]" if self.sheet else self.source_id


@dataclass(frozen=True, slots=True)
class DiagnosticReport:
    """Per-run data-quality evidence: rejected rows, failed sources, duplicates."""

    rejected: tuple[RejectedRow, ...] = ()
    failed_sources: tuple[SourceFailure, ...] = ()
    duplicates: tuple[DuplicateRecord, ...] = ()
    total_rows_seen: int = 0
    total_accepted: int = 0

    @property
    def total_rejected(self) -> int:
        return len(self.rejected)

    @property
    def rejected_by_reason(self) -> dict[str, int]:
        counts = {reason.value: 0 for reason in RejectReason}
        for r in self.rejected:
            counts[r.reason.value] += 1
        return counts

    @property
    def is_lossy(self) -> bool:
        return bool(self.rejected or self.failed_sources)

    def summary_lines(self) -> list[str]:
        lines = [
            f"rows seen: {self.total_rows_seen}",
            f"accepted: {self.total_accepted}",
            f"rejected: {self.total_rejected}",
        ]
        for reason, n in self.rejected_by_reason.items():
            if n:
                lines.append(f"  {reason}: {n}")
        if self.duplicates:
            lines.append(f"cross-source duplicates removed: {len(self.duplicates)}")
        for failure in self.failed_sources:
            lines.append(f"source failed: {failure.describe()} ({failure.reason})")
        return lines


@dataclass(frozen=True, slots=True)
class PipelineResult:
    transactions: tuple[Transaction, ...]
    aliases: CategoryAliasTable
    aggregation: AggregationResult
    report: DiagnosticReport

    def summary(self) -> str:
        head = (
            f"{len(self.transactions)} transaction(s), "
            f"{len(self.aggregation.time_series)} {self.aggregation.granularity.value} bucket(s), "
            f"{len(self.aggregation.categories)} categor{'y' if len(self.aggregation.categories) == 1 else 'ies'}"
        )
        return "\n".join([head, *self.report.summary_lines()])


__all__ = [
    "AggregationResult",
    "BucketPoint",
    "CategoryAggregate",
    "CategoryAliasTable",
    "CategoryShare",
    "CategorySplit",
    "CategoryStats",
    "DiagnosticReport",
    "DuplicateRecord",
    "FieldKey",
    "Granularity",
    "Locale",
    "PipelineResult",
    "RawRow",
    "RejectReason",
    "RejectedRow",
    "RowLocation",
    "SourceBatch",
    "SourceFailure",
    "SourceFormat",
    "TimeSeries",
    "Transaction",
    "category_key",
]
