"""Serialize pipeline results for the chart renderer and for inspection.

Decimals are written as strings and dates as ISO strings, so a consumer never
re-parses a float. Files are written to a sibling temporary path and moved
into place, so an interrupted write never leaves a half-written output.
"""

from __future__ import annotations

import csv
import io
import json
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .models import (
    AggregationResult,
    CategorySplit,
    DiagnosticReport,
    PipelineResult,
    TimeSeries,
    Transaction,
)

TRANSACTION_COLUMNS = (
    "date",
    "amount",
    "category",
    "description",
    "account",
    "source_id",
    "location",
)


def series_to_list(series: TimeSeries) -> list[dict[str, Any]]:
    return [
        {
            "start": p.start.isoformat(),
            "end": p.end.isoformat(),
            "total": str(p.total),
            "count": p.count,
            "cumulative": str(p.cumulative),
        }
        for p in series
    ]


def _split_to_dict(split: CategorySplit) -> dict[str, list[dict[str, str]]]:
    def side(shares):
        return [
            {"category": s.category, "total": str(s.total), "percentage": str(s.percentage)}
            for s in shares
        ]

    return {"income": side(split.income), "expenses": side(split.expenses)}


def aggregation_to_dict(agg: AggregationResult) -> dict[str, Any]:
    return {
        "granularity": agg.granularity.value,
        "start": agg.start.isoformat() if agg.start else None,
        "end": agg.end.isoformat() if agg.end else None,
        "opening_balance": str(agg.opening_balance),
        "time_series": series_to_list(agg.time_series),
        "categories": [
            {
                "category": name,
                "total": str(stats.total),
                "count": stats.count,
                "min": str(stats.minimum),
                "max": str(stats.maximum),
            }
            for name, stats in agg.categories.entries
        ],
        "split": _split_to_dict(agg.split),
        "by_category": {name: series_to_list(s) for name, s in agg.by_category},
    }


def report_to_dict(report: DiagnosticReport) -> dict[str, Any]:
    return {
        "total_rows_seen": report.total_rows_seen,
        "total_accepted": report.total_accepted,
        "total_rejected": report.total_rejected,
        "rejected_by_reason": report.rejected_by_reason,
        "rejected": [
            {
                "source_id": r.location.source_id,
                "location": r.location.describe(),
                "reason": r.reason.value,
                "detail": r.detail,
            }
            for r in report.rejected
        ],
        "failed_sources": [
            {"source_id": f.source_id, "path": f.path, "sheet": f.sheet, "reason": f.reason}
            for f in report.failed_sources
        ],
        "duplicates": [
            {
                "dropped": d.dropped.location.describe() if d.dropped.location else d.dropped.source_id,
                "kept": d.kept.location.describe() if d.kept.location else d.kept.source_id,
            }
            for d in report.duplicates
        ],
    }


def result_to_dict(result: PipelineResult) -> dict[str, Any]:
    """JSON-ready view of a whole run."""

    return {
        "aggregation": aggregation_to_dict(result.aggregation),
        "aliases": result.aliases.as_dict(),
        "report": report_to_dict(result.report),
    }


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding="utf-8", newline="")
    os.replace(tmp, path)


def write_result_json(result: PipelineResult, path: str | Path) -> Path:
    p = Path(path)
    _atomic_write(p, json.dumps(result_to_dict(result), ensure_ascii=False, indent=2) + "\n")
    return p


def transactions_to_csv(transactions: Iterable[Transaction]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(TRANSACTION_COLUMNS)
    for tx in transactions:
        writer.writerow(
            [
                tx.date.isoformat(),
                str(tx.amount),
                tx.category,
                tx.description or "",
                tx.account or "",
                tx.source_id,
                tx.location.describe() if tx.location else "",
            ]
        )
    return buf.getvalue()


def write_transactions_csv(transactions: Iterable[Transaction], path: str | Path) -> Path:
    """Write the canonical sequence as CSV (one row per transaction, in order)."""

    p = Path(path)
    _atomic_write(p, transactions_to_csv(transactions))
    return p


__all__ = [
    "TRANSACTION_COLUMNS",
    "aggregation_to_dict",
    "report_to_dict",
    "result_to_dict",
    "series_to_list",
    "transactions_to_csv",
    "write_result_json",
    "write_transactions_csv",
]
