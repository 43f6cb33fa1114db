"""Run orchestration: parse and normalize sources, reconcile, aggregate.

Stages
------
1. Build the explicit alias table. Conflicts abort the run before any file
   is opened.
2. Fan out one worker per source (bounded by ``max_workers``). Each worker
   reads and normalizes its whole source into a :class:`SourceBatch`.
3. Fan in on the calling thread, in input order: record failures, apply the
   ``strict`` policy, then reconcile and aggregate.

Only the coordinating thread emits events and touches the alias table, so a
run's output and its event order do not depend on worker timing.
Cancellation is checked between stages and while the fan-out is in flight;
a cancelled run returns nothing and leaves no partial state behind.
"""

from __future__ import annotations

import threading
from collections import Counter
from collections.abc import Sequence
from concurrent.futures import CancelledError

from .aggregate import aggregate
from .config import PipelineConfig, SourceConfig
from .errors import PipelineCancelled, RowRejected, SourceUnreadable
from .events import EventKind, EventSink, PipelineEvent
from .ingest import iter_source_rows
from .logging_setup import get_logger
from .models import (
    DiagnosticReport,
    Locale,
    PipelineResult,
    RejectedRow,
    SourceBatch,
    SourceFailure,
    Transaction,
)
from .normalizers import RowNormalizer
from .pmap import p_map
from .reconcile import build_alias_table, reconcile

_logger = get_logger("ledgerviz.pipeline")

_DEFAULT_MAX_WORKERS = 8


def assign_source_ids(sources: Sequence[SourceConfig]) -> list[str]:
    """Path strings, with ``#2``, ``#3`` suffixes when a path repeats."""

    seen: Counter[str] = Counter()
    ids: list[str] = []
    for source in sources:
        key = str(source.path)
        seen[key] += 1
        ids.append(key if seen[key] == 1 else f"{key}#{seen[key]}")
    return ids


def load_source(
    source: SourceConfig,
    *,
    source_id: str,
    locale: Locale | None = None,
    precision: int = 2,
) -> SourceBatch:
    """Read and normalize one source completely.

    Raises :class:`SourceUnreadable` when the source as a whole cannot be
    read; row problems come back as ``RejectedRow`` entries and unreadable
    sheets of a workbook as ``SourceBatch.failures``.
    """

    normalize = RowNormalizer(source.columns, locale, precision)
    transactions: list[Transaction] = []
    rejected: list[RejectedRow] = []
    failures: list[SourceFailure] = []
    rows_seen = 0

    def _sheet_failed(exc: SourceUnreadable) -> None:
        failures.append(SourceFailure(source_id, exc.path, exc.reason, sheet=exc.sheet))

    for raw in iter_source_rows(source, source_id=source_id, on_sheet_error=_sheet_failed):
        rows_seen += 1
        outcome = normalize(raw)
        if isinstance(outcome, RejectedRow):
            rejected.append(outcome)
        else:
            transactions.append(outcome)
    _logger.debug(
        "load_source:done source=%s rows=%d accepted=%d rejected=%d",
        source_id,
        rows_seen,
        len(transactions),
        len(rejected),
    )
    return SourceBatch(
        source_id=source_id,
        path=str(source.path),
        transactions=tuple(transactions),
        rejected=tuple(rejected),
        rows_seen=rows_seen,
        failures=tuple(failures),
    )


def _check_cancel(cancel: threading.Event | None, stage: str) -> None:
    if cancel is not None and cancel.is_set():
        _logger.info("run_pipeline:cancelled stage=%s", stage)
        raise PipelineCancelled(stage)


def run_pipeline(
    config: PipelineConfig,
    *,
    sink: EventSink | None = None,
    cancel: threading.Event | None = None,
) -> PipelineResult:
    """Run every stage for ``config`` and return the result with its diagnostics.

    Raises :class:`~ledgerviz.errors.AliasConflict` before reading anything,
    :class:`SourceUnreadable` for a failed source under ``strict``,
    :class:`RowRejected` for any rejected row under ``strict``, and
    :class:`PipelineCancelled` when ``cancel`` is set.
    """

    def emit(kind: EventKind, stage: str, source_id: str | None = None, **data: object) -> None:
        if sink is not None:
            sink.record(PipelineEvent(kind=kind, stage=stage, source_id=source_id, data=data))

    emit(EventKind.RUN_STARTED, "run", sources=len(config.sources), strict=config.strict)
    aliases = build_alias_table(config.category_aliases)

    source_ids = assign_source_ids(config.sources)
    jobs = list(zip(config.sources, source_ids, strict=True))
    _check_cancel(cancel, "parse")

    def _load(job: tuple[SourceConfig, str]) -> SourceBatch | SourceUnreadable:
        source, source_id = job
        try:
            return load_source(
                source,
                source_id=source_id,
                locale=config.locale_for(source),
                precision=config.precision,
            )
        except SourceUnreadable as exc:
            return exc

    workers = min(config.max_workers or _DEFAULT_MAX_WORKERS, len(jobs))
    _logger.info("run_pipeline:parse sources=%d workers=%d", len(jobs), workers)
    try:
        outcomes = p_map(jobs, _load, concurrency=workers, cancel=cancel)
    except CancelledError as exc:
        raise PipelineCancelled("parse") from exc

    batches: list[SourceBatch] = []
    failures: list[SourceFailure] = []
    for (source, source_id), outcome in zip(jobs, outcomes, strict=True):
        if isinstance(outcome, SourceUnreadable):
            emit(EventKind.SOURCE_FAILED, "parse", source_id, reason=outcome.reason)
            if config.strict:
                raise outcome
            _logger.warning(
                "run_pipeline:source_failed source=%s reason=%s", source_id, outcome.reason
            )
            failures.append(SourceFailure(source_id, str(source.path), outcome.reason))
            continue
        for failure in outcome.failures:
            emit(
                EventKind.SOURCE_FAILED,
                "parse",
                source_id,
                sheet=failure.sheet,
                reason=failure.reason,
            )
            if config.strict:
                raise SourceUnreadable(
                    source_id, failure.path, failure.reason, sheet=failure.sheet
                )
            _logger.warning(
                "run_pipeline:sheet_failed source=%s sheet=%s reason=%s",
                source_id,
                failure.sheet,
                failure.reason,
            )
            failures.append(failure)
        emit(
            EventKind.SOURCE_LOADED,
            "parse",
            source_id,
            rows=outcome.rows_seen,
            accepted=len(outcome.transactions),
        )
        if outcome.rejected:
            emit(EventKind.ROWS_REJECTED, "parse", source_id, rejected=len(outcome.rejected))
        batches.append(outcome)

    rejected = [r for b in batches for r in b.rejected]
    emit(EventKind.STAGE_COMPLETED, "parse", sources=len(batches), failed=len(failures))
    if config.strict and rejected:
        raise RowRejected(rejected)

    _check_cancel(cancel, "reconcile")
    rec = reconcile(batches, aliases)
    if rec.duplicates:
        emit(EventKind.DUPLICATES_REMOVED, "reconcile", duplicates=len(rec.duplicates))
    emit(EventKind.STAGE_COMPLETED, "reconcile", transactions=len(rec.transactions))

    _check_cancel(cancel, "aggregate")
    aggregation = aggregate(
        rec.transactions,
        granularity=config.granularity,
        date_range=config.date_range,
        top_n=config.top_categories,
        precision=config.precision,
        accounts=config.accounts,
        opening_balance=config.opening_balance,
    )
    emit(EventKind.STAGE_COMPLETED, "aggregate", buckets=len(aggregation.time_series))

    report = DiagnosticReport(
        rejected=rec.rejected,
        failed_sources=tuple(failures),
        duplicates=rec.duplicates,
        total_rows_seen=rec.rows_seen,
        total_accepted=sum(len(b.transactions) for b in batches),
    )
    _check_cancel(cancel, "report")
    emit(
        EventKind.RUN_FINISHED,
        "run",
        accepted=report.total_accepted,
        rejected=report.total_rejected,
    )
    return PipelineResult(
        transactions=rec.transactions,
        aliases=rec.aliases,
        aggregation=aggregation,
        report=report,
    )


__all__ = ["assign_source_ids", "load_source", "run_pipeline"]
