"""Public interface for the ``ledgerviz`` package.

Symbol re-exports only: the pipeline entry point, configuration models, the
result/report models and the error taxonomy.
"""

from .aggregate import aggregate
from .config import ColumnMapping, DateRange, PipelineConfig, SourceConfig
from .errors import (
    AliasConflict,
    ConservationError,
    PipelineCancelled,
    PipelineError,
    RowRejected,
    SourceUnreadable,
)
from .events import CollectingSink, EventSink, LoggingSink, PipelineEvent
from .models import (
    AggregationResult,
    CategoryAggregate,
    CategoryAliasTable,
    CategoryStats,
    DiagnosticReport,
    Granularity,
    Locale,
    PipelineResult,
    RejectedRow,
    RejectReason,
    TimeSeries,
    Transaction,
)
from .normalizers import parse_amount, parse_date
from .pipeline import load_source, run_pipeline
from .reconcile import build_alias_table, reconcile

__all__ = [
    # Pipeline
    "run_pipeline",
    "load_source",
    "reconcile",
    "build_alias_table",
    "aggregate",
    "parse_date",
    "parse_amount",
    # Configuration
    "PipelineConfig",
    "SourceConfig",
    "ColumnMapping",
    "DateRange",
    # Models / types
    "Transaction",
    "RejectedRow",
    "RejectReason",
    "Granularity",
    "Locale",
    "TimeSeries",
    "CategoryAggregate",
    "CategoryStats",
    "CategoryAliasTable",
    "AggregationResult",
    "DiagnosticReport",
    "PipelineResult",
    # Events
    "PipelineEvent",
    "EventSink",
    "LoggingSink",
    "CollectingSink",
    # Errors
    "PipelineError",
    "SourceUnreadable",
    "RowRejected",
    "AliasConflict",
    "PipelineCancelled",
    "ConservationError",
]
