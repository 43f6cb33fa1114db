"""Progress events emitted by the pipeline and the sinks that receive them.

The orchestrator takes an optional sink with a single ``record(event)``
method. Sinks observe a run; they never influence it, so results are the
same with or without one attached.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from .logging_setup import get_logger


class EventKind(StrEnum):
    RUN_STARTED = "run_started"
    SOURCE_LOADED = "source_loaded"
    SOURCE_FAILED = "source_failed"
    ROWS_REJECTED = "rows_rejected"
    DUPLICATES_REMOVED = "duplicates_removed"
    STAGE_COMPLETED = "stage_completed"
    RUN_FINISHED = "run_finished"


@dataclass(frozen=True, slots=True)
class PipelineEvent:
    kind: EventKind
    stage: str
    source_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        parts = [f"{self.stage}:{self.kind.value}"]
        if self.source_id is not None:
            parts.append(f"source={self.source_id}")
        parts.extend(f"{k}={v}" for k, v in self.data.items())
        return " ".join(parts)


@runtime_checkable
class EventSink(Protocol):
    def record(self, event: PipelineEvent) -> None: ...


class LoggingSink:
    """Forward events to the ``ledgerviz.events`` logger.

    Failures and rejections log at WARNING, everything else at INFO.
    """

    _WARN = frozenset({EventKind.SOURCE_FAILED, EventKind.ROWS_REJECTED})

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or get_logger("ledgerviz.events")

    def record(self, event: PipelineEvent) -> None:
        level = logging.WARNING if event.kind in self._WARN else logging.INFO
        self._logger.log(level, "%s", event.describe())


class CollectingSink:
    """Keep every event in memory; used by tests and embedding hosts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[PipelineEvent] = []

    def record(self, event: PipelineEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[PipelineEvent]:
        with self._lock:
            return list(self._events)

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]


__all__ = ["CollectingSink", "EventKind", "EventSink", "LoggingSink", "PipelineEvent"]
