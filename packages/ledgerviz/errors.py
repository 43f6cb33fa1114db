"""Run-aborting failures raised by the ``ledgerviz`` pipeline.

Row-level problems are never raised; they travel as
:class:`~ledgerviz.models.RejectedRow` data. Only source-level,
configuration-level and cancellation failures propagate as exceptions, and
all of them derive from :class:`PipelineError` so the CLI can catch one type.
"""

from __future__ import annotations

from collections.abc import Sequence
from os import PathLike
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import RejectedRow


class PipelineError(Exception):
    """Base class for failures that abort a run (or a single source)."""


class SourceUnreadable(PipelineError):
    """A source could not be opened or its structure could not be determined."""

    def __init__(
        self,
        source_id: str,
        path: str | PathLike[str],
        reason: str,
        *,
        sheet: str | None = None,
    ) -> None:
        self.source_id = source_id
        self.path = str(path)
        self.reason = reason
        # Set when only one sheet of a workbook is affected.
        self.sheet = sheet
        super().__init__(f"source {source_id!r} is unreadable: {reason}")


class RowRejected(PipelineError):
    """Strict mode saw at least one rejected row and aborted the run."""

    def __init__(self, rejected: Sequence[RejectedRow]) -> None:
        self.rejected = tuple(rejected)
        first = self.rejected[0]
        super().__init__(
            f"strict mode: {len(self.rejected)} row(s) rejected; first at "
            f"{first.location.describe()} ({first.reason.value})"
        )


class AliasConflict(PipelineError):
    """One raw category spelling was mapped to two different canonical names."""

    def __init__(self, raw: str, existing: str, new: str) -> None:
        self.raw = raw
        self.existing = existing
        self.new = new
        super().__init__(
            f"category alias conflict: {raw!r} maps to both {existing!r} and {new!r}"
        )


class PipelineCancelled(PipelineError):
    """Cancellation was requested; partial outputs were discarded."""

    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__(f"run cancelled during stage {stage!r}")


class ConservationError(PipelineError):
    """Decimal totals disagreed between views of the same transaction set."""


__all__ = [
    "AliasConflict",
    "ConservationError",
    "PipelineCancelled",
    "PipelineError",
    "RowRejected",
    "SourceUnreadable",
]
