"""Validated run configuration for the ``ledgerviz`` pipeline.

The command-line front end (or any host application) resolves user input into
a :class:`PipelineConfig`; the pipeline never reads arguments or environment
variables itself. Models are frozen so one config object can be shared by
every worker of a run.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal
from os import PathLike
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import Granularity, Locale, SourceFormat

_DELIMITED_SUFFIXES = {".csv": ",", ".txt": ",", ".tsv": "\t"}
_SPREADSHEET_SUFFIXES = {".xlsx", ".xlsm"}


class ColumnMapping(BaseModel):
    """Which source columns feed which transaction fields.

    Names are matched case-insensitively after trimming; integers are 0-based
    positions, counted against the header row when there is one, and are the
    only option for sources without a header row. ``description_column`` and
    ``account_column`` are optional: a source without them yields ``None``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    date_column: str | int = "date"
    amount_column: str | int = "amount"
    category_column: str | int = "category"
    description_column: str | int | None = "description"
    account_column: str | int | None = None

    @field_validator(
        "date_column", "amount_column", "category_column", "description_column", "account_column"
    )
    @classmethod
    def _column_ref(cls, v: str | int | None) -> str | int | None:
        if isinstance(v, bool):
            raise ValueError("column reference must be a name or a 0-based position")
        if isinstance(v, int) and v < 0:
            raise ValueError("column positions are 0-based and non-negative")
        if isinstance(v, str) and not v.strip():
            raise ValueError("column name must be non-empty")
        return v

    def required(self) -> tuple[str | int, ...]:
        return (self.date_column, self.amount_column, self.category_column)


class SourceConfig(BaseModel):
    """One input file and how to read it."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: Path
    format: SourceFormat | None = None
    # ``None`` sniffs the delimiter from the first lines of the file.
    delimiter: str | None = None
    has_header: bool = True
    sheet_names: tuple[str, ...] | None = None
    sheet_pattern: str | None = None
    encoding: str = "utf-8-sig"
    columns: ColumnMapping = Field(default_factory=ColumnMapping)
    locale: Locale | None = None

    @field_validator("delimiter")
    @classmethod
    def _single_char_delimiter(cls, v: str | None) -> str | None:
        if v is not None and len(v) != 1:
            raise ValueError("delimiter must be a single character")
        return v

    @field_validator("sheet_pattern")
    @classmethod
    def _compilable_pattern(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                re.compile(v)
            except re.error as exc:
                raise ValueError(f"invalid sheet_pattern: {exc}") from exc
        return v

    @model_validator(mode="after")
    def _positional_needs_no_header(self) -> SourceConfig:
        if self.has_header:
            return self
        refs = [
            *self.columns.required(),
            self.columns.description_column,
            self.columns.account_column,
        ]
        if any(isinstance(r, str) for r in refs):
            raise ValueError("sources without a header row must map columns by position")
        return self

    def resolved_format(self) -> SourceFormat | None:
        """Declared format, else one inferred from the file suffix (``None`` if unknown)."""

        if self.format is not None:
            return self.format
        suffix = self.path.suffix.lower()
        if suffix in _DELIMITED_SUFFIXES:
            return SourceFormat.DELIMITED
        if suffix in _SPREADSHEET_SUFFIXES:
            return SourceFormat.SPREADSHEET
        return None

    def resolved_delimiter(self) -> str | None:
        if self.delimiter is not None:
            return self.delimiter
        # ``.tsv`` is unambiguous; everything else is sniffed.
        return "\t" if self.path.suffix.lower() == ".tsv" else None


class DateRange(BaseModel):
    """Inclusive bounds; either side may be open."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    start: date | None = None
    end: date | None = None

    @model_validator(mode="after")
    def _ordered(self) -> DateRange:
        if self.start and self.end and self.start > self.end:
            raise ValueError(f"date range start {self.start} is after end {self.end}")
        return self

    def contains(self, d: date) -> bool:
        if self.start is not None and d < self.start:
            return False
        return not (self.end is not None and d > self.end)


class PipelineConfig(BaseModel):
    """Everything one pipeline run needs."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    sources: tuple[SourceConfig, ...]
    date_range: DateRange = Field(default_factory=DateRange)
    granularity: Granularity = Granularity.MONTHLY
    strict: bool = False
    # Raw spelling -> canonical name. Pairs are accepted so that conflicting
    # spellings in a config file are reported instead of silently collapsed.
    category_aliases: tuple[tuple[str, str], ...] = ()
    locale: Locale | None = None
    precision: int = Field(default=2, ge=0, le=12)
    max_workers: int | None = Field(default=None, ge=1, le=32)
    top_categories: int | None = Field(default=None, ge=1)
    # ``None`` aggregates every account; transactions without one are then
    # included too.
    accounts: tuple[str, ...] | None = None
    opening_balance: Decimal = Decimal(0)

    @field_validator("sources")
    @classmethod
    def _at_least_one(cls, v: tuple[SourceConfig, ...]) -> tuple[SourceConfig, ...]:
        if not v:
            raise ValueError("at least one input source is required")
        return v

    @field_validator("category_aliases", mode="before")
    @classmethod
    def _aliases_as_pairs(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return tuple(v.items())
        return v

    @field_validator("accounts")
    @classmethod
    def _account_names(cls, v: tuple[str, ...] | None) -> tuple[str, ...] | None:
        if v is not None and (not v or any(not a.strip() for a in v)):
            raise ValueError("accounts must be a non-empty list of non-empty names")
        return v

    @field_validator("opening_balance")
    @classmethod
    def _finite_balance(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("opening_balance must be a finite amount")
        return v

    @property
    def input_paths(self) -> list[Path]:
        return [s.path for s in self.sources]

    def locale_for(self, source: SourceConfig) -> Locale | None:
        return source.locale or self.locale

    @classmethod
    def from_paths(
        cls,
        input_paths: Iterable[str | PathLike[str]],
        *,
        columns: ColumnMapping | None = None,
        delimiter: str | None = None,
        has_header: bool = True,
        sheet_names: Iterable[str] | None = None,
        sheet_pattern: str | None = None,
        **settings: Any,
    ) -> PipelineConfig:
        """Build a config where every path shares the same reading options."""

        sources = tuple(
            SourceConfig(
                path=Path(p),
                delimiter=delimiter,
                has_header=has_header,
                sheet_names=tuple(sheet_names) if sheet_names is not None else None,
                sheet_pattern=sheet_pattern,
                columns=columns or ColumnMapping(),
            )
            for p in input_paths
        )
        return cls(sources=sources, **settings)


__all__ = ["ColumnMapping", "DateRange", "PipelineConfig", "SourceConfig"]
