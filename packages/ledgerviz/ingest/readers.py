"""Source readers: turn one file into a lazy stream of :class:`RawRow`.

Delimited text is read with the stdlib :mod:`csv` module (RFC 4180 quoting,
embedded newlines, doubled quotes). Workbooks are read with ``openpyxl`` in
read-only, values-only mode so cells keep their native types: a date cell
arrives as ``datetime`` and an unformatted serial as a number, never as a
pre-rendered string.

Failure contract
----------------
- Anything that prevents reading the source as a whole (missing file,
  undecodable bytes, unknown format, no header, missing required columns,
  unknown sheet, CSV structural errors) raises
  :class:`~ledgerviz.errors.SourceUnreadable`.
- A single row with the wrong number of fields is still yielded, with
  ``RawRow.anomaly`` set, so the normalizer can reject it explicitly.

Readers are generators: errors surface on first iteration, and a stream
cannot be restarted once consumed.
"""

from __future__ import annotations

import csv
import re
import zipfile
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from typing import Any

from ..config import SourceConfig
from ..errors import SourceUnreadable
from ..models import FieldKey, RawRow, RowLocation, SourceFormat

_SNIFF_BYTES = 8192
_SNIFF_DELIMITERS = ",;\t|"


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _check_required(
    header: Sequence[str],
    required: Sequence[FieldKey],
    *,
    source_id: str,
    path: Path,
    where: str = "",
    sheet: str | None = None,
) -> None:
    lowered = {h.strip().casefold() for h in header if h}
    missing = [
        str(col) if isinstance(col, str) else f"position {col}"
        for col in required
        if (col >= len(header) if isinstance(col, int) else col.strip().casefold() not in lowered)
    ]
    if missing:
        raise SourceUnreadable(
            source_id,
            path,
            f"header{where} is missing required column(s): {', '.join(missing)}",
            sheet=sheet,
        )


# ---------------------------------------------------------------------------
# Delimited text
# ---------------------------------------------------------------------------


def _sniff_delimiter(sample: str, *, source_id: str, path: Path) -> str:
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=_SNIFF_DELIMITERS)
    except csv.Error as exc:
        raise SourceUnreadable(source_id, path, f"cannot determine delimiter: {exc}") from exc
    return dialect.delimiter


def iter_delimited_rows(
    path: str | Path,
    *,
    source_id: str,
    delimiter: str | None = ",",
    has_header: bool = True,
    encoding: str = "utf-8-sig",
    required: Sequence[FieldKey] = (),
) -> Iterator[RawRow]:
    """Yield rows of a delimited text file in file order.

    With a header row, ``fields`` are keyed by header name; without one they
    are keyed by 0-based position and the first row fixes the expected width.
    Fully blank lines are skipped. ``delimiter=None`` sniffs the delimiter.
    """

    p = Path(path)
    try:
        with p.open(encoding=encoding, newline="") as f:
            if delimiter is None:
                delimiter = _sniff_delimiter(f.read(_SNIFF_BYTES), source_id=source_id, path=p)
                f.seek(0)
            reader = csv.reader(f, delimiter=delimiter)
            header: list[str] | None = None
            width: int | None = None
            if has_header:
                header = next(reader, None)
                if header is None or all(_is_blank(h) for h in header):
                    raise SourceUnreadable(source_id, p, "file has no header row")
                header = [h.strip() for h in header]
                _check_required(header, required, source_id=source_id, path=p)
                width = len(header)

            for values in reader:
                if all(_is_blank(v) for v in values):
                    continue
                # ``line_num`` counts physical lines, so quoted newlines keep
                # the locator pointing at the row's last line.
                location = RowLocation(source_id=source_id, path=str(p), row=reader.line_num)
                if width is None:
                    width = len(values)
                anomaly = None
                if len(values) != width:
                    anomaly = f"expected {width} field(s), found {len(values)}"
                fields: dict[FieldKey, Any]
                if header is not None:
                    fields = {name: value for name, value in zip(header, values, strict=False)}
                else:
                    fields = dict(enumerate(values))
                yield RawRow(
                    location=location, fields=fields, anomaly=anomaly, cells=tuple(values)
                )
    except FileNotFoundError as exc:
        raise SourceUnreadable(source_id, p, "file not found") from exc
    except PermissionError as exc:
        raise SourceUnreadable(source_id, p, "permission denied") from exc
    except IsADirectoryError as exc:
        raise SourceUnreadable(source_id, p, "path is a directory") from exc
    except UnicodeDecodeError as exc:
        raise SourceUnreadable(source_id, p, f"cannot decode as {encoding}: {exc.reason}") from exc
    except csv.Error as exc:
        raise SourceUnreadable(source_id, p, f"malformed CSV: {exc}") from exc


# ---------------------------------------------------------------------------
# Workbooks
# ---------------------------------------------------------------------------


def _select_sheets(
    available: Sequence[str],
    *,
    sheet_names: Sequence[str] | None,
    sheet_pattern: str | None,
    source_id: str,
    path: Path,
) -> list[str]:
    if sheet_names:
        unknown = [s for s in sheet_names if s not in available]
        if unknown:
            raise SourceUnreadable(source_id, path, f"sheet(s) not found: {', '.join(unknown)}")
        return list(sheet_names)
    if sheet_pattern:
        rx = re.compile(sheet_pattern)
        # Sorted so that period-named sheets (e.g. ``2023-05``) load in time order.
        return sorted(s for s in available if rx.search(s))
    return list(available)


def _sheet_header(cells: Sequence[Any]) -> list[str]:
    # The header ends at the first empty cell; anything further right is a
    # side table and is ignored.
    header: list[str] = []
    for cell in cells:
        if _is_blank(cell):
            break
        header.append(str(cell).strip())
    return header


def iter_workbook_rows(
    path: str | Path,
    *,
    source_id: str,
    sheet_names: Sequence[str] | None = None,
    sheet_pattern: str | None = None,
    has_header: bool = True,
    required: Sequence[FieldKey] = (),
    on_sheet_error: Callable[[SourceUnreadable], None] | None = None,
) -> Iterator[RawRow]:
    """Yield rows from the selected sheets of an ``.xlsx`` workbook.

    Each sheet is an independent row source with its own header. Sheets come
    from ``sheet_names`` (all must exist), else every sheet matching
    ``sheet_pattern`` in sorted order, else every sheet in workbook order.

    A sheet whose header is unusable raises :class:`SourceUnreadable` for the
    whole workbook unless ``on_sheet_error`` is given; then the error is
    handed to it and the remaining sheets are still read.
    """

    from openpyxl import load_workbook
    from openpyxl.utils.exceptions import InvalidFileException

    p = Path(path)
    try:
        wb = load_workbook(p, read_only=True, data_only=True)
    except FileNotFoundError as exc:
        raise SourceUnreadable(source_id, p, "file not found") from exc
    except PermissionError as exc:
        raise SourceUnreadable(source_id, p, "permission denied") from exc
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise SourceUnreadable(source_id, p, f"not a readable workbook: {exc}") from exc

    try:
        selected = _select_sheets(
            wb.sheetnames,
            sheet_names=sheet_names,
            sheet_pattern=sheet_pattern,
            source_id=source_id,
            path=p,
        )
        for sheet in selected:
            ws = wb[sheet]
            rows = ws.iter_rows(values_only=True)
            header: list[str] | None = None
            width: int | None = None
            first_row = 1
            if has_header:
                first = next(rows, None)
                header = _sheet_header(first or ())
                try:
                    if not header:
                        raise SourceUnreadable(
                            source_id, p, f"sheet {sheet!r} has no header row", sheet=sheet
                        )
                    _check_required(
                        header,
                        required,
                        source_id=source_id,
                        path=p,
                        where=f" of sheet {sheet!r}",
                        sheet=sheet,
                    )
                except SourceUnreadable as exc:
                    if on_sheet_error is None:
                        raise
                    on_sheet_error(exc)
                    continue
                width = len(header)
                first_row = 2

            for row_number, values in enumerate(rows, start=first_row):
                cells = list(values)
                if width is not None:
                    cells = cells[:width]
                if all(_is_blank(v) for v in cells):
                    continue
                location = RowLocation(
                    source_id=source_id, path=str(p), row=row_number, sheet=sheet
                )
                fields: dict[FieldKey, Any]
                if header is not None:
                    # Trailing empty cells may be omitted; short rows just
                    # lack those keys.
                    fields = dict(zip(header, cells, strict=False))
                    anomaly = None
                else:
                    while cells and _is_blank(cells[-1]):
                        cells.pop()
                    if width is None:
                        width = len(cells)
                    anomaly = (
                        f"expected {width} field(s), found {len(cells)}"
                        if len(cells) > width
                        else None
                    )
                    fields = dict(enumerate(cells))
                yield RawRow(
                    location=location, fields=fields, anomaly=anomaly, cells=tuple(cells)
                )
    finally:
        wb.close()


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def iter_source_rows(
    source: SourceConfig,
    *,
    source_id: str,
    on_sheet_error: Callable[[SourceUnreadable], None] | None = None,
) -> Iterator[RawRow]:
    """Read ``source`` with the reader its declared or inferred format calls for.

    ``on_sheet_error`` only applies to workbooks; see :func:`iter_workbook_rows`.
    """

    fmt = source.resolved_format()
    required = source.columns.required()
    if fmt is SourceFormat.DELIMITED:
        return iter_delimited_rows(
            source.path,
            source_id=source_id,
            delimiter=source.resolved_delimiter(),
            has_header=source.has_header,
            encoding=source.encoding,
            required=required,
        )
    if fmt is SourceFormat.SPREADSHEET:
        return iter_workbook_rows(
            source.path,
            source_id=source_id,
            sheet_names=source.sheet_names,
            sheet_pattern=source.sheet_pattern,
            has_header=source.has_header,
            required=required,
            on_sheet_error=on_sheet_error,
        )
    raise SourceUnreadable(
        source_id,
        source.path,
        f"cannot determine format from suffix {source.path.suffix!r}; declare 'format'",
    )


__all__ = ["iter_delimited_rows", "iter_source_rows", "iter_workbook_rows"]
