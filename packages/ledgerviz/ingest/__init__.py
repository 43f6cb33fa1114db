"""Source readers producing :class:`~ledgerviz.models.RawRow` streams."""

from .readers import iter_delimited_rows, iter_source_rows, iter_workbook_rows

__all__ = ["iter_delimited_rows", "iter_source_rows", "iter_workbook_rows"]
