"""Raw field -> typed value conversion for dates, amounts and categories.

Everything here is a pure function of its inputs: no logging, no shared
state. Problems come back as :class:`~ledgerviz.models.RejectedRow` values
from :class:`RowNormalizer`; the lower-level ``parse_*`` helpers raise
``ValueError`` with a short human-readable message.

Dates
-----
Patterns are tried in the order of :data:`DATE_PATTERNS`; the first whose
shape matches decides the result. Numeric ``A/B/YYYY`` dates that are valid
both as day/month and as month/day (with different results) are resolved by
the locale, day-first when no locale is configured.

Amounts
-------
Currency symbols/codes and thousands separators are stripped. The last ``.``
or ``,`` is the decimal separator only when it is followed by exactly one or
two trailing digits; otherwise every separator is a thousands separator and
must group digits in threes. Negatives may use a leading ``-``, a trailing
``-``, or surrounding parentheses.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .config import ColumnMapping
from .models import FieldKey, Locale, RawRow, RejectedRow, RejectReason, Transaction

# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

# Last valid Excel serial (9999-12-31) in the 1900 date system.
_MAX_SERIAL = 2_958_465

_MONTH_NAME_FORMATS = (
    "%d %b %Y",
    "%d %B %Y",
    "%d %b %y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d-%b-%Y",
    "%d-%b-%y",
)


def _two_digit_year(y: int) -> int:
    # Same pivot as strptime's %y: 69-99 -> 19xx, 00-68 -> 20xx.
    if y >= 100:
        return y
    return 1900 + y if y >= 69 else 2000 + y


def _from_serial(serial: int | float | Decimal) -> date:
    from openpyxl.utils.datetime import from_excel

    if not Decimal(str(serial)).is_finite():
        raise ValueError(f"spreadsheet date serial is not finite: {serial!r}")
    whole = int(serial)
    if not 1 <= whole <= _MAX_SERIAL:
        raise ValueError(f"spreadsheet date serial out of range: {serial!r}")
    return from_excel(whole).date()


def _build_serial(m: re.Match[str], locale: Locale) -> date:
    return _from_serial(Decimal(m.group(0)))


def _build_ymd(m: re.Match[str], locale: Locale) -> date:
    return date(int(m["y"]), int(m["m"]), int(m["d"]))


def _build_numeric(m: re.Match[str], locale: Locale) -> date:
    a, b, y = int(m["a"]), int(m["b"]), _two_digit_year(int(m["y"]))
    day_first: date | None
    month_first: date | None
    try:
        day_first = date(y, b, a)
    except ValueError:
        day_first = None
    try:
        month_first = date(y, a, b)
    except ValueError:
        month_first = None
    if day_first and month_first and day_first != month_first:
        return month_first if locale is Locale.MONTH_FIRST else day_first
    result = day_first or month_first
    if result is None:
        raise ValueError(f"not a valid calendar date: {m.group(0)!r}")
    return result


def _build_month_name(m: re.Match[str], locale: Locale) -> date:
    text = " ".join(m.group(0).split())
    for fmt in _MONTH_NAME_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unrecognized month-name date: {text!r}")


@dataclass(frozen=True, slots=True)
class DatePattern:
    name: str
    regex: re.Pattern[str]
    build: Callable[[re.Match[str], Locale], date]


DATE_PATTERNS: tuple[DatePattern, ...] = (
    DatePattern("serial", re.compile(r"^\d{5}(?:\.\d+)?$"), _build_serial),
    DatePattern(
        "iso",
        re.compile(r"^(?P<y>\d{4})(?P<sep>[-/.])(?P<m>\d{1,2})(?P=sep)(?P<d>\d{1,2})(?:[T ].*)?$"),
        _build_ymd,
    ),
    DatePattern("compact", re.compile(r"^(?P<y>\d{4})(?P<m>\d{2})(?P<d>\d{2})$"), _build_ymd),
    DatePattern(
        "numeric",
        re.compile(
            r"^(?P<a>\d{1,2})(?P<sep>[-/.])(?P<b>\d{1,2})(?P=sep)(?P<y>\d{4}|\d{2})(?:[T ].*)?$"
        ),
        _build_numeric,
    ),
    DatePattern(
        "month_name",
        re.compile(r"^(?:\d{1,2}[ -][A-Za-z]{3,9}[ -]\d{2,4}|[A-Za-z]{3,9} \d{1,2},? \d{4})$"),
        _build_month_name,
    ),
)


def parse_date(value: Any, *, locale: Locale | None = None) -> date:
    """Return the calendar date represented by ``value``.

    Accepts native ``date``/``datetime`` values, spreadsheet serial numbers
    (as numbers or 5-digit text), and the text shapes in :data:`DATE_PATTERNS`.
    Raises ``ValueError`` when nothing matches or the date does not exist.
    """

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise ValueError(f"not a date: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        return _from_serial(value)
    if value is None:
        raise ValueError("date is missing")

    s = str(value).strip()
    if not s:
        raise ValueError("date is empty")
    tie_break = locale or Locale.DAY_FIRST
    for pattern in DATE_PATTERNS:
        m = pattern.regex.match(s)
        if m:
            try:
                return pattern.build(m, tie_break)
            except (ValueError, OverflowError) as exc:
                raise ValueError(f"invalid {pattern.name} date {s!r}: {exc}") from exc
    raise ValueError(f"unrecognized date: {s!r}")


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

_CURRENCY_PREFIX_RE = re.compile(r"^(?:[A-Z]{3}\s*|[A-Z]{0,2}[$€£¥₹₩₽₺¢]\s*)")
_CURRENCY_SUFFIX_RE = re.compile(r"(?:\s*[A-Z]{3}|\s*[$€£¥₹₩₽₺¢])$")
# Whitespace (including no-break spaces) and apostrophes group thousands.
_GROUPING_CHARS_RE = re.compile(r"[\s'’]")
_DECIMAL_TAIL_RE = re.compile(r"[.,](\d{1,2})$")
_MINUS_SIGNS = ("-", "−")


def _grouped(int_part: str, sep: str) -> str:
    if sep not in int_part:
        if not int_part.isdigit():
            raise ValueError(f"invalid digits: {int_part!r}")
        return int_part
    if not re.fullmatch(rf"[1-9]\d{{0,2}}(?:{re.escape(sep)}\d{{3}})+", int_part):
        raise ValueError(f"invalid thousands grouping: {int_part!r}")
    return int_part.replace(sep, "")


def _strip_markers(s: str) -> tuple[str, bool]:
    negative = False
    # Strip sign, currency and parentheses until stable so any ordering of
    # these markers ("-$(1,234.56)", "(EUR 12,50)", "100.00-") is handled.
    while True:
        before = s
        if s.startswith("+"):
            s = s[1:].lstrip()
        elif s.startswith(_MINUS_SIGNS):
            negative = True
            s = s[1:].lstrip()
        elif s.endswith(_MINUS_SIGNS):
            negative = True
            s = s[:-1].rstrip()
        s = _CURRENCY_PREFIX_RE.sub("", s, count=1)
        s = _CURRENCY_SUFFIX_RE.sub("", s, count=1)
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1].strip()
        if s == before:
            return s, negative


def parse_amount(value: Any, *, precision: int | None = None) -> Decimal:
    """Return ``value`` as a finite signed :class:`~decimal.Decimal`.

    Native numbers from spreadsheets are converted through their shortest
    ``repr`` so ``0.1`` stays ``0.1``. When ``precision`` is given the result
    is quantized to that many places with ``ROUND_HALF_UP``.
    """

    if isinstance(value, bool):
        raise ValueError(f"not an amount: {value!r}")
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, int):
        d = Decimal(value)
    elif isinstance(value, float):
        d = Decimal(repr(value))
    elif value is None:
        raise ValueError("amount is missing")
    else:
        d = _parse_amount_text(str(value))

    if not d.is_finite():
        raise ValueError(f"amount is not finite: {value!r}")
    if precision is not None:
        try:
            d = d.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)
        except InvalidOperation as exc:
            raise ValueError(f"amount out of range: {value!r}") from exc
    return d


def _parse_amount_text(raw: str) -> Decimal:
    s = raw.strip()
    if not s:
        raise ValueError("amount is empty")
    s, negative = _strip_markers(s)
    s = _GROUPING_CHARS_RE.sub("", s)
    if not s or not any(ch.isdigit() for ch in s) or not re.fullmatch(r"[\d.,]+", s):
        raise ValueError(f"invalid amount: {raw!r}")

    tail = _DECIMAL_TAIL_RE.search(s)
    if tail:
        dec_sep = s[tail.start()]
        int_part = s[: tail.start()]
        if dec_sep in int_part:
            raise ValueError(f"ambiguous separators in amount: {raw!r}")
        group_sep = "," if dec_sep == "." else "."
        digits = _grouped(int_part, group_sep) if int_part else "0"
        text = f"{digits}.{tail.group(1)}"
    else:
        if "." in s and "," in s:
            raise ValueError(f"ambiguous separators in amount: {raw!r}")
        group_sep = "," if "," in s else "."
        text = _grouped(s, group_sep)

    try:
        d = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    return -abs(d) if negative else d


# ---------------------------------------------------------------------------
# Text fields
# ---------------------------------------------------------------------------


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = " ".join(str(value).split())
    return cleaned or None


def normalize_category(value: Any) -> str | None:
    """Trim and collapse whitespace; casing is preserved for display."""

    return _clean_text(value)


def normalize_description(value: Any) -> str | None:
    return _clean_text(value)


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------

_MISSING = object()


def _lookup(row: RawRow, key: FieldKey | None) -> Any:
    if key is None:
        return _MISSING
    fields = row.fields
    if key in fields:
        return fields[key]
    if isinstance(key, int):
        # Header-keyed rows still answer positional references.
        return row.cells[key] if key < len(row.cells) else _MISSING
    if isinstance(key, str):
        wanted = key.strip().casefold()
        for name, value in fields.items():
            if isinstance(name, str) and name.strip().casefold() == wanted:
                return value
    return _MISSING


def _is_blank(value: Any) -> bool:
    return value is _MISSING or value is None or (isinstance(value, str) and not value.strip())


@dataclass(frozen=True, slots=True)
class RowNormalizer:
    """Callable turning one :class:`RawRow` into a Transaction or a RejectedRow."""

    columns: ColumnMapping
    locale: Locale | None = None
    precision: int | None = 2

    def __call__(self, row: RawRow) -> Transaction | RejectedRow:
        if row.anomaly:
            return RejectedRow(row, RejectReason.MALFORMED_ROW, row.anomaly)

        raw_date = _lookup(row, self.columns.date_column)
        raw_amount = _lookup(row, self.columns.amount_column)
        raw_category = _lookup(row, self.columns.category_column)
        for label, raw in (("date", raw_date), ("amount", raw_amount)):
            if _is_blank(raw):
                return RejectedRow(row, RejectReason.MISSING_REQUIRED_FIELD, f"{label} is missing")
        if raw_category is _MISSING:
            return RejectedRow(row, RejectReason.MISSING_REQUIRED_FIELD, "category is missing")

        try:
            tx_date = parse_date(raw_date, locale=self.locale)
        except ValueError as exc:
            return RejectedRow(row, RejectReason.UNPARSEABLE_DATE, str(exc))
        try:
            amount = parse_amount(raw_amount, precision=self.precision)
        except ValueError as exc:
            return RejectedRow(row, RejectReason.UNPARSEABLE_AMOUNT, str(exc))
        category = normalize_category(raw_category)
        if category is None:
            return RejectedRow(row, RejectReason.EMPTY_CATEGORY, "category is empty")

        raw_description = _lookup(row, self.columns.description_column)
        raw_account = _lookup(row, self.columns.account_column)
        return Transaction(
            date=tx_date,
            amount=amount,
            category=category,
            description=None if raw_description is _MISSING else normalize_description(raw_description),
            source_id=row.location.source_id,
            location=row.location,
            account=None if raw_account is _MISSING else _clean_text(raw_account),
        )


def normalize_row(
    row: RawRow,
    *,
    columns: ColumnMapping | None = None,
    locale: Locale | None = None,
    precision: int | None = 2,
) -> Transaction | RejectedRow:
    """Functional form of :class:`RowNormalizer` for one-off use."""

    return RowNormalizer(columns or ColumnMapping(), locale, precision)(row)


__all__ = [
    "DATE_PATTERNS",
    "DatePattern",
    "RowNormalizer",
    "normalize_category",
    "normalize_description",
    "normalize_row",
    "parse_amount",
    "parse_date",
]
