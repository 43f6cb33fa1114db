from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from ledgerviz.config import ColumnMapping, SourceConfig
from ledgerviz.errors import SourceUnreadable
from ledgerviz.ingest import iter_delimited_rows, iter_source_rows, iter_workbook_rows
from tests.helpers.files import write_csv, write_xlsx

# ---- Delimited ---------------------------------------------------------------


def test_header_rows_keyed_by_name(tmp_path: Path):
    p = write_csv(
        tmp_path / "a.csv",
        """
date,amount,category
2023-01-01,10.00,Food
2023-01-02,-5.00,Transport
""",
    )
    rows = list(iter_delimited_rows(p, source_id="a"))
    assert [r.fields["category"] for r in rows] == ["Food", "Transport"]
    assert [r.location.row for r in rows] == [2, 3]
    assert all(r.anomaly is None for r in rows)
    assert rows[0].location.source_id == "a"


def test_quoted_fields_and_embedded_newlines(tmp_path: Path):
    p = write_csv(
        tmp_path / "q.csv",
        'date,amount,category,description\n2023-01-01,"1,234.56",Rent,"line one\nline ""two"""\n',
    )
    (row,) = list(iter_delimited_rows(p, source_id="q"))
    assert row.fields["amount"] == "1,234.56"
    assert row.fields["description"] == 'line one\nline "two"'
    assert row.location.row == 3


def test_blank_lines_are_skipped_and_bom_is_stripped(tmp_path: Path):
    p = tmp_path / "bom.csv"
    p.write_bytes("\ufeffdate,amount,category\n\n2023-01-01,1,X\n,,\n".encode())
    rows = list(iter_delimited_rows(p, source_id="bom"))
    assert len(rows) == 1
    assert "date" in rows[0].fields


def test_field_count_mismatch_is_flagged_not_dropped(tmp_path: Path):
    p = write_csv(
        tmp_path / "m.csv",
        """
date,amount,category
2023-01-01,1,X,extra
2023-01-02,2
""",
    )
    rows = list(iter_delimited_rows(p, source_id="m"))
    assert len(rows) == 2
    assert rows[0].anomaly == "expected 3 field(s), found 4"
    assert rows[1].anomaly == "expected 3 field(s), found 2"


@pytest.mark.parametrize("delimiter", [";", "\t", "|"])
def test_delimiter_is_sniffed(tmp_path: Path, delimiter: str):
    text = delimiter.join(["date", "amount", "category"]) + "\n"
    text += delimiter.join(["2023-01-01", "1,50", "Food"]) + "\n"
    text += delimiter.join(["2023-01-02", "2,50", "Fuel"]) + "\n"
    p = write_csv(tmp_path / "s.txt", text)
    rows = list(iter_delimited_rows(p, source_id="s", delimiter=None))
    assert rows[0].fields == {"date": "2023-01-01", "amount": "1,50", "category": "Food"}


def test_headerless_rows_keyed_by_position(tmp_path: Path):
    p = write_csv(tmp_path / "n.csv", "2023-01-01,1,X\n2023-01-02,2,Y,extra\n")
    rows = list(iter_delimited_rows(p, source_id="n", has_header=False))
    assert rows[0].fields == {0: "2023-01-01", 1: "1", 2: "X"}
    assert rows[0].location.row == 1
    assert rows[1].anomaly is not None


def test_missing_required_column_is_source_level(tmp_path: Path):
    p = write_csv(tmp_path / "h.csv", "Date,Value,Category\n2023-01-01,1,X\n")
    with pytest.raises(SourceUnreadable, match="missing required column"):
        list(iter_delimited_rows(p, source_id="h", required=("date", "amount", "category")))


def test_required_columns_match_case_insensitively(tmp_path: Path):
    p = write_csv(tmp_path / "h.csv", " DATE ,Amount,CATEGORY\n2023-01-01,1,X\n")
    rows = list(iter_delimited_rows(p, source_id="h", required=("date", "amount", "category")))
    assert rows[0].fields["DATE"] == "2023-01-01"


@pytest.mark.parametrize(
    ("setup", "match"),
    [
        (lambda d: d / "missing.csv", "file not found"),
        (lambda d: d, "directory"),
        (lambda d: write_csv(d / "empty.csv", ""), "no header"),
    ],
)
def test_unreadable_sources(tmp_path: Path, setup, match):
    with pytest.raises(SourceUnreadable, match=match) as ei:
        list(iter_delimited_rows(setup(tmp_path), source_id="x"))
    assert ei.value.source_id == "x"


def test_undecodable_bytes(tmp_path: Path):
    p = tmp_path / "latin.csv"
    p.write_bytes(b"date,amount,category\n2023-01-01,1,Caf\xe9\n")
    with pytest.raises(SourceUnreadable, match="cannot decode"):
        list(iter_delimited_rows(p, source_id="latin"))


# ---- Workbooks ---------------------------------------------------------------


def test_workbook_rows_keep_native_types(tmp_path: Path):
    p = write_xlsx(
        tmp_path / "b.xlsx",
        {
            "Jan": [
                ["date", "amount", "category", None, "side table"],
                [datetime(2023, 1, 1), 10.5, "Food", None, "ignored"],
                [None, None, None],
                [45047, -3, "Fuel"],
            ]
        },
    )
    rows = list(iter_workbook_rows(p, source_id="b"))
    assert len(rows) == 2
    assert rows[0].fields == {"date": datetime(2023, 1, 1), "amount": 10.5, "category": "Food"}
    assert rows[0].location.sheet == "Jan"
    assert rows[0].location.row == 2
    assert rows[1].location.row == 4
    assert rows[1].fields["date"] == 45047


def test_sheet_pattern_selects_sorted_sheets(tmp_path: Path):
    header = ["date", "amount", "category"]
    p = write_xlsx(
        tmp_path / "months.xlsx",
        {
            "2023-02": [header, ["2023-02-01", 2, "B"]],
            "Notes": [["free text"]],
            "2023-01": [header, ["2023-01-01", 1, "A"]],
        },
    )
    rows = list(iter_workbook_rows(p, source_id="m", sheet_pattern=r"^\d{4}-\d{2}$"))
    assert [r.location.sheet for r in rows] == ["2023-01", "2023-02"]


def test_explicit_sheet_names_must_exist(tmp_path: Path):
    p = write_xlsx(tmp_path / "b.xlsx", {"Data": [["date", "amount", "category"]]})
    with pytest.raises(SourceUnreadable, match="sheet"):
        list(iter_workbook_rows(p, source_id="b", sheet_names=["Missing"]))


def test_sheet_errors_go_to_callback_when_given(tmp_path: Path):
    header = ["date", "amount", "category"]
    p = write_xlsx(
        tmp_path / "mixed.xlsx",
        {"Empty": [], "Jan": [header, ["2023-01-01", 1, "A"]], "Memo": [["text"]]},
    )
    required = ("date", "amount", "category")
    with pytest.raises(SourceUnreadable) as ei:
        list(iter_workbook_rows(p, source_id="m", required=required))
    assert ei.value.sheet == "Empty"

    errors: list[SourceUnreadable] = []
    rows = list(
        iter_workbook_rows(p, source_id="m", required=required, on_sheet_error=errors.append)
    )
    assert [r.location.sheet for r in rows] == ["Jan"]
    assert rows[0].cells == ("2023-01-01", 1, "A")
    assert [(e.sheet, "header" in e.reason) for e in errors] == [("Empty", True), ("Memo", True)]


def test_not_a_workbook(tmp_path: Path):
    p = tmp_path / "fake.xlsx"
    p.write_text("date,amount\n", encoding="utf-8")
    with pytest.raises(SourceUnreadable):
        list(iter_workbook_rows(p, source_id="fake"))


# ---- Dispatch ----------------------------------------------------------------


def test_dispatch_by_suffix(tmp_path: Path):
    csv_path = write_csv(tmp_path / "a.csv", "date,amount,category\n2023-01-01,1,X\n")
    xlsx_path = write_xlsx(tmp_path / "b.xlsx", {"S": [["date", "amount", "category"], ["2023-01-01", 1, "X"]]})
    assert len(list(iter_source_rows(SourceConfig(path=csv_path), source_id="a"))) == 1
    assert len(list(iter_source_rows(SourceConfig(path=xlsx_path), source_id="b"))) == 1


def test_unknown_suffix_is_unreadable(tmp_path: Path):
    p = write_csv(tmp_path / "data.bin", "date,amount,category\n")
    with pytest.raises(SourceUnreadable, match="format"):
        iter_source_rows(SourceConfig(path=p), source_id="bin")


def test_headerless_source_requires_positions(tmp_path: Path):
    with pytest.raises(ValueError):
        SourceConfig(path=tmp_path / "n.csv", has_header=False)
    cfg = SourceConfig(
        path=tmp_path / "n.csv",
        has_header=False,
        columns=ColumnMapping(date_column=0, amount_column=1, category_column=2, description_column=None),
    )
    assert cfg.columns.required() == (0, 1, 2)
