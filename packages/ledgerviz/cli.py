"""Command-line front end for ``ledgerviz``.

Resolves options (and an optional JSON config file) into a
:class:`~ledgerviz.config.PipelineConfig`, runs the pipeline and prints the
aggregated series, category totals and the data-quality report with ``rich``.
Environment variables are loaded from a local ``.env`` via ``python-dotenv``
before anything else runs.

Exit codes: ``0`` success, ``1`` the run was aborted (unreadable source,
strict-mode rejection, alias conflict, cancellation), ``2`` invalid options
or configuration.
"""

from __future__ import annotations

import json
import os
from datetime import date
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import PipelineConfig
from .errors import PipelineError, RowRejected, SourceUnreadable
from .events import LoggingSink
from .export import write_result_json, write_transactions_csv
from .logging_setup import configure_logging
from .models import Granularity, Locale, PipelineResult
from .pipeline import run_pipeline

app = typer.Typer(
    name="ledgerviz",
    no_args_is_help=True,
    add_completion=False,
    help="Aggregate transaction exports (CSV/XLSX) into time series and category totals.",
)
console = Console()


def _resolve_max_workers(n_sources: int) -> int:
    """Worker count for the per-source fan-out.

    Honors ``LEDGERVIZ_MAX_WORKERS`` when it is a positive integer, capped to
    the number of sources and to 32; otherwise ``min(8, n_sources)``.
    """

    env_workers = os.getenv("LEDGERVIZ_MAX_WORKERS")
    try:
        max_workers = int(env_workers) if env_workers else None
    except ValueError:
        max_workers = None

    if max_workers is not None and max_workers > 0:
        return max(1, min(max_workers, n_sources, 32))
    return max(1, min(8, n_sources))


def _column_ref(value: str) -> str | int:
    # Bare digits select a 0-based column position.
    return int(value) if value.isdigit() else value


def _parse_aliases(values: list[str]) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for item in values:
        raw, sep, canonical = item.partition("=")
        if not sep or not raw.strip() or not canonical.strip():
            raise typer.BadParameter(f"expected RAW=CANONICAL, got {item!r}", param_hint="--alias")
        pairs.append((raw, canonical))
    return pairs


def _build_config(
    *,
    config_file: Path | None,
    inputs: list[Path],
    overrides: dict[str, Any],
    source_options: dict[str, Any],
) -> PipelineConfig:
    data: dict[str, Any] = {}
    if config_file is not None:
        try:
            data = json.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise typer.BadParameter(f"cannot read {config_file}: {e}", param_hint="--config") from e
    if inputs:
        data["sources"] = [{"path": str(p), **source_options} for p in inputs]
    elif source_options and data.get("sources"):
        data["sources"] = [{**s, **source_options} for s in data["sources"]]
    for key, value in overrides.items():
        if key == "date_range":
            data["date_range"] = {**data.get("date_range", {}), **value}
        elif key == "category_aliases":
            data["category_aliases"] = [*_existing_aliases(data), *value]
        else:
            data[key] = value
    if "max_workers" not in data:
        data["max_workers"] = _resolve_max_workers(len(data.get("sources") or ()) or 1)
    return PipelineConfig.model_validate(data)


def _existing_aliases(data: dict[str, Any]) -> list[tuple[str, str]]:
    existing = data.get("category_aliases") or []
    if isinstance(existing, dict):
        return list(existing.items())
    return [tuple(pair) for pair in existing]


def _render(result: PipelineResult) -> None:
    agg = result.aggregation
    if agg.is_empty:
        console.print("[yellow]No transactions in the selected range.[/yellow]")
    else:
        series = Table(title=f"{agg.granularity.value.capitalize()} totals")
        series.add_column("Bucket")
        series.add_column("Total", justify="right")
        series.add_column("Count", justify="right")
        series.add_column("Cumulative", justify="right")
        for p in agg.time_series:
            series.add_row(p.start.isoformat(), str(p.total), str(p.count), str(p.cumulative))
        console.print(series)

        cats = Table(title="Categories")
        cats.add_column("Category")
        cats.add_column("Total", justify="right")
        cats.add_column("Count", justify="right")
        cats.add_column("Min", justify="right")
        cats.add_column("Max", justify="right")
        for name, s in agg.categories.entries:
            cats.add_row(name, str(s.total), str(s.count), str(s.minimum), str(s.maximum))
        console.print(cats)

        for label, shares in (("Income", agg.split.income), ("Expenses", agg.split.expenses)):
            if not shares:
                continue
            side = Table(title=label)
            side.add_column("Category")
            side.add_column("Total", justify="right")
            side.add_column("%", justify="right")
            for share in shares:
                side.add_row(share.category, str(share.total), str(share.percentage))
            console.print(side)

    report = result.report
    style = "yellow" if report.is_lossy else "green"
    console.print(
        Panel("\n".join(report.summary_lines()), title="Data quality", border_style=style)
    )
    if report.total_rejected:
        console.print(
            f"[bold yellow]Warning:[/bold yellow] {report.total_rejected} row(s) rejected "
            "and excluded from the totals."
        )
        for r in report.rejected[:10]:
            line = f"  {r.location.describe()}: {r.reason.value} {r.detail}"
            console.print(escape(line.rstrip()))
        if report.total_rejected > 10:
            console.print(f"  ... and {report.total_rejected - 10} more")
    if report.failed_sources:
        console.print(
            f"[bold yellow]Warning:[/bold yellow] {len(report.failed_sources)} source(s) or "
            "sheet(s) could not be read and were skipped."
        )


@app.callback()
def _root(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log at DEBUG level.")] = False,
) -> None:
    """Load ``.env`` (without overriding the environment) and set up logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging("DEBUG" if verbose else None, force=True)


@app.command("run")
def run_cmd(
    inputs: Annotated[
        list[Path] | None,
        typer.Option("--input", "-i", help="Input file (.csv, .tsv, .txt, .xlsx); repeatable."),
    ] = None,
    config_file: Annotated[
        Path | None, typer.Option("--config", help="JSON file with pipeline settings.")
    ] = None,
    granularity: Annotated[
        Granularity | None, typer.Option(help="Bucket width for the time series.")
    ] = None,
    start: Annotated[str | None, typer.Option(help="Inclusive start date (YYYY-MM-DD).")] = None,
    end: Annotated[str | None, typer.Option(help="Inclusive end date (YYYY-MM-DD).")] = None,
    strict: Annotated[
        bool | None, typer.Option("--strict/--lenient", help="Abort on any rejected row.")
    ] = None,
    alias: Annotated[
        list[str] | None, typer.Option(help="Category alias RAW=CANONICAL; repeatable.")
    ] = None,
    locale: Annotated[
        Locale | None, typer.Option(help="Tie-break for ambiguous numeric dates.")
    ] = None,
    precision: Annotated[int | None, typer.Option(help="Decimal places for amounts.")] = None,
    top: Annotated[
        int | None, typer.Option(help="Keep only the N largest income/expense categories.")
    ] = None,
    delimiter: Annotated[
        str | None, typer.Option(help="Field delimiter (sniffed when omitted).")
    ] = None,
    sheet: Annotated[list[str] | None, typer.Option(help="Workbook sheet name; repeatable.")] = None,
    sheet_pattern: Annotated[
        str | None, typer.Option(help="Regex selecting workbook sheets.")
    ] = None,
    date_column: Annotated[str | None, typer.Option(help="Date column name or position.")] = None,
    amount_column: Annotated[
        str | None, typer.Option(help="Amount column name or position.")
    ] = None,
    category_column: Annotated[
        str | None, typer.Option(help="Category column name or position.")
    ] = None,
    account_column: Annotated[
        str | None, typer.Option(help="Account column name or position (optional).")
    ] = None,
    account: Annotated[
        list[str] | None, typer.Option(help="Only aggregate this account; repeatable.")
    ] = None,
    opening_balance: Annotated[
        str | None, typer.Option(help="Starting value of the cumulative series.")
    ] = None,
    output: Annotated[Path | None, typer.Option(help="Write the full result as JSON.")] = None,
    transactions_csv: Annotated[
        Path | None, typer.Option(help="Write the canonical transactions as CSV.")
    ] = None,
) -> None:
    """Parse, reconcile and aggregate the given inputs."""

    overrides: dict[str, Any] = {}
    if granularity is not None:
        overrides["granularity"] = granularity
    if strict is not None:
        overrides["strict"] = strict
    if locale is not None:
        overrides["locale"] = locale
    if precision is not None:
        overrides["precision"] = precision
    if top is not None:
        overrides["top_categories"] = top
    bounds: dict[str, date] = {}
    try:
        if start:
            bounds["start"] = date.fromisoformat(start)
        if end:
            bounds["end"] = date.fromisoformat(end)
    except ValueError as e:
        console.print(f"[red]Error:[/red] invalid date bound: {escape(str(e))}")
        raise typer.Exit(2) from e
    if bounds:
        overrides["date_range"] = bounds
    if alias:
        overrides["category_aliases"] = _parse_aliases(alias)
    if account:
        overrides["accounts"] = list(account)
    if opening_balance is not None:
        overrides["opening_balance"] = opening_balance

    source_options: dict[str, Any] = {}
    if delimiter is not None:
        source_options["delimiter"] = "\t" if delimiter == "\\t" else delimiter
    if sheet:
        source_options["sheet_names"] = list(sheet)
    if sheet_pattern is not None:
        source_options["sheet_pattern"] = sheet_pattern
    columns = {
        key: _column_ref(value)
        for key, value in (
            ("date_column", date_column),
            ("amount_column", amount_column),
            ("category_column", category_column),
            ("account_column", account_column),
        )
        if value is not None
    }
    if columns:
        source_options["columns"] = columns

    if not inputs and config_file is None:
        console.print("[red]Error:[/red] provide at least one --input or a --config file")
        raise typer.Exit(2)

    try:
        config = _build_config(
            config_file=config_file,
            inputs=list(inputs or []),
            overrides=overrides,
            source_options=source_options,
        )
    except ValidationError as e:
        console.print(f"[red]Error:[/red] invalid configuration\n{escape(str(e))}")
        raise typer.Exit(2) from e

    try:
        result = run_pipeline(config, sink=LoggingSink())
    except RowRejected as e:
        first = e.rejected[0].location
        console.print(
            f"[red]Error:[/red] run aborted by --strict: {len(e.rejected)} row(s) rejected; "
            f"first in source {escape(repr(first.source_id))} at {escape(first.describe())} "
            f"({e.rejected[0].reason.value})"
        )
        raise typer.Exit(1) from e
    except SourceUnreadable as e:
        policy = " (strict mode)" if config.strict else ""
        where = f" sheet {e.sheet!r}" if e.sheet else ""
        console.print(
            f"[red]Error:[/red] source {escape(repr(e.source_id))}{escape(where)} "
            f"is unreadable{policy}: {escape(e.reason)}"
        )
        raise typer.Exit(1) from e
    except PipelineError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    except ValueError as e:
        console.print(f"[red]Error:[/red] invalid configuration: {escape(str(e))}")
        raise typer.Exit(2) from e

    _render(result)
    if output is not None:
        write_result_json(result, output)
        console.print(f"[cyan]Wrote[/cyan] {output}")
    if transactions_csv is not None:
        write_transactions_csv(result.transactions, transactions_csv)
        console.print(f"[cyan]Wrote[/cyan] {transactions_csv}")


if __name__ == "__main__":  # pragma: no cover
    app()
