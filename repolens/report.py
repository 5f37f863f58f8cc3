"""Rendering of review reports for the terminal and for JSON consumers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .aggregator import issue_totals
from .models import ERRORS, IMPROVEMENTS, THINGS_DONE_RIGHT, IssueItem, ReviewReport, Severity

_SEVERITY_STYLE = {
    Severity.ERROR: "bold red",
    Severity.CRITICAL: "red",
    Severity.HIGH: "yellow",
    Severity.MEDIUM: "cyan",
    Severity.LOW: "dim",
}


def write_json(report: ReviewReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")


def _location(item: IssueItem) -> str:
    if item.line_start is None:
        return ""
    if item.line_end is None or item.line_end == item.line_start:
        return f"L{item.line_start}"
    return f"L{item.line_start}-{item.line_end}"


def summary_table(report: ReviewReport) -> Table:
    table = Table(title="Review Summary", show_header=True, show_lines=False)
    table.add_column("File", style="cyan")
    table.add_column("Errors", justify="right", style="red")
    table.add_column("Improvements", justify="right", style="yellow")
    table.add_column("Done Right", justify="right", style="green")
    for path in report.files:
        counts = report.counts(path)
        table.add_row(path, str(counts[ERRORS]), str(counts[IMPROVEMENTS]), str(counts[THINGS_DONE_RIGHT]))
    return table


def errors_table(report: ReviewReport) -> Optional[Table]:
    rows = [(path, item) for path, items in report.errors.items() for item in items]
    if not rows:
        return None
    table = Table(title="Errors", show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Where", style="dim")
    table.add_column("Severity")
    table.add_column("Issue")
    for path, item in rows:
        style = _SEVERITY_STYLE.get(item.severity, "")
        table.add_row(path, _location(item), f"[{style}]{item.severity.value}[/{style}]", item.title)
    return table


def render(report: ReviewReport, console: Console, details: bool = True) -> None:
    console.print(summary_table(report))
    totals = issue_totals(report)
    console.print(
        f"\n[bold]{len(report.files)}[/bold] files reviewed: "
        f"[red]{totals[ERRORS]} errors[/red], "
        f"[yellow]{totals[IMPROVEMENTS]} improvements[/yellow], "
        f"[green]{totals[THINGS_DONE_RIGHT]} things done right[/green]"
    )
    if details:
        table = errors_table(report)
        if table is not None:
            console.print(table)
    if report.general_comments:
        body = "\n".join(f"• {comment}" for comment in report.general_comments)
        console.print(Panel(body, title="Overall Assessment", border_style="blue"))
    if report.root_summary:
        console.print(Panel(report.root_summary, title="Repository Summary", border_style="green"))
