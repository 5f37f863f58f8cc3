"""Typer-based CLI for RepoLens."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__, config, config_manager, report as report_view
from .cli_setup import config_app
from .dependency_extractor import extract
from .errors import InvalidPathError
from .graph_context import FileGraphContext
from .llm import LLMClient
from .records import JsonLinesRecordSink
from .reviewer import RepositoryReviewer
from .tree_walker import walk

console = Console()

app = typer.Typer(
    help="🔍 RepoLens: LLM-assisted per-file code review for local repositories.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(config_app, name="config")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"RepoLens v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    )
):
    """RepoLens: review every file of a repository with an LLM, in dependency context."""
    pass


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _fail(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")
    raise typer.Exit(code=1)


@app.command("review")
def review(
    path: str = typer.Argument(..., help="Local repository checkout to review."),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Concurrent evaluations."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait for the whole batch."),
    result_timeout: Optional[float] = typer.Option(None, "--result-timeout", help="Seconds to wait per result."),
    tpm: Optional[int] = typer.Option(None, "--tpm", min=1, help="Estimated tokens per minute budget."),
    max_chars: Optional[int] = typer.Option(None, "--max-chars", min=1, help="Characters of each file sent."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the JSON report here."),
    records: Optional[Path] = typer.Option(None, "--records", help="Append per-file JSONL records here."),
    dump: bool = typer.Option(False, "--dump", help="Save each parsed evaluation under ~/.repolens/evaluations."),
    no_assess: bool = typer.Option(False, "--no-assess", help="Skip the overall assessment call."),
    rollup: bool = typer.Option(False, "--rollup", help="Also summarize folders and the repository."),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="LLM provider (defaults to config)."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name (defaults to config)."),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key for cloud providers."),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Log progress to stderr."),
):
    """Review every eligible file of a repository and print the categorized report."""
    _configure_logging(verbose)

    settings = config_manager.load_review_settings()
    overrides = {
        "workers": workers,
        "batch_timeout": timeout,
        "result_timeout": result_timeout,
        "tokens_per_minute": tpm,
        "max_chars": max_chars,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(settings, name, value)

    try:
        client = LLMClient(provider=provider, model=model, api_key=api_key)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--provider")

    reviewer = RepositoryReviewer(
        client,
        settings=settings,
        assess=not no_assess,
        rollup=rollup,
        record_sink=JsonLinesRecordSink(records) if records else None,
        dump_dir=config.DUMP_DIR if dump else None,
    )

    console.print(f"\n[bold cyan]🔍 Reviewing {path} with {client.provider_name}/{client.model}...[/bold cyan]\n")
    try:
        run = reviewer.review(path)
    except InvalidPathError as exc:
        _fail(str(exc))

    report_view.render(run.report, console)
    if output:
        report_view.write_json(run.report, output)
        console.print(f"[green]✓[/green] Report written to {output}")
    if records:
        console.print(f"[green]✓[/green] {run.records_written} records appended to {records}")


@app.command("tree")
def show_tree(
    path: str = typer.Argument(..., help="Local repository checkout."),
):
    """Show the files a review would consider."""
    try:
        tree = walk(path)
    except InvalidPathError as exc:
        _fail(str(exc))
    typer.echo(tree.render())
    typer.echo(f"\nFiles: {tree.file_count} | Directories: {tree.directory_count}")


@app.command("deps")
def show_deps(
    path: str = typer.Argument(..., help="Local repository checkout."),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="Show full context for one file."),
):
    """Show the extracted dependency graph."""
    try:
        tree = walk(path)
    except InvalidPathError as exc:
        _fail(str(exc))
    result = extract(tree.root_path, tree.file_paths())
    context = FileGraphContext.build(result)

    if file:
        details = context.file_context(file)
        console.print(f"[bold cyan]{file}[/bold cyan] ({details['language'] or 'n/a'})")
        for key in ("taking", "dependents", "calling"):
            values = details[key]
            console.print(f"[bold]{key}[/bold]: {', '.join(values) if values else '(none)'}")
        return

    table = Table(title="Dependency Context", show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Language", style="dim")
    table.add_column("Taking", justify="right")
    table.add_column("Dependents", justify="right")
    table.add_column("Exports", justify="right")
    for file_path in tree.file_paths():
        table.add_row(
            file_path,
            context.language(file_path) or "",
            str(len(context.taking(file_path))),
            str(len(context.dependents(file_path))),
            str(len(context.calling(file_path))),
        )
    console.print(table)
    console.print(f"\nEdges: {len(result.edges)} | Unresolved imports: {result.unresolved}")
