"""CLI interface for tabular-datastore using Typer.

This module provides the main entry point for the tabular-datastore tool,
with commands for registering resources, importing them immediately or
through the queue, listing job status, querying imported tables, dropping
resources and verifying the environment.
"""

from __future__ import annotations

import re
import sqlite3
import sys
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .core.errors import DatastoreError, NotFoundError, QueueUnavailableError
from .core.query import Condition, Query, Sort
from .core.queue import SqliteQueue
from .core.results import JobResult, JobStatus
from .core.service import DatastoreConfig, DatastoreService, create_service
from .core.worker import ImportQueueWorker
from .utils.logging import mask_url_sensitive_parts, setup_logging
from .utils.paths import WorkdirManager
from .utils.sources import SourceType, parse_sources_file

# Load .env file if present
load_dotenv()

app = typer.Typer(
    name="tabular-datastore",
    help="Import tabular resources into a queryable datastore.",
    add_completion=False,
)

console = Console()

DEFAULT_WORKDIR = Path("datastore")

WORKDIR_OPTION = typer.Option(
    DEFAULT_WORKDIR,
    "--workdir",
    "-w",
    envvar="DATASTORE_WORKDIR",
    help="Working directory for localized files and databases",
)
QUEUE_OPTION = typer.Option(
    "datastore_import",
    "--queue",
    envvar="DATASTORE_QUEUE",
    help="Name of the import queue",
)
VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Enable verbose logging",
)

KEYWORD_CONDITION = re.compile(r"^\s*(\S+)\s+(like|in)\s+(.*)$", re.IGNORECASE)
SYMBOL_CONDITION = re.compile(r"^\s*([^<>=!\s]+)\s*(<=|>=|!=|<>|=|<|>)\s*(.*)$")


def _build_service(
    workdir: Path,
    queue_name: str = "datastore_import",
    verbose: bool = False,
    timeout: int = 30,
    max_retries: int = 3,
) -> DatastoreService:
    """Set up logging and build a service for the workdir."""
    logger = setup_logging(workdir, verbose=verbose)
    config = DatastoreConfig(
        workdir=workdir,
        queue_name=queue_name,
        timeout=timeout,
        max_retries=max_retries,
        verbose=verbose,
    )
    return create_service(config, logger=logger)


def _format_status(status: JobStatus) -> str:
    """Format status with color for rich output.

    Args:
        status: The job status.

    Returns:
        Formatted status string with color markup.
    """
    color_map = {
        JobStatus.DONE: "green",
        JobStatus.ERROR: "red",
        JobStatus.WAITING: "white",
        JobStatus.IN_PROGRESS: "yellow",
    }
    color = color_map.get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


def _format_bytes(size_bytes: float) -> str:
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} PB"


def parse_condition(text: str) -> Condition:
    """Parse a --where option into a Condition.

    Accepts "column=value", "column>=value" (and the other comparison
    operators), "column like pattern" and "column in a,b,c".

    Raises:
        typer.BadParameter: If the text is not a condition.

    Examples:
        >>> parse_condition("age>=30")
        Condition(property='age', value='30', operator='>=')
    """
    match = KEYWORD_CONDITION.match(text)
    if match:
        prop, operator, value = match.groups()
        operator = operator.lower()
        if operator == "in":
            return Condition(prop, [v.strip() for v in value.split(",") if v.strip()], "in")
        return Condition(prop, value, operator)

    match = SYMBOL_CONDITION.match(text)
    if match:
        prop, operator, value = match.groups()
        return Condition(prop, value, operator)

    raise typer.BadParameter(f"Not a condition: {text!r}")


def parse_sort(text: str) -> Sort:
    """Parse a --sort option ("column" or "column:desc") into a Sort.

    Raises:
        typer.BadParameter: If the order is neither asc nor desc.
    """
    prop, _, order = text.partition(":")
    order = (order or "asc").lower()
    if order not in ("asc", "desc"):
        raise typer.BadParameter(f"Sort order must be asc or desc: {text!r}")
    return Sort(prop, order)


def _print_import_response(response: dict) -> None:
    if "message" in response:
        console.print(f"[cyan]{escape(response['message'])}[/cyan]")
        return

    table = Table(title="Import Result")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Message", style="red", max_width=60)

    for label, result in response.items():
        if isinstance(result, JobResult):
            table.add_row(escape(label), _format_status(result.status), escape(result.message or ""))

    console.print(table)


@app.command()
def register(
    source: Optional[str] = typer.Argument(
        None,
        help="URL or path of the file to register",
    ),
    identifier: Optional[str] = typer.Option(
        None,
        "--identifier",
        "-i",
        help="Resource identifier (UUID generated if omitted)",
    ),
    version: Optional[str] = typer.Option(
        None,
        "--version",
        help="Resource version (timestamp if omitted)",
    ),
    sources_file: Optional[Path] = typer.Option(
        None,
        "--sources-file",
        "-f",
        help="File listing sources to register, one per line",
    ),
    workdir: Path = WORKDIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """
    Register one source, or every source listed in a file.

    Example:
        tabular-datastore register https://example.com/data.csv
    """
    if not source and not sources_file:
        console.print("[red]Error:[/red] Give a SOURCE or --sources-file.")
        raise typer.Exit(1)

    sources: list[str] = []
    if source:
        sources.append(source)
    if sources_file:
        try:
            for line, source_type in parse_sources_file(sources_file):
                if source_type == SourceType.UNKNOWN:
                    console.print(f"[yellow]Skipping unsupported source:[/yellow] {escape(line)}")
                    continue
                sources.append(line)
        except FileNotFoundError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1)

    service = _build_service(workdir, verbose=verbose)
    localizer = service.localizer

    table = Table(title="Registered Resources")
    table.add_column("Identifier", style="cyan")
    table.add_column("Version", style="magenta")
    table.add_column("Type")
    table.add_column("Source", max_width=50)

    failed = False
    for item in sources:
        try:
            resource = localizer.register(
                item,
                identifier=identifier if len(sources) == 1 else None,
                version=version,
            )
        except ValueError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            failed = True
            continue
        table.add_row(
            escape(resource.identifier),
            escape(resource.version or ""),
            escape(resource.mime_type),
            escape(mask_url_sensitive_parts(resource.file_path)),
        )

    console.print(table)
    if failed:
        raise typer.Exit(1)


@app.command("import")
def import_command(
    identifier: str = typer.Argument(..., help="Resource identifier"),
    version: Optional[str] = typer.Option(
        None,
        "--version",
        help="Resource version (latest if omitted)",
    ),
    deferred: bool = typer.Option(
        False,
        "--deferred",
        "-d",
        help="Queue the import for the worker instead of running it now",
    ),
    workdir: Path = WORKDIR_OPTION,
    queue_name: str = QUEUE_OPTION,
    timeout: int = typer.Option(
        30,
        "--timeout",
        envvar="DATASTORE_TIMEOUT",
        help="HTTP timeout in seconds",
    ),
    max_retries: int = typer.Option(
        3,
        "--max-retries",
        envvar="DATASTORE_MAX_RETRIES",
        help="Maximum download attempts",
    ),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """
    Localize and import a resource, or queue it with --deferred.
    """
    service = _build_service(workdir, queue_name, verbose, timeout, max_retries)

    try:
        response = service.import_resource(identifier, deferred=deferred, version=version)
    except QueueUnavailableError as e:
        console.print(f"[red]Queue error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    _print_import_response(response)

    results = [r for r in response.values() if isinstance(r, JobResult)]
    if any(r.status == JobStatus.ERROR for r in results):
        raise typer.Exit(1)


@app.command()
def work(
    max_items: Optional[int] = typer.Option(
        None,
        "--max-items",
        "-n",
        help="Stop after this many queue items",
    ),
    workdir: Path = WORKDIR_OPTION,
    queue_name: str = QUEUE_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """
    Process deferred imports waiting in the queue.
    """
    service = _build_service(workdir, queue_name, verbose)
    queue = SqliteQueue(WorkdirManager(workdir).state_db_path, queue_name)
    queue.init_db()

    pending = queue.number_of_items()
    if pending == 0:
        console.print("[yellow]No queued imports.[/yellow]")
        raise typer.Exit(0)

    console.print(f"Processing up to {max_items or pending} of {pending} queued import(s)")
    stats = ImportQueueWorker(service, queue).run(max_items=max_items)

    console.print(f"  Imported:  [green]{stats.processed}[/green]")
    console.print(f"  Failed:    [red]{stats.failed}[/red]")
    console.print(f"  Released:  {stats.released}")

    if stats.failed or stats.released:
        raise typer.Exit(1)


@app.command("list")
def list_command(
    workdir: Path = WORKDIR_OPTION,
) -> None:
    """
    Show fetcher and importer status of every resource.
    """
    state_db_path = WorkdirManager(workdir).state_db_path

    if not state_db_path.exists():
        console.print(f"[yellow]No state database found at {state_db_path}[/yellow]")
        console.print("Register a resource first.")
        raise typer.Exit(0)

    service = _build_service(workdir)
    listing = service.list_jobs()

    if not listing:
        console.print("[yellow]No resources found.[/yellow]")
        raise typer.Exit(0)

    table = Table(title="Datastore Jobs")
    table.add_column("Resource", style="cyan", no_wrap=False, max_width=50)
    table.add_column("File", style="magenta")
    table.add_column("Fetch")
    table.add_column("Fetched", justify="right")
    table.add_column("Import")
    table.add_column("Import %", justify="right")
    table.add_column("Error", style="red", max_width=30)

    for key, entry in listing.items():
        error = entry.importer_error or ""
        if len(error) > 30:
            error = error[:27] + "..."
        table.add_row(
            escape(key),
            escape(entry.file_name),
            f"{_format_status(entry.fetcher_status)} {entry.fetcher_percent_done}%",
            _format_bytes(entry.fetcher_bytes),
            _format_status(entry.importer_status),
            f"{entry.importer_percent_done}%",
            escape(error),
        )

    console.print(table)

    done = sum(1 for e in listing.values() if e.importer_status == JobStatus.DONE)
    errors = sum(
        1
        for e in listing.values()
        if JobStatus.ERROR in (e.fetcher_status, e.importer_status)
    )
    console.print(
        f"\n[bold]Summary:[/bold] Total: {len(listing)}, "
        f"[green]Imported: {done}[/green], "
        f"[red]Errors: {errors}[/red]"
    )


@app.command()
def status(
    identifier: str = typer.Argument(..., help="Resource identifier"),
    version: Optional[str] = typer.Option(None, "--version", help="Resource version"),
    workdir: Path = WORKDIR_OPTION,
) -> None:
    """
    Show where a resource is in its localize/import lifecycle.
    """
    service = _build_service(workdir)
    state = service.resource_state(identifier, version)
    console.print(f"{escape(identifier)}:{escape(version or 'latest')} is [bold]{state.value}[/bold]")


@app.command()
def query(
    collection: str = typer.Argument(..., help="Resource as <identifier>__<version>"),
    properties: Optional[List[str]] = typer.Option(
        None,
        "--property",
        "-p",
        help="Column to select (repeatable)",
    ),
    where: Optional[List[str]] = typer.Option(
        None,
        "--where",
        help="Condition such as 'age>=30' or 'name like A%' (repeatable)",
    ),
    sort: Optional[List[str]] = typer.Option(
        None,
        "--sort",
        help="Sort column, optionally with ':desc' (repeatable)",
    ),
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum rows"),
    offset: int = typer.Option(0, "--offset", help="Rows to skip"),
    count: bool = typer.Option(False, "--count", help="Also return the row count"),
    results: bool = typer.Option(True, "--results/--no-results", help="Return rows"),
    show_db_columns: bool = typer.Option(
        False,
        "--show-db-columns",
        help="Show raw column names and record_number",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the response as JSON"),
    workdir: Path = WORKDIR_OPTION,
) -> None:
    """
    Query an imported resource.

    Example:
        tabular-datastore query 3f2c...__1700000000 --where "state=CA" --count
    """
    q = Query(
        collection=collection,
        results=results,
        count=count,
        show_db_columns=show_db_columns,
        properties=list(properties or []),
        conditions=[parse_condition(c) for c in where or []],
        sorts=[parse_sort(s) for s in sort or []],
        limit=limit,
        offset=offset,
    )

    service = _build_service(workdir)
    try:
        response = service.run_query(q)
    except NotFoundError as e:
        console.print(f"[red]Not found:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    except DatastoreError as e:
        console.print(f"[red]Query error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(data=response)
        return

    rows = response.get("results")
    if rows:
        table = Table(title=escape(collection))
        for column in rows[0]:
            table.add_column(escape(str(column)))
        for row in rows:
            table.add_row(*(escape("" if v is None else str(v)) for v in row.values()))
        console.print(table)
    elif rows is not None:
        console.print("[yellow]No matching rows.[/yellow]")

    if "count" in response:
        console.print(f"[bold]Count:[/bold] {response['count']}")


@app.command()
def drop(
    identifier: str = typer.Argument(..., help="Resource identifier"),
    version: Optional[str] = typer.Option(None, "--version", help="Resource version"),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Drop without confirmation",
    ),
    workdir: Path = WORKDIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """
    Drop a resource's table and localized file.
    """
    if not force:
        confirm = typer.confirm(f"Drop datastore for {identifier}:{version or 'latest'}?")
        if not confirm:
            console.print("[yellow]Cancelled.[/yellow]")
            raise typer.Exit(0)

    service = _build_service(workdir, verbose=verbose)
    service.drop(identifier, version)
    console.print(f"[green]Dropped[/green] {escape(identifier)}:{escape(version or 'latest')}")


@app.command()
def check(
    workdir: Path = WORKDIR_OPTION,
) -> None:
    """
    Check system dependencies and configuration.

    Verifies:
    - Python version
    - Required packages
    - SQLite version
    - Workdir writability
    """
    table = Table(title="System Check")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Details")

    all_ok = True

    py_version = sys.version_info
    py_ok = py_version >= (3, 9)
    table.add_row(
        "Python",
        "[green]OK[/green]" if py_ok else "[red]FAIL[/red]",
        f"{py_version.major}.{py_version.minor}.{py_version.micro}",
    )
    if not py_ok:
        all_ok = False

    packages = {
        "typer": "typer",
        "rich": "rich",
        "python-dotenv": "dotenv",
        "requests": "requests",
        "pyarrow": "pyarrow",
    }
    for pkg, module in packages.items():
        try:
            __import__(module)
            table.add_row(f"Package: {pkg}", "[green]OK[/green]", "Installed")
        except ImportError:
            table.add_row(f"Package: {pkg}", "[red]FAIL[/red]", "Not installed")
            all_ok = False

    # ON CONFLICT upserts need SQLite 3.24
    sqlite_ok = sqlite3.sqlite_version_info >= (3, 24, 0)
    table.add_row(
        "SQLite",
        "[green]OK[/green]" if sqlite_ok else "[red]FAIL[/red]",
        sqlite3.sqlite_version,
    )
    if not sqlite_ok:
        all_ok = False

    manager = WorkdirManager(workdir)
    try:
        manager.ensure_dirs()
        write_test = manager.workdir / ".write_test"
        write_test.write_text("ok", encoding="utf-8")
        write_test.unlink()
        usage = manager.get_disk_usage()
        table.add_row("Workdir", "[green]OK[/green]", f"{manager.workdir} ({_format_bytes(usage['total'])})")
    except OSError as e:
        table.add_row("Workdir", "[red]FAIL[/red]", escape(str(e)))
        all_ok = False

    console.print(table)

    if all_ok:
        console.print("\n[bold green]All checks passed![/bold green]")
    else:
        console.print("\n[bold yellow]Some checks failed.[/bold yellow]")
        console.print("See details above for more information.")
        raise typer.Exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
