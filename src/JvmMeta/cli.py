# === NAVMAP v1 ===
# {
#   "module": "JvmMeta.cli",
#   "purpose": "Typer CLI wiring crawl and export commands to configuration and storage",
#   "sections": [
#     {"id": "context", "name": "CliContext", "anchor": "CTX", "kind": "class"},
#     {"id": "fetch", "name": "fetch", "anchor": "FET", "kind": "command"},
#     {"id": "export", "name": "export vendor / release-type", "anchor": "EXP", "kind": "command"},
#     {"id": "version", "name": "version", "anchor": "VER", "kind": "command"}
#   ]
# }
# === /NAVMAP ===

"""Command line interface for the JVM metadata catalogue.

Commands::

    jvm-meta fetch [VENDOR...]
    jvm-meta export vendor [-v VENDORS] [-o OS] [-a ARCH] [-i FIELDS] [-e FIELDS] [-f FILTER]
    jvm-meta export release-type [-t TYPES] [-o OS] [-a ARCH] [-i FIELDS] [-e FIELDS] [-f FILTER]
    jvm-meta version

List options accept comma-separated values and may be repeated.

Exit codes:
    0  success
    1  a vendor failed during ``fetch`` or storage is unavailable
    2  invalid configuration, arguments or filter expression
"""

from __future__ import annotations

import logging
import signal
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .cancellation import CancellationTokenGroup
from .database import Database
from .errors import ConfigurationError, FilterSyntaxError, StorageError
from .exports import (
    RELEASE_TYPE_PARTITIONS,
    VENDOR_PARTITIONS,
    PartitionSpec,
    export,
    resolve_projection,
)
from .filters import FilterExpression
from .logging_utils import setup_logging
from .network import HttpFetcher
from .orchestrator import CrawlOrchestrator, CrawlSummary, summarize
from .settings import ResolvedConfig, resolve_config
from .vendors import resolve_vendors

__all__ = ["app", "export_app", "main", "CliContext"]

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_USAGE = 2

_console = Console()
_err_console = Console(stderr=True)

app = typer.Typer(
    name="jvm-meta",
    help="Crawl JVM vendor metadata into DuckDB and export it as static JSON.",
    no_args_is_help=True,
    add_completion=False,
)
export_app = typer.Typer(help="Export partitioned JSON documents.", no_args_is_help=True)
app.add_typer(export_app, name="export")


class CliContext:
    """Per-invocation state shared by commands through ``typer.Context.obj``."""

    def __init__(self, config: ResolvedConfig, console: Console = _console) -> None:
        self.config = config
        self.console = console


def _fail(message: str, code: int) -> typer.Exit:
    _err_console.print(f"[red]error:[/red] {escape(message)}")
    return typer.Exit(code)


def _split(values: Optional[Sequence[str]]) -> List[str]:
    """Flatten repeated, comma-separated option values."""

    items: List[str] = []
    for value in values or ():
        items.extend(part.strip() for part in value.split(",") if part.strip())
    return items


def _get_context(ctx: typer.Context) -> CliContext:
    if not isinstance(ctx.obj, CliContext):
        raise _fail("configuration was not loaded", EXIT_USAGE)
    return ctx.obj


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="JVMMETA_CONFIG",
        help="Path to a YAML configuration file.",
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)."
    ),
) -> None:
    """Crawl JVM vendor metadata and export it."""

    if ctx.invoked_subcommand == "version":
        return
    try:
        resolved = resolve_config(config)
        if log_level is not None:
            resolved.logging.level = log_level
    except ConfigurationError as exc:
        raise _fail(str(exc), EXIT_USAGE) from exc
    except PydanticValidationError as exc:
        raise _fail(f"invalid --log-level: {log_level}", EXIT_USAGE) from exc

    setup_logging(
        level=resolved.logging.level,
        log_dir=resolved.logging.log_dir,
        retention_days=resolved.logging.retention_days,
        max_log_size_mb=resolved.logging.max_log_size_mb,
    )
    ctx.obj = CliContext(resolved)


# --- fetch ---------------------------------------------------------------------------


def _render_summary(console: Console, summary: CrawlSummary) -> None:
    table = Table(title="Crawl summary")
    table.add_column("Vendor", style="bold")
    for column in ("Accepted", "Skipped", "Inserted", "Updated", "Errors"):
        table.add_column(column, justify="right")
    table.add_column("Status")
    for vendor, row in summarize(summary):
        status = "[red]failed[/red]" if row.failed else "[green]ok[/green]"
        table.add_row(
            vendor,
            str(row.accepted),
            str(row.skipped),
            str(row.inserted),
            str(row.updated),
            str(row.errors),
            status,
        )
    console.print(table)
    for vendor, row in summarize(summary):
        if row.failed:
            console.print(f"{vendor} failed: {escape(row.error or 'unknown error')}")
    note = " (cancelled)" if summary.cancelled else ""
    console.print(f"Finished in {summary.duration_sec:.1f}s{note}")


@app.command()
def fetch(
    ctx: typer.Context,
    vendors: Optional[List[str]] = typer.Argument(
        None, help="Vendors to crawl (default: configured vendors, else all)."
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-j", min=1, help="Override crawl.concurrency."
    ),
) -> None:
    """Crawl vendors and upsert their builds into the database."""

    state = _get_context(ctx)
    config = state.config
    if concurrency is not None:
        config.crawl.concurrency = concurrency
    names = _split(vendors) or list(config.crawl.vendors)
    try:
        resolve_vendors(names)
    except ConfigurationError as exc:
        raise _fail(str(exc), EXIT_USAGE) from exc

    database = Database(config.database)
    try:
        database.bootstrap()
    except StorageError as exc:
        raise _fail(str(exc), EXIT_FAILURE) from exc

    fetcher = HttpFetcher.from_config(config.http, concurrency=config.crawl.concurrency)
    group = CancellationTokenGroup()
    previous_handler = None
    try:
        previous_handler = signal.signal(signal.SIGINT, lambda *_: group.cancel_all())
    except ValueError:
        logger.debug("not on the main thread; Ctrl-C cancellation disabled", extra={"stage": "crawl"})

    try:
        orchestrator = CrawlOrchestrator(database, fetcher, concurrency=config.crawl.concurrency)
        summary = orchestrator.run(names or None, cancellation=group)
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)
        fetcher.close()
        database.close()

    _render_summary(state.console, summary)
    if summary.overall_failed:
        raise typer.Exit(EXIT_FAILURE)


# --- export --------------------------------------------------------------------------


def _run_export(
    state: CliContext,
    dimensions: Sequence[str],
    values: Dict[str, List[str]],
    include: Optional[List[str]],
    exclude: Optional[List[str]],
    filters: Optional[List[str]],
    pretty: bool,
    output_dir: Optional[Path],
) -> None:
    config = state.config
    try:
        expression = FilterExpression.parse("&".join(filters or ()))
        spec = PartitionSpec(tuple(dimensions), values)
        projection = resolve_projection(_split(include), _split(exclude))
    except (FilterSyntaxError, ConfigurationError) as exc:
        raise _fail(str(exc), EXIT_USAGE) from exc

    database = Database(config.database)
    try:
        database.bootstrap()
        result = export(
            database, expression, spec, projection, pretty=pretty or config.export.pretty
        )
    except StorageError as exc:
        raise _fail(str(exc), EXIT_FAILURE) from exc
    finally:
        database.close()

    target = output_dir or config.export.path
    written = result.write(target)
    state.console.print(
        f"Exported {result.total} records into {len(written)} files under {target}"
    )


_INCLUDE_HELP = "Fields to publish, e.g. checksum,features,url,version."
_EXCLUDE_HELP = "Fields to drop, e.g. architecture,os,size."
_FILTER_HELP = (
    "Filter such as 'file_type=tar.gz,zip&features=!musl'. Values are ORed, '!' negates, "
    "clauses joined with '&' are ANDed."
)


@export_app.command("vendor")
def export_vendor(
    ctx: typer.Context,
    vendors: Optional[List[str]] = typer.Option(
        None, "--vendors", "-v", help="Vendors, e.g. zulu,temurin."
    ),
    os_: Optional[List[str]] = typer.Option(None, "--os", "-o", help="Operating systems."),
    arch: Optional[List[str]] = typer.Option(None, "--arch", "-a", help="Architectures."),
    include: Optional[List[str]] = typer.Option(None, "--include", "-i", help=_INCLUDE_HELP),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-e", help=_EXCLUDE_HELP),
    filters: Optional[List[str]] = typer.Option(None, "--filter", "-f", help=_FILTER_HELP),
    pretty: bool = typer.Option(False, "--pretty", help="Indent the JSON output."),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Override export.path."),
) -> None:
    """Write <vendor>/<os>/<arch>.json documents."""

    _run_export(
        _get_context(ctx),
        VENDOR_PARTITIONS,
        {"vendor": _split(vendors), "os": _split(os_), "architecture": _split(arch)},
        include,
        exclude,
        filters,
        pretty,
        output_dir,
    )


@export_app.command("release-type")
def export_release_type(
    ctx: typer.Context,
    release_types: Optional[List[str]] = typer.Option(
        None, "--release-type", "-t", help="Release types: ga, ea."
    ),
    os_: Optional[List[str]] = typer.Option(None, "--os", "-o", help="Operating systems."),
    arch: Optional[List[str]] = typer.Option(None, "--arch", "-a", help="Architectures."),
    include: Optional[List[str]] = typer.Option(None, "--include", "-i", help=_INCLUDE_HELP),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-e", help=_EXCLUDE_HELP),
    filters: Optional[List[str]] = typer.Option(None, "--filter", "-f", help=_FILTER_HELP),
    pretty: bool = typer.Option(False, "--pretty", help="Indent the JSON output."),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Override export.path."),
) -> None:
    """Write <release_type>/<os>/<arch>.json documents."""

    _run_export(
        _get_context(ctx),
        RELEASE_TYPE_PARTITIONS,
        {"release_type": _split(release_types), "os": _split(os_), "architecture": _split(arch)},
        include,
        exclude,
        filters,
        pretty,
        output_dir,
    )


# --- version -------------------------------------------------------------------------


@app.command()
def version() -> None:
    """Print the package version."""

    typer.echo(f"jvm-meta {__version__}")


def main() -> None:
    """Console-script entry point."""

    app(prog_name="jvm-meta")


if __name__ == "__main__":  # pragma: no cover
    main()
