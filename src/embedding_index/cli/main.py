"""
CLI Main - Typer command-line interface.
========================================

Commands:
- seed: Embed every source record of an index
- search: Top-K nearest-neighbor search with free text
- add: Embed and store a single record
- reindex: Regenerate the embedding of one source record
- init-db: Create vector tables / collections
- info: Show configured indexes and credentials
"""

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional

import typer
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from embedding_index.service.manager import IndexManager, coerce_embedder, describe_indexes
from embedding_index.shared.config import Settings, get_settings, load_settings
from embedding_index.shared.errors import IndexServiceError, ValidationError
from embedding_index.shared.logging import get_console, get_logger, setup_logging
from embedding_index.shared.schemas import (
    EmbeddableRecord,
    EmbedderKind,
    SearchResponse,
    SeedSummary,
)
from embedding_index.shared.utils import parse_key_values

logger = get_logger(__name__)

app = typer.Typer(
    name="embindex",
    help="""Embedding Index Service - embed, store and search named indexes.

Each index reads records from a source (a Postgres table or a JSONL file),
embeds their text with a configured provider and stores the vectors in a
pgvector table (or ChromaDB / memory). Search returns the K records with
the smallest cosine distance to a free-text query.

━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

QUICK START:

  embindex init-db                          # Create vector tables
  embindex seed products                    # Embed all products
  embindex search products "trail shoes"    # Top-K search
  embindex search clubs "Catalan club" -k 3 -e ollama

Use 'embindex <command> --help' for detailed command options.
""",
    add_completion=False,
    rich_markup_mode="rich",
)

console = get_console()

MAX_FAILURES_SHOWN = 20


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _build_manager(settings: Settings, kinds: Iterable[EmbedderKind]) -> IndexManager:
    """Build a manager with only the embedders this command needs."""
    return IndexManager.from_settings(settings, kinds=list(kinds))


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj if isinstance(ctx.obj, Settings) else get_settings()


def _needed_kinds(settings: Settings, index_name: str, embedder: Optional[str]) -> list[EmbedderKind]:
    try:
        index = settings.get_index(index_name)
        return [coerce_embedder(embedder) or index.primary_embedder]
    except ValidationError as e:
        console.print(f"[red]Invalid request:[/red] {e}")
        raise typer.Exit(2)


def _run(
    settings: Settings,
    kinds: Iterable[EmbedderKind],
    operation: Callable[[IndexManager], Awaitable[Any]],
) -> Any:
    """Run one manager operation; index service errors exit the command."""

    async def _main() -> Any:
        async with _build_manager(settings, kinds) as manager:
            return await operation(manager)

    try:
        return asyncio.run(_main())
    except ValidationError as e:
        console.print(f"[red]Invalid request:[/red] {e}")
        raise typer.Exit(2)
    except IndexServiceError as e:
        logger.debug("Command failed", exc_info=True)
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _print_summary(summary: SeedSummary) -> None:
    style = "green" if summary.is_complete else "yellow"
    console.print(Panel(
        f"Attempted: {summary.attempted}\n"
        f"Succeeded: {summary.succeeded}\n"
        f"Failed: {summary.failed_count}\n"
        f"Duration: {summary.duration_seconds:.2f}s",
        title=f"Seed '{summary.index}' ({summary.embedder_id})",
        border_style=style,
    ))

    if summary.failed:
        table = Table(title="Failures", show_header=True)
        table.add_column("Record", style="cyan")
        table.add_column("Reason")
        for failure in summary.failed[:MAX_FAILURES_SHOWN]:
            table.add_row(failure.record_id, failure.reason)
        console.print(table)
        if summary.failed_count > MAX_FAILURES_SHOWN:
            console.print(f"[dim]... and {summary.failed_count - MAX_FAILURES_SHOWN} more[/dim]")


def _print_results(response: SearchResponse) -> None:
    if response.no_matches:
        console.print(Panel(response.message or "No matches", title="No matches", border_style="yellow"))
        return

    table = Table(
        title=f"Top {len(response.results)} in '{response.index}' ({response.embedder_id})",
        show_header=True,
    )
    table.add_column("#", justify="right")
    table.add_column("Record", style="cyan")
    table.add_column("Distance", justify="right")
    table.add_column("Attributes")

    for rank, hit in enumerate(response.results, 1):
        attrs = ", ".join(f"{k}={v}" for k, v in hit.attributes.items())
        table.add_row(str(rank), hit.record_id, f"{hit.distance:.4f}", attrs)

    console.print(table)


# ─────────────────────────────────────────────────────────────────────────────
# Global Options
# ─────────────────────────────────────────────────────────────────────────────


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Settings YAML file. Default: config/settings.yaml.",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Override the configured log level (DEBUG, INFO, WARNING, ...).",
    ),
):
    """Load settings once and configure logging."""
    try:
        settings = load_settings(config) if config else get_settings()
    except IndexServiceError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    setup_logging(
        level=log_level or settings.get_effective_log_level(),
        use_rich=settings.logging.rich_console,
        log_file=settings.logging.file or None,
        log_format=settings.logging.format,
        force=True,
    )
    ctx.obj = settings


# ─────────────────────────────────────────────────────────────────────────────
# Seed Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def seed(
    ctx: typer.Context,
    index_name: str = typer.Argument(..., help="Index to seed (e.g. products, documents, clubs)."),
    embedder: Optional[str] = typer.Option(
        None,
        "--embedder", "-e",
        help="Embedder column to fill: gemini, openai, ollama or sbert. Default: the index's primary embedder.",
    ),
    concurrency: Optional[int] = typer.Option(
        None,
        "--concurrency", "-c",
        help="Maximum parallel embed calls. Default: seed.concurrency from settings.",
    ),
    rebuild: bool = typer.Option(
        False,
        "--rebuild", "-r",
        help="Clear this embedder's vectors before seeding.",
    ),
):
    """
    Embed every source record of an index.

    Records with empty text and records the embedder rejects are reported
    as failures; the command still succeeds with a partial result.

    Examples:
        embindex seed products
        embindex seed clubs -e ollama -c 8
        embindex seed documents --rebuild
    """
    settings = _settings(ctx)
    kinds = _needed_kinds(settings, index_name, embedder)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task(f"Seeding {index_name}...", total=None)
        summary = _run(
            settings,
            kinds,
            lambda m: m.seed(index_name, embedder, concurrency=concurrency, rebuild=rebuild),
        )

    _print_summary(summary)


# ─────────────────────────────────────────────────────────────────────────────
# Search Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def search(
    ctx: typer.Context,
    index_name: str = typer.Argument(..., help="Index to search."),
    query: str = typer.Argument(..., help="Free-text query (wrap in quotes)."),
    top_k: Optional[int] = typer.Option(
        None,
        "--top-k", "-k",
        help="Number of results. Default: the deployment (or index) default.",
    ),
    embedder: Optional[str] = typer.Option(
        None,
        "--embedder", "-e",
        help="Embedder column to search.",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the response as JSON.",
    ),
):
    """
    Find the records most similar to a free-text query.

    Examples:
        embindex search products "waterproof hiking boots"
        embindex search clubs "club from Madrid" -k 1 -e ollama
        embindex search documents "refund policy" --json
    """
    settings = _settings(ctx)
    kinds = _needed_kinds(settings, index_name, embedder)

    response = _run(settings, kinds, lambda m: m.search(index_name, query, k=top_k, embedder=embedder))

    if as_json:
        console.print_json(response.model_dump_json())
    else:
        _print_results(response)


# ─────────────────────────────────────────────────────────────────────────────
# Add / Reindex Commands
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def add(
    ctx: typer.Context,
    index_name: str = typer.Argument(..., help="Index to add the record to."),
    record_id: str = typer.Option(..., "--id", help="Record id from the source store."),
    text: str = typer.Option(..., "--text", "-t", help="Text to embed."),
    attr: Optional[list[str]] = typer.Option(
        None,
        "--attr", "-a",
        help="Display attribute as key=value. Repeatable.",
    ),
    embedder: Optional[str] = typer.Option(None, "--embedder", "-e", help="Embedder column to fill."),
):
    """
    Embed and store a single record.

    Example:
        embindex add clubs --id 42 --text "Football club from Porto" -a name="FC Porto" -a country=Portugal
    """
    try:
        attributes = parse_key_values(attr or [])
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--attr")

    settings = _settings(ctx)
    kinds = _needed_kinds(settings, index_name, embedder)
    record = EmbeddableRecord(id=record_id, text=text, attributes=attributes)

    summary = _run(settings, kinds, lambda m: m.index_record(index_name, record, embedder))
    if summary.is_complete:
        console.print(f"[green]✓ Indexed record {record_id} into '{index_name}'[/green]")
    else:
        _print_summary(summary)
        raise typer.Exit(1)


@app.command()
def reindex(
    ctx: typer.Context,
    index_name: str = typer.Argument(..., help="Index holding the record."),
    record_id: str = typer.Argument(..., help="Source record id."),
    embedder: Optional[str] = typer.Option(None, "--embedder", "-e", help="Embedder column to refresh."),
):
    """Regenerate one record's embedding after its source text changed."""
    settings = _settings(ctx)
    kinds = _needed_kinds(settings, index_name, embedder)

    summary = _run(settings, kinds, lambda m: m.reindex_record(index_name, record_id, embedder))
    if summary.is_complete:
        console.print(f"[green]✓ Re-indexed record {record_id} in '{index_name}'[/green]")
    else:
        _print_summary(summary)
        raise typer.Exit(1)


# ─────────────────────────────────────────────────────────────────────────────
# Maintenance Commands
# ─────────────────────────────────────────────────────────────────────────────


@app.command("init-db")
def init_db(
    ctx: typer.Context,
    index_name: Optional[str] = typer.Argument(None, help="Index to prepare. Omit for all indexes."),
):
    """Create the vector table (one vector column per embedder) for each index."""
    settings = _settings(ctx)
    created = _run(settings, [], lambda m: m.ensure_storage(index_name))
    for name in created:
        console.print(f"[green]✓ Storage ready for '{name}'[/green]")


@app.command()
def info(
    ctx: typer.Context,
    stats: bool = typer.Option(
        False,
        "--stats",
        help="Also query the store for vector counts.",
    ),
):
    """
    Show configured indexes, embedders and credential status.

    Useful for debugging and verifying setup.
    """
    from embedding_index import __version__

    settings = _settings(ctx)

    console.print(Panel(
        f"[bold]Embedding Index Service[/bold]\n"
        f"Version: {__version__}\n"
        f"Backend: {settings.get_effective_backend().value}\n"
        f"Default top-K: {settings.get_effective_top_k()}",
        title="Info",
    ))

    table = Table(title="Indexes")
    table.add_column("Name", style="cyan")
    table.add_column("Source")
    table.add_column("Table")
    table.add_column("Embedders (dims)")
    table.add_column("Top-K", justify="right")
    table.add_column("Max chars", justify="right")

    for item in describe_indexes(settings):
        embedders = ", ".join(
            f"{k}*({d})" if k == item["default_embedder"] else f"{k}({d})"
            for k, d in item["embedders"].items()
        )
        table.add_row(
            item["name"],
            item["source"],
            item["table"],
            embedders,
            str(item["default_top_k"]),
            str(item["max_text_chars"] or "-"),
        )
    console.print(table)

    console.print("\n[bold]Credentials:[/bold]")
    for name, value in (
        ("GEMINI_API_KEY", settings.gemini_api_key),
        ("OPENAI_API_KEY", settings.openai_api_key),
        ("DATABASE_URL", settings.database_url),
    ):
        mark = "[green]set[/green]" if value else "[dim]missing[/dim]"
        console.print(f"  {name}: {mark}")
    console.print(f"  Ollama: {settings.get_effective_ollama_url()}")

    if stats:

        async def _counts(manager: IndexManager) -> list:
            results = []
            for index in settings.indexes:
                for kind in index.embedders:
                    results.append(await manager.stats(index.name, kind))
            return results

        counts = _run(settings, [], _counts)
        count_table = Table(title="Vector counts")
        count_table.add_column("Index", style="cyan")
        count_table.add_column("Embedder")
        count_table.add_column("Dims", justify="right")
        count_table.add_column("Vectors", justify="right")
        for item in counts:
            count_table.add_row(item.index, item.embedder_id, str(item.dimensions), str(item.count))
        console.print(count_table)


# ─────────────────────────────────────────────────────────────────────────────
# Entry Point
# ─────────────────────────────────────────────────────────────────────────────


def cli():
    """CLI entry point."""
    app()


if __name__ == "__main__":
    cli()
