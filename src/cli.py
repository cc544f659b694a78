#!/usr/bin/env python3
"""
CLI interface for FAQ search and the embedding indexer.

Usage:
    python -m src.cli index-run --batch-size 20
    python -m src.cli search "how do I reset my password"
    python -m src.cli index-status
"""

import json
import logging
import signal
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.table import Table

from src.faqsearch import (
    FAQDatabase,
    IndexerDaemon,
    IndexerOptions,
    IndexingRun,
    RunStore,
    SearchTelemetry,
    Settings,
    DaemonAlreadyRunning,
    DaemonNotRunning,
    build_components,
)
from src.faqsearch.embeddings import FAQResult, SearchResult
from src.faqsearch.models import format_duration

app = typer.Typer(
    name="faqsearch",
    help="FAQ search - hybrid semantic/keyword search and embedding indexer",
    add_completion=False,
)
console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with Rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )


def _settings(db_path: Optional[str] = None, index_dir: Optional[str] = None, **kw) -> Settings:
    """Settings from the environment with command-line overrides."""
    return Settings.from_env(db_path=db_path, index_dir=index_dir, **kw)


# =============================================================================
# Indexer commands
# =============================================================================


@app.command(name="index-run")
def index_run(
    force: bool = typer.Option(
        False, "--force", help="Re-embed every published entry"
    ),
    limit: Optional[int] = typer.Option(
        None, "--limit", "-n", help="Maximum entries to process"
    ),
    resume_from_id: Optional[int] = typer.Option(
        None, "--resume-from-id", help="Skip entries with a lower id"
    ),
    batch_size: int = typer.Option(
        10, "--batch-size", "-b", help="Entries per provider call"
    ),
    skip_vector_index: bool = typer.Option(
        False, "--skip-vector-index", help="Store embeddings without touching the vector index"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Call the provider but write nothing"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output the run summary as JSON"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Database path"),
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Vector index directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """
    Embed FAQ entries that are new, stale or flagged for refresh.

    Ctrl+C finishes the current batch and saves progress; rerun with
    --resume-from-id to continue.

    Examples:
        faqsearch index-run
        faqsearch index-run --limit 100 --batch-size 20
        faqsearch index-run --force              # Re-embed everything
        faqsearch index-run --resume-from-id 840
    """
    setup_logging(verbose)

    if batch_size < 1:
        console.print("[red]Error: --batch-size must be at least 1[/red]")
        raise typer.Exit(1)

    options = IndexerOptions(
        force_all=force,
        limit=limit,
        resume_from_id=resume_from_id,
        batch_size=batch_size,
        skip_vector_index=skip_vector_index,
        dry_run=dry_run,
    )

    components = build_components(_settings(db_path, index_dir))
    indexer = components.indexer()

    signal.signal(signal.SIGINT, lambda signum, frame: indexer.request_stop())
    signal.signal(signal.SIGTERM, lambda signum, frame: indexer.request_stop())

    if not json_output:
        console.print("\n[bold blue]FAQ Embedding Indexer[/bold blue]")
        console.print("━" * 40)
        console.print(
            f"Provider: [green]{components.settings.embedding_provider}[/green] "
            f"({components.provider.model}, {components.provider.dimension} dimensions)"
        )
        console.print(f"Database: [green]{components.settings.db_path}[/green]")
        if dry_run:
            console.print("[yellow]Dry run: nothing will be written[/yellow]")
        console.print()

    try:
        if json_output:
            run = indexer.run(options)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TextColumn("[cyan]{task.completed:,}/{task.total:,}"),
                TextColumn("[dim]ETA {task.fields[eta]}"),
                console=console,
            ) as progress:
                task_id = progress.add_task("Entries", total=None, eta="calculating...")

                def on_progress(state: IndexingRun):
                    progress.update(
                        task_id,
                        total=state.total_entries,
                        completed=state.processed_entries,
                        eta=format_duration(state.estimated_seconds_remaining()),
                    )

                run = indexer.run(options, progress_callback=on_progress)
    finally:
        components.close()

    if json_output:
        console.print(json.dumps(run.to_dict(), indent=2, default=str))
    else:
        _display_run_summary(run)

    if run.status != "completed":
        raise typer.Exit(1)


def _display_run_summary(run: IndexingRun) -> None:
    """Print the summary table for a finished run."""
    if run.status == "completed":
        console.print("\n[bold green]✓ Indexing complete![/bold green]\n")
    elif run.status == "interrupted":
        console.print("\n[bold yellow]Indexing interrupted[/bold yellow]\n")
    else:
        console.print(f"\n[bold red]Indexing failed:[/bold red] {run.fatal_error}\n")

    table = Table(title=f"Run {run.run_id}", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Status", run.status)
    table.add_row("Entries selected", f"{run.total_entries:,}")
    table.add_row("Embedded", f"{run.success_count:,}")
    if run.failure_count > 0:
        table.add_row("Failed", f"[red]{run.failure_count:,}[/red]")
    table.add_row("Batches", f"{run.batches_completed}/{run.total_batches}")
    table.add_row("Success rate", f"{run.success_rate:.1f}%")
    table.add_row("Tokens", f"{run.tokens_used:,}")
    table.add_row("Estimated cost", f"${run.estimated_cost_usd:.4f}")
    table.add_row("Duration", format_duration(run.duration_seconds))
    if run.last_processed_id is not None:
        table.add_row("Last processed id", str(run.last_processed_id))

    console.print(table)

    if run.errors:
        console.print(f"\n[bold]First errors[/bold] ({len(run.errors)} total):")
        for err in run.errors[:5]:
            console.print(f"  [red]#{err['entry_id']}[/red] {err['error']}")

    if run.status != "completed" and run.last_processed_id is not None:
        console.print(
            f"\nResume with: [bold]faqsearch index-run --resume-from-id {run.last_processed_id}[/bold]"
        )


@app.command(name="index-status")
def index_status(
    run_id: Optional[str] = typer.Option(None, "--run-id", help="Show one run in detail"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of runs to list"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Database path"),
    runs_dir: Optional[str] = typer.Option(None, "--runs-dir", help="Run files directory"),
) -> None:
    """
    Show embedding coverage and recent indexer runs.

    Examples:
        faqsearch index-status
        faqsearch index-status --run-id 20240105-141502-3fa2c1
    """
    settings = _settings(db_path, runs_dir=runs_dir)
    db = FAQDatabase(settings.db_path)
    store = RunStore(settings.runs_dir)

    if run_id:
        run = store.load_run(run_id)
        if run is None:
            console.print(f"[red]Run not found: {run_id}[/red]")
            raise typer.Exit(1)
        _display_run_summary(run)
        return

    stats = db.get_embedding_stats()

    console.print("\n[bold blue]Embedding Coverage[/bold blue]\n")
    console.print(f"Total entries:     {stats['total_entries']:,}")
    console.print(f"Published:         {stats['published_entries']:,}")
    console.print(f"Embedded:          {stats['embedded_entries']:,} ({stats['coverage_pct']:.1f}%)")
    console.print(f"Search eligible:   {stats['search_eligible_entries']:,}")
    if stats["needs_refresh"]:
        console.print(f"Needs refresh:     [yellow]{stats['needs_refresh']:,}[/yellow]")
    for model, count in stats.get("models", {}).items():
        console.print(f"  {model}: {count:,}")

    runs = store.list_runs(limit=limit)
    if not runs:
        console.print("\n[dim]No indexer runs yet[/dim]")
        return

    table = Table(title="Recent Runs", show_header=True)
    table.add_column("Run", style="cyan")
    table.add_column("Status")
    table.add_column("Embedded", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Last id", justify="right")

    status_styles = {"completed": "green", "running": "blue", "interrupted": "yellow", "failed": "red"}
    for summary in runs:
        style = status_styles.get(summary["status"], "white")
        table.add_row(
            summary["run_id"],
            f"[{style}]{summary['status']}[/{style}]",
            f"{summary['success_count']:,}",
            f"{summary['failure_count']:,}",
            f"{summary['tokens_used']:,}",
            str(summary.get("last_processed_id") or "-"),
        )

    console.print()
    console.print(table)


@app.command(name="index-daemon")
def index_daemon(
    action: str = typer.Argument(..., help="Action: start, stop, or status"),
    interval: int = typer.Option(
        3600, "--interval", "-i", help="Seconds between indexer runs (for start action)"
    ),
    batch_size: int = typer.Option(10, "--batch-size", "-b", help="Entries per provider call"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Database path"),
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Vector index directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """
    Manage the background indexer daemon.

    The daemon re-runs the indexer every --interval seconds, surviving
    terminal closure and detecting sleep/wake cycles.

    Examples:
        faqsearch index-daemon start --interval 900
        faqsearch index-daemon status
        faqsearch index-daemon stop
    """
    setup_logging(verbose)

    settings = _settings(db_path, index_dir)
    db = FAQDatabase(settings.db_path)
    data_dir = Path(settings.db_path).parent
    daemon = IndexerDaemon(
        db,
        pidfile=data_dir / ".indexer.pid",
        logfile=data_dir / "indexer_daemon.log",
    )

    if action == "status":
        status = daemon.status()

        console.print("\n[bold blue]Indexer Daemon Status[/bold blue]\n")

        if status["running"]:
            console.print(f"[green]● Running[/green] (PID {status['pid']})")
        else:
            console.print("[dim]○ Stopped[/dim]")

        console.print(f"PID file: {status['pidfile']}")
        console.print(f"Log file: {status['logfile']}")

        if status.get("last_heartbeat"):
            console.print(f"\nLast heartbeat: {status['last_heartbeat']}")
        if status.get("started_at"):
            console.print(f"Started at: {status['started_at']}")
        console.print(f"Runs completed: {status.get('runs_completed') or 0}")
        if status.get("last_run_id"):
            console.print(f"Last run: {status['last_run_id']}")

    elif action == "start":
        if interval < 1:
            console.print("[red]Error: --interval must be at least 1 second[/red]")
            raise typer.Exit(1)

        options = IndexerOptions(batch_size=batch_size)

        try:
            console.print("\n[bold blue]Starting Indexer Daemon[/bold blue]")
            console.print(f"Interval: [green]{interval}s[/green]")
            console.print(f"Database: {settings.db_path}")
            console.print()

            pid = daemon.start(
                lambda: build_components(settings).indexer(),
                options,
                interval=interval,
            )
            console.print(f"[green]Daemon started with PID {pid}[/green]")
            console.print(f"\nLogs: [cyan]{daemon.logfile}[/cyan]")
            console.print("\nCheck status: [bold]faqsearch index-daemon status[/bold]")
            console.print("Stop daemon: [bold]faqsearch index-daemon stop[/bold]")

        except DaemonAlreadyRunning as e:
            console.print(f"[yellow]{e}[/yellow]")
            console.print("Use [bold]faqsearch index-daemon stop[/bold] first")
            raise typer.Exit(1)

    elif action == "stop":
        try:
            console.print("Stopping daemon...")
            daemon.stop()
            console.print("[green]Daemon stopped[/green]")
        except DaemonNotRunning:
            console.print("[yellow]No daemon is running[/yellow]")

    else:
        console.print(f"[red]Unknown action: {action}[/red]")
        console.print("Valid actions: start, stop, status")
        raise typer.Exit(1)


# =============================================================================
# Search commands
# =============================================================================


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Category filter"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of results"),
    min_score: Optional[float] = typer.Option(
        None, "--min-score", help="Similarity threshold for semantic candidates"
    ),
    keyword_only: bool = typer.Option(
        False, "--keyword-only", help="Skip semantic search"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Database path"),
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Vector index directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """
    Search FAQ entries.

    Blends semantic similarity with helpfulness, views and pinning, and
    falls back to keyword matching when semantic search finds nothing.

    Examples:
        faqsearch search "how do I reset my password"
        faqsearch search "refund" --category billing
        faqsearch search "invoice" --keyword-only --json
    """
    setup_logging(verbose)

    components = build_components(_settings(db_path, index_dir))
    try:
        result = components.engine.search(
            query,
            category=category,
            limit=limit,
            min_score=min_score,
            use_semantic_search=False if keyword_only else None,
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        components.close()

    if json_output:
        _print_search_json(result, query)
    else:
        _display_search_results(result, query)

    if not result.success:
        raise typer.Exit(1)


def _print_search_json(result: SearchResult, query: str) -> None:
    """Print search results as JSON."""
    data = asdict(result)
    data["query"] = query
    console.print(json.dumps(data, indent=2, default=str))


def _display_search_results(result: SearchResult, query: str) -> None:
    """Display search results as a Rich table."""
    console.print(f"\n[bold blue]FAQ Search Results[/bold blue]")
    console.print("━" * 70)

    console.print(f"\nQuery: [green]{query}[/green]")
    console.print(f"Method: {result.method}   Time: [cyan]{result.response_time_ms:.0f}ms[/cyan]")

    if result.fallback_used:
        console.print("[yellow]⚠ Semantic search unavailable, keyword results shown[/yellow]")

    if not result.success:
        console.print(f"[red]{result.error}[/red]")
        return

    if not result.results:
        console.print("\n[yellow]No results found. Try different wording.[/yellow]")
        return

    _print_faq_table(result.results)


def _print_faq_table(results: list[FAQResult], title: Optional[str] = None) -> None:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("#", justify="right", width=3)
    table.add_column("Score", justify="right", style="green", width=7)
    table.add_column("Id", justify="right", width=6)
    table.add_column("Question", max_width=50)
    table.add_column("Category", max_width=15)
    table.add_column("Views", justify="right")
    table.add_column("Helpful", justify="right")

    for position, item in enumerate(results, start=1):
        question = item.question[:50]
        if item.is_pinned:
            question = f"📌 {question}"
        table.add_row(
            str(position),
            f"{item.relevance_score:.3f}",
            str(item.id),
            question,
            item.category or "-",
            f"{item.views:,}",
            f"{item.helpful_ratio:.0f}%",
        )

    console.print()
    console.print(table)


@app.command()
def click(
    entry_id: int = typer.Argument(..., help="Clicked FAQ entry id"),
    position: int = typer.Argument(..., help="1-based rank in the result list"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Query that produced the results"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Database path"),
) -> None:
    """
    Record a click on a search result.

    Examples:
        faqsearch click 7 1
        faqsearch click 12 3 --query "refund policy"
    """
    settings = _settings(db_path)
    telemetry = SearchTelemetry(FAQDatabase(settings.db_path))

    if not telemetry.record_click(entry_id, position, query=query):
        console.print(f"[red]FAQ entry {entry_id} not found[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Click recorded for entry {entry_id} at position {position}[/green]")


@app.command()
def analytics(
    days: int = typer.Option(7, "--days", "-d", help="Days to aggregate (1-365)"),
    top: int = typer.Option(10, "--top", help="Number of popular queries to show"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Database path"),
) -> None:
    """
    Show search volume, click-through and fallback rates.

    Examples:
        faqsearch analytics
        faqsearch analytics --days 30 --top 20
    """
    settings = _settings(db_path)
    telemetry = SearchTelemetry(FAQDatabase(settings.db_path))
    data = telemetry.get_search_analytics(max(1, min(days, 365)), top_queries=top)

    if json_output:
        console.print(json.dumps(data, indent=2, default=str))
        return

    console.print(f"\n[bold blue]Search Analytics[/bold blue] (last {data['period_days']} days)\n")

    table = Table(show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Searches", f"{data['total_searches']:,}")
    table.add_row("With click", f"{data['clicked_searches']:,}")
    table.add_row("Click-through rate", f"{data['click_through_rate']:.1f}%")
    table.add_row("Avg response time", f"{data['avg_response_time_ms']:.0f}ms")
    table.add_row("Semantic", f"{data['semantic_count']:,}")
    table.add_row("Keyword", f"{data['keyword_count']:,}")
    table.add_row("Fallback rate", f"{data['fallback_rate']:.1f}%")
    console.print(table)

    if data["top_queries"]:
        queries = Table(title="Top Queries", show_header=True)
        queries.add_column("Query", style="cyan", max_width=50)
        queries.add_column("Count", justify="right")
        queries.add_column("Clicks", justify="right")
        queries.add_column("Avg ms", justify="right")
        for row in data["top_queries"]:
            queries.add_row(
                row["query"][:50],
                f"{row['count']:,}",
                f"{row['clicks']:,}",
                f"{row['avg_response_time_ms']:.0f}",
            )
        console.print()
        console.print(queries)


@app.command()
def suggested(
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Category filter"),
    limit: int = typer.Option(5, "--limit", "-n", help="Number of entries"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Database path"),
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Vector index directory"),
) -> None:
    """
    Show suggested entries: pinned, then most clicked, then most viewed.

    Examples:
        faqsearch suggested --category billing
    """
    components = build_components(_settings(db_path, index_dir), load_index=False)
    results = components.engine.get_suggested(category=category, limit=limit)
    components.close()

    if not results:
        console.print("[yellow]No published entries[/yellow]")
        return
    _print_faq_table(results, title="Suggested")


@app.command()
def trending(
    days: int = typer.Option(7, "--days", "-d", help="Window in days (1-90)"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of entries"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Database path"),
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Vector index directory"),
) -> None:
    """
    Show trending entries: most viewed and most helpful, changed recently.

    Examples:
        faqsearch trending --days 30
    """
    components = build_components(_settings(db_path, index_dir), load_index=False)
    results = components.engine.get_trending(days=days, limit=limit)
    components.close()

    if not results:
        console.print("[yellow]No published entries[/yellow]")
        return
    _print_faq_table(results, title=f"Trending (last {days} days)")


# =============================================================================
# Vector index maintenance
# =============================================================================


@app.command(name="vector-stats")
def vector_stats(
    db_path: Optional[str] = typer.Option(None, "--db", help="Database path"),
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Vector index directory"),
) -> None:
    """
    Show vector index, embedding coverage and cache statistics.

    Examples:
        faqsearch vector-stats
    """
    components = build_components(_settings(db_path, index_dir))
    stats = components.engine.get_stats()
    cache = components.db.get_embedding_cache_stats()
    components.close()

    index = stats.get("index_stats", {})
    embedding = stats.get("embedding_stats", {})

    console.print("\n[bold blue]Vector Index[/bold blue]\n")

    if "error" in index:
        console.print(f"[red]Index unavailable: {index['error']}[/red]")
    else:
        console.print(f"Vectors:      {index['vector_count']:,}")
        console.print(f"Dimension:    {index['dimension']}")
        console.print(f"Model:        {index['model_version']}")
        console.print(f"Memory:       {index['estimated_memory_mb']:.1f} MB")
        console.print(f"Directory:    {index['index_dir']}")

    if stats["degraded"]:
        console.print("[yellow]⚠ Index not loaded: searches use keyword fallback[/yellow]")

    console.print(f"\nEmbedded entries: {embedding['embedded_entries']:,} "
                  f"of {embedding['published_entries']:,} published "
                  f"({embedding['coverage_pct']:.1f}%)")

    console.print("\n[bold]Embedding cache[/bold]")
    console.print(f"Cached texts: {cache['total_embeddings']:,}")
    console.print(f"Total uses:   {cache['total_uses']:,}")


@app.command(name="vector-prune")
def vector_prune(
    dry_run: bool = typer.Option(False, "--dry-run", help="List orphans without deleting"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Database path"),
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Vector index directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """
    Delete vectors whose FAQ entry is missing or unpublished.

    Examples:
        faqsearch vector-prune --dry-run
        faqsearch vector-prune
    """
    setup_logging(verbose)

    components = build_components(_settings(db_path, index_dir))
    try:
        if not components.vector_index.exists():
            console.print("[yellow]No vector index found. Run 'faqsearch index-run' first.[/yellow]")
            raise typer.Exit(1)
        result = components.indexer().prune_orphans(dry_run=dry_run)
    finally:
        components.close()

    console.print(f"\nChecked {result['checked']:,} vectors")
    if not result["orphaned"]:
        console.print("[green]✓ No orphaned vectors[/green]")
        return

    action = "Would delete" if dry_run else "Deleted"
    count = result["orphaned"] if dry_run else result["deleted"]
    console.print(f"{action} [yellow]{count:,}[/yellow] orphaned vectors")
    for key in result["orphan_ids"][:20]:
        console.print(f"  [dim]{key}[/dim]")


@app.command(name="cache-clear")
def cache_clear(
    max_age_days: int = typer.Option(
        30, "--max-age-days", help="Remove cached embeddings unused for this many days"
    ),
    all_entries: bool = typer.Option(False, "--all", help="Remove every cached embedding"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Database path"),
) -> None:
    """
    Clear the persistent embedding cache.

    Examples:
        faqsearch cache-clear                  # Unused for 30 days
        faqsearch cache-clear --all
    """
    settings = _settings(db_path)
    db = FAQDatabase(settings.db_path)
    deleted = db.clear_embedding_cache(max_age_days=0 if all_entries else max_age_days)
    console.print(f"[green]Removed {deleted:,} cached embeddings[/green]")


# =============================================================================
# API server
# =============================================================================


@app.command(name="api-serve")
def serve_api(
    host: str = typer.Option("127.0.0.1", "--host", "-H", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    db_path: Optional[str] = typer.Option(None, "--db", help="Path to SQLite database"),
    index_dir: Optional[str] = typer.Option(None, "--index-dir", help="Path to the vector index"),
    reload: bool = typer.Option(
        False, "--reload", help="Enable auto-reload for development"
    ),
    workers: int = typer.Option(
        1, "--workers", "-w", help="Number of worker processes (production)"
    ),
    cors_origins: Optional[str] = typer.Option(
        None, "--cors", help="Comma-separated CORS origins"
    ),
    api_rate_limit: Optional[int] = typer.Option(
        None, "--rate-limit", help="Max requests per minute per IP (0 to disable)"
    ),
) -> None:
    """
    Start the FAQ search API server.

    Examples:
        faqsearch api-serve                     # Start on localhost:8000
        faqsearch api-serve --port 9000         # Custom port
        faqsearch api-serve --reload            # Auto-reload for dev
        faqsearch api-serve --workers 4         # Production mode
    """
    import os
    import uvicorn

    settings = _settings(db_path, index_dir, rate_limit_rpm=api_rate_limit)
    origins = (
        [o.strip() for o in cors_origins.split(",") if o.strip()]
        if cors_origins
        else settings.cors_origins
    )

    if not Path(settings.db_path).exists():
        console.print(f"[red]Error:[/red] Database not found: {settings.db_path}")
        raise typer.Exit(1)

    index_path = Path(settings.index_dir)
    if not (index_path / "faq.index").exists():
        console.print(f"[yellow]Warning:[/yellow] Vector index not found in {index_path}")
        console.print("API will run in degraded mode (keyword search only).")
        console.print("Run 'faqsearch index-run' to enable semantic search.")

    console.print("\n[bold green]Starting FAQ Search API[/bold green]")
    console.print(f"  Database:   {settings.db_path}")
    console.print(f"  Index dir:  {settings.index_dir}")
    console.print(f"  Provider:   {settings.embedding_provider} ({settings.embedding_model})")
    console.print(f"  Endpoint:   http://{host}:{port}")
    console.print(f"  API docs:   http://{host}:{port}/docs")
    console.print(f"  CORS:       {', '.join(origins)}")
    if settings.rate_limit_rpm > 0:
        console.print(f"  Rate limit: {settings.rate_limit_rpm} req/min per IP")
    else:
        console.print("  Rate limit: [yellow]disabled[/yellow]")
    if reload:
        console.print("  Mode:       [yellow]Development (auto-reload)[/yellow]")
    else:
        console.print(f"  Mode:       Production ({workers} worker{'s' if workers != 1 else ''})")
    console.print()

    # Pass config via environment so uvicorn workers can pick it up
    os.environ["FAQ_DB_PATH"] = settings.db_path
    os.environ["FAQ_INDEX_DIR"] = settings.index_dir
    os.environ["FAQ_CORS_ORIGINS"] = ",".join(origins)
    os.environ["FAQ_RATE_LIMIT_RPM"] = str(settings.rate_limit_rpm)

    uvicorn.run(
        "src.api.app:app",
        host=host,
        port=port,
        reload=reload,
        workers=1 if reload else workers,
        log_level="info",
    )


if __name__ == "__main__":
    app()
