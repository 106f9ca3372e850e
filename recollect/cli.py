"""[Layer: Presentation] Typer CLI Commands."""

import asyncio
import json
import logging
import sys
from importlib.metadata import PackageNotFoundError, version as get_package_version
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, TypeVar

import typer

from recollect.config import get_settings
from recollect.core.engine import Engine
from recollect.database.store import StoreError
from recollect.models import CaptureRecord, ScoredDocument
from recollect.sync.history import ChromeHistorySource
from recollect.utils.capture_config import load_capture_config, save_capture_config
from recollect.utils.text import time_ago

T = TypeVar("T")


def _get_version() -> str:
    """Get version from package metadata (single source of truth: pyproject.toml)."""
    try:
        return get_package_version("recollect")
    except PackageNotFoundError:
        return "0.0.0-dev"


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"recollect {_get_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="recollect",
    help="Local semantic search over your own browsing history.",
    no_args_is_help=True,
)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show INFO log messages on stderr."
    ),
) -> None:
    """Recollect: capture pages, embed them locally, search by meaning."""
    if verbose:
        from recollect.main import set_console_level

        set_console_level(logging.INFO)


def _make_engine(history: Optional[Path] = None) -> Engine:
    if history is not None:
        return Engine(history_source=ChromeHistorySource(history))
    return Engine()


def _run(action: Callable[[Engine], Awaitable[T]], history: Optional[Path] = None) -> T:
    """Run one async action against a fresh Engine, then drain and close it."""

    async def _main() -> T:
        engine = _make_engine(history)
        try:
            return await action(engine)
        finally:
            await engine.close()

    try:
        return asyncio.run(_main())
    except StoreError as e:
        typer.echo(f"Storage error: {e}", err=True)
        raise typer.Exit(code=1)


def _print_results(results: list[ScoredDocument], show_score: bool = True) -> None:
    if not results:
        typer.echo("No results.")
        return
    for r in results:
        prefix = f"{r.score:6.3f}  " if show_score else ""
        typer.echo(f"{prefix}{r.title}  ({r.site}, {time_ago(r.timestamp)})")
        typer.echo(f"{' ' * len(prefix)}{r.url}")


@app.command()
def capture(
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Page URL"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Page title"),
    site: Optional[str] = typer.Option(None, "--site", help="Hostname (default: from URL)"),
    timestamp: Optional[int] = typer.Option(
        None, "--timestamp", help="Visit time in ms since epoch (default: now)"
    ),
    text: str = typer.Option("", "--text", help="Visible page text"),
    from_json: bool = typer.Option(
        False, "--json", help="Read one JSON capture record from stdin"
    ),
) -> None:
    """Capture one page view.

    Examples:
        recollect capture --url https://example.com/post --title "A post" --text "..."
        echo '{"url": "...", "title": "...", "text": "..."}' | recollect capture --json
    """
    if from_json:
        try:
            record = CaptureRecord.model_validate(json.loads(sys.stdin.read()))
        except ValueError as e:
            typer.echo(f"Invalid capture record: {e}", err=True)
            raise typer.Exit(code=1)
    else:
        record = CaptureRecord(
            url=url, title=title, site=site, timestamp=timestamp, text=text
        )

    result = _run(lambda engine: engine.capture(record))

    if result.skipped:
        typer.echo("Skipped (not an http(s) page or excluded).")
    elif not result.ok:
        typer.echo(f"Rejected: {result.error}", err=True)
        raise typer.Exit(code=1)
    elif result.id is None:
        typer.echo("Already captured recently; not stored again.")
    else:
        typer.echo(f"Stored document #{result.id}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query; supports site:, after:, before:"),
    top_k: Optional[int] = typer.Option(None, "--top-k", "-k", help="Maximum results"),
) -> None:
    """Search captured pages by meaning.

    Examples:
        recollect search "vector databases"
        recollect search "site:github.com after:2024-01-01 rust async"
    """
    k = top_k or get_settings().search_top_k
    results = _run(lambda engine: engine.search(query, k))
    _print_results(results)


@app.command()
def recent(
    limit: int = typer.Option(30, "--limit", "-n", help="Number of pages"),
) -> None:
    """List the most recently captured pages."""
    _print_results(_run(lambda engine: engine.recent(limit)), show_score=False)


@app.command()
def backfill(
    days: Optional[int] = typer.Option(
        None, "--days", "-d", help="Days of history (default: capture settings)"
    ),
    embed: bool = typer.Option(True, "--embed/--no-embed", help="Fetch and embed pages"),
    history: Optional[Path] = typer.Option(
        None, "--history", help="Path to a Chromium History file"
    ),
) -> None:
    """Index pages from browser history."""
    history = history or get_settings().history_path
    try:
        report = _run(lambda engine: engine.backfill(days, embed), history=history)
    except FileNotFoundError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)
    typer.echo(
        f"Backfilled {report.days} days: {report.inserted} inserted, "
        f"{report.embedded} embedded, {report.skipped} skipped, {report.errors} errors"
    )


@app.command()
def reembed(
    count: int = typer.Option(300, "--count", "-n", help="Most recent pages to re-embed"),
) -> None:
    """Recompute vectors for recent pages."""
    report = _run(lambda engine: engine.reembed_recent(count))
    typer.echo(
        f"Re-embedded: {report.saved} saved, {report.empty} empty, "
        f"{report.errors} errors ({report.vectors} vectors stored)"
    )


@app.command()
def stats() -> None:
    """Show document and vector counts."""
    s = _run(lambda engine: engine.stats())
    typer.echo(f"Documents: {s.document_count}")
    typer.echo(f"Vectors:   {s.vector_count}")


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete every captured page and vector."""
    if not yes and not typer.confirm("Delete all captured pages and vectors?"):
        raise typer.Exit()
    _run(lambda engine: engine.clear())
    typer.echo("All data cleared.")


@app.command()
def warmup() -> None:
    """Load the embedding model ahead of the first search."""
    _run(lambda engine: engine.warmup())
    typer.echo("Embedding model ready.")


@app.command()
def settings(
    exclude: Optional[List[str]] = typer.Option(
        None, "--exclude", "-x", help="Add an exclusion pattern (repeatable)"
    ),
    include: Optional[List[str]] = typer.Option(
        None, "--include", "-i", help="Remove an exclusion pattern (repeatable)"
    ),
    backfill_days: Optional[int] = typer.Option(
        None, "--backfill-days", min=1, help="Default backfill window in days"
    ),
) -> None:
    """Show or change capture settings."""
    config_path = get_settings().config_path
    config = load_capture_config(config_path)

    if exclude or include or backfill_days:
        removed = set(include or [])
        patterns = [p for p in config.excluded if p not in removed]
        for p in exclude or []:
            if p not in patterns:
                patterns.append(p)
        config.excluded = patterns
        if backfill_days:
            config.backfill_days = backfill_days
        save_capture_config(config, config_path)
        typer.echo(f"Saved {config_path}")

    typer.echo(f"Backfill window: {config.backfill_days} days")
    typer.echo("Excluded patterns:")
    for p in config.excluded:
        typer.echo(f"  {p}")
