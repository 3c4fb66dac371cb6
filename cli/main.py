"""flatwatch CLI: entry-point for crawl operations.

Usage:
    python cli/main.py --help

Commands:
    crawl   → batch crawl, prints a table (or JSON)
    stream  → incremental crawl, prints one line per event
    check   → compliance gate only
    serve   → run the HTTP API with uvicorn
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from flatwatch.xxx import ...`
# works when the CLI is invoked as `python cli/main.py` from any directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import asyncio
import json
import logging
from typing import Optional

import typer

from flatwatch.config import settings
from flatwatch.errors import CrawlError

from cli.rendering import render_event, render_hits, render_outcome

app = typer.Typer(
    name="flatwatch",
    help="flatwatch listing crawler CLI.",
    no_args_is_help=True,
)


@app.callback()
def main(
    log_level: str = typer.Option(settings.log_level, "--log-level", help="Python logging level."),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Crawl commands
# ---------------------------------------------------------------------------
@app.command("crawl")
def crawl_cmd(
    url: str = typer.Argument(..., help="Category URL, with or without ?page=N."),
    pages: Optional[int] = typer.Option(None, "--pages", min=1, help="Page cap (default: PAGE_CAP)."),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON."),
) -> None:
    """Crawl to completion and print every unique listing."""
    from flatwatch.scraper.engine import crawl

    typer.echo(f"[crawl] Crawling {url!r} …", err=True)
    try:
        result = asyncio.run(crawl(url, pages))
    except CrawlError as exc:
        typer.echo(f"[crawl] {exc.kind}: {exc}", err=True)
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
        return
    if result.hits:
        typer.echo(render_hits(result.hits))
    else:
        typer.echo("[crawl] No listings found.")
    typer.echo(f"[crawl] {render_outcome(result.outcome)}")


@app.command("stream")
def stream_cmd(
    url: str = typer.Argument(..., help="Category URL, with or without ?page=N."),
    pages: Optional[int] = typer.Option(None, "--pages", min=1, help="Page cap (default: PAGE_CAP)."),
) -> None:
    """Crawl page by page, printing each event as it arrives."""
    from flatwatch.scraper.engine import stream_crawl

    async def _run() -> bool:
        ok = True
        async for event in stream_crawl(url, pages):
            typer.echo(render_event(event))
            if event.kind == "error":
                ok = False
        return ok

    if not asyncio.run(_run()):
        raise typer.Exit(1)


@app.command("check")
def check_cmd(
    url: str = typer.Argument(..., help="Start URL to validate."),
) -> None:
    """Run only the allow-list and robots.txt checks for a start URL."""
    from flatwatch.scraper.compliance import ComplianceGate

    try:
        target = asyncio.run(ComplianceGate().check(url))
    except CrawlError as exc:
        typer.echo(f"[check] {exc.kind}: {exc}")
        raise typer.Exit(1)
    typer.echo(f"[check] OK  host={target.host}  origin={target.origin}")


# ---------------------------------------------------------------------------
# API server
# ---------------------------------------------------------------------------
@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address."),
    port: int = typer.Option(8080, help="Bind port."),
) -> None:
    """Serve the HTTP API and dashboard."""
    import uvicorn

    typer.echo(f"[serve] Starting flatwatch on {host}:{port} …")
    uvicorn.run("flatwatch.api.app:app", host=host, port=port)


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
