"""sitezip CLI — entry-point for all operations.

Usage:
    python cli/main.py --help

Commands:
    links     preview the links a sitemap would yield
    run       run a whole workflow in the foreground
    status    show a stored workflow instance
    resume    finish instances an earlier process left incomplete
    serve     start the HTTP API
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from sitezip.xxx import ...`
# works when the CLI is invoked as `python cli/main.py` from any directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import json

import typer

from sitezip.config import configure_logging, settings
from sitezip.errors import InstanceNotFound, SitezipError, ValidationError

app = typer.Typer(
    name="sitezip",
    help="Turn a sitemap into a zip of markdown pages.",
    no_args_is_help=True,
)


@app.callback()
def main(
    log_level: str = typer.Option(settings.log_level, "--log-level", help="Logging level."),
) -> None:
    configure_logging(log_level)


@app.command("links")
def links(
    url: str = typer.Option(..., help="Sitemap URL."),
) -> None:
    """Fetch a sitemap and print the page links a workflow would scrape."""
    from sitezip.scraper import fetch_sitemap_links

    typer.echo(f"[links] Fetching {url!r} …")
    try:
        found = fetch_sitemap_links(url)
    except SitezipError as exc:
        typer.echo(f"[links] {exc}", err=True)
        raise typer.Exit(1)
    for link in found:
        typer.echo(f"  {link}")
    typer.echo(f"[links] {len(found)} link(s)")


@app.command("run")
def run(
    url: str = typer.Option(..., help="Sitemap URL."),
) -> None:
    """Create a workflow instance and run it to completion in the foreground."""
    from sitezip.workflow import build_engine

    engine = build_engine(max_workers=0)
    try:
        instance = engine.create({"sitemapUrl": url})
    except ValidationError as exc:
        typer.echo(f"[run] {exc}", err=True)
        raise typer.Exit(1)

    typer.echo(f"[run] Instance {instance.id} created, running …")
    final = engine.run(instance.id)
    if final.status != "complete":
        typer.echo(f"[run] {final.status}: {final.error}", err=True)
        raise typer.Exit(1)
    typer.echo(f"[run] Download URL: {final.output['downloadUrl']}")


@app.command("status")
def status(
    id: str = typer.Option(..., "--id", help="Workflow instance id."),  # noqa: A002
) -> None:
    """Print the stored status of a workflow instance as JSON."""
    from sitezip.workflow import build_engine

    engine = build_engine(max_workers=0)
    try:
        instance = engine.status(id)
    except InstanceNotFound as exc:
        typer.echo(f"[status] {exc}", err=True)
        raise typer.Exit(1)
    data = instance.to_dict()
    data["steps"] = engine.committed_steps(id)
    typer.echo(json.dumps(data, indent=2))


@app.command("resume")
def resume() -> None:
    """Run every queued or interrupted instance to a terminal status."""
    from sitezip.db import get_connection, init_db
    from sitezip.db.instances import list_incomplete
    from sitezip.workflow import build_engine

    engine = build_engine(max_workers=0)
    conn = get_connection()
    init_db(conn)
    try:
        pending = list_incomplete(conn)
    finally:
        conn.close()

    if not pending:
        typer.echo("[resume] Nothing to resume.")
        return
    for instance in pending:
        final = engine.run(instance.id)
        typer.echo(f"  {final.id}  {final.status}  {final.error or final.output}")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8000, help="Port."),
) -> None:
    """Start the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("sitezip.api.app:app", host=host, port=port)


if __name__ == "__main__":
    app()
