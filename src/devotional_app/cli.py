#!filepath: src/devotional_app/cli.py
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
from rich import print
from rich.console import Console
from rich.table import Table

from devotional_app.access.admin import AccountsRepo, AdminRepo
from devotional_app.access.policy import Caller
from devotional_app.catalog import CatalogError, seed_catalog
from devotional_app.db.migrate import ensure_schema
from devotional_app.db.reset import reset_database_file
from devotional_app.emails import check_templates
from devotional_app.errors import AccessDenied, StoreError
from devotional_app.exporter import export_spreads
from devotional_app.pipeline.stages import PIPELINE_STAGES
from devotional_app.pipeline.tracker import PipelineTracker
from devotional_app.settings import SettingsError, get_settings
from devotional_app.utils.logger import get_logger

app = typer.Typer(help="Devotional spreads: pipeline status, users and export.")
logger = get_logger(__name__)
console = Console()

# The operator shell is trusted with admin capability.
OPERATOR = Caller(user_id="operator", is_admin=True)

_HANDLED = (StoreError, AccessDenied, CatalogError, SettingsError, ValueError)


@contextmanager
def _store() -> Iterator[tuple[sqlite3.Connection, Any]]:
    try:
        settings = get_settings()
        conn = ensure_schema(
            settings.db_path,
            pending_batch_size=settings.pipeline.pending_batch_size,
            timeout_seconds=settings.app.db.timeout_seconds,
        )
    except (SettingsError, sqlite3.Error) as e:
        logger.error(f"Could not open store: {e}")
        raise typer.Exit(code=2) from e
    try:
        yield conn, settings
    except _HANDLED as e:
        logger.error(str(e))
        raise typer.Exit(code=2) from e
    finally:
        conn.close()


def _table(title: str, rows: list[dict[str, Any]], columns: list[str]) -> None:
    if not rows:
        print(f"[dim]{title}: none[/dim]")
        return
    table = Table(title=title)
    for idx, col in enumerate(columns):
        table.add_column(col, no_wrap=idx == 0)
    for r in rows:
        table.add_row(*["" if r.get(c) is None else str(r.get(c)) for c in columns])
    console.print(table)


_STATUS_COLUMNS = [f"status_{s.value}" for s in PIPELINE_STAGES]


@app.command("init-db")
def init_db() -> None:
    """Create missing tables, migrate and rebuild views."""
    with _store() as (_, settings):
        print(f"[bold green]Schema ready[/bold green]: {settings.db_path}")


@app.command("reset-db")
def reset_db(yes: bool = typer.Option(False, "--yes", help="confirm the destructive reset")) -> None:
    """Delete the database file and recreate the schema."""
    if not yes:
        logger.error("Refused, pass --yes to reset the database")
        raise typer.Exit(code=2)
    settings = get_settings()
    res = reset_database_file(settings.db_path, settings.pipeline.pending_batch_size)
    if not res.ok:
        raise typer.Exit(code=2)
    print(f"[bold yellow]Database recreated[/bold yellow]: {res.db_path}")


@app.command()
def seed(
    path: Optional[Path] = typer.Option(None, help="catalog file, defaults to paths.catalog"),
    outline_done: bool = typer.Option(False, help="mark the outline stage done for new spreads"),
) -> None:
    """Insert catalog spreads that are not stored yet."""
    with _store() as (conn, settings):
        res = seed_catalog(conn, path or settings.catalog_path, mark_outline_done=outline_done)
        print(
            f"[bold green]Seeded[/bold green]: inserted={len(res.inserted)}, skipped={len(res.skipped)}"
        )


@app.command()
def pending(limit: Optional[int] = typer.Option(None, help="tighter bound than the view's")) -> None:
    """Show the bounded pending work list."""
    with _store() as (conn, settings):
        items = PipelineTracker(conn, settings.pipeline.lease_seconds).next_work_items(limit)
        rows = [
            {
                "spread_code": i.spread_code,
                "title": i.title,
                "next_stage": i.next_stage.value,
                "retry_count": i.retry_count,
            }
            for i in items
        ]
        _table("Pending", rows, ["spread_code", "title", "next_stage", "retry_count"])


@app.command()
def errors() -> None:
    """Show spreads with any stage in error."""
    with _store() as (conn, _):
        rows = PipelineTracker(conn).error_set()
        _table("Errors", rows, ["spread_code", *_STATUS_COLUMNS, "retry_count", "error_message"])


@app.command()
def completed() -> None:
    """Show spreads with every stage done."""
    with _store() as (conn, _):
        rows = PipelineTracker(conn).completed()
        _table("Completed", rows, ["spread_code", "testament", "book", "title", "primary_slot"])


@app.command()
def status(spread_code: str = typer.Argument(...)) -> None:
    """Show per-stage state of one spread."""
    with _store() as (conn, _):
        snap = PipelineTracker(conn).status(spread_code)
        rows = [
            {
                "stage": st.stage.value,
                "state": st.state.value,
                "retry_count": st.retry_count,
                "claimed_by": st.claimed_by,
                "error_message": st.error_message,
            }
            for st in snap.stages.values()
        ]
        _table(spread_code, rows, ["stage", "state", "retry_count", "claimed_by", "error_message"])
        nxt = snap.next_stage
        print(f"next_stage={nxt.value if nxt else 'complete'}")


@app.command("mark-done")
def mark_done(spread_code: str = typer.Argument(...), stage: str = typer.Argument(...)) -> None:
    with _store() as (conn, _):
        PipelineTracker(conn).mark_done(spread_code, stage)
        print(f"[green]done[/green] {spread_code} {stage}")


@app.command("mark-error")
def mark_error(
    spread_code: str = typer.Argument(...),
    stage: str = typer.Argument(...),
    message: str = typer.Argument(...),
) -> None:
    with _store() as (conn, _):
        snap = PipelineTracker(conn).mark_error(spread_code, stage, message)
        print(f"[red]error[/red] {spread_code} {stage}, retry_count={snap.retry_count}")


@app.command("reset-stage")
def reset_stage(spread_code: str = typer.Argument(...), stage: str = typer.Argument(...)) -> None:
    """Move an errored stage back to pending."""
    with _store() as (conn, _):
        PipelineTracker(conn).reset_stage(spread_code, stage)
        print(f"[yellow]pending[/yellow] {spread_code} {stage}")


@app.command()
def export(out: Optional[Path] = typer.Option(None, help="output file, defaults to paths.export")) -> None:
    """Write the static spreads JSON for the reader app."""
    with _store() as (conn, settings):
        res = export_spreads(conn, out or settings.export_path)
        print(f"[bold green]Exported[/bold green] {res.total_spreads} spreads to {res.path}")


@app.command("set-admin")
def set_admin(
    email: str = typer.Argument(...),
    revoke: bool = typer.Option(False, "--revoke", help="remove the admin flag instead"),
) -> None:
    with _store() as (conn, _):
        if not AccountsRepo(conn).set_admin(email, not revoke):
            logger.error(f"No user with email {email}")
            raise typer.Exit(code=2)
        print(f"admin={'no' if revoke else 'yes'} {email}")


@app.command()
def popularity() -> None:
    """Usage statistics: favorites, reads and image selections."""
    with _store() as (conn, _):
        admin = AdminRepo(conn)
        fav = {c.spread_code: c.count for c in admin.favorite_counts(OPERATOR)}
        read = {c.spread_code: c.count for c in admin.read_counts(OPERATOR)}
        rows = [
            {"spread_code": code, "favorites": fav.get(code, 0), "reads": read.get(code, 0)}
            for code in sorted(set(fav) | set(read))
        ]
        _table("Engagement", rows, ["spread_code", "favorites", "reads"])
        _table(
            "Image selections",
            admin.image_popularity(OPERATOR),
            ["spread_code", "image_slot", "selection_count"],
        )


@app.command("check-emails")
def check_emails(
    templates_dir: Optional[Path] = typer.Option(None, help="directory holding <flow>.html files"),
) -> None:
    """Validate auth email templates."""
    results = check_templates(templates_dir)
    for name, err in results.items():
        print(f"[red]FAIL[/red] {name}: {err}" if err else f"[green]ok[/green] {name}")
    if any(results.values()):
        raise typer.Exit(code=2)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
