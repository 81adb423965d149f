#!src/devotional_app/db/migrate.py
from __future__ import annotations

import os
import sqlite3
from pathlib import Path

from devotional_app.db.connection import connect
from devotional_app.db.schema import TABLES, render_views
from devotional_app.pipeline.stages import PIPELINE_STAGES
from devotional_app.utils.logger import get_logger

logger = get_logger(__name__)

# Columns added after the first release. Databases created before them get
# an ALTER TABLE on the next ensure_schema.
_ADDITIVE_COLUMNS: dict[str, tuple[str, ...]] = {
    "devotional_spreads": (
        "web_passage_text TEXT",
        "mood_category TEXT",
        "primary_slot INTEGER NOT NULL DEFAULT 1",
        "last_processed_at TEXT",
    ),
    "spread_stages": (
        "claimed_by TEXT",
        "claimed_until TEXT",
    ),
    "regeneration_requests": (
        "selected_url TEXT",
        "requested_by TEXT",
    ),
}


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    return {r["name"] for r in rows}


def _add_column_if_missing(conn: sqlite3.Connection, table: str, col_def: str) -> bool:
    col_name = col_def.strip().split()[0]
    if col_name in _columns(conn, table):
        return False
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {col_def};")
    return True


def _apply_migrations(conn: sqlite3.Connection) -> list[str]:
    applied: list[str] = []

    existing_tables = {
        r[0]
        for r in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table';"
        ).fetchall()
    }

    for table, col_defs in _ADDITIVE_COLUMNS.items():
        if table not in existing_tables:
            continue
        for col_def in col_defs:
            if _add_column_if_missing(conn, table, col_def):
                applied.append(f"add_column={table}.{col_def.split()[0]}")

    # Spreads stored before stage tracking existed start every stage pending.
    for pos, stage in enumerate(PIPELINE_STAGES):
        cur = conn.execute(
            """
            INSERT OR IGNORE INTO spread_stages (spread_id, stage, position)
            SELECT s.id, ?, ? FROM devotional_spreads s;
            """,
            (stage.value, pos),
        )
        if cur.rowcount > 0:
            applied.append(f"backfill_stage={stage.value} rows={cur.rowcount}")

    return applied


def apply_schema(conn: sqlite3.Connection, pending_batch_size: int = 5) -> list[str]:
    """Create missing tables, migrate older ones, rebuild views.

    Args:
        conn: Open connection.
        pending_batch_size: Bound rendered into the pending work view.

    Returns:
        list[str]: Migration steps applied.
    """
    conn.executescript(TABLES)
    applied = _apply_migrations(conn)
    conn.executescript(render_views(pending_batch_size))
    conn.commit()
    if applied:
        logger.info(f"Schema migrated, steps={applied}")
    return applied


def ensure_schema(
    db_path: str | Path, pending_batch_size: int = 5, timeout_seconds: int = 30
) -> sqlite3.Connection:
    """Guarantee schema and migrations.

    Args:
        db_path: Database path.
        pending_batch_size: Bound rendered into the pending work view.
        timeout_seconds: Busy timeout.

    Returns:
        sqlite3.Connection: Open connection.
    """
    conn = connect(db_path, timeout_seconds)
    try:
        apply_schema(conn, pending_batch_size)
    except BaseException:
        conn.close()
        raise
    return conn


def recreate_schema(
    db_path: str | Path, pending_batch_size: int = 5
) -> sqlite3.Connection:
    """Delete the database file and build the schema from scratch.

    Args:
        db_path: Database path.
        pending_batch_size: Bound rendered into the pending work view.

    Returns:
        sqlite3.Connection: Open connection.
    """
    if os.path.exists(db_path):
        os.remove(db_path)
    conn = connect(db_path)
    conn.executescript(TABLES)
    conn.executescript(render_views(pending_batch_size))
    conn.commit()
    return conn
