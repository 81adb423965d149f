#!src/devotional_app/db/connection.py
from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Union


def connect(db_path: Union[str, Path], timeout_seconds: int = 30) -> sqlite3.Connection:
    """Open a SQLite connection with the defaults every repo relies on.

    Args:
        db_path: Path to the database.
        timeout_seconds: Busy timeout in seconds.

    Returns:
        sqlite3.Connection: Active connection with Row factory and foreign keys on.
    """
    p = Path(db_path).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(p), timeout=timeout_seconds)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute(f"PRAGMA busy_timeout = {int(timeout_seconds) * 1000};")
    return conn
