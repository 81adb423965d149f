#!filepath: tests/conftest.py
from __future__ import annotations

import sqlite3
import sys
from pathlib import Path
from typing import Callable, Iterator

import pytest


def pytest_configure() -> None:
    """Ensure src layout is importable during tests."""
    root = Path(__file__).resolve().parents[1]
    src = (root / "src").resolve()
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "devotional.db"


@pytest.fixture()
def conn(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Fresh database with the full schema and a pending bound of 5."""
    from devotional_app.db.migrate import ensure_schema

    c = ensure_schema(db_path, pending_batch_size=5)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture()
def add_spread(conn: sqlite3.Connection) -> Callable[..., str]:
    """Insert a spread and return its code."""
    from devotional_app.db.repos.spreads_repo import SpreadsRepo
    from devotional_app.models import SpreadSeed

    def _add(
        code: str,
        testament: str = "OT",
        book: str = "Genesis",
        chapter: int = 1,
        verse: int = 1,
        **content: str,
    ) -> str:
        seed = SpreadSeed(
            spread_code=code,
            testament=testament,
            book=book,
            start_chapter=chapter,
            start_verse=verse,
            end_chapter=chapter,
            end_verse=verse + 5,
            **content,
        )
        SpreadsRepo(conn).insert_spread(seed)
        conn.commit()
        return code

    return _add


@pytest.fixture()
def add_user(conn: sqlite3.Connection) -> Callable[..., str]:
    """Create a user, optionally with the admin flag."""
    from devotional_app.access.admin import AccountsRepo

    def _add(user_id: str, admin: bool = False) -> str:
        accounts = AccountsRepo(conn)
        email = f"{user_id}@example.org"
        accounts.create_user(user_id, email)
        if admin:
            accounts.set_admin(email, True)
        return user_id

    return _add
