#!filepath: tests/test_schema_constraints.py
from __future__ import annotations

import sqlite3

import pytest

from devotional_app.db.migrate import apply_schema, ensure_schema
from devotional_app.db import migrate
from devotional_app.db.schema import VIEW_NAMES, render_views
from devotional_app.pipeline.stages import StageState
from devotional_app.pipeline.tracker import PipelineTracker


def _spread_id(conn: sqlite3.Connection, code: str) -> int:
    return int(
        conn.execute("SELECT id FROM devotional_spreads WHERE spread_code = ?;", (code,)).fetchone()["id"]
    )


def test_stage_rows_created_pending(conn, add_spread) -> None:
    add_spread("GEN-001")
    rows = conn.execute(
        "SELECT stage, state, position FROM spread_stages ORDER BY position;"
    ).fetchall()
    assert [r["stage"] for r in rows] == ["outline", "scripture", "text", "image"]
    assert {r["state"] for r in rows} == {"pending"}


def test_unknown_stage_state_rejected(conn, add_spread) -> None:
    add_spread("GEN-001")
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("UPDATE spread_stages SET state = 'running' WHERE stage = 'outline';")


def test_image_slot_bounds(conn, add_spread) -> None:
    add_spread("GEN-001")
    sid = _spread_id(conn, "GEN-001")
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO spread_images (spread_id, slot, url) VALUES (?, 5, 'x');", (sid,)
        )
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "UPDATE devotional_spreads SET primary_slot = 0 WHERE id = ?;", (sid,)
        )


def test_spread_code_unique(conn, add_spread) -> None:
    add_spread("GEN-001")
    with pytest.raises(sqlite3.IntegrityError):
        add_spread("GEN-001")


def test_user_insert_creates_profile(conn, add_user) -> None:
    add_user("u1")
    row = conn.execute("SELECT email, is_admin FROM user_profiles WHERE id = 'u1';").fetchone()
    assert row["email"] == "u1@example.org"
    assert row["is_admin"] == 0


def test_user_rows_need_existing_user(conn) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO user_favorites (user_id, spread_code) VALUES ('ghost', 'GEN-001');"
        )


def test_ensure_schema_is_idempotent(db_path) -> None:
    first = ensure_schema(db_path)
    first.close()
    second = ensure_schema(db_path)
    try:
        views = {
            r["name"]
            for r in second.execute("SELECT name FROM sqlite_master WHERE type = 'view';")
        }
        assert set(VIEW_NAMES) <= views
    finally:
        second.close()


def test_migration_adds_missing_columns(db_path) -> None:
    legacy = sqlite3.connect(str(db_path))
    legacy.execute(
        """
        CREATE TABLE devotional_spreads (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          spread_code TEXT NOT NULL UNIQUE,
          testament TEXT NOT NULL,
          book TEXT NOT NULL,
          start_chapter INTEGER NOT NULL,
          start_verse INTEGER NOT NULL,
          end_chapter INTEGER NOT NULL,
          end_verse INTEGER NOT NULL,
          title TEXT,
          kjv_passage_ref TEXT,
          kjv_passage_text TEXT,
          kjv_key_verse_ref TEXT,
          kjv_key_verse_text TEXT,
          niv_passage_ref TEXT,
          niv_passage_text TEXT,
          niv_key_verse_ref TEXT,
          niv_key_verse_text TEXT,
          paraphrase_text TEXT,
          image_abstract TEXT,
          image_prompt TEXT,
          created_at TEXT,
          updated_at TEXT
        );
        """
    )
    legacy.execute(
        """
        INSERT INTO devotional_spreads
          (spread_code, testament, book, start_chapter, start_verse, end_chapter, end_verse, title)
        VALUES ('GEN-001', 'OT', 'Genesis', 1, 1, 1, 31, 'In the Beginning');
        """
    )
    legacy.commit()
    legacy.close()

    conn = ensure_schema(db_path)
    try:
        cols = {r["name"] for r in conn.execute("PRAGMA table_info(devotional_spreads);")}
        assert {"primary_slot", "mood_category", "last_processed_at"} <= cols

        stages = conn.execute(
            "SELECT stage, state FROM spread_stages ORDER BY position;"
        ).fetchall()
        assert [r["stage"] for r in stages] == ["outline", "scripture", "text", "image"]
        assert {r["state"] for r in stages} == {"pending"}

        view = conn.execute(
            "SELECT next_stage, status_outline FROM v_spread_status WHERE spread_code = 'GEN-001';"
        ).fetchone()
        assert (view["next_stage"], view["status_outline"]) == ("outline", "pending")

        snap = PipelineTracker(conn).mark_done("GEN-001", "outline")
        assert snap.state("outline") is StageState.DONE
        assert apply_schema(conn) == []
    finally:
        conn.close()


def test_render_views_rejects_zero_batch() -> None:
    with pytest.raises(ValueError):
        render_views(0)


def test_ensure_schema_closes_connection_on_failure(db_path, monkeypatch) -> None:
    real_connect = migrate.connect
    opened: list[sqlite3.Connection] = []

    def _connect(path, timeout_seconds=30):
        conn = real_connect(path, timeout_seconds)
        opened.append(conn)
        return conn

    monkeypatch.setattr(migrate, "connect", _connect)
    with pytest.raises(ValueError):
        ensure_schema(db_path, pending_batch_size=0)

    [conn] = opened
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1;")
