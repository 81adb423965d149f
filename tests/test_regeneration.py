#!filepath: tests/test_regeneration.py
from __future__ import annotations

import sqlite3

import pytest

from devotional_app.access.policy import Caller
from devotional_app.access.user_data import UserDataRepo
from devotional_app.db.repos.spreads_repo import SpreadsRepo
from devotional_app.errors import (
    AccessDenied,
    InvalidTransitionError,
    RequestNotFoundError,
    SpreadNotFoundError,
)
from devotional_app.regeneration import RegenerationRepo, RegenerationStatus

URLS = ["https://img/a.png", "https://img/b.png", "https://img/c.png"]


@pytest.fixture()
def repo(conn, add_spread, add_user) -> RegenerationRepo:
    add_spread("GEN-001")
    add_user("alice")
    add_user("root", admin=True)
    return RegenerationRepo(conn)


def test_create_starts_processing(repo: RegenerationRepo) -> None:
    req = repo.create("GEN-001", 2, requested_by="alice")
    assert req.status is RegenerationStatus.PROCESSING
    assert req.slot == 2
    assert req.option_urls == []
    assert not req.is_terminal


def test_create_validates_input(repo: RegenerationRepo) -> None:
    with pytest.raises(ValueError):
        repo.create("GEN-001", 0)
    with pytest.raises(SpreadNotFoundError):
        repo.create("NOPE-001", 1)


def test_ready_then_user_select(conn, repo: RegenerationRepo) -> None:
    alice = Caller.resolve(conn, "alice")
    req = repo.create("GEN-001", 2, requested_by="alice")
    req = repo.mark_ready(req.id, URLS)
    assert req.status is RegenerationStatus.READY
    assert req.option_urls == URLS

    req = repo.select(req.id, URLS[1], alice, scope="user")
    assert req.status is RegenerationStatus.COMPLETED
    assert req.selected_url == URLS[1]
    assert req.completed_at is not None

    spreads = SpreadsRepo(conn)
    assert spreads.images("GEN-001") == {2: URLS[1]}
    assert spreads.get("GEN-001")["primary_slot"] == 1
    assert UserDataRepo(conn).primary_image(alice, "alice", "GEN-001") == 2
    assert spreads.primary_image_url("GEN-001", user_id="alice") == URLS[1]


def test_global_select_requires_admin(conn, repo: RegenerationRepo) -> None:
    req = repo.create("GEN-001", 3)
    repo.mark_ready(req.id, URLS[:1])

    with pytest.raises(AccessDenied):
        repo.select(req.id, URLS[0], Caller.resolve(conn, "alice"), scope="global")
    assert repo.get(req.id).status is RegenerationStatus.READY

    repo.select(req.id, URLS[0], Caller.resolve(conn, "root"), scope="global")
    spread = SpreadsRepo(conn).get("GEN-001")
    assert spread["primary_slot"] == 3
    assert spread["image_url_3"] == URLS[0]


def test_select_rejects_unknown_url(conn, repo: RegenerationRepo) -> None:
    req = repo.create("GEN-001", 1)
    repo.mark_ready(req.id, URLS)
    with pytest.raises(ValueError):
        repo.select(req.id, "https://elsewhere/x.png", Caller("alice"))
    assert repo.get(req.id).status is RegenerationStatus.READY


def test_mark_ready_option_bounds(repo: RegenerationRepo) -> None:
    req = repo.create("GEN-001", 1)
    with pytest.raises(ValueError):
        repo.mark_ready(req.id, [])
    with pytest.raises(ValueError):
        repo.mark_ready(req.id, URLS + ["https://img/d.png", "https://img/e.png"])


def test_terminal_states(conn, repo: RegenerationRepo) -> None:
    req = repo.create("GEN-001", 1)
    failed = repo.mark_failed(req.id, "provider down")
    assert failed.status is RegenerationStatus.FAILED
    assert failed.error_message == "provider down"
    assert failed.is_terminal

    with pytest.raises(InvalidTransitionError):
        repo.mark_ready(req.id, URLS)
    with pytest.raises(InvalidTransitionError):
        repo.select(req.id, URLS[0], Caller("alice"))


def test_select_requires_ready(repo: RegenerationRepo) -> None:
    req = repo.create("GEN-001", 1)
    with pytest.raises(InvalidTransitionError):
        repo.select(req.id, URLS[0], Caller("alice"))


def test_trigger_blocks_raw_updates(conn, repo: RegenerationRepo) -> None:
    req = repo.create("GEN-001", 1)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "UPDATE regeneration_requests SET status = 'completed' WHERE id = ?;", (req.id,)
        )
    conn.rollback()

    repo.mark_failed(req.id, "x")
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "UPDATE regeneration_requests SET status = 'processing' WHERE id = ?;", (req.id,)
        )
    conn.rollback()

    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO regeneration_requests (id, spread_code, slot, status) "
            "VALUES ('raw', 'GEN-001', 1, 'ready');"
        )


def test_pending_oldest_first(conn, repo: RegenerationRepo) -> None:
    first = repo.create("GEN-001", 1)
    second = repo.create("GEN-001", 2)
    third = repo.create("GEN-001", 3)
    conn.execute(
        "UPDATE regeneration_requests SET created_at = '2024-01-02 00:00:00' WHERE id = ?;",
        (first.id,),
    )
    conn.execute(
        "UPDATE regeneration_requests SET created_at = '2024-01-01 00:00:00' WHERE id = ?;",
        (second.id,),
    )
    conn.commit()
    repo.mark_failed(third.id, "x")

    assert [r.id for r in repo.pending(limit=10)] == [second.id, first.id]
    assert [r.id for r in repo.pending(limit=1)] == [second.id]
    assert len(repo.for_spread("GEN-001")) == 3


def test_unknown_request(repo: RegenerationRepo) -> None:
    with pytest.raises(RequestNotFoundError):
        repo.get("missing")


def test_requester_deleted_keeps_request(conn, repo: RegenerationRepo) -> None:
    from devotional_app.access.admin import AccountsRepo

    req = repo.create("GEN-001", 1, requested_by="alice")
    AccountsRepo(conn).delete_user("alice")
    assert repo.get(req.id).requested_by is None
