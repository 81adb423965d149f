#!filepath: tests/test_access.py
from __future__ import annotations

import pytest

from devotional_app.access.admin import AccountsRepo, AdminRepo
from devotional_app.access.policy import Caller, is_admin
from devotional_app.access.user_data import UserDataRepo
from devotional_app.errors import AccessDenied


@pytest.fixture()
def people(conn, add_user) -> dict[str, Caller]:
    add_user("alice")
    add_user("bob")
    add_user("root", admin=True)
    return {uid: Caller.resolve(conn, uid) for uid in ("alice", "bob", "root")}


def test_trusted_admin_lookup(conn, people) -> None:
    assert is_admin(conn, "root")
    assert not is_admin(conn, "alice")
    assert people["root"].is_admin
    assert not people["alice"].is_admin


def test_owner_reads_and_writes(conn, people) -> None:
    repo = UserDataRepo(conn)
    alice = people["alice"]
    repo.add_favorite(alice, "alice", "GEN-001")
    repo.add_favorite(alice, "alice", "GEN-001")
    repo.mark_read(alice, "alice", "GEN-002")
    repo.add_to_library(alice, "alice", "GEN-003")
    repo.set_primary_image(alice, "alice", "GEN-001", 3)

    data = repo.load_all(alice, "alice")
    assert data.favorites == ["GEN-001"]
    assert data.read_stories == ["GEN-002"]
    assert data.library == ["GEN-003"]
    assert data.primary_images == {"GEN-001": 3}


def test_toggle_favorite(conn, people) -> None:
    repo = UserDataRepo(conn)
    alice = people["alice"]
    assert repo.toggle_favorite(alice, "alice", "GEN-001") is True
    assert repo.is_favorite(alice, "alice", "GEN-001")
    assert repo.toggle_favorite(alice, "alice", "GEN-001") is False
    assert repo.favorites(alice, "alice") == []


def test_primary_image_upserts(conn, people) -> None:
    repo = UserDataRepo(conn)
    alice = people["alice"]
    repo.set_primary_image(alice, "alice", "GEN-001", 2)
    repo.set_primary_image(alice, "alice", "GEN-001", 4)
    assert repo.primary_image(alice, "alice", "GEN-001") == 4
    assert repo.clear_primary_image(alice, "alice", "GEN-001")
    assert repo.primary_image(alice, "alice", "GEN-001") is None
    with pytest.raises(ValueError):
        repo.set_primary_image(alice, "alice", "GEN-001", 5)


def test_non_owner_denied(conn, people) -> None:
    repo = UserDataRepo(conn)
    bob = people["bob"]
    repo.add_favorite(people["alice"], "alice", "GEN-001")

    with pytest.raises(AccessDenied):
        repo.favorites(bob, "alice")
    with pytest.raises(AccessDenied):
        repo.add_favorite(bob, "alice", "GEN-002")
    with pytest.raises(AccessDenied):
        repo.mark_read(bob, "alice", "GEN-002")
    with pytest.raises(AccessDenied):
        repo.profile(bob, "alice")
    assert repo.favorites(people["alice"], "alice") == ["GEN-001"]


def test_admin_reads_but_cannot_write_others(conn, people) -> None:
    repo = UserDataRepo(conn)
    root = people["root"]
    repo.add_favorite(people["alice"], "alice", "GEN-001")

    assert repo.favorites(root, "alice") == ["GEN-001"]
    assert repo.load_all(root, "alice").favorites == ["GEN-001"]
    with pytest.raises(AccessDenied):
        repo.remove_favorite(root, "alice", "GEN-001")
    with pytest.raises(AccessDenied):
        repo.set_primary_image(root, "alice", "GEN-001", 2)
    assert repo.favorites(people["alice"], "alice") == ["GEN-001"]


def test_profile_own_only(conn, people) -> None:
    repo = UserDataRepo(conn)
    alice = people["alice"]
    repo.update_display_name(alice, "alice", "Alice")
    assert repo.profile(alice, "alice")["display_name"] == "Alice"
    with pytest.raises(AccessDenied):
        repo.update_display_name(people["root"], "alice", "Mallory")


def test_all_profiles_admin_only_newest_first(conn, people) -> None:
    conn.execute("UPDATE user_profiles SET created_at = '2024-01-01 00:00:00' WHERE id = 'alice';")
    conn.execute("UPDATE user_profiles SET created_at = '2024-03-01 00:00:00' WHERE id = 'bob';")
    conn.execute("UPDATE user_profiles SET created_at = '2024-02-01 00:00:00' WHERE id = 'root';")
    conn.commit()

    admin = AdminRepo(conn)
    assert [p["id"] for p in admin.all_profiles(people["root"])] == ["bob", "root", "alice"]
    with pytest.raises(AccessDenied):
        admin.all_profiles(people["alice"])


def test_usage_stats(conn, people) -> None:
    repo = UserDataRepo(conn)
    for uid in ("alice", "bob"):
        repo.add_favorite(people[uid], uid, "GEN-001")
    repo.add_favorite(people["alice"], "alice", "GEN-002")
    repo.mark_read(people["bob"], "bob", "GEN-002")

    admin = AdminRepo(conn)
    favs = admin.favorite_counts(people["root"])
    assert [(c.spread_code, c.count) for c in favs] == [("GEN-001", 2), ("GEN-002", 1)]
    reads = admin.read_counts(people["root"])
    assert [(c.spread_code, c.count) for c in reads] == [("GEN-002", 1)]
    with pytest.raises(AccessDenied):
        admin.favorite_counts(people["bob"])
    with pytest.raises(AccessDenied):
        admin.image_popularity(people["bob"])


def test_set_admin_by_email(conn, people) -> None:
    accounts = AccountsRepo(conn)
    assert accounts.set_admin("alice@example.org", True)
    assert is_admin(conn, "alice")
    assert accounts.set_admin("alice@example.org", False)
    assert not is_admin(conn, "alice")
    assert not accounts.set_admin("nobody@example.org", True)
    assert [a["id"] for a in accounts.admins()] == ["root"]


def test_global_primary_admin_only(conn, people, add_spread) -> None:
    from devotional_app.db.repos.spreads_repo import SpreadsRepo

    add_spread("GEN-001")
    admin = AdminRepo(conn)
    with pytest.raises(AccessDenied):
        admin.set_global_primary(people["alice"], "GEN-001", 2)
    admin.set_global_primary(people["root"], "GEN-001", 2)
    assert SpreadsRepo(conn).get("GEN-001")["primary_slot"] == 2


def test_delete_user_cascades(conn, people) -> None:
    repo = UserDataRepo(conn)
    alice = people["alice"]
    repo.add_favorite(alice, "alice", "GEN-001")
    repo.mark_read(alice, "alice", "GEN-001")
    repo.add_to_library(alice, "alice", "GEN-001")
    repo.set_primary_image(alice, "alice", "GEN-001", 2)

    assert AccountsRepo(conn).delete_user("alice")
    for table in (
        "user_profiles",
        "user_favorites",
        "user_read_stories",
        "user_library",
        "user_primary_images",
    ):
        col = "id" if table == "user_profiles" else "user_id"
        n = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {col} = 'alice';").fetchone()[0]
        assert n == 0, table
    assert not AccountsRepo(conn).delete_user("alice")
