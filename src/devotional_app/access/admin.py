#!filepath: src/devotional_app/access/admin.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Optional

from devotional_app.access.policy import Caller, require_admin
from devotional_app.db.repos.spreads_repo import SpreadsRepo
from devotional_app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SpreadCount:
    spread_code: str
    count: int


class AccountsRepo:
    """Account lifecycle, standing in for the auth provider's user table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def create_user(self, user_id: str, email: Optional[str] = None) -> None:
        """Register a user. The profile row is created by trigger."""
        self._conn.execute(
            "INSERT INTO users (id, email) VALUES (?, ?);", (str(user_id), email)
        )
        self._conn.commit()
        logger.info(f"User created, id={user_id}")

    def delete_user(self, user_id: str) -> bool:
        """Delete a user and, by cascade, every row it owns."""
        cur = self._conn.execute("DELETE FROM users WHERE id = ?;", (str(user_id),))
        self._conn.commit()
        if cur.rowcount:
            logger.info(f"User deleted, id={user_id}")
        return cur.rowcount > 0

    def set_admin(self, email: str, value: bool = True) -> bool:
        """Operator path to grant or revoke the admin flag.

        Returns:
            bool: Whether a profile matched the email.
        """
        cur = self._conn.execute(
            """
            UPDATE user_profiles
            SET is_admin = ?, updated_at = datetime('now')
            WHERE email = ?;
            """,
            (1 if value else 0, email),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            logger.warning(f"No profile for email={email}")
            return False
        logger.info(f"Admin flag set, email={email}, value={bool(value)}")
        return True

    def admins(self) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            """
            SELECT id, email, is_admin, created_at
            FROM user_profiles
            WHERE is_admin = 1
            ORDER BY created_at DESC, id;
            """
        ).fetchall()
        return [dict(r) for r in rows]


class AdminRepo:
    """Read-only cross-user queries for the admin dashboard."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def all_profiles(self, caller: Caller) -> list[dict[str, Any]]:
        """List every profile, newest first.

        Raises:
            AccessDenied: If the caller is not an admin.
        """
        require_admin(caller, "all_profiles")
        rows = self._conn.execute(
            """
            SELECT id, email, is_admin, created_at
            FROM user_profiles
            ORDER BY created_at DESC, id;
            """
        ).fetchall()
        return [dict(r) for r in rows]

    def favorite_counts(self, caller: Caller) -> list[SpreadCount]:
        require_admin(caller, "favorite_counts")
        return self._counts("user_favorites")

    def read_counts(self, caller: Caller) -> list[SpreadCount]:
        require_admin(caller, "read_counts")
        return self._counts("user_read_stories")

    def image_popularity(self, caller: Caller) -> list[dict[str, Any]]:
        require_admin(caller, "image_popularity")
        rows = self._conn.execute("SELECT * FROM image_popularity;").fetchall()
        return [dict(r) for r in rows]

    def set_global_primary(self, caller: Caller, spread_code: str, slot: int) -> None:
        """Change the default image every user sees without an override."""
        require_admin(caller, "set_global_primary")
        SpreadsRepo(self._conn).set_primary_slot(spread_code, slot)
        self._conn.commit()
        logger.info(f"Global primary slot set, spread={spread_code}, slot={slot}")

    def _counts(self, table: str) -> list[SpreadCount]:
        rows = self._conn.execute(
            f"""
            SELECT spread_code, COUNT(*) AS c
            FROM {table}
            GROUP BY spread_code
            ORDER BY c DESC, spread_code;
            """
        ).fetchall()
        return [SpreadCount(spread_code=str(r["spread_code"]), count=int(r["c"])) for r in rows]
