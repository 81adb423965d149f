#!filepath: src/devotional_app/access/user_data.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any, Optional

from devotional_app.access.policy import Caller, require_read, require_owner
from devotional_app.db.repos.spreads_repo import check_slot
from devotional_app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class UserData:
    """Everything the reader needs for one user at startup."""

    favorites: list[str] = field(default_factory=list)
    read_stories: list[str] = field(default_factory=list)
    library: list[str] = field(default_factory=list)
    primary_images: dict[str, int] = field(default_factory=dict)


class UserDataRepo:
    """Ownership-scoped access to the user tables.

    Every method takes the caller and the owning user id, and checks the
    owner predicate before touching rows. Admins may read across users but
    only write their own rows.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # favorites

    def add_favorite(self, caller: Caller, user_id: str, spread_code: str) -> None:
        require_owner(caller, user_id, "user_favorites")
        self._conn.execute(
            "INSERT OR IGNORE INTO user_favorites (user_id, spread_code) VALUES (?, ?);",
            (user_id, spread_code),
        )
        self._conn.commit()

    def remove_favorite(self, caller: Caller, user_id: str, spread_code: str) -> bool:
        require_owner(caller, user_id, "user_favorites")
        cur = self._conn.execute(
            "DELETE FROM user_favorites WHERE user_id = ? AND spread_code = ?;",
            (user_id, spread_code),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def toggle_favorite(self, caller: Caller, user_id: str, spread_code: str) -> bool:
        """Flip a favorite.

        Returns:
            bool: True when the spread is now a favorite.
        """
        if self.remove_favorite(caller, user_id, spread_code):
            return False
        self.add_favorite(caller, user_id, spread_code)
        return True

    def favorites(self, caller: Caller, user_id: str) -> list[str]:
        return self._codes(caller, user_id, "user_favorites", "created_at")

    def is_favorite(self, caller: Caller, user_id: str, spread_code: str) -> bool:
        return spread_code in self.favorites(caller, user_id)

    # read marks

    def mark_read(self, caller: Caller, user_id: str, spread_code: str) -> None:
        require_owner(caller, user_id, "user_read_stories")
        self._conn.execute(
            """
            INSERT INTO user_read_stories (user_id, spread_code) VALUES (?, ?)
            ON CONFLICT (user_id, spread_code) DO UPDATE SET read_at = datetime('now');
            """,
            (user_id, spread_code),
        )
        self._conn.commit()

    def unmark_read(self, caller: Caller, user_id: str, spread_code: str) -> bool:
        require_owner(caller, user_id, "user_read_stories")
        cur = self._conn.execute(
            "DELETE FROM user_read_stories WHERE user_id = ? AND spread_code = ?;",
            (user_id, spread_code),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def read_stories(self, caller: Caller, user_id: str) -> list[str]:
        return self._codes(caller, user_id, "user_read_stories", "read_at")

    # primary image selection

    def set_primary_image(
        self, caller: Caller, user_id: str, spread_code: str, slot: int
    ) -> None:
        require_owner(caller, user_id, "user_primary_images")
        self._conn.execute(
            """
            INSERT INTO user_primary_images (user_id, spread_code, image_slot)
            VALUES (?, ?, ?)
            ON CONFLICT (user_id, spread_code)
            DO UPDATE SET image_slot = excluded.image_slot, selected_at = datetime('now');
            """,
            (user_id, spread_code, check_slot(slot)),
        )
        self._conn.commit()

    def primary_image(
        self, caller: Caller, user_id: str, spread_code: str
    ) -> Optional[int]:
        require_read(caller, user_id, "user_primary_images")
        row = self._conn.execute(
            """
            SELECT image_slot FROM user_primary_images
            WHERE user_id = ? AND spread_code = ?;
            """,
            (user_id, spread_code),
        ).fetchone()
        return int(row["image_slot"]) if row else None

    def clear_primary_image(self, caller: Caller, user_id: str, spread_code: str) -> bool:
        require_owner(caller, user_id, "user_primary_images")
        cur = self._conn.execute(
            "DELETE FROM user_primary_images WHERE user_id = ? AND spread_code = ?;",
            (user_id, spread_code),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def primary_images(self, caller: Caller, user_id: str) -> dict[str, int]:
        require_read(caller, user_id, "user_primary_images")
        rows = self._conn.execute(
            "SELECT spread_code, image_slot FROM user_primary_images WHERE user_id = ?;",
            (user_id,),
        ).fetchall()
        return {str(r["spread_code"]): int(r["image_slot"]) for r in rows}

    # offline library

    def add_to_library(self, caller: Caller, user_id: str, spread_code: str) -> None:
        require_owner(caller, user_id, "user_library")
        self._conn.execute(
            "INSERT OR IGNORE INTO user_library (user_id, spread_code) VALUES (?, ?);",
            (user_id, spread_code),
        )
        self._conn.commit()

    def remove_from_library(self, caller: Caller, user_id: str, spread_code: str) -> bool:
        require_owner(caller, user_id, "user_library")
        cur = self._conn.execute(
            "DELETE FROM user_library WHERE user_id = ? AND spread_code = ?;",
            (user_id, spread_code),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def library(self, caller: Caller, user_id: str) -> list[str]:
        return self._codes(caller, user_id, "user_library", "created_at")

    # profile

    def profile(self, caller: Caller, user_id: str) -> dict[str, Any]:
        """Own profile only. Cross-user listing goes through AdminRepo."""
        require_owner(caller, user_id, "user_profiles", action="read")
        row = self._conn.execute(
            "SELECT id, email, is_admin, display_name, created_at FROM user_profiles WHERE id = ?;",
            (user_id,),
        ).fetchone()
        return dict(row) if row else {}

    def update_display_name(
        self, caller: Caller, user_id: str, display_name: Optional[str]
    ) -> None:
        require_owner(caller, user_id, "user_profiles")
        self._conn.execute(
            """
            UPDATE user_profiles
            SET display_name = ?, updated_at = datetime('now')
            WHERE id = ?;
            """,
            (display_name, user_id),
        )
        self._conn.commit()

    def load_all(self, caller: Caller, user_id: str) -> UserData:
        data = UserData(
            favorites=self.favorites(caller, user_id),
            read_stories=self.read_stories(caller, user_id),
            library=self.library(caller, user_id),
            primary_images=self.primary_images(caller, user_id),
        )
        logger.debug(
            f"User data loaded, user={user_id}, favorites={len(data.favorites)}, "
            f"read={len(data.read_stories)}, library={len(data.library)}, "
            f"images={len(data.primary_images)}"
        )
        return data

    def _codes(self, caller: Caller, user_id: str, table: str, order_col: str) -> list[str]:
        require_read(caller, user_id, table)
        rows = self._conn.execute(
            f"SELECT spread_code FROM {table} WHERE user_id = ? ORDER BY {order_col}, spread_code;",
            (user_id,),
        ).fetchall()
        return [str(r["spread_code"]) for r in rows]
