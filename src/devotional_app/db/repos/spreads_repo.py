#!src/devotional_app/db/repos/spreads_repo.py
from __future__ import annotations

import sqlite3
from typing import Any, Optional

from devotional_app.db.schema import CONTENT_COLUMNS, IMAGE_SLOTS, MOOD_CATEGORIES
from devotional_app.errors import SpreadNotFoundError
from devotional_app.models import SpreadSeed
from devotional_app.pipeline.stages import PIPELINE_STAGES


def check_slot(slot: int) -> int:
    """Validate an image slot number.

    Raises:
        ValueError: If the slot is outside 1..IMAGE_SLOTS.
    """
    s = int(slot)
    if not 1 <= s <= IMAGE_SLOTS:
        raise ValueError(f"Slot must be between 1 and {IMAGE_SLOTS}, got {slot}")
    return s


class SpreadsRepo:
    """Repo for devotional_spreads and its image slots."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def spread_id(self, spread_code: str) -> int:
        row = self._conn.execute(
            "SELECT id FROM devotional_spreads WHERE spread_code = ?;",
            (spread_code,),
        ).fetchone()
        if row is None:
            raise SpreadNotFoundError(spread_code)
        return int(row["id"])

    def exists(self, spread_code: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM devotional_spreads WHERE spread_code = ? LIMIT 1;",
            (spread_code,),
        ).fetchone()
        return row is not None

    def insert_spread(self, seed: SpreadSeed) -> int:
        """Insert one spread and its pending stage rows.

        Args:
            seed: Validated catalog entry.

        Returns:
            int: New spread id.
        """
        content = seed.content_fields()
        columns = [
            "spread_code",
            "testament",
            "book",
            "start_chapter",
            "start_verse",
            "end_chapter",
            "end_verse",
            *content.keys(),
        ]
        values = [
            seed.spread_code,
            seed.testament,
            seed.book,
            seed.start_chapter,
            seed.start_verse,
            seed.end_chapter,
            seed.end_verse,
            *content.values(),
        ]
        qmarks = ", ".join(["?"] * len(values))
        cur = self._conn.execute(
            f"INSERT INTO devotional_spreads ({', '.join(columns)}) VALUES ({qmarks});",
            values,
        )
        spread_id = int(cur.lastrowid)
        self._conn.executemany(
            "INSERT INTO spread_stages (spread_id, stage, position) VALUES (?, ?, ?);",
            [(spread_id, stage.value, idx) for idx, stage in enumerate(PIPELINE_STAGES)],
        )
        return spread_id

    def get(self, spread_code: str) -> dict[str, Any]:
        row = self._conn.execute(
            "SELECT * FROM devotional_spreads WHERE spread_code = ?;", (spread_code,)
        ).fetchone()
        if row is None:
            raise SpreadNotFoundError(spread_code)
        out = dict(row)
        for slot, url in self.images(spread_code).items():
            out[f"image_url_{slot}"] = url
        return out

    def list_codes(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT spread_code FROM devotional_spreads ORDER BY spread_code;"
        ).fetchall()
        return [str(r["spread_code"]) for r in rows]

    def update_content(self, spread_code: str, **fields: Optional[str]) -> None:
        """Write generated or source content columns.

        Args:
            spread_code: Target spread.
            **fields: Content columns to set.

        Raises:
            ValueError: On unknown columns or an unknown mood.
            SpreadNotFoundError: If the spread does not exist.
        """
        if not fields:
            return
        unknown = sorted(set(fields) - set(CONTENT_COLUMNS))
        if unknown:
            raise ValueError(f"Not content columns: {', '.join(unknown)}")
        mood = fields.get("mood_category")
        if mood is not None:
            mood = str(mood).upper()
            if mood not in MOOD_CATEGORIES:
                raise ValueError(f"Unknown mood_category: {fields['mood_category']}")
            fields["mood_category"] = mood

        assignments = ", ".join(f"{k} = ?" for k in fields)
        cur = self._conn.execute(
            f"UPDATE devotional_spreads SET {assignments} WHERE spread_code = ?;",
            [*fields.values(), spread_code],
        )
        if cur.rowcount == 0:
            raise SpreadNotFoundError(spread_code)

    def set_image(self, spread_code: str, slot: int, url: str) -> None:
        spread_id = self.spread_id(spread_code)
        self._conn.execute(
            """
            INSERT INTO spread_images (spread_id, slot, url, updated_at)
            VALUES (?, ?, ?, datetime('now'))
            ON CONFLICT (spread_id, slot)
            DO UPDATE SET url = excluded.url, updated_at = excluded.updated_at;
            """,
            (spread_id, check_slot(slot), str(url)),
        )

    def images(self, spread_code: str) -> dict[int, str]:
        rows = self._conn.execute(
            """
            SELECT si.slot, si.url
            FROM spread_images si
            JOIN devotional_spreads s ON s.id = si.spread_id
            WHERE s.spread_code = ?
            ORDER BY si.slot;
            """,
            (spread_code,),
        ).fetchall()
        return {int(r["slot"]): str(r["url"]) for r in rows}

    def set_primary_slot(self, spread_code: str, slot: int) -> None:
        cur = self._conn.execute(
            "UPDATE devotional_spreads SET primary_slot = ? WHERE spread_code = ?;",
            (check_slot(slot), spread_code),
        )
        if cur.rowcount == 0:
            raise SpreadNotFoundError(spread_code)

    def primary_image_url(
        self, spread_code: str, user_id: Optional[str] = None
    ) -> Optional[str]:
        """Resolve the image to display for a spread.

        A user's own selection wins over the global primary slot. Falls back
        to slot 1 when the chosen slot has no image yet.

        Args:
            spread_code: Spread to resolve.
            user_id: Optional viewer.

        Returns:
            Optional[str]: Image URL, None when the spread has no images.
        """
        spread = self._conn.execute(
            "SELECT primary_slot FROM devotional_spreads WHERE spread_code = ?;",
            (spread_code,),
        ).fetchone()
        if spread is None:
            raise SpreadNotFoundError(spread_code)

        slot = int(spread["primary_slot"] or 1)
        if user_id:
            row = self._conn.execute(
                """
                SELECT image_slot FROM user_primary_images
                WHERE user_id = ? AND spread_code = ?;
                """,
                (user_id, spread_code),
            ).fetchone()
            if row is not None:
                slot = int(row["image_slot"])

        images = self.images(spread_code)
        return images.get(slot) or images.get(1)
