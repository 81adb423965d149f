#!filepath: src/devotional_app/exporter.py
from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from devotional_app.db.schema import IMAGE_SLOTS
from devotional_app.utils.logger import get_logger

logger = get_logger(__name__)

EXPORT_VERSION = "3.0"


@dataclass(frozen=True, slots=True)
class ExportResult:
    """Export output.

    Args:
        path: Written JSON file.
        total_spreads: Spreads included.
    """

    path: Path
    total_spreads: int


def _image_selects() -> str:
    return ",\n  ".join(
        f"(SELECT si.url FROM spread_images si WHERE si.spread_id = s.id AND si.slot = {n}) "
        f"AS image_url_{n}"
        for n in range(1, IMAGE_SLOTS + 1)
    )


def build_payload(conn: sqlite3.Connection) -> dict[str, Any]:
    """Build the first-load payload of the reader app, ordered by spread code."""
    rows = conn.execute(
        f"""
        SELECT
          s.spread_code,
          s.testament,
          s.book,
          s.start_chapter,
          s.start_verse,
          s.end_chapter,
          s.end_verse,
          s.title,
          s.kjv_passage_ref,
          s.primary_slot,
          {_image_selects()}
        FROM devotional_spreads s
        ORDER BY s.spread_code;
        """
    ).fetchall()

    spreads: list[dict[str, Any]] = []
    for r in rows:
        item: dict[str, Any] = {
            "spread_code": r["spread_code"],
            "testament": r["testament"],
            "book": r["book"],
            "start_chapter": r["start_chapter"],
            "start_verse": r["start_verse"],
            "end_chapter": r["end_chapter"],
            "end_verse": r["end_verse"],
            "title": r["title"],
            "kjv_key_verse_ref": r["kjv_passage_ref"],
            "primary_slot": int(r["primary_slot"] or 1),
        }
        for n in range(1, IMAGE_SLOTS + 1):
            item[f"image_url_{n}"] = r[f"image_url_{n}"]
        spreads.append(item)

    return {
        "version": EXPORT_VERSION,
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "total_spreads": len(spreads),
        "spreads": spreads,
    }


def export_spreads(conn: sqlite3.Connection, out_path: Path) -> ExportResult:
    """Write every spread to a static JSON file.

    Args:
        conn: Open connection.
        out_path: Target file, parent directories are created.

    Returns:
        ExportResult: Path and count.
    """
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    payload = build_payload(conn)
    out.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf8")
    logger.info(f"Exported {payload['total_spreads']} spreads, path={out}")
    return ExportResult(path=out, total_spreads=int(payload["total_spreads"]))
