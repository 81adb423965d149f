#!filepath: src/devotional_app/catalog.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from devotional_app.db.repos.spreads_repo import SpreadsRepo
from devotional_app.models import SpreadSeed
from devotional_app.pipeline.stages import PIPELINE_STAGES
from devotional_app.pipeline.tracker import PipelineTracker
from devotional_app.utils.logger import get_logger
from devotional_app.utils.serialization import load_data_file

logger = get_logger(__name__)


class CatalogError(ValueError):
    """Catalog file missing, unreadable or invalid."""


@dataclass(frozen=True, slots=True)
class SeedResult:
    """Outcome of a seeding run.

    Args:
        inserted: Codes inserted, in file order.
        skipped: Codes already present.
    """

    inserted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def parse_catalog(payload: Mapping[str, Any], source: str = "<catalog>") -> list[SpreadSeed]:
    """Validate a ``spreads:`` payload into seeds.

    Raises:
        CatalogError: If the list is missing, an entry is invalid, or a code repeats.
    """
    raw = payload.get("spreads")
    if not isinstance(raw, list):
        raise CatalogError(f"{source}: expected a 'spreads' list")

    seeds: list[SpreadSeed] = []
    seen: set[str] = set()
    for idx, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise CatalogError(f"{source}: entry {idx} is not a mapping")
        try:
            seed = SpreadSeed.model_validate(dict(entry))
        except ValidationError as e:
            raise CatalogError(f"{source}: entry {idx} invalid: {e}") from e
        if seed.spread_code in seen:
            raise CatalogError(f"{source}: duplicate spread_code {seed.spread_code}")
        seen.add(seed.spread_code)
        seeds.append(seed)
    return seeds


def load_catalog(path: Path) -> list[SpreadSeed]:
    res = load_data_file(Path(path))
    if not res.ok:
        raise CatalogError(f"Could not load catalog at {res.path}")
    return parse_catalog(res.data, source=str(res.path))


def insert_seeds(
    conn: sqlite3.Connection,
    seeds: Iterable[SpreadSeed],
    mark_outline_done: bool = False,
) -> SeedResult:
    """Insert seeds whose code is not stored yet.

    Args:
        conn: Open connection.
        seeds: Validated entries.
        mark_outline_done: Record the outline stage as done for new rows.

    Returns:
        SeedResult: Inserted and skipped codes.
    """
    repo = SpreadsRepo(conn)
    inserted: list[str] = []
    skipped: list[str] = []
    try:
        for seed in seeds:
            if repo.exists(seed.spread_code):
                skipped.append(seed.spread_code)
                continue
            repo.insert_spread(seed)
            inserted.append(seed.spread_code)
        conn.commit()
    except Exception:
        conn.rollback()
        raise

    if mark_outline_done:
        tracker = PipelineTracker(conn)
        for code in inserted:
            tracker.mark_done(code, PIPELINE_STAGES[0])

    logger.info(f"Catalog seeded, inserted={len(inserted)}, skipped={len(skipped)}")
    return SeedResult(inserted=inserted, skipped=skipped)


def seed_catalog(
    conn: sqlite3.Connection, path: Path, mark_outline_done: bool = False
) -> SeedResult:
    """Load a YAML or JSON catalog and insert the spreads it lists."""
    return insert_seeds(conn, load_catalog(path), mark_outline_done=mark_outline_done)
