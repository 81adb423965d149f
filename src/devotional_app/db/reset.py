#!src/devotional_app/db/reset.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from devotional_app.db.migrate import recreate_schema
from devotional_app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ResetResult:
    """Outcome of a destructive reset.

    Attributes:
        ok: Whether it completed.
        db_path: Resolved path.
        removed_file: Whether an existing file was removed.
    """

    ok: bool
    db_path: Path
    removed_file: bool


def reset_database_file(
    db_path: Union[str, Path], pending_batch_size: int = 5
) -> ResetResult:
    """Delete the sqlite file and recreate the schema.

    Args:
        db_path: Path to the sqlite file.
        pending_batch_size: Bound rendered into the pending work view.

    Returns:
        ResetResult: Outcome.
    """
    p = Path(db_path).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)

    removed = False
    if p.exists():
        try:
            os.remove(p)
            removed = True
            logger.warning(f"Database file removed, path={p}")
        except OSError as e:
            logger.error(f"Failed to remove database, path={p}, err={e}")
            return ResetResult(ok=False, db_path=p, removed_file=False)

    conn = recreate_schema(p, pending_batch_size)
    conn.close()
    return ResetResult(ok=True, db_path=p, removed_file=removed)
