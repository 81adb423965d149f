#!filepath: scripts/init_db.py
from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC = PROJECT_ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from devotional_app.db.migrate import ensure_schema
from devotional_app.settings import get_settings
from devotional_app.utils.logger import get_logger

logger = get_logger("devotional_app.scripts.init_db")


def main() -> int:
    """Create or migrate the database at the configured path."""
    settings = get_settings()
    conn = ensure_schema(
        settings.db_path,
        pending_batch_size=settings.pipeline.pending_batch_size,
        timeout_seconds=settings.app.db.timeout_seconds,
    )
    conn.close()
    logger.info(f"DB ready, path={settings.db_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
