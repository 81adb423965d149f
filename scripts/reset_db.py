#!scripts/reset_db.py
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC = PROJECT_ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from devotional_app.db.reset import reset_database_file
from devotional_app.settings import get_settings
from devotional_app.utils.logger import get_logger

logger = get_logger("devotional_app.scripts.reset_db")


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--yes", action="store_true")
    args = parser.parse_args()

    if not args.yes:
        logger.error("Refused, pass --yes")
        return 2

    settings = get_settings()
    res = reset_database_file(settings.db_path, settings.pipeline.pending_batch_size)
    if not res.ok:
        return 2

    logger.info(f"DB recreated, path={res.db_path}, removed_file={res.removed_file}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
