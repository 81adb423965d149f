#!src/devotional_app/db/schema.py
from __future__ import annotations

from devotional_app.pipeline.stages import PIPELINE_STAGES, StageState

IMAGE_SLOTS = 4

MOOD_CATEGORIES = (
    "COSMIC",
    "DRAMATIC",
    "INTIMATE",
    "PROPHETIC",
    "TRIUMPHANT",
    "SOLEMN",
)

REGENERATION_STATUSES = ("processing", "ready", "completed", "failed")

CONTENT_COLUMNS = (
    "title",
    "kjv_passage_ref",
    "kjv_passage_text",
    "kjv_key_verse_ref",
    "kjv_key_verse_text",
    "niv_passage_ref",
    "niv_passage_text",
    "niv_key_verse_ref",
    "niv_key_verse_text",
    "web_passage_text",
    "paraphrase_text",
    "mood_category",
    "image_abstract",
    "image_prompt",
)


def _sql_list(values) -> str:
    return ", ".join(f"'{v}'" for v in values)


_STAGE_NAMES = _sql_list(s.value for s in PIPELINE_STAGES)
_STAGE_STATES = _sql_list(s.value for s in StageState)
_LAST_POSITION = len(PIPELINE_STAGES) - 1

TABLES = rf"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS devotional_spreads (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  spread_code TEXT NOT NULL UNIQUE,
  testament TEXT NOT NULL,
  book TEXT NOT NULL,

  start_chapter INTEGER NOT NULL,
  start_verse INTEGER NOT NULL,
  end_chapter INTEGER NOT NULL,
  end_verse INTEGER NOT NULL,

  title TEXT,

  kjv_passage_ref TEXT,
  kjv_passage_text TEXT,
  kjv_key_verse_ref TEXT,
  kjv_key_verse_text TEXT,

  niv_passage_ref TEXT,
  niv_passage_text TEXT,
  niv_key_verse_ref TEXT,
  niv_key_verse_text TEXT,

  web_passage_text TEXT,

  paraphrase_text TEXT,
  mood_category TEXT,
  image_abstract TEXT,
  image_prompt TEXT,

  primary_slot INTEGER NOT NULL DEFAULT 1 CHECK (primary_slot BETWEEN 1 AND {IMAGE_SLOTS}),

  last_processed_at TEXT,
  created_at TEXT DEFAULT (datetime('now')),
  updated_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_spreads_order
ON devotional_spreads(testament, book, start_chapter, start_verse);

CREATE TRIGGER IF NOT EXISTS trg_spreads_updated_at
AFTER UPDATE ON devotional_spreads
FOR EACH ROW WHEN NEW.updated_at IS OLD.updated_at
BEGIN
  UPDATE devotional_spreads SET updated_at = datetime('now') WHERE id = NEW.id;
END;

CREATE TABLE IF NOT EXISTS spread_stages (
  spread_id INTEGER NOT NULL,
  stage TEXT NOT NULL CHECK (stage IN ({_STAGE_NAMES})),
  position INTEGER NOT NULL CHECK (position BETWEEN 0 AND {_LAST_POSITION}),
  state TEXT NOT NULL DEFAULT 'pending' CHECK (state IN ({_STAGE_STATES})),
  error_message TEXT,
  retry_count INTEGER NOT NULL DEFAULT 0 CHECK (retry_count >= 0),
  claimed_by TEXT,
  claimed_until TEXT,
  updated_at TEXT DEFAULT (datetime('now')),

  PRIMARY KEY (spread_id, stage),
  UNIQUE (spread_id, position),
  FOREIGN KEY (spread_id) REFERENCES devotional_spreads(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_spread_stages_state
ON spread_stages(stage, state);

CREATE TABLE IF NOT EXISTS spread_images (
  spread_id INTEGER NOT NULL,
  slot INTEGER NOT NULL CHECK (slot BETWEEN 1 AND {IMAGE_SLOTS}),
  url TEXT NOT NULL,
  updated_at TEXT DEFAULT (datetime('now')),

  PRIMARY KEY (spread_id, slot),
  FOREIGN KEY (spread_id) REFERENCES devotional_spreads(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS users (
  id TEXT PRIMARY KEY,
  email TEXT UNIQUE,
  created_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS user_profiles (
  id TEXT PRIMARY KEY,
  email TEXT,
  is_admin INTEGER NOT NULL DEFAULT 0 CHECK (is_admin IN (0, 1)),
  display_name TEXT,
  created_at TEXT DEFAULT (datetime('now')),
  updated_at TEXT DEFAULT (datetime('now')),

  FOREIGN KEY (id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_user_profiles_admin
ON user_profiles(is_admin);

CREATE TRIGGER IF NOT EXISTS trg_users_create_profile
AFTER INSERT ON users
FOR EACH ROW
BEGIN
  INSERT OR IGNORE INTO user_profiles (id, email) VALUES (NEW.id, NEW.email);
END;

CREATE TABLE IF NOT EXISTS user_favorites (
  user_id TEXT NOT NULL,
  spread_code TEXT NOT NULL,
  created_at TEXT DEFAULT (datetime('now')),

  PRIMARY KEY (user_id, spread_code),
  FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_user_favorites_spread
ON user_favorites(spread_code);

CREATE TABLE IF NOT EXISTS user_read_stories (
  user_id TEXT NOT NULL,
  spread_code TEXT NOT NULL,
  read_at TEXT DEFAULT (datetime('now')),

  PRIMARY KEY (user_id, spread_code),
  FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_user_read_spread
ON user_read_stories(spread_code);

CREATE TABLE IF NOT EXISTS user_primary_images (
  user_id TEXT NOT NULL,
  spread_code TEXT NOT NULL,
  image_slot INTEGER NOT NULL CHECK (image_slot BETWEEN 1 AND {IMAGE_SLOTS}),
  selected_at TEXT DEFAULT (datetime('now')),

  PRIMARY KEY (user_id, spread_code),
  FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_user_images_spread
ON user_primary_images(spread_code);

CREATE TABLE IF NOT EXISTS user_library (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id TEXT NOT NULL,
  spread_code TEXT NOT NULL,
  created_at TEXT DEFAULT (datetime('now')),

  UNIQUE (user_id, spread_code),
  FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS regeneration_requests (
  id TEXT PRIMARY KEY,
  spread_code TEXT NOT NULL,
  slot INTEGER NOT NULL CHECK (slot BETWEEN 1 AND {IMAGE_SLOTS}),
  status TEXT NOT NULL DEFAULT 'processing'
    CHECK (status IN ({_sql_list(REGENERATION_STATUSES)})),
  error_message TEXT,
  selected_url TEXT,
  requested_by TEXT,
  created_at TEXT DEFAULT (datetime('now')),
  completed_at TEXT,

  FOREIGN KEY (requested_by) REFERENCES users(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_regen_status
ON regeneration_requests(status, created_at);

CREATE INDEX IF NOT EXISTS idx_regen_spread
ON regeneration_requests(spread_code);

CREATE TABLE IF NOT EXISTS regeneration_options (
  request_id TEXT NOT NULL,
  position INTEGER NOT NULL CHECK (position BETWEEN 1 AND {IMAGE_SLOTS}),
  url TEXT NOT NULL,

  PRIMARY KEY (request_id, position),
  FOREIGN KEY (request_id) REFERENCES regeneration_requests(id) ON DELETE CASCADE
);

CREATE TRIGGER IF NOT EXISTS trg_regen_insert_processing
BEFORE INSERT ON regeneration_requests
FOR EACH ROW WHEN NEW.status IS NOT 'processing'
BEGIN
  SELECT RAISE(ABORT, 'regeneration requests start in processing');
END;

CREATE TRIGGER IF NOT EXISTS trg_regen_transition
BEFORE UPDATE OF status ON regeneration_requests
FOR EACH ROW WHEN NEW.status IS NOT OLD.status AND NOT (
  (OLD.status = 'processing' AND NEW.status IN ('ready', 'failed'))
  OR (OLD.status = 'ready' AND NEW.status IN ('completed', 'failed'))
)
BEGIN
  SELECT RAISE(ABORT, 'invalid regeneration transition');
END;
"""

VIEW_NAMES = (
    "v_pending_spreads",
    "v_completed_spreads",
    "v_error_spreads",
    "image_popularity",
    "v_spread_status",
)

_CANONICAL_ORDER = """
    CASE testament WHEN 'OT' THEN 1 ELSE 2 END,
    book,
    start_chapter,
    start_verse,
    id
""".strip()


def _status_columns() -> str:
    cols = []
    for stage in PIPELINE_STAGES:
        cols.append(
            f"(SELECT st.state FROM spread_stages st "
            f"WHERE st.spread_id = s.id AND st.stage = '{stage.value}') "
            f"AS status_{stage.value}"
        )
    return ",\n  ".join(cols)


def _image_columns(prefix: str = "") -> str:
    cols = []
    for slot in range(1, IMAGE_SLOTS + 1):
        cols.append(
            f"(SELECT si.url FROM spread_images si "
            f"WHERE si.spread_id = {prefix}id AND si.slot = {slot}) AS image_url_{slot}"
        )
    return ",\n  ".join(cols)


def _status_names() -> str:
    return ",\n  ".join(f"status_{s.value}" for s in PIPELINE_STAGES)


def render_views(pending_batch_size: int = 5) -> str:
    """Build the view DDL.

    Args:
        pending_batch_size: Row bound of the pending work view.

    Returns:
        str: Script that drops and recreates every view.
    """
    batch = int(pending_batch_size)
    if batch < 1:
        raise ValueError(f"pending_batch_size must be positive, got {batch}")

    first = PIPELINE_STAGES[0].value
    all_done = "\n  AND ".join(f"status_{s.value} = 'done'" for s in PIPELINE_STAGES)
    any_error = "\n   OR ".join(f"status_{s.value} = 'error'" for s in PIPELINE_STAGES)
    drops = "\n".join(f"DROP VIEW IF EXISTS {name};" for name in VIEW_NAMES)

    return f"""
{drops}

CREATE VIEW v_spread_status AS
SELECT
  s.id,
  s.spread_code,
  s.testament,
  s.book,
  s.start_chapter,
  s.start_verse,
  s.end_chapter,
  s.end_verse,
  s.title,
  s.primary_slot,
  s.last_processed_at,
  s.updated_at,
  {_status_columns()},
  (SELECT COALESCE(SUM(st.retry_count), 0) FROM spread_stages st
    WHERE st.spread_id = s.id) AS retry_count,
  (SELECT st.error_message FROM spread_stages st
    WHERE st.spread_id = s.id AND st.state = 'error'
    ORDER BY st.position LIMIT 1) AS error_message,
  COALESCE((SELECT st.stage FROM spread_stages st
    WHERE st.spread_id = s.id AND st.state <> 'done'
    ORDER BY st.position LIMIT 1), 'complete') AS next_stage,
  (SELECT st.state FROM spread_stages st
    WHERE st.spread_id = s.id AND st.state <> 'done'
    ORDER BY st.position LIMIT 1) AS next_stage_state
FROM devotional_spreads s;

CREATE VIEW v_pending_spreads AS
SELECT
  id,
  spread_code,
  title,
  testament,
  book,
  start_chapter,
  start_verse,
  {_status_names()},
  retry_count,
  next_stage
FROM v_spread_status
WHERE status_{first} = 'done'
  AND next_stage_state = 'pending'
ORDER BY
  {_CANONICAL_ORDER}
LIMIT {batch};

CREATE VIEW v_completed_spreads AS
SELECT
  s.spread_code,
  s.testament,
  s.book,
  s.start_chapter,
  s.start_verse,
  s.end_chapter,
  s.end_verse,
  s.title,
  d.kjv_passage_ref,
  d.kjv_key_verse_ref,
  d.kjv_key_verse_text,
  d.paraphrase_text,
  d.web_passage_text,
  d.mood_category,
  s.primary_slot,
  {_image_columns("s.")},
  s.updated_at
FROM v_spread_status s
JOIN devotional_spreads d ON d.id = s.id
WHERE {all_done}
ORDER BY
  CASE s.testament WHEN 'OT' THEN 1 ELSE 2 END,
  s.book,
  s.start_chapter,
  s.start_verse,
  s.id;

CREATE VIEW v_error_spreads AS
SELECT
  id,
  spread_code,
  title,
  {_status_names()},
  error_message,
  retry_count,
  last_processed_at
FROM v_spread_status
WHERE {any_error}
ORDER BY
  {_CANONICAL_ORDER};

CREATE VIEW image_popularity AS
SELECT
  spread_code,
  image_slot,
  COUNT(*) AS selection_count
FROM user_primary_images
GROUP BY spread_code, image_slot
ORDER BY spread_code, selection_count DESC;
"""


SCHEMA = TABLES + render_views()
