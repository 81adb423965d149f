#!filepath: src/devotional_app/utils/serialization.py
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from devotional_app.utils.logger import get_logger

logger = get_logger(__name__)

_Parser = tuple[str, Callable[[str], Any], type[Exception]]

_JSON: _Parser = ("JSON", json.loads, json.JSONDecodeError)
_YAML: _Parser = ("YAML", yaml.safe_load, yaml.YAMLError)

_BY_SUFFIX: dict[str, _Parser] = {".json": _JSON, ".yaml": _YAML, ".yml": _YAML}


@dataclass(frozen=True, slots=True)
class LoadResult:
    """Outcome of reading a data file.

    Failures are logged and reported through ``ok`` rather than raised, so
    callers decide whether a bad file is fatal.

    Args:
        data: Top level mapping, empty on failure or for an empty file.
        path: File attempted.
        ok: Whether the file was read and holds a mapping.
    """

    data: dict[str, Any]
    path: Path
    ok: bool


def load_data_file(path: Path) -> LoadResult:
    """Read a JSON or YAML mapping, choosing the parser from the suffix.

    Unknown suffixes are read as YAML, which also accepts JSON.
    """
    kind, parse, parse_error = _BY_SUFFIX.get(path.suffix.lower(), _YAML)

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.error(f"Failed to read {kind} at {path}: {exc}")
        return LoadResult(data={}, path=path, ok=False)

    try:
        raw = parse(text)
    except parse_error as exc:
        logger.error(f"Failed to parse {kind} at {path}: {exc}")
        return LoadResult(data={}, path=path, ok=False)

    if raw is None:
        return LoadResult(data={}, path=path, ok=True)
    if not isinstance(raw, Mapping):
        logger.error(f"Invalid {kind} at {path}, expected an object, got {type(raw).__name__}")
        return LoadResult(data={}, path=path, ok=False)
    return LoadResult(data=dict(raw), path=path, ok=True)
