#!filepath: src/devotional_app/pipeline/stages.py
from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional

from devotional_app.errors import UnknownStageError


class Stage(str, Enum):
    """A generation step of a spread."""

    OUTLINE = "outline"
    SCRIPTURE = "scripture"
    TEXT = "text"
    IMAGE = "image"


class StageState(str, Enum):
    """State of one stage."""

    PENDING = "pending"
    DONE = "done"
    ERROR = "error"


PIPELINE_STAGES: tuple[Stage, ...] = (
    Stage.OUTLINE,
    Stage.SCRIPTURE,
    Stage.TEXT,
    Stage.IMAGE,
)

COMPLETE = "complete"

# States a stage can leave through mark_done / mark_error.
ADVANCEABLE_STATES = frozenset({StageState.PENDING, StageState.ERROR})

_ALIASES: dict[str, Stage] = {
    "outline": Stage.OUTLINE,
    "scripture": Stage.SCRIPTURE,
    "verses": Stage.SCRIPTURE,
    "text": Stage.TEXT,
    "paraphrase": Stage.TEXT,
    "image": Stage.IMAGE,
    "images": Stage.IMAGE,
    "art": Stage.IMAGE,
    "artwork": Stage.IMAGE,
}


def parse_stage(name: str | Stage) -> Stage:
    """Resolve a stage name, accepting a few aliases.

    Args:
        name: Stage name or Stage.

    Returns:
        Stage: The resolved stage.

    Raises:
        UnknownStageError: If the name is not a pipeline stage.
    """
    if isinstance(name, Stage):
        return name
    key = str(name or "").strip().casefold()
    stage = _ALIASES.get(key)
    if stage is None:
        raise UnknownStageError(f"Unknown stage: {name!r}")
    return stage


def position(stage: Stage) -> int:
    return PIPELINE_STAGES.index(stage)


def predecessor(stage: Stage) -> Optional[Stage]:
    """Return the stage that must be done before ``stage``, if any."""
    idx = position(stage)
    return PIPELINE_STAGES[idx - 1] if idx > 0 else None


def next_stage(states: Mapping[Stage, StageState]) -> Optional[Stage]:
    """Return the first stage that is not done.

    Args:
        states: Current state per stage. Missing stages count as pending.

    Returns:
        Optional[Stage]: First unfinished stage, None when all are done.
    """
    for stage in PIPELINE_STAGES:
        if states.get(stage, StageState.PENDING) != StageState.DONE:
            return stage
    return None


def should_retry(retry_count: int, max_retries: int) -> bool:
    """Retry policy helper for external workers.

    The store records retries but never enforces a ceiling.
    """
    return int(retry_count) < int(max_retries)
