#!filepath: src/devotional_app/errors.py
from __future__ import annotations


class StoreError(RuntimeError):
    """Base error for store operations."""


class SpreadNotFoundError(StoreError):
    """No spread with the given code."""

    def __init__(self, spread_code: str) -> None:
        super().__init__(f"Spread not found: {spread_code}")
        self.spread_code = spread_code


class UnknownStageError(StoreError, ValueError):
    """Stage name outside the pipeline."""


class InvalidTransitionError(StoreError):
    """State change not allowed from the current state."""


class StageOrderError(InvalidTransitionError):
    """Stage advanced before its predecessor is done."""


class RequestNotFoundError(StoreError):
    """No regeneration request with the given id."""


class AccessDenied(PermissionError):
    """Caller is not allowed to touch the target rows."""
