#!filepath: src/devotional_app/regeneration.py
from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from devotional_app.access.policy import Caller, require_admin
from devotional_app.db.repos.spreads_repo import SpreadsRepo, check_slot
from devotional_app.db.schema import IMAGE_SLOTS
from devotional_app.errors import InvalidTransitionError, RequestNotFoundError
from devotional_app.utils.logger import get_logger

logger = get_logger(__name__)


class RegenerationStatus(str, Enum):
    PROCESSING = "processing"
    READY = "ready"
    COMPLETED = "completed"
    FAILED = "failed"


class SelectionScope(str, Enum):
    USER = "user"
    GLOBAL = "global"


ALLOWED_TRANSITIONS: dict[RegenerationStatus, frozenset[RegenerationStatus]] = {
    RegenerationStatus.PROCESSING: frozenset(
        {RegenerationStatus.READY, RegenerationStatus.FAILED}
    ),
    RegenerationStatus.READY: frozenset(
        {RegenerationStatus.COMPLETED, RegenerationStatus.FAILED}
    ),
    RegenerationStatus.COMPLETED: frozenset(),
    RegenerationStatus.FAILED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class RegenerationRequest:
    """One image regeneration job for a single slot of a spread."""

    id: str
    spread_code: str
    slot: int
    status: RegenerationStatus
    option_urls: list[str] = field(default_factory=list)
    error_message: Optional[str] = None
    selected_url: Optional[str] = None
    requested_by: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]


class RegenerationRepo:
    """Tracks regeneration jobs from request through selection.

    Status moves ``processing -> ready -> completed``, with ``failed``
    reachable from either non-terminal state. The same rules are enforced by
    a trigger, so a raw UPDATE cannot skip them either.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._spreads = SpreadsRepo(conn)

    def create(
        self, spread_code: str, slot: int, requested_by: Optional[str] = None
    ) -> RegenerationRequest:
        """Open a new request in ``processing``.

        Raises:
            ValueError: If the slot is out of range.
            SpreadNotFoundError: If the spread does not exist.
        """
        s = check_slot(slot)
        self._spreads.spread_id(spread_code)
        request_id = uuid.uuid4().hex
        self._conn.execute(
            """
            INSERT INTO regeneration_requests (id, spread_code, slot, status, requested_by)
            VALUES (?, ?, ?, 'processing', ?);
            """,
            (request_id, spread_code, s, requested_by),
        )
        self._conn.commit()
        logger.info(f"Regeneration requested, id={request_id}, spread={spread_code}, slot={s}")
        return self.get(request_id)

    def mark_ready(self, request_id: str, option_urls: Sequence[str]) -> RegenerationRequest:
        """Attach the generated options and move to ``ready``.

        Raises:
            ValueError: Unless 1..IMAGE_SLOTS non-empty URLs are given.
            InvalidTransitionError: If the request is not processing.
        """
        urls = [str(u).strip() for u in option_urls if u and str(u).strip()]
        if not 1 <= len(urls) <= IMAGE_SLOTS:
            raise ValueError(f"Expected 1 to {IMAGE_SLOTS} option urls, got {len(urls)}")

        self._transition(request_id, RegenerationStatus.READY)
        self._conn.execute(
            "DELETE FROM regeneration_options WHERE request_id = ?;", (request_id,)
        )
        self._conn.executemany(
            "INSERT INTO regeneration_options (request_id, position, url) VALUES (?, ?, ?);",
            [(request_id, idx, url) for idx, url in enumerate(urls, start=1)],
        )
        self._conn.commit()
        logger.info(f"Regeneration ready, id={request_id}, options={len(urls)}")
        return self.get(request_id)

    def mark_failed(self, request_id: str, message: str) -> RegenerationRequest:
        self._transition(
            request_id, RegenerationStatus.FAILED, error_message=str(message or "")
        )
        self._conn.commit()
        logger.warning(f"Regeneration failed, id={request_id}, err={message}")
        return self.get(request_id)

    def select(
        self,
        request_id: str,
        url: str,
        caller: Caller,
        scope: SelectionScope | str = SelectionScope.USER,
    ) -> RegenerationRequest:
        """Complete a ready request by choosing one of its options.

        The chosen URL replaces the spread's image in the requested slot. With
        ``user`` scope the caller's own primary image for the spread points at
        that slot; with ``global`` scope the spread's default slot changes,
        which only admins may do.

        Args:
            request_id: Request to complete.
            url: Chosen option.
            caller: Acting user.
            scope: ``user`` or ``global``.

        Raises:
            AccessDenied: On ``global`` scope without admin.
            InvalidTransitionError: If the request is not ready.
            ValueError: If the URL is not one of the options.
        """
        sc = SelectionScope(scope)
        if sc == SelectionScope.GLOBAL:
            require_admin(caller, "global image selection")

        req = self.get(request_id)
        if req.status != RegenerationStatus.READY:
            raise InvalidTransitionError(
                f"Only ready requests can be selected, id={request_id}, status={req.status.value}"
            )
        if url not in req.option_urls:
            raise ValueError(f"Url is not an option of request {request_id}")

        try:
            self._transition(
                request_id,
                RegenerationStatus.COMPLETED,
                selected_url=url,
                completed=True,
            )
            self._spreads.set_image(req.spread_code, req.slot, url)
            if sc == SelectionScope.GLOBAL:
                self._spreads.set_primary_slot(req.spread_code, req.slot)
            else:
                self._conn.execute(
                    """
                    INSERT INTO user_primary_images (user_id, spread_code, image_slot)
                    VALUES (?, ?, ?)
                    ON CONFLICT (user_id, spread_code)
                    DO UPDATE SET image_slot = excluded.image_slot, selected_at = datetime('now');
                    """,
                    (caller.user_id, req.spread_code, req.slot),
                )
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

        logger.info(
            f"Regeneration selected, id={request_id}, spread={req.spread_code}, "
            f"slot={req.slot}, scope={sc.value}, user={caller.user_id}"
        )
        return self.get(request_id)

    def get(self, request_id: str) -> RegenerationRequest:
        row = self._conn.execute(
            "SELECT * FROM regeneration_requests WHERE id = ?;", (request_id,)
        ).fetchone()
        if row is None:
            raise RequestNotFoundError(f"Regeneration request not found: {request_id}")
        return self._hydrate(row)

    def pending(self, limit: int = 10) -> list[RegenerationRequest]:
        """Processing requests, oldest first."""
        rows = self._conn.execute(
            """
            SELECT * FROM regeneration_requests
            WHERE status = 'processing'
            ORDER BY created_at, rowid
            LIMIT ?;
            """,
            (int(limit),),
        ).fetchall()
        return [self._hydrate(r) for r in rows]

    def for_spread(self, spread_code: str) -> list[RegenerationRequest]:
        rows = self._conn.execute(
            """
            SELECT * FROM regeneration_requests
            WHERE spread_code = ?
            ORDER BY created_at DESC, rowid DESC;
            """,
            (spread_code,),
        ).fetchall()
        return [self._hydrate(r) for r in rows]

    def _transition(
        self,
        request_id: str,
        target: RegenerationStatus,
        *,
        error_message: Optional[str] = None,
        selected_url: Optional[str] = None,
        completed: bool = False,
    ) -> None:
        current = self.get(request_id).status
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Cannot move regeneration {request_id} from {current.value} to {target.value}"
            )
        cur = self._conn.execute(
            """
            UPDATE regeneration_requests
            SET status = ?,
                error_message = COALESCE(?, error_message),
                selected_url = COALESCE(?, selected_url),
                completed_at = CASE WHEN ? THEN datetime('now') ELSE completed_at END
            WHERE id = ? AND status = ?;
            """,
            (
                target.value,
                error_message,
                selected_url,
                1 if completed else 0,
                request_id,
                current.value,
            ),
        )
        if cur.rowcount == 0:
            self._conn.rollback()
            raise InvalidTransitionError(
                f"Regeneration {request_id} changed concurrently, expected {current.value}"
            )

    def _hydrate(self, row: sqlite3.Row) -> RegenerationRequest:
        options = self._conn.execute(
            "SELECT url FROM regeneration_options WHERE request_id = ? ORDER BY position;",
            (row["id"],),
        ).fetchall()
        return RegenerationRequest(
            id=str(row["id"]),
            spread_code=str(row["spread_code"]),
            slot=int(row["slot"]),
            status=RegenerationStatus(row["status"]),
            option_urls=[str(o["url"]) for o in options],
            error_message=row["error_message"],
            selected_url=row["selected_url"],
            requested_by=row["requested_by"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )
