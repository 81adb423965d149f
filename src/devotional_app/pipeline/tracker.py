#!filepath: src/devotional_app/pipeline/tracker.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any, Optional

from devotional_app.db.repos.spreads_repo import SpreadsRepo
from devotional_app.errors import InvalidTransitionError, StageOrderError
from devotional_app.pipeline.stages import (
    ADVANCEABLE_STATES,
    PIPELINE_STAGES,
    Stage,
    StageState,
    next_stage,
    parse_stage,
    predecessor,
)
from devotional_app.utils.logger import get_logger

logger = get_logger(__name__)


def _checked_lease(seconds: int) -> int:
    lease = int(seconds)
    if lease < 1:
        raise ValueError(f"lease_seconds must be positive, got {lease}")
    return lease


@dataclass(frozen=True, slots=True)
class StageStatus:
    """Tracked state of one stage of one spread."""

    stage: Stage
    state: StageState
    error_message: Optional[str]
    retry_count: int
    claimed_by: Optional[str]
    claimed_until: Optional[str]
    updated_at: Optional[str]


@dataclass(frozen=True, slots=True)
class SpreadStatus:
    """Snapshot of a spread's pipeline.

    Attributes:
        spread_code: Spread identity.
        stages: Status per stage, in pipeline order.
        last_processed_at: Last time any stage was touched.
    """

    spread_code: str
    stages: dict[Stage, StageStatus]
    last_processed_at: Optional[str] = None

    @property
    def next_stage(self) -> Optional[Stage]:
        return next_stage({s: st.state for s, st in self.stages.items()})

    @property
    def is_complete(self) -> bool:
        return self.next_stage is None

    @property
    def retry_count(self) -> int:
        return sum(st.retry_count for st in self.stages.values())

    @property
    def error_message(self) -> Optional[str]:
        for stage in PIPELINE_STAGES:
            st = self.stages.get(stage)
            if st is not None and st.state == StageState.ERROR:
                return st.error_message
        return None

    def state(self, stage: Stage | str) -> StageState:
        st = self.stages.get(parse_stage(stage))
        return st.state if st is not None else StageState.PENDING


@dataclass(frozen=True, slots=True)
class WorkItem:
    """One candidate for an external worker."""

    spread_code: str
    next_stage: Stage
    retry_count: int
    title: Optional[str] = None
    book: Optional[str] = None
    start_chapter: Optional[int] = None
    statuses: dict[str, str] = field(default_factory=dict)


def _work_item(row: sqlite3.Row) -> WorkItem:
    return WorkItem(
        spread_code=str(row["spread_code"]),
        next_stage=parse_stage(row["next_stage"]),
        retry_count=int(row["retry_count"] or 0),
        title=row["title"],
        book=row["book"],
        start_chapter=row["start_chapter"],
        statuses={
            s.value: str(row[f"status_{s.value}"] or "") for s in PIPELINE_STAGES
        },
    )


class PipelineTracker:
    """Records pipeline outcomes for spreads.

    The tracker never decides retries. It records outcomes and counts, and
    exposes the pending, error and completed views to the external worker.
    """

    def __init__(self, conn: sqlite3.Connection, lease_seconds: int = 600) -> None:
        self._conn = conn
        self._spreads = SpreadsRepo(conn)
        self._lease_seconds = _checked_lease(lease_seconds)

    def next_work_items(self, limit: Optional[int] = None) -> list[WorkItem]:
        """Return the bounded pending work list.

        Args:
            limit: Optional tighter bound. The view's own bound always applies.

        Returns:
            list[WorkItem]: Candidates in canonical order.
        """
        sql = "SELECT * FROM v_pending_spreads"
        params: tuple[Any, ...] = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (int(limit),)
        rows = self._conn.execute(sql + ";", params).fetchall()
        return [_work_item(r) for r in rows]

    def error_set(self) -> list[dict[str, Any]]:
        rows = self._conn.execute("SELECT * FROM v_error_spreads;").fetchall()
        return [dict(r) for r in rows]

    def completed(self) -> list[dict[str, Any]]:
        rows = self._conn.execute("SELECT * FROM v_completed_spreads;").fetchall()
        return [dict(r) for r in rows]

    def status(self, spread_code: str) -> SpreadStatus:
        """Load the current pipeline snapshot of one spread.

        Raises:
            SpreadNotFoundError: If the spread does not exist.
        """
        spread_id = self._spreads.spread_id(spread_code)
        spread = self._conn.execute(
            "SELECT last_processed_at FROM devotional_spreads WHERE id = ?;",
            (spread_id,),
        ).fetchone()
        rows = self._conn.execute(
            """
            SELECT stage, state, error_message, retry_count,
                   claimed_by, claimed_until, updated_at
            FROM spread_stages
            WHERE spread_id = ?
            ORDER BY position;
            """,
            (spread_id,),
        ).fetchall()
        stages = {
            Stage(r["stage"]): StageStatus(
                stage=Stage(r["stage"]),
                state=StageState(r["state"]),
                error_message=r["error_message"],
                retry_count=int(r["retry_count"] or 0),
                claimed_by=r["claimed_by"],
                claimed_until=r["claimed_until"],
                updated_at=r["updated_at"],
            )
            for r in rows
        }
        return SpreadStatus(
            spread_code=spread_code,
            stages=stages,
            last_processed_at=spread["last_processed_at"] if spread else None,
        )

    def mark_done(
        self, spread_code: str, stage: Stage | str, worker_id: Optional[str] = None
    ) -> SpreadStatus:
        """Record a successful stage.

        Args:
            spread_code: Target spread.
            stage: Stage that finished.
            worker_id: When given, a live lease held by another worker blocks the write.

        Returns:
            SpreadStatus: Snapshot after the write.
        """
        return self._advance(spread_code, parse_stage(stage), StageState.DONE, None, worker_id)

    def mark_error(
        self,
        spread_code: str,
        stage: Stage | str,
        message: str,
        worker_id: Optional[str] = None,
    ) -> SpreadStatus:
        """Record a failed stage, keeping the message and bumping retry_count."""
        return self._advance(
            spread_code, parse_stage(stage), StageState.ERROR, str(message or ""), worker_id
        )

    def reset_stage(self, spread_code: str, stage: Stage | str) -> SpreadStatus:
        """Move an errored stage back to pending.

        The retry counter and last message are kept so the next attempt still
        sees the history.

        Raises:
            InvalidTransitionError: If the stage is not in error.
        """
        s = parse_stage(stage)
        spread_id = self._spreads.spread_id(spread_code)
        cur = self._conn.execute(
            """
            UPDATE spread_stages
            SET state = 'pending',
                claimed_by = NULL,
                claimed_until = NULL,
                updated_at = datetime('now')
            WHERE spread_id = ? AND stage = ? AND state = 'error';
            """,
            (spread_id, s.value),
        )
        if cur.rowcount == 0:
            self._conn.rollback()
            raise InvalidTransitionError(
                f"Only errored stages can be reset, spread={spread_code}, stage={s.value}"
            )
        self._touch(spread_id)
        self._conn.commit()
        logger.info(f"Stage reset to pending, spread={spread_code}, stage={s.value}")
        return self.status(spread_code)

    def claim(
        self,
        spread_code: str,
        stage: Stage | str,
        worker_id: str,
        lease_seconds: Optional[int] = None,
    ) -> bool:
        """Take a lease on a pending stage.

        The claim wins only if the stage is pending, its predecessor is done,
        and nobody else holds a live lease. Claiming again as the same worker
        extends the lease.

        Args:
            spread_code: Target spread.
            stage: Stage to work on.
            worker_id: Claiming worker.
            lease_seconds: Lease length, defaults to the tracker's.

        Returns:
            bool: Whether this worker now holds the lease.

        Raises:
            ValueError: If the lease is not a positive number of seconds.
        """
        s = parse_stage(stage)
        spread_id = self._spreads.spread_id(spread_code)
        lease = self._lease_seconds if lease_seconds is None else _checked_lease(lease_seconds)
        cur = self._conn.execute(
            """
            UPDATE spread_stages
            SET claimed_by = ?,
                claimed_until = datetime('now', ?)
            WHERE spread_id = ?
              AND stage = ?
              AND state = 'pending'
              AND (
                  claimed_until IS NULL
                  OR claimed_until <= datetime('now')
                  OR claimed_by = ?
              )
              AND (
                  position = 0
                  OR EXISTS (
                      SELECT 1 FROM spread_stages p
                      WHERE p.spread_id = spread_stages.spread_id
                        AND p.position = spread_stages.position - 1
                        AND p.state = 'done'
                  )
              );
            """,
            (worker_id, f"+{lease} seconds", spread_id, s.value, worker_id),
        )
        self._conn.commit()
        won = cur.rowcount == 1
        if won:
            logger.debug(f"Lease taken, spread={spread_code}, stage={s.value}, worker={worker_id}")
        return won

    def claim_next(self, worker_id: str, limit: int = 1) -> list[WorkItem]:
        """Claim up to ``limit`` pending work items in canonical order.

        Items leased by other workers are skipped.
        """
        rows = self._conn.execute(
            f"""
            SELECT * FROM v_spread_status
            WHERE status_{PIPELINE_STAGES[0].value} = 'done'
              AND next_stage_state = 'pending'
            ORDER BY
              CASE testament WHEN 'OT' THEN 1 ELSE 2 END,
              book,
              start_chapter,
              start_verse,
              id;
            """
        ).fetchall()

        claimed: list[WorkItem] = []
        for r in rows:
            if len(claimed) >= int(limit):
                break
            item = _work_item(r)
            if self.claim(item.spread_code, item.next_stage, worker_id):
                claimed.append(item)
        return claimed

    def release(self, spread_code: str, stage: Stage | str, worker_id: str) -> bool:
        s = parse_stage(stage)
        spread_id = self._spreads.spread_id(spread_code)
        cur = self._conn.execute(
            """
            UPDATE spread_stages
            SET claimed_by = NULL, claimed_until = NULL
            WHERE spread_id = ? AND stage = ? AND claimed_by = ?;
            """,
            (spread_id, s.value, worker_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def _advance(
        self,
        spread_code: str,
        stage: Stage,
        new_state: StageState,
        message: Optional[str],
        worker_id: Optional[str],
    ) -> SpreadStatus:
        current = self.status(spread_code)
        cur_state = current.state(stage)
        if cur_state not in ADVANCEABLE_STATES:
            raise InvalidTransitionError(
                f"Stage already {cur_state.value}, spread={spread_code}, stage={stage.value}"
            )

        pred = predecessor(stage)
        if pred is not None and current.state(pred) != StageState.DONE:
            raise StageOrderError(
                f"Stage {stage.value} needs {pred.value} done first, spread={spread_code}"
            )

        spread_id = self._spreads.spread_id(spread_code)
        lease_guard = ""
        params: list[Any] = [
            new_state.value,
            message,
            1 if new_state == StageState.ERROR else 0,
            spread_id,
            stage.value,
        ]
        if worker_id is not None:
            lease_guard = """
              AND (
                  claimed_by IS NULL
                  OR claimed_by = ?
                  OR claimed_until <= datetime('now')
              )"""
            params.append(worker_id)

        cur = self._conn.execute(
            f"""
            UPDATE spread_stages
            SET state = ?,
                error_message = ?,
                retry_count = retry_count + ?,
                claimed_by = NULL,
                claimed_until = NULL,
                updated_at = datetime('now')
            WHERE spread_id = ?
              AND stage = ?
              AND state IN ('pending', 'error'){lease_guard};
            """,
            params,
        )
        if cur.rowcount == 0:
            self._conn.rollback()
            raise InvalidTransitionError(
                f"Stage changed or leased by another worker, spread={spread_code}, stage={stage.value}"
            )
        self._touch(spread_id)
        self._conn.commit()

        if new_state == StageState.ERROR:
            logger.warning(
                f"Stage failed, spread={spread_code}, stage={stage.value}, err={message}"
            )
        else:
            logger.info(f"Stage done, spread={spread_code}, stage={stage.value}")
        return self.status(spread_code)

    def _touch(self, spread_id: int) -> None:
        self._conn.execute(
            "UPDATE devotional_spreads SET last_processed_at = datetime('now') WHERE id = ?;",
            (spread_id,),
        )
