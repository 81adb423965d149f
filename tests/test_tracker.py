#!filepath: tests/test_tracker.py
from __future__ import annotations

import pytest

from devotional_app.errors import (
    InvalidTransitionError,
    SpreadNotFoundError,
    StageOrderError,
    UnknownStageError,
)
from devotional_app.pipeline.stages import Stage, StageState, next_stage, parse_stage, should_retry
from devotional_app.pipeline.tracker import PipelineTracker, SpreadStatus


@pytest.fixture()
def tracker(conn, add_spread) -> PipelineTracker:
    add_spread("GEN-001")
    add_spread("GEN-002", chapter=2)
    return PipelineTracker(conn, lease_seconds=600)


def test_parse_stage_aliases() -> None:
    assert parse_stage("Paraphrase") is Stage.TEXT
    assert parse_stage("artwork") is Stage.IMAGE
    assert parse_stage(Stage.OUTLINE) is Stage.OUTLINE
    with pytest.raises(UnknownStageError):
        parse_stage("layout")


def test_next_stage_and_retry_helpers() -> None:
    states = {Stage.OUTLINE: StageState.DONE, Stage.SCRIPTURE: StageState.ERROR}
    assert next_stage(states) is Stage.SCRIPTURE
    assert next_stage({s: StageState.DONE for s in Stage}) is None
    assert should_retry(2, 3)
    assert not should_retry(3, 3)


def test_mark_done_in_order(tracker: PipelineTracker) -> None:
    snap = tracker.mark_done("GEN-001", "outline")
    assert snap.state("outline") is StageState.DONE
    assert snap.next_stage is Stage.SCRIPTURE
    assert snap.last_processed_at is not None


def test_out_of_order_rejected(tracker: PipelineTracker) -> None:
    with pytest.raises(StageOrderError):
        tracker.mark_done("GEN-001", "text")
    assert tracker.status("GEN-001").state("text") is StageState.PENDING


def test_done_is_terminal(tracker: PipelineTracker) -> None:
    tracker.mark_done("GEN-001", "outline")
    with pytest.raises(InvalidTransitionError):
        tracker.mark_done("GEN-001", "outline")
    with pytest.raises(InvalidTransitionError):
        tracker.mark_error("GEN-001", "outline", "late failure")


def test_error_counts_and_recovers(tracker: PipelineTracker) -> None:
    tracker.mark_done("GEN-001", "outline")
    tracker.mark_error("GEN-001", "scripture", "first")
    snap = tracker.mark_error("GEN-001", "scripture", "second")
    assert snap.retry_count == 2
    assert snap.error_message == "second"

    snap = tracker.mark_done("GEN-001", "scripture")
    assert snap.state("scripture") is StageState.DONE
    assert snap.error_message is None
    assert snap.retry_count == 2


def test_reset_stage_keeps_history(tracker: PipelineTracker) -> None:
    tracker.mark_done("GEN-001", "outline")
    tracker.mark_error("GEN-001", "scripture", "boom")
    snap = tracker.reset_stage("GEN-001", "scripture")
    assert snap.state("scripture") is StageState.PENDING
    assert snap.stages[Stage.SCRIPTURE].retry_count == 1
    assert snap.stages[Stage.SCRIPTURE].error_message == "boom"
    assert [i.spread_code for i in tracker.next_work_items()] == ["GEN-001"]


def test_reset_stage_requires_error(tracker: PipelineTracker) -> None:
    with pytest.raises(InvalidTransitionError):
        tracker.reset_stage("GEN-001", "outline")


def test_unknown_spread(tracker: PipelineTracker) -> None:
    with pytest.raises(SpreadNotFoundError):
        tracker.status("NOPE-001")


def test_claim_is_exclusive(tracker: PipelineTracker) -> None:
    tracker.mark_done("GEN-001", "outline")
    assert tracker.claim("GEN-001", "scripture", "w1")
    assert not tracker.claim("GEN-001", "scripture", "w2")
    assert tracker.claim("GEN-001", "scripture", "w1")

    st = tracker.status("GEN-001").stages[Stage.SCRIPTURE]
    assert st.claimed_by == "w1"
    assert st.claimed_until is not None


def test_claim_needs_predecessor_done(tracker: PipelineTracker) -> None:
    assert not tracker.claim("GEN-001", "scripture", "w1")
    assert tracker.claim("GEN-001", "outline", "w1")


def test_expired_lease_can_be_taken(tracker: PipelineTracker, conn) -> None:
    tracker.mark_done("GEN-001", "outline")
    assert tracker.claim("GEN-001", "scripture", "w1", lease_seconds=1)
    assert not tracker.claim("GEN-001", "scripture", "w2")

    conn.execute(
        "UPDATE spread_stages SET claimed_until = datetime('now', '-1 seconds') "
        "WHERE stage = 'scripture';"
    )
    conn.commit()
    assert tracker.claim("GEN-001", "scripture", "w2")


@pytest.mark.parametrize("lease", [0, -5])
def test_non_positive_lease_rejected(tracker: PipelineTracker, conn, lease: int) -> None:
    tracker.mark_done("GEN-001", "outline")
    with pytest.raises(ValueError):
        tracker.claim("GEN-001", "scripture", "w1", lease_seconds=lease)
    with pytest.raises(ValueError):
        PipelineTracker(conn, lease_seconds=lease)

    row = conn.execute(
        "SELECT claimed_by, claimed_until FROM spread_stages WHERE stage = 'scripture';"
    ).fetchone()
    assert (row["claimed_by"], row["claimed_until"]) == (None, None)
    assert tracker.claim("GEN-001", "scripture", "w2")


def test_leased_stage_blocks_other_worker(tracker: PipelineTracker) -> None:
    tracker.mark_done("GEN-001", "outline")
    tracker.claim("GEN-001", "scripture", "w1")
    with pytest.raises(InvalidTransitionError):
        tracker.mark_done("GEN-001", "scripture", worker_id="w2")

    snap = tracker.mark_done("GEN-001", "scripture", worker_id="w1")
    assert snap.stages[Stage.SCRIPTURE].claimed_by is None


def test_release(tracker: PipelineTracker) -> None:
    tracker.mark_done("GEN-001", "outline")
    tracker.claim("GEN-001", "scripture", "w1")
    assert not tracker.release("GEN-001", "scripture", "w2")
    assert tracker.release("GEN-001", "scripture", "w1")
    assert tracker.claim("GEN-001", "scripture", "w2")


def test_claim_next_skips_leased(tracker: PipelineTracker) -> None:
    tracker.mark_done("GEN-001", "outline")
    tracker.mark_done("GEN-002", "outline")

    [first] = tracker.claim_next("w1")
    assert first.spread_code == "GEN-001"
    [second] = tracker.claim_next("w2")
    assert second.spread_code == "GEN-002"
    assert tracker.claim_next("w3") == []

    # Pending view still lists leased rows.
    assert len(tracker.next_work_items()) == 2


def test_snapshot_without_stage_rows_reads_pending() -> None:
    snap = SpreadStatus(spread_code="GEN-009", stages={})
    assert snap.state("outline") is StageState.PENDING
    assert snap.next_stage is Stage.OUTLINE
