from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select

from ..errors import NotFoundError, PreconditionFailedError, ValidationFailedError
from ..models import CompatibilityScore, CupidAssignment, MatchingBatch, Pairing
from .events import log_pipeline_event
from .partitions import partition_label
from .state_machine import transition_batch_status

logger = logging.getLogger(__name__)

_TIMESTAMP_FIELDS = (
    "scoring_started_at",
    "scoring_completed_at",
    "matching_started_at",
    "matching_completed_at",
    "revealed_at",
)
_COUNTER_FIELDS = ("total_users", "total_pairs", "algorithm_matches", "cupid_matches")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_batch(db, batch_number: int) -> MatchingBatch:
    batch = db.get(MatchingBatch, batch_number)
    if batch is None:
        raise NotFoundError(f"Batch {batch_number} not found", hint="create the batch before running pipeline phases")
    return batch


def get_current_batch(db) -> MatchingBatch | None:
    return db.scalars(select(MatchingBatch).order_by(MatchingBatch.batch_number.desc()).limit(1)).first()


def create_batch(db, batch_number: int | None = None, now: datetime | None = None) -> MatchingBatch:
    """Open the next batch. Numbers only move forward and are never reused."""
    now = now or utcnow()
    current = get_current_batch(db)
    if current is None:
        expected = 1
    else:
        expected = current.batch_number + 1
        if current.status == "pending":
            raise PreconditionFailedError(
                f"Batch {current.batch_number} is still pending",
                hint=f"run scoring for batch {current.batch_number} before opening batch {expected}",
            )
    if batch_number is not None and batch_number != expected:
        raise ValidationFailedError(f"Next batch number must be {expected}, got {batch_number}")

    batch = MatchingBatch(batch_number=expected, status="pending")
    for field in _COUNTER_FIELDS:
        setattr(batch, field, 0)
    db.add(batch)
    db.flush()
    log_pipeline_event(db, expected, "batch_created", {"created_at": now.isoformat()})
    logger.info(f"Opened matching batch {expected}")
    return batch


def count_scores(db, batch_number: int, is_test: bool | None = None) -> int:
    stmt = select(func.count()).select_from(CompatibilityScore).where(CompatibilityScore.batch_number == batch_number)
    if is_test is not None:
        stmt = stmt.where(CompatibilityScore.is_test == is_test)
    return int(db.scalar(stmt) or 0)


def count_pairings(
    db,
    batch_number: int,
    is_test: bool | None = None,
    provenance: str | None = None,
    revealed: bool | None = None,
) -> int:
    stmt = select(func.count()).select_from(Pairing).where(Pairing.batch_number == batch_number)
    if is_test is not None:
        stmt = stmt.where(Pairing.is_test == is_test)
    if provenance is not None:
        stmt = stmt.where(Pairing.provenance == provenance)
    if revealed is True:
        stmt = stmt.where(Pairing.revealed_at.is_not(None))
    elif revealed is False:
        stmt = stmt.where(Pairing.revealed_at.is_(None))
    return int(db.scalar(stmt) or 0)


def count_assignments(db, batch_number: int, is_test: bool | None = None, selected_only: bool = False) -> int:
    stmt = select(func.count()).select_from(CupidAssignment).where(CupidAssignment.batch_number == batch_number)
    if is_test is not None:
        stmt = stmt.where(CupidAssignment.is_test == is_test)
    if selected_only:
        stmt = stmt.where(CupidAssignment.selected_match_id.is_not(None))
    return int(db.scalar(stmt) or 0)


def refresh_batch_counters(db, batch: MatchingBatch) -> None:
    db.flush()
    n = batch.batch_number
    batch.total_users = int(
        db.scalar(
            select(func.count(func.distinct(CompatibilityScore.user_id))).where(CompatibilityScore.batch_number == n)
        )
        or 0
    )
    batch.total_pairs = count_pairings(db, n)
    batch.algorithm_matches = count_pairings(db, n, provenance="algorithm")
    batch.cupid_matches = count_pairings(db, n, provenance="cupid")


def advance_batch_status(batch: MatchingBatch, action: str) -> str:
    previous = batch.status
    batch.status = transition_batch_status(previous, action)
    if batch.status != previous:
        logger.info(f"Batch {batch.batch_number} status {previous} -> {batch.status}")
    return batch.status


def serialize_batch(batch: MatchingBatch) -> dict[str, Any]:
    out: dict[str, Any] = {"batch_number": batch.batch_number, "status": batch.status}
    for field in _COUNTER_FIELDS:
        out[field] = int(getattr(batch, field) or 0)
    for field in _TIMESTAMP_FIELDS:
        value = getattr(batch, field)
        out[field] = value.isoformat() if value else None
    return out


def batch_status(db, batch_number: int) -> dict[str, Any]:
    batch = get_batch(db, batch_number)
    out = serialize_batch(batch)
    partitions: dict[str, dict[str, int]] = {}
    for is_test in (True, False):
        partitions[partition_label(is_test)] = {
            "scores": count_scores(db, batch_number, is_test),
            "algorithm_matches": count_pairings(db, batch_number, is_test, provenance="algorithm"),
            "cupid_matches": count_pairings(db, batch_number, is_test, provenance="cupid"),
            "revealed_matches": count_pairings(db, batch_number, is_test, revealed=True),
            "assignments": count_assignments(db, batch_number, is_test),
            "selections": count_assignments(db, batch_number, is_test, selected_only=True),
        }
    out["partitions"] = partitions
    return out


def reset_batch(db, batch_number: int) -> dict[str, Any]:
    """
    Return ``batch_number`` to ``pending`` and wipe its ledgers.

    Every higher-numbered batch is deleted outright together with its rows.
    This is the only destructive operation in the pipeline.
    """
    batch = get_batch(db, batch_number)
    higher = list(
        db.scalars(select(MatchingBatch.batch_number).where(MatchingBatch.batch_number > batch_number)).all()
    )
    scope = [batch_number, *higher]

    scores_deleted = db.execute(
        delete(CompatibilityScore).where(CompatibilityScore.batch_number.in_(scope))
    ).rowcount
    matches_deleted = db.execute(delete(Pairing).where(Pairing.batch_number.in_(scope))).rowcount
    assignments_deleted = db.execute(
        delete(CupidAssignment).where(CupidAssignment.batch_number.in_(scope))
    ).rowcount
    batches_deleted = 0
    if higher:
        batches_deleted = db.execute(delete(MatchingBatch).where(MatchingBatch.batch_number.in_(higher))).rowcount

    advance_batch_status(batch, "reset")
    for field in _COUNTER_FIELDS:
        setattr(batch, field, 0)
    for field in _TIMESTAMP_FIELDS:
        setattr(batch, field, None)

    deleted_counts = {
        "scores_deleted": int(scores_deleted or 0),
        "matches_deleted": int(matches_deleted or 0),
        "assignments_deleted": int(assignments_deleted or 0),
        "batches_deleted": int(batches_deleted or 0),
    }
    log_pipeline_event(db, batch_number, "batch_reset", {**deleted_counts, "deleted_batches": higher})
    logger.warning(f"Reset batch {batch_number}: {deleted_counts} (removed batches {higher})")
    return {"batch_number": batch_number, "status": batch.status, **deleted_counts}
