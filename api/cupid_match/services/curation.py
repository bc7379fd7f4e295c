from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select

from ..config import MAX_CUPID_RECEIVED_MATCHES, MAX_CUPID_SENT_MATCHES, SHORTLIST_VISIBLE_DEFAULT
from ..errors import ForbiddenError, NotFoundError, PreconditionFailedError, ValidationFailedError
from ..models import CupidAssignment, Pairing
from .batches import get_batch, refresh_batch_counters, utcnow
from .events import log_pipeline_event
from .match_ledger import find_pairing
from .partitions import partition_label, resolve_partition
from .state_machine import transition_pairing_status

logger = logging.getLogger(__name__)


def shortlist_ids(assignment: CupidAssignment) -> list[str]:
    return [str(m.get("user_id")) for m in (assignment.potential_matches or []) if isinstance(m, dict)]


def selectable_matches(assignment: CupidAssignment) -> list[dict[str, Any]]:
    """Shortlist entries a cupid may still pick; rejected users stay stored but are hidden here."""
    rejected = set(assignment.rejected_matches or [])
    return [
        m
        for m in (assignment.potential_matches or [])
        if isinstance(m, dict) and str(m.get("user_id")) not in rejected
    ]


def load_owned_assignment(db, assignment_id: str | None, cupid_id: str | None) -> CupidAssignment:
    if not assignment_id or not cupid_id:
        raise ValidationFailedError("assignment_id and cupid_id are required")
    assignment = db.get(CupidAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(f"Assignment {assignment_id} not found")
    if assignment.cupid_user_id != cupid_id:
        raise ForbiddenError("Not authorized to modify this assignment")
    return assignment


def reject_candidate(db, assignment_id: str, cupid_id: str, rejected_user_id: str) -> dict[str, Any]:
    if not rejected_user_id:
        raise ValidationFailedError("rejected_user_id is required")
    assignment = load_owned_assignment(db, assignment_id, cupid_id)
    rejected = list(assignment.rejected_matches or [])
    # A refreshed, shorter shortlist may no longer list an earlier rejection.
    if rejected_user_id in rejected:
        return {"success": True, "added": False, "rejected_matches": rejected}
    if rejected_user_id not in shortlist_ids(assignment):
        raise ValidationFailedError(f"User {rejected_user_id} is not on this candidate's shortlist")
    if rejected_user_id == assignment.selected_match_id:
        raise PreconditionFailedError("Cannot reject the currently selected match")

    assignment.rejected_matches = [*rejected, rejected_user_id]
    db.flush()
    log_pipeline_event(
        db,
        assignment.batch_number,
        "candidate_rejected",
        {"assignment_id": assignment.id, "rejected_user_id": rejected_user_id},
        user_id=cupid_id,
        is_test=assignment.is_test,
    )
    return {"success": True, "added": True, "rejected_matches": list(assignment.rejected_matches)}


def set_revealed_count(db, assignment_id: str, cupid_id: str, count: Any) -> dict[str, Any]:
    """
    Store how many shortlist entries the cupid has uncovered.

    The value is trusted from the owning cupid and overwritten as given:
    it is not forced to grow and is not reconciled with revealed matches.
    Suspicious values are only logged.
    """
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValidationFailedError("count must be an integer")
    if count < 0:
        raise ValidationFailedError("count must not be negative")
    assignment = load_owned_assignment(db, assignment_id, cupid_id)

    previous = int(assignment.revealed_count or 0)
    if count < previous:
        logger.warning(f"revealed_count for assignment {assignment.id} went down {previous} -> {count}")
    if count > len(assignment.potential_matches or []):
        logger.warning(
            f"revealed_count {count} for assignment {assignment.id} exceeds shortlist of "
            f"{len(assignment.potential_matches or [])}"
        )
    assignment.revealed_count = count
    db.flush()
    log_pipeline_event(
        db,
        assignment.batch_number,
        "revealed_count_set",
        {"assignment_id": assignment.id, "previous": previous, "count": count},
        user_id=cupid_id,
        is_test=assignment.is_test,
    )
    return {"success": True, "revealed_count": count}


def select_match(
    db,
    assignment_id: str,
    cupid_id: str,
    selected_user_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    if not selected_user_id:
        raise ValidationFailedError("selected_user_id is required")
    assignment = load_owned_assignment(db, assignment_id, cupid_id)
    if selected_user_id == assignment.candidate_id:
        raise ValidationFailedError("A candidate cannot be matched with themself")
    if selected_user_id not in shortlist_ids(assignment):
        raise ValidationFailedError(f"User {selected_user_id} is not on this candidate's shortlist")
    if selected_user_id in set(assignment.rejected_matches or []):
        raise ValidationFailedError(f"User {selected_user_id} was rejected for this candidate")

    if assignment.selected_match_id == selected_user_id:
        return {"success": True, "changed": False, "selected_match_id": selected_user_id}
    if assignment.promoted_at is not None:
        raise PreconditionFailedError("Selection has already been promoted and can no longer change")

    assignment.selected_match_id = selected_user_id
    assignment.selection_reason = reason
    assignment.selected_at = now or utcnow()
    db.flush()
    log_pipeline_event(
        db,
        assignment.batch_number,
        "match_selected",
        {"assignment_id": assignment.id, "candidate_id": assignment.candidate_id, "selected_user_id": selected_user_id},
        user_id=cupid_id,
        is_test=assignment.is_test,
    )
    return {"success": True, "changed": True, "selected_match_id": selected_user_id}


def _shortlist_score(assignment: CupidAssignment, user_id: str) -> float | None:
    for m in assignment.potential_matches or []:
        if isinstance(m, dict) and str(m.get("user_id")) == user_id:
            return float(m.get("score") or 0.0)
    return None


def _cupid_limit_reached(db, batch_number: int, sender_id: str, receiver_id: str) -> bool:
    sent = db.scalar(
        select(func.count())
        .select_from(Pairing)
        .where(Pairing.batch_number == batch_number, Pairing.provenance == "cupid", Pairing.sender_id == sender_id)
    )
    received = db.scalar(
        select(func.count())
        .select_from(Pairing)
        .where(
            Pairing.batch_number == batch_number,
            Pairing.provenance == "cupid",
            Pairing.sender_id != receiver_id,
            or_(Pairing.user_a_id == receiver_id, Pairing.user_b_id == receiver_id),
        )
    )
    return int(sent or 0) >= MAX_CUPID_SENT_MATCHES or int(received or 0) >= MAX_CUPID_RECEIVED_MATCHES


def promote_selections(
    db,
    batch_number: int,
    partition: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Write cupid-approved pairs into the pairing table.

    The candidate is the sender and the selected user the receiver. An
    unrevealed algorithm pairing between the two is converted in place.
    Safe to re-run: pairs already held as cupid pairings are skipped.
    """
    batch = get_batch(db, batch_number)
    is_test = resolve_partition(partition) if partition is not None else None
    now = now or utcnow()

    stmt = select(CupidAssignment).where(
        CupidAssignment.batch_number == batch_number,
        CupidAssignment.selected_match_id.is_not(None),
    )
    if is_test is not None:
        stmt = stmt.where(CupidAssignment.is_test == is_test)
    assignments = db.scalars(stmt.order_by(CupidAssignment.created_at, CupidAssignment.id)).all()

    created = updated = skipped = limited = 0
    for assignment in assignments:
        sender = assignment.candidate_id
        receiver = assignment.selected_match_id
        pairing = find_pairing(db, batch_number, sender, receiver)

        if pairing is None:
            if _cupid_limit_reached(db, batch_number, sender, receiver):
                logger.warning(f"Cupid match limit reached for {sender} -> {receiver} in batch {batch_number}")
                limited += 1
                skipped += 1
            else:
                user_a, user_b = sorted((sender, receiver))
                db.add(
                    Pairing(
                        batch_number=batch_number,
                        user_a_id=user_a,
                        user_b_id=user_b,
                        provenance="cupid",
                        sender_id=sender,
                        cupid_user_id=assignment.cupid_user_id,
                        score=_shortlist_score(assignment, receiver),
                        status="pending",
                        cupid_comment=assignment.selection_reason,
                        is_test=assignment.is_test,
                    )
                )
                created += 1
        elif pairing.provenance == "algorithm" and pairing.revealed_at is None:
            pairing.provenance = "cupid"
            pairing.sender_id = sender
            pairing.cupid_user_id = assignment.cupid_user_id
            pairing.cupid_comment = assignment.selection_reason
            pairing.status = transition_pairing_status(pairing.status, "promote")
            updated += 1
        else:
            skipped += 1

        if assignment.promoted_at is None:
            assignment.promoted_at = now
        db.flush()

    refresh_batch_counters(db, batch)
    label = partition_label(is_test) if is_test is not None else "all"
    counts = {"created": created, "updated": updated, "skipped": skipped, "limited": limited}
    log_pipeline_event(db, batch_number, "selections_promoted", counts, is_test=bool(is_test))
    logger.info(f"Promoted cupid selections for batch {batch_number} ({label}): {counts}")
    return {"batch_number": batch_number, "partition": label, **counts}


def unpromoted_selections(db, batch_number: int, is_test: bool) -> list[CupidAssignment]:
    return list(
        db.scalars(
            select(CupidAssignment).where(
                CupidAssignment.batch_number == batch_number,
                CupidAssignment.is_test == is_test,
                CupidAssignment.selected_match_id.is_not(None),
                CupidAssignment.promoted_at.is_(None),
            )
        ).all()
    )


def auto_select_for_test(db, batch_number: int, seed: int | None = None, now: datetime | None = None) -> int:
    """Pick a random selectable match for every unselected test assignment."""
    rng = random.Random(batch_number if seed is None else seed)
    now = now or utcnow()
    assignments = db.scalars(
        select(CupidAssignment)
        .where(
            CupidAssignment.batch_number == batch_number,
            CupidAssignment.is_test.is_(True),
            CupidAssignment.selected_match_id.is_(None),
        )
        .order_by(CupidAssignment.id)
    ).all()

    picked = 0
    for assignment in assignments:
        options = [str(m["user_id"]) for m in selectable_matches(assignment) if m.get("user_id") != assignment.candidate_id]
        if not options:
            continue
        assignment.selected_match_id = rng.choice(options)
        assignment.selection_reason = "auto-selected for test reveal"
        assignment.selected_at = now
        picked += 1
    db.flush()
    return picked


def cupid_dashboard(
    db,
    batch_number: int,
    cupid_id: str,
    visible_default: int = SHORTLIST_VISIBLE_DEFAULT,
) -> dict[str, Any]:
    get_batch(db, batch_number)
    assignments = db.scalars(
        select(CupidAssignment)
        .where(CupidAssignment.batch_number == batch_number, CupidAssignment.cupid_user_id == cupid_id)
        .order_by(CupidAssignment.created_at, CupidAssignment.id)
    ).all()

    out: list[dict[str, Any]] = []
    for a in assignments:
        selectable = selectable_matches(a)
        visible = max(int(a.revealed_count or 0), visible_default)
        out.append(
            {
                "assignment_id": a.id,
                "candidate_id": a.candidate_id,
                "partition": partition_label(a.is_test),
                "selectable_matches": selectable[:visible],
                "total_selectable": len(selectable),
                "rejected_matches": list(a.rejected_matches or []),
                "revealed_count": int(a.revealed_count or 0),
                "selected_match_id": a.selected_match_id,
                "selection_reason": a.selection_reason,
                "promoted": a.promoted_at is not None,
            }
        )
    return {"batch_number": batch_number, "cupid_user_id": cupid_id, "assignments": out}
