from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select

from ..config import SHORTLIST_SIZE
from ..models import CompatibilityScore, CupidAssignment, User
from ..errors import PreconditionFailedError
from .batches import count_pairings, count_scores, get_batch
from .events import log_pipeline_event
from .partitions import partition_label, resolve_partition

logger = logging.getLogger(__name__)


def approved_cupids(db, is_test: bool) -> list[User]:
    return list(
        db.scalars(
            select(User)
            .where(
                User.is_cupid.is_(True),
                User.cupid_approved.is_(True),
                User.is_email_verified.is_(True),
                User.is_test_user == is_test,
            )
            .order_by(User.email, User.id)
        ).all()
    )


def scored_candidates(db, batch_number: int, is_test: bool) -> list[User]:
    scored = (
        select(CompatibilityScore.user_id)
        .where(CompatibilityScore.batch_number == batch_number, CompatibilityScore.is_test == is_test)
        .distinct()
    )
    return list(
        db.scalars(
            select(User)
            .where(User.id.in_(scored), User.is_being_matched.is_(True), User.is_test_user == is_test)
            .order_by(User.id)
        ).all()
    )


def build_shortlist(
    db,
    batch_number: int,
    candidate_id: str,
    is_test: bool,
    limit: int = SHORTLIST_SIZE,
    exclude_ids: set[str] | None = None,
) -> list[dict[str, Any]]:
    """Top ``limit`` non-vetoed scores from the candidate's side, best first, ties by target id."""
    stmt = (
        select(CompatibilityScore.target_user_id, CompatibilityScore.total_score)
        .where(
            CompatibilityScore.batch_number == batch_number,
            CompatibilityScore.user_id == candidate_id,
            CompatibilityScore.is_test == is_test,
            CompatibilityScore.total_score > 0,
        )
        .order_by(CompatibilityScore.total_score.desc(), CompatibilityScore.target_user_id.asc())
    )
    if exclude_ids:
        stmt = stmt.where(CompatibilityScore.target_user_id.not_in(sorted(exclude_ids)))
    rows = db.execute(stmt.limit(limit)).all()
    return [{"user_id": str(target), "score": float(score)} for target, score in rows]


def _plan_assignments(cupids: list[User], candidates: list[User]) -> tuple[list[tuple[User, User, bool]], int]:
    """
    Preferred candidates first, then each remaining candidate goes to the
    least-loaded cupid (ties by email order), which is round-robin when no
    cupid has a preference.

    A cupid never curates themself; when every cupid is the candidate
    (a single cupid who is also being matched) the candidate is left out.
    """
    remaining = {c.id: c for c in candidates}
    by_email = {(c.email or "").strip().lower(): c for c in candidates}
    plan: list[tuple[User, User, bool]] = []

    for cupid in cupids:
        email = (cupid.preferred_candidate_email or "").strip().lower()
        if not email:
            continue
        wanted = by_email.get(email)
        if wanted is None or wanted.id not in remaining or wanted.id == cupid.id:
            logger.info(f"Preferred candidate {email} unavailable for cupid {cupid.id}")
            continue
        plan.append((cupid, wanted, True))
        remaining.pop(wanted.id)

    load = {c.id: 0 for c in cupids}
    for cupid, _, _ in plan:
        load[cupid.id] += 1

    skipped_self = 0
    for candidate in [c for c in candidates if c.id in remaining]:
        eligible = [(load[c.id], i, c) for i, c in enumerate(cupids) if c.id != candidate.id]
        if not eligible:
            skipped_self += 1
            continue
        _, _, chosen = min(eligible, key=lambda e: (e[0], e[1]))
        load[chosen.id] += 1
        plan.append((chosen, candidate, False))
    return plan, skipped_self


def assign_cupids(db, batch_number: int, partition: str, *, shortlist_size: int | None = None) -> dict[str, Any]:
    is_test = resolve_partition(partition)
    label = partition_label(is_test)
    get_batch(db, batch_number)

    if count_scores(db, batch_number, is_test) == 0:
        raise PreconditionFailedError(
            f"No compatibility scores for the {label} partition of batch {batch_number}",
            hint=f"run scoring for batch {batch_number} ({label}) first",
        )
    if count_pairings(db, batch_number, is_test) == 0:
        raise PreconditionFailedError(
            f"No matches for the {label} partition of batch {batch_number}",
            hint=f"run matching for batch {batch_number} ({label}) before assigning cupids",
        )

    report: dict[str, Any] = {
        "batch_number": batch_number,
        "partition": label,
        "assignments_created": 0,
        "preferred_assignments": 0,
        "skipped_no_scores": 0,
        "skipped_self": 0,
        "cupids": 0,
        "candidates": 0,
    }
    cupids = approved_cupids(db, is_test)
    report["cupids"] = len(cupids)
    if not cupids:
        report["message"] = f"No approved cupids in the {label} partition"
        return report

    already_assigned = set(
        db.scalars(select(CupidAssignment.candidate_id).where(CupidAssignment.batch_number == batch_number)).all()
    )
    candidates = [u for u in scored_candidates(db, batch_number, is_test) if u.id not in already_assigned]
    report["candidates"] = len(candidates)

    plan, skipped_self = _plan_assignments(cupids, candidates)
    report["skipped_self"] = skipped_self
    limit = shortlist_size or SHORTLIST_SIZE
    for cupid, candidate, preferred in plan:
        shortlist = build_shortlist(db, batch_number, candidate.id, is_test, limit=limit, exclude_ids={cupid.id})
        if not shortlist:
            logger.warning(f"Skipping candidate {candidate.id}: no usable scores in batch {batch_number}")
            report["skipped_no_scores"] += 1
            continue
        db.add(
            CupidAssignment(
                cupid_user_id=cupid.id,
                candidate_id=candidate.id,
                batch_number=batch_number,
                is_test=is_test,
                potential_matches=shortlist,
                rejected_matches=[],
                revealed_count=0,
            )
        )
        report["assignments_created"] += 1
        if preferred:
            report["preferred_assignments"] += 1
    db.flush()

    log_pipeline_event(
        db,
        batch_number,
        "cupids_assigned",
        {k: report[k] for k in ("assignments_created", "preferred_assignments", "skipped_no_scores", "cupids")},
        is_test=is_test,
    )
    logger.info(
        f"Assigned {report['assignments_created']} candidates across {len(cupids)} cupids "
        f"for batch {batch_number} ({label}); {report['skipped_no_scores']} skipped without scores"
    )
    return report


def refresh_shortlists(db, batch_number: int, partition: str, *, shortlist_size: int | None = None) -> dict[str, Any]:
    """Overwrite every assignment's shortlist; rejections, reveal progress and selections stay as they are."""
    is_test = resolve_partition(partition)
    label = partition_label(is_test)
    get_batch(db, batch_number)
    limit = shortlist_size or SHORTLIST_SIZE

    assignments = db.scalars(
        select(CupidAssignment)
        .where(CupidAssignment.batch_number == batch_number, CupidAssignment.is_test == is_test)
        .order_by(CupidAssignment.id)
    ).all()

    updated = 0
    skipped = 0
    for assignment in assignments:
        shortlist = build_shortlist(
            db,
            batch_number,
            assignment.candidate_id,
            is_test,
            limit=limit,
            exclude_ids={assignment.cupid_user_id},
        )
        if not shortlist:
            skipped += 1
            continue
        assignment.potential_matches = shortlist
        updated += 1
    db.flush()

    log_pipeline_event(
        db,
        batch_number,
        "shortlists_refreshed",
        {"assignments_updated": updated, "skipped_no_scores": skipped},
        is_test=is_test,
    )
    logger.info(f"Refreshed {updated} shortlists for batch {batch_number} ({label}); {skipped} skipped")
    return {
        "batch_number": batch_number,
        "partition": label,
        "assignments_updated": updated,
        "skipped_no_scores": skipped,
    }
