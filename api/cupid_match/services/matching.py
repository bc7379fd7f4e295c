from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator

import networkx as nx
from sqlalchemy import select

from ..config import MATCH_ALGO_MODE, MIN_SCORE, MUTUALITY_ALPHA
from ..errors import PreconditionFailedError, ValidationFailedError
from ..models import CompatibilityScore, Pairing
from .batches import advance_batch_status, count_pairings, count_scores, get_batch, refresh_batch_counters, utcnow
from .events import log_pipeline_event
from .partitions import partition_label, resolve_partition

logger = logging.getLogger(__name__)

MATCH_MODES = ("greedy", "max_weight")
_WEIGHT_SCALE = 1_000_000


@dataclass
class PairCandidate:
    user_id: str
    matched_user_id: str
    score_total: float
    forward_score: float
    backward_score: float


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return tuple(sorted((user_a, user_b)))


def mutual_score(forward: float, backward: float, alpha: float) -> float:
    """Blend both directions, leaning on the weaker one so lopsided pairs rank lower."""
    low = min(forward, backward)
    mean = (forward + backward) / 2.0
    return round(alpha * low + (1.0 - alpha) * mean, 6)


def build_pair_candidates(
    score_rows: list[dict[str, Any]],
    min_score: float,
    alpha: float = MUTUALITY_ALPHA,
) -> list[PairCandidate]:
    directed: dict[tuple[str, str], float] = {}
    for row in score_rows:
        source = str(row["user_id"])
        target = str(row["target_user_id"])
        if source == target:
            continue
        directed[(source, target)] = float(row["total_score"])

    candidates: list[PairCandidate] = []
    for (a, b), forward in sorted(directed.items()):
        if a >= b:
            continue
        backward = directed.get((b, a))
        if backward is None:
            continue
        weakest = min(forward, backward)
        if weakest <= 0 or weakest < min_score:
            continue
        candidates.append(
            PairCandidate(
                user_id=a,
                matched_user_id=b,
                score_total=mutual_score(forward, backward, alpha),
                forward_score=forward,
                backward_score=backward,
            )
        )
    return candidates


def greedy_one_to_one_match(pairs: list[PairCandidate], min_score: float = 0.0) -> list[PairCandidate]:
    matched: set[str] = set()
    assignments: list[PairCandidate] = []
    for pair in sorted(pairs, key=lambda p: (-p.score_total, p.user_id, p.matched_user_id)):
        if pair.score_total < min_score:
            continue
        if pair.user_id in matched or pair.matched_user_id in matched:
            continue
        matched.add(pair.user_id)
        matched.add(pair.matched_user_id)
        assignments.append(pair)
    return assignments


def max_weight_matching(pairs: list[PairCandidate]) -> list[PairCandidate]:
    """
    Globally optimal one-to-one matching over the eligible-pair graph.

    Uses Edmonds' blossom algorithm from networkx without forcing maximum
    cardinality, so a lower-scoring pair is never taken just to place one more
    user. Scores are scaled to integers so the solver works on exact weights.
    Edges are added in (user_id, matched_user_id) order to keep ties stable.
    """
    by_pair = {canonical_pair(p.user_id, p.matched_user_id): p for p in pairs}
    graph = nx.Graph()
    for key in sorted(by_pair):
        graph.add_edge(key[0], key[1], weight=int(round(by_pair[key].score_total * _WEIGHT_SCALE)))

    chosen = [by_pair[canonical_pair(a, b)] for a, b in nx.max_weight_matching(graph, maxcardinality=False)]
    chosen.sort(key=lambda p: (-p.score_total, p.user_id, p.matched_user_id))
    return chosen


def match_pairs(pairs: list[PairCandidate], mode: str = MATCH_ALGO_MODE) -> list[PairCandidate]:
    if mode not in MATCH_MODES:
        raise ValidationFailedError(f"Unknown matching mode {mode!r}", hint=f"use one of {list(MATCH_MODES)}")
    if mode == "greedy":
        return greedy_one_to_one_match(pairs)
    return max_weight_matching(pairs)


def explain_unmatched(
    user_ids: list[str],
    pairs: list[PairCandidate],
    chosen: list[PairCandidate],
) -> dict[str, str]:
    matched = {p.user_id for p in chosen} | {p.matched_user_id for p in chosen}
    has_candidates = {p.user_id for p in pairs} | {p.matched_user_id for p in pairs}
    out: dict[str, str] = {}
    for uid in sorted(user_ids):
        if uid in matched:
            continue
        out[uid] = "candidates_taken" if uid in has_candidates else "no_eligible_candidates"
    return out


_locks_guard = threading.Lock()
# (batch, is_test) -> [owning thread ident, hold depth]; entries are removed on final release.
_partition_holders: dict[tuple[int, bool], list[int]] = {}


@contextmanager
def partition_matching_lock(batch_number: int, is_test: bool) -> Iterator[None]:
    """Single writer per (batch, partition). Re-entrant for the holding thread."""
    key = (batch_number, is_test)
    me = threading.get_ident()
    with _locks_guard:
        holder = _partition_holders.get(key)
        busy = holder is not None and holder[0] != me
        if not busy:
            if holder is None:
                _partition_holders[key] = [me, 1]
            else:
                holder[1] += 1
    if busy:
        raise PreconditionFailedError(
            f"Matching already in progress for batch {batch_number} ({partition_label(is_test)})",
            hint="wait for the running matching pass to finish",
        )
    try:
        yield
    finally:
        with _locks_guard:
            holder = _partition_holders[key]
            holder[1] -= 1
            if holder[1] == 0:
                del _partition_holders[key]


def fetch_score_rows(db, batch_number: int, is_test: bool) -> list[dict[str, Any]]:
    rows = db.execute(
        select(CompatibilityScore.user_id, CompatibilityScore.target_user_id, CompatibilityScore.total_score)
        .where(CompatibilityScore.batch_number == batch_number, CompatibilityScore.is_test == is_test)
        .order_by(CompatibilityScore.user_id, CompatibilityScore.target_user_id)
    ).all()
    return [{"user_id": r[0], "target_user_id": r[1], "total_score": r[2]} for r in rows]


def run_matching(
    db,
    batch_number: int,
    partition: str,
    *,
    min_score: float | None = None,
    alpha: float | None = None,
    mode: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    is_test = resolve_partition(partition)
    label = partition_label(is_test)
    batch = get_batch(db, batch_number)

    with partition_matching_lock(batch_number, is_test):
        if count_scores(db, batch_number, is_test) == 0:
            raise PreconditionFailedError(
                f"No compatibility scores for the {label} partition of batch {batch_number}",
                hint=f"run scoring for batch {batch_number} ({label}) first",
            )

        report: dict[str, Any] = {
            "batch_number": batch_number,
            "partition": label,
            "total_users": 0,
            "pairs_created": 0,
        }
        existing = count_pairings(db, batch_number, is_test)
        if existing:
            report["message"] = f"Matches already exist for the {label} partition of batch {batch_number}"
            report["existing_pairs"] = existing
            return report

        batch.matching_started_at = now or utcnow()
        score_rows = fetch_score_rows(db, batch_number, is_test)
        user_ids = sorted({r["user_id"] for r in score_rows} | {r["target_user_id"] for r in score_rows})
        pairs = build_pair_candidates(
            score_rows,
            min_score=MIN_SCORE if min_score is None else min_score,
            alpha=MUTUALITY_ALPHA if alpha is None else alpha,
        )
        chosen = match_pairs(pairs, mode=mode or MATCH_ALGO_MODE)

        for p in chosen:
            db.add(
                Pairing(
                    batch_number=batch_number,
                    user_a_id=p.user_id,
                    user_b_id=p.matched_user_id,
                    provenance="algorithm",
                    status="accepted",
                    score=p.score_total,
                    is_test=is_test,
                )
            )
        db.flush()

        batch.matching_completed_at = now or utcnow()
        advance_batch_status(batch, "complete_matching")
        refresh_batch_counters(db, batch)

        unmatched = explain_unmatched(user_ids, pairs, chosen)
        report.update(
            {
                "total_users": len(user_ids),
                "pairs_created": len(chosen),
                "eligible_pairs": len(pairs),
                "unmatched_users": len(unmatched),
                "unmatched": unmatched,
            }
        )
        log_pipeline_event(
            db,
            batch_number,
            "matching_completed",
            {"total_users": len(user_ids), "pairs_created": len(chosen), "unmatched_users": len(unmatched)},
            is_test=is_test,
        )
        logger.info(
            f"Matched batch {batch_number} ({label}): {len(chosen)} pairs from {len(pairs)} eligible, "
            f"{len(unmatched)} of {len(user_ids)} users unmatched"
        )
        return report
