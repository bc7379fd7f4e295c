from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select

from ..config import DEFAULT_SCORING_CONFIG, SCORING_WORKERS
from ..errors import PreconditionFailedError, ValidationFailedError
from ..models import CompatibilityScore, QuestionnaireResponse, User
from ..questions import QuestionSchema, QuestionSpec, get_question_schema
from .batches import advance_batch_status, count_pairings, count_scores, get_batch, refresh_batch_counters, utcnow
from .events import log_pipeline_event
from .normalizer import (
    PREFER_NOT_TO_ANSWER,
    AnyPreference,
    Answer,
    DifferentPreference,
    LessPreference,
    MorePreference,
    MultiSelectAnswer,
    NormalizedResponse,
    OneOfPreference,
    QuestionEntry,
    RangePreference,
    SamePreference,
    ScaleAnswer,
    SimilarPreference,
    SingleSelectAnswer,
    normalize_response,
)
from .partitions import partition_label, resolve_partition

logger = logging.getLogger(__name__)


@dataclass
class ScoreResult:
    total_score: float
    breakdown: dict[str, Any]
    vetoed: bool


def _closeness(a: float, b: float, span: float) -> float:
    if span <= 0:
        return 1.0 if a == b else 0.0
    return max(0.0, 1.0 - abs(a - b) / span)


def _jaccard(a: tuple[str, ...], b: tuple[str, ...]) -> float:
    union = set(a) | set(b)
    if not union:
        return 1.0
    return len(set(a) & set(b)) / len(union)


def evaluate_question(
    spec: QuestionSpec,
    own: QuestionEntry,
    other: Answer,
    cfg: dict[str, Any],
) -> tuple[float, bool]:
    """Return ``(satisfaction, compatible)`` for how ``other`` meets ``own.preference``."""
    pref = own.preference
    mine = own.answer

    if isinstance(other, SingleSelectAnswer) and other.value == PREFER_NOT_TO_ANSWER:
        return 0.0, False

    if isinstance(pref, OneOfPreference):
        accepted = set(pref.values)
        if isinstance(other, SingleSelectAnswer):
            ok = other.value in accepted
            return (1.0 if ok else 0.0), ok
        if isinstance(other, MultiSelectAnswer):
            if not other.values:
                return 0.0, False
            overlap = accepted & set(other.values)
            return len(overlap) / len(set(other.values)), bool(overlap)
        return 0.0, False

    if isinstance(pref, (SamePreference, SimilarPreference, DifferentPreference)):
        wants_different = isinstance(pref, DifferentPreference)
        if isinstance(mine, SingleSelectAnswer) and isinstance(other, SingleSelectAnswer):
            equal = mine.value == other.value
            if wants_different:
                return (0.0 if equal else 1.0), not equal
            return (1.0 if equal else 0.0), equal

        if isinstance(mine, MultiSelectAnswer) and isinstance(other, MultiSelectAnswer):
            j = _jaccard(mine.values, other.values)
            if wants_different:
                return 1.0 - j, j < 1.0
            if isinstance(pref, SamePreference):
                return j, j == 1.0
            return j, j >= 0.5

        if isinstance(mine, ScaleAnswer) and isinstance(other, ScaleAnswer):
            diff = abs(mine.value - other.value)
            closeness = _closeness(mine.value, other.value, spec.span)
            tolerance = spec.tolerance if spec.tolerance is not None else float(cfg["DEFAULT_SCALE_TOLERANCE"])
            if wants_different:
                return 1.0 - closeness, diff > tolerance
            if isinstance(pref, SamePreference):
                return closeness, diff == 0
            return (1.0 if diff <= tolerance else closeness), diff <= tolerance

        return 0.0, False

    if isinstance(pref, (MorePreference, LessPreference)):
        if not (isinstance(mine, ScaleAnswer) and isinstance(other, ScaleAnswer)):
            return 0.0, False
        delta = other.value - mine.value
        if isinstance(pref, LessPreference):
            delta = -delta
        if delta > 0:
            return 1.0, True
        if delta == 0:
            return float(cfg["DIRECTIONAL_EQUAL"]), False
        return float(cfg["DIRECTIONAL_CONFLICT"]) * _closeness(mine.value, other.value, spec.span), False

    if isinstance(pref, RangePreference) and isinstance(other, ScaleAnswer):
        value = other.value
        if pref.min <= value <= pref.max:
            return 1.0, True
        distance = pref.min - value if value < pref.min else value - pref.max
        span = spec.span or 1.0
        return max(0.0, 1.0 - distance / span), False

    return 0.0, False


def score_pair(
    source: NormalizedResponse,
    target: NormalizedResponse,
    schema: QuestionSchema,
    cfg: dict[str, Any] | None = None,
) -> ScoreResult:
    """
    Directional compatibility of ``source`` with ``target`` on a 0-100 scale.

    Only questions answered by both sides and known to the schema count.
    A question is skipped when the source has no preference ("doesn't
    matter") or gives it zero weight, so it stays out of the denominator.

    A dealbreaker (flagged by the source, or a ``hard_filter`` question the
    source stated a preference on) that the target's answer fails vetoes
    the pair: the total is floored to 0.0 and the question is listed in
    ``dealbreakers_violated``.
    """
    cfg = {**DEFAULT_SCORING_CONFIG, **(cfg or {})}
    specs = schema.by_id()

    weighted = 0.0
    weight_total = 0.0
    questions: dict[str, dict[str, float]] = {}
    violated: list[str] = []

    for question_id in sorted(set(source.entries) & set(target.entries)):
        spec = specs.get(question_id)
        if spec is None:
            continue
        own = source.entries[question_id]
        if own.preference is None or isinstance(own.preference, AnyPreference):
            continue
        gating = own.is_dealbreaker or spec.hard_filter
        weight = float(own.importance)
        if weight <= 0 and not gating:
            continue

        satisfaction, compatible = evaluate_question(spec, own, target.entries[question_id].answer, cfg)
        if gating and not compatible:
            violated.append(question_id)
        if weight > 0:
            weighted += satisfaction * weight
            weight_total += weight
            questions[question_id] = {"satisfaction": round(satisfaction, 6), "weight": weight}

    vetoed = bool(violated)
    if vetoed or weight_total <= 0:
        total = 0.0
    else:
        total = round(100.0 * weighted / weight_total, 6)

    return ScoreResult(
        total_score=total,
        breakdown={
            "questions": questions,
            "questions_scored": len(questions),
            "weight_total": round(weight_total, 6),
            "dealbreakers_violated": violated,
            "vetoed": vetoed,
        },
        vetoed=vetoed,
    )


def fetch_scoring_inputs(
    db,
    is_test: bool,
    schema: QuestionSchema,
    cfg: dict[str, Any] | None = None,
) -> tuple[list[NormalizedResponse], list[dict[str, str]]]:
    rows = db.execute(
        select(User.id, QuestionnaireResponse.answers, QuestionnaireResponse.schema_version)
        .join(QuestionnaireResponse, QuestionnaireResponse.user_id == User.id)
        .where(
            User.is_test_user == is_test,
            User.is_being_matched.is_(True),
            QuestionnaireResponse.submitted_at.is_not(None),
        )
        .order_by(User.id)
    ).all()

    responses: list[NormalizedResponse] = []
    skipped: list[dict[str, str]] = []
    for user_id, answers, schema_version in rows:
        try:
            responses.append(
                normalize_response(str(user_id), answers, schema, schema_version=schema_version, cfg=cfg)
            )
        except ValidationFailedError as exc:
            logger.warning(f"Skipping user {user_id} in scoring: {exc.message}")
            skipped.append({"user_id": str(user_id), "reason": exc.message})
    return responses, skipped


def _score_source(
    source: NormalizedResponse,
    responses: list[NormalizedResponse],
    schema: QuestionSchema,
    cfg: dict[str, Any] | None,
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for target in responses:
        if target.user_id == source.user_id:
            continue
        result = score_pair(source, target, schema, cfg)
        rows.append(
            {
                "user_id": source.user_id,
                "target_user_id": target.user_id,
                "total_score": result.total_score,
                "breakdown": result.breakdown,
            }
        )
    return rows


def compute_score_rows(
    responses: list[NormalizedResponse],
    schema: QuestionSchema,
    cfg: dict[str, Any] | None = None,
    workers: int = 1,
) -> list[dict[str, Any]]:
    """Score every ordered pair. Sources are independent, so they shard across threads."""
    if workers > 1 and len(responses) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            shards = list(pool.map(lambda s: _score_source(s, responses, schema, cfg), responses))
    else:
        shards = [_score_source(s, responses, schema, cfg) for s in responses]
    return [row for shard in shards for row in shard]


def upsert_scores(db, batch_number: int, is_test: bool, rows: list[dict[str, Any]]) -> int:
    source_ids = sorted({r["user_id"] for r in rows})
    existing: dict[tuple[str, str], CompatibilityScore] = {}
    if source_ids:
        for score in db.scalars(
            select(CompatibilityScore).where(
                CompatibilityScore.batch_number == batch_number,
                CompatibilityScore.user_id.in_(source_ids),
            )
        ):
            existing[(score.user_id, score.target_user_id)] = score

    for row in rows:
        current = existing.get((row["user_id"], row["target_user_id"]))
        if current is None:
            db.add(
                CompatibilityScore(
                    batch_number=batch_number,
                    user_id=row["user_id"],
                    target_user_id=row["target_user_id"],
                    total_score=row["total_score"],
                    breakdown=row["breakdown"],
                    is_test=is_test,
                )
            )
        else:
            current.total_score = row["total_score"]
            current.breakdown = row["breakdown"]
            current.is_test = is_test
    db.flush()
    return len(rows)


def run_scoring(
    db,
    batch_number: int,
    partition: str,
    *,
    schema: QuestionSchema | None = None,
    cfg: dict[str, Any] | None = None,
    workers: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    is_test = resolve_partition(partition)
    label = partition_label(is_test)
    batch = get_batch(db, batch_number)
    report: dict[str, Any] = {
        "batch_number": batch_number,
        "partition": label,
        "scores_written": 0,
        "users_scored": 0,
        "users_skipped": 0,
    }

    if count_pairings(db, batch_number, is_test, revealed=True):
        raise PreconditionFailedError(
            f"The {label} partition of batch {batch_number} has already been revealed",
            hint=f"reset batch {batch_number} or open batch {batch_number + 1}",
        )

    existing = count_scores(db, batch_number, is_test)
    if existing:
        report["message"] = f"Scores already exist for the {label} partition of batch {batch_number}"
        report["existing_scores"] = existing
        return report

    schema = schema or get_question_schema()
    responses, skipped = fetch_scoring_inputs(db, is_test, schema, cfg)

    advance_batch_status(batch, "start_scoring")
    if batch.scoring_started_at is None:
        batch.scoring_started_at = now or utcnow()

    rows = compute_score_rows(responses, schema, cfg, workers or SCORING_WORKERS)
    written = upsert_scores(db, batch_number, is_test, rows)

    batch.scoring_completed_at = now or utcnow()
    refresh_batch_counters(db, batch)

    report.update(
        {
            "scores_written": written,
            "users_scored": len(responses),
            "users_skipped": len(skipped),
            "skipped": skipped,
        }
    )
    log_pipeline_event(
        db,
        batch_number,
        "scoring_completed",
        {"scores_written": written, "users_scored": len(responses), "users_skipped": len(skipped)},
        is_test=is_test,
    )
    logger.info(
        f"Scored batch {batch_number} ({label}): {len(responses)} users, {written} rows, {len(skipped)} skipped"
    )
    return report
