from __future__ import annotations

import logging
import random
from typing import Any

from sqlalchemy import delete, select

from ..models import QuestionnaireResponse, User
from ..questions import QuestionSchema, QuestionSpec
from .batches import utcnow

logger = logging.getLogger(__name__)

SEED_EMAIL_DOMAIN = "seed.cupidmatch.local"
_IMPORTANCE_LEVELS = ["not_important", "somewhat_important", "important", "very_important"]


def _random_entry(rng: random.Random, q: QuestionSpec, gender: str) -> dict[str, Any]:
    if q.id == "gender":
        seeking = "man" if gender == "woman" else "woman"
        return {"answer": gender, "preference": {"kind": "one_of", "values": [seeking]}, "importance": "very_important"}

    if q.kind == "single_select":
        pick = rng.random()
        if pick < 0.4:
            preference: Any = "same"
        elif pick < 0.7:
            preference = {"kind": "one_of", "values": rng.sample(q.options, k=rng.randint(1, len(q.options)))}
        else:
            preference = None
        return {
            "answer": rng.choice(q.options),
            "preference": preference,
            "importance": rng.choice(_IMPORTANCE_LEVELS),
            "dealbreaker": rng.random() < 0.05,
        }

    if q.kind == "multi_select":
        return {
            "answer": rng.sample(q.options, k=rng.randint(1, min(3, len(q.options)))),
            "preference": rng.choice(["similar", "any"]),
            "importance": rng.choice(_IMPORTANCE_LEVELS),
        }

    if q.kind == "scale":
        value = rng.randint(int(q.min), int(q.max)) if q.id != "age" else rng.randint(21, 35)
        if q.id == "age":
            preference = {"kind": "range", "min": max(q.min, value - 5), "max": min(q.max, value + 5)}
        else:
            preference = rng.choice(["similar", "same", "more", "less", "any"])
        return {"answer": value, "preference": preference, "importance": rng.choice(_IMPORTANCE_LEVELS)}

    return {"answer": f"seeded answer for {q.id}"}


def build_random_answers(rng: random.Random, schema: QuestionSchema, gender: str) -> dict[str, Any]:
    return {q.id: _random_entry(rng, q, gender) for q in schema.questions}


def seed_test_users(
    db,
    schema: QuestionSchema,
    n_users: int = 20,
    n_cupids: int = 2,
    seed: int = 42,
    reset: bool = False,
) -> dict[str, Any]:
    """Create test-partition users with submitted responses, plus approved test cupids."""
    rng = random.Random(seed)
    deleted = 0
    if reset:
        seeded_ids = list(db.scalars(select(User.id).where(User.email.like(f"%@{SEED_EMAIL_DOMAIN}"))).all())
        if seeded_ids:
            db.execute(delete(QuestionnaireResponse).where(QuestionnaireResponse.user_id.in_(seeded_ids)))
            deleted = db.execute(delete(User).where(User.id.in_(seeded_ids))).rowcount or 0

    now = utcnow()
    created_users = 0
    for i in range(n_users):
        email = f"candidate{i:03d}@{SEED_EMAIL_DOMAIN}"
        if db.scalars(select(User.id).where(User.email == email)).first():
            continue
        gender = "woman" if i % 2 == 0 else "man"
        user = User(email=email, first_name=f"Candidate {i}", is_test_user=True, is_being_matched=True)
        db.add(user)
        db.flush()
        db.add(
            QuestionnaireResponse(
                user_id=user.id,
                schema_version=schema.version,
                answers=build_random_answers(rng, schema, gender),
                submitted_at=now,
            )
        )
        created_users += 1

    created_cupids = 0
    for i in range(n_cupids):
        email = f"cupid{i:02d}@{SEED_EMAIL_DOMAIN}"
        if db.scalars(select(User.id).where(User.email == email)).first():
            continue
        db.add(
            User(
                email=email,
                first_name=f"Cupid {i}",
                is_test_user=True,
                is_cupid=True,
                cupid_approved=True,
                is_being_matched=False,
            )
        )
        created_cupids += 1
    db.flush()

    summary = {"users_created": created_users, "cupids_created": created_cupids, "users_deleted": int(deleted)}
    logger.info(f"Seeded test partition: {summary}")
    return summary
