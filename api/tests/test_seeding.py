import random

from sqlalchemy import func, select

from cupid_match.models import User
from cupid_match.services.normalizer import normalize_response
from cupid_match.services.scoring import run_scoring
from cupid_match.services.seeding import build_random_answers, seed_test_users


def test_random_answers_always_normalize(schema):
    rng = random.Random(7)
    for i in range(25):
        raw = build_random_answers(rng, schema, "woman" if i % 2 else "man")
        resp = normalize_response(f"u{i}", raw, schema, schema_version=schema.version)
        assert set(resp.entries) == {q.id for q in schema.questions}


def test_seed_is_repeatable_and_resettable(db, schema, batch):
    first = seed_test_users(db, schema, n_users=6, n_cupids=2)
    assert first == {"users_created": 6, "cupids_created": 2, "users_deleted": 0}
    assert seed_test_users(db, schema, n_users=6, n_cupids=2)["users_created"] == 0

    report = run_scoring(db, 1, "test")
    assert report["users_scored"] == 6
    assert report["users_skipped"] == 0

    again = seed_test_users(db, schema, n_users=4, n_cupids=1, reset=True)
    assert again["users_deleted"] == 8
    assert db.scalar(select(func.count()).select_from(User)) == 5
