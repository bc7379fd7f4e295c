import itertools
import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest

from cupid_match.database import Base, build_engine, build_session_factory
from cupid_match.models import QuestionnaireResponse, User
from cupid_match.questions import get_question_schema
from cupid_match.services.batches import create_batch, utcnow


def pytest_configure(config):
    config.addinivalue_line("markers", "api: tests that drive the FastAPI app through TestClient")


def answers_for(
    gender: str,
    seeking: list[str],
    *,
    social: int = 3,
    interests: tuple[str, ...] = ("music", "travel"),
    goal: str = "long_term",
    goal_dealbreaker: bool = False,
) -> dict:
    return {
        "gender": {"answer": gender, "preference": {"kind": "one_of", "values": seeking}, "importance": "very_important"},
        "social_energy": {"answer": social, "preference": "similar", "importance": "important"},
        "interests": {"answer": list(interests), "preference": "similar", "importance": "somewhat_important"},
        "relationship_goal": {
            "answer": goal,
            "preference": "same",
            "importance": "important",
            "dealbreaker": goal_dealbreaker,
        },
        "about_me": {"answer": "I like long walks."},
    }


@pytest.fixture
def engine():
    eng = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def schema():
    return get_question_schema()


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(
        email: str | None = None,
        *,
        user_id: str | None = None,
        answers: dict | None = None,
        is_test: bool = True,
        cupid: bool = False,
        matched: bool = True,
        preferred: str | None = None,
        admin_role: str | None = None,
        submitted: bool = True,
        schema_version: int = 1,
    ) -> User:
        n = next(counter)
        user = User(
            email=email or f"user{n}@example.test",
            first_name=f"User {n}",
            is_test_user=is_test,
            is_cupid=cupid,
            cupid_approved=cupid,
            is_being_matched=matched,
            preferred_candidate_email=preferred,
            admin_role=admin_role,
        )
        if user_id:
            user.id = user_id
        db.add(user)
        db.flush()
        if answers is not None:
            db.add(
                QuestionnaireResponse(
                    user_id=user.id,
                    schema_version=schema_version,
                    answers=answers,
                    submitted_at=utcnow() if submitted else None,
                )
            )
            db.flush()
        return user

    return _make


@pytest.fixture
def batch(db):
    b = create_batch(db)
    db.commit()
    return b


@pytest.fixture
def four_users(make_user):
    users = {
        "w1": make_user("w1@example.test", answers=answers_for("woman", ["man"], social=3)),
        "w2": make_user("w2@example.test", answers=answers_for("woman", ["man"], social=5)),
        "m1": make_user("m1@example.test", answers=answers_for("man", ["woman"], social=3)),
        "m2": make_user("m2@example.test", answers=answers_for("man", ["woman"], social=5)),
    }
    return users


@pytest.fixture
def cupid(make_user):
    return make_user("cupid@example.test", cupid=True, matched=False)
