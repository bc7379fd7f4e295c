import pytest
from sqlalchemy import select

from cupid_match.errors import PreconditionFailedError, ValidationFailedError
from cupid_match.models import CupidAssignment, MatchingBatch, Pairing
from cupid_match.services.cupid_assignment import assign_cupids
from cupid_match.services.curation import promote_selections, select_match
from cupid_match.services.matching import run_matching
from cupid_match.services.reveal import reveal_matches
from cupid_match.services.scoring import run_scoring


@pytest.fixture
def matched(db, batch, four_users, cupid):
    run_scoring(db, 1, "test")
    run_matching(db, 1, "test")
    assign_cupids(db, 1, "test")
    db.flush()
    return four_users


def _assignment(db, candidate_id):
    return db.scalars(select(CupidAssignment).where(CupidAssignment.candidate_id == candidate_id)).one()


def test_reveal_requires_matches(db, batch, four_users):
    run_scoring(db, 1, "test")
    with pytest.raises(PreconditionFailedError):
        reveal_matches(db, 1, "test")


def test_unpromoted_selection_blocks_reveal(db, matched, cupid):
    a = _assignment(db, matched["w1"].id)
    select_match(db, a.id, cupid.id, matched["m2"].id)
    with pytest.raises(PreconditionFailedError) as exc:
        reveal_matches(db, 1, "test")
    assert "promote" in exc.value.hint
    assert db.scalars(select(Pairing).where(Pairing.revealed_at.is_not(None))).all() == []


def test_reveal_after_promotion(db, matched, cupid):
    a = _assignment(db, matched["w1"].id)
    select_match(db, a.id, cupid.id, matched["m2"].id)
    promote_selections(db, 1, "test")

    report = reveal_matches(db, 1, "test")
    assert report["matches_revealed"] == 3
    assert all(p.revealed_at is not None for p in db.scalars(select(Pairing)).all())
    b = db.get(MatchingBatch, 1)
    assert b.status == "revealed"
    assert b.revealed_at is not None

    again = reveal_matches(db, 1, "test")
    assert again["matches_revealed"] == 0
    assert "already revealed" in again["message"]


def test_reveal_without_any_selection(db, matched):
    report = reveal_matches(db, 1, "test")
    assert report["matches_revealed"] == 2
    assert report["auto_selected"] == 0


def test_skip_curation_is_test_only(db, matched):
    with pytest.raises(ValidationFailedError):
        reveal_matches(db, 1, "production", skip_curation=True)


def test_skip_curation_auto_selects_and_promotes(db, matched):
    report = reveal_matches(db, 1, "test", skip_curation=True)
    assert report["auto_selected"] == 4
    assignments = db.scalars(select(CupidAssignment)).all()
    assert all(a.selected_match_id and a.promoted_at for a in assignments)
    pairings = db.scalars(select(Pairing)).all()
    assert report["matches_revealed"] == len(pairings)
    assert all(p.revealed_at is not None for p in pairings)


def test_partitions_reveal_independently(db, matched):
    reveal_matches(db, 1, "test")
    with pytest.raises(PreconditionFailedError):
        reveal_matches(db, 1, "production")
