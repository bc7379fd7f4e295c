import pytest
from sqlalchemy import select

from cupid_match.errors import NotFoundError, PreconditionFailedError, ValidationFailedError
from cupid_match.models import CompatibilityScore, CupidAssignment, MatchingBatch, Pairing, PipelineEvent
from cupid_match.services.batches import (
    batch_status,
    create_batch,
    get_batch,
    get_current_batch,
    reset_batch,
)
from cupid_match.services.cupid_assignment import assign_cupids
from cupid_match.services.curation import promote_selections, select_match
from cupid_match.services.matching import run_matching
from cupid_match.services.reveal import reveal_matches
from cupid_match.services.scoring import run_scoring


def test_first_batch_is_number_one(db):
    assert get_current_batch(db) is None
    b = create_batch(db)
    assert b.batch_number == 1
    assert b.status == "pending"
    assert (b.total_users, b.total_pairs, b.algorithm_matches, b.cupid_matches) == (0, 0, 0, 0)
    db.flush()
    events = db.scalars(select(PipelineEvent).where(PipelineEvent.event_type == "batch_created")).all()
    assert [e.batch_number for e in events] == [1]


def test_next_batch_waits_for_scoring(db, batch, four_users):
    with pytest.raises(PreconditionFailedError):
        create_batch(db)
    run_scoring(db, 1, "test")
    with pytest.raises(ValidationFailedError):
        create_batch(db, 3)
    assert create_batch(db, 2).batch_number == 2
    assert get_current_batch(db).batch_number == 2


def test_get_batch_unknown(db):
    with pytest.raises(NotFoundError):
        get_batch(db, 4)


def test_batch_status_counts_each_partition(db, batch, four_users, cupid):
    run_scoring(db, 1, "test")
    run_matching(db, 1, "test")
    assign_cupids(db, 1, "test")
    db.flush()

    status = batch_status(db, 1)
    assert status["status"] == "matched"
    assert status["total_users"] == 4
    assert status["algorithm_matches"] == 2
    test_counts = status["partitions"]["test"]
    assert test_counts["scores"] == 12
    assert test_counts["algorithm_matches"] == 2
    assert test_counts["assignments"] == 4
    assert test_counts["selections"] == 0
    assert status["partitions"]["production"]["scores"] == 0


def test_reset_wipes_batch_and_later_batches(db, batch, four_users, cupid):
    run_scoring(db, 1, "test")
    run_matching(db, 1, "test")
    assign_cupids(db, 1, "test")
    w1 = db.scalars(select(CupidAssignment).where(CupidAssignment.candidate_id == four_users["w1"].id)).one()
    select_match(db, w1.id, cupid.id, four_users["m2"].id)
    promote_selections(db, 1, "test")
    reveal_matches(db, 1, "test")
    create_batch(db, 2)
    run_scoring(db, 2, "test")
    db.commit()

    report = reset_batch(db, 1)
    db.commit()

    assert report == {
        "batch_number": 1,
        "status": "pending",
        "scores_deleted": 24,
        "matches_deleted": 3,
        "assignments_deleted": 4,
        "batches_deleted": 1,
    }
    assert db.scalars(select(CompatibilityScore)).all() == []
    assert db.scalars(select(Pairing)).all() == []
    assert db.scalars(select(CupidAssignment)).all() == []
    assert db.scalars(select(MatchingBatch.batch_number)).all() == [1]

    b = get_batch(db, 1)
    assert b.status == "pending"
    assert (b.total_users, b.total_pairs, b.algorithm_matches, b.cupid_matches) == (0, 0, 0, 0)
    assert b.scoring_started_at is None
    assert b.revealed_at is None
    assert db.scalars(select(PipelineEvent).where(PipelineEvent.event_type == "batch_reset")).one()

    # The reset batch can be run again from the top.
    assert run_scoring(db, 1, "test")["scores_written"] == 12
