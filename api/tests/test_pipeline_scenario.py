import pytest

import cupid_match.main as m
from cupid_match.errors import PreconditionFailedError


@pytest.fixture
def pipeline(session_factory, monkeypatch):
    monkeypatch.setattr(m, "SessionLocal", session_factory)
    return m


def test_four_user_test_batch(pipeline, db, four_users, cupid):
    db.commit()

    pipeline.repo_create_batch()
    scoring = pipeline.repo_run_scoring(1, "test")
    assert scoring["scores_written"] == 12

    matching = pipeline.repo_run_matching(1, "test")
    rows = pipeline.repo_list_match_rows(1, "test")
    assert matching["pairs_created"] * 2 == len(rows)
    assert len(rows) <= 4
    assert all(r["match_type"] == "algorithm" for r in rows)
    assert all(r["user_id"] != r["target_user_id"] for r in rows)

    assign = pipeline.repo_assign_cupids(1, "test")
    assert assign["assignments_created"] == 4

    dash = pipeline.repo_cupid_dashboard(1, cupid.id)
    entry = dash["assignments"][0]
    target = entry["selectable_matches"][0]["user_id"]
    first = pipeline.repo_reject_candidate(entry["assignment_id"], cupid.id, target)
    second = pipeline.repo_reject_candidate(entry["assignment_id"], cupid.id, target)
    assert first["rejected_matches"] == [target]
    assert second["success"] is True
    assert second["rejected_matches"] == [target]

    status = pipeline.repo_batch_status(1)
    assert status["status"] == "matched"
    assert status["partitions"]["test"]["assignments"] == 4


def test_failed_phase_rolls_back(pipeline, db, four_users):
    db.commit()
    pipeline.repo_create_batch()
    with pytest.raises(PreconditionFailedError):
        pipeline.repo_run_matching(1, "test")
    with pytest.raises(PreconditionFailedError):
        pipeline.repo_create_batch()
    assert pipeline.repo_get_current_batch()["status"] == "pending"
