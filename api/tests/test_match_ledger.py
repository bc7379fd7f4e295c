import pytest

from cupid_match.errors import ForbiddenError, NotFoundError, PreconditionFailedError, ValidationFailedError
from cupid_match.models import Pairing
from cupid_match.services.batches import utcnow
from cupid_match.services.match_ledger import (
    directional_views,
    find_pairing,
    list_match_rows,
    list_matches_for_user,
    respond_to_match,
)


def _pairing(db, a, b, *, provenance="algorithm", sender=None, status="accepted", revealed=True, is_test=True):
    user_a, user_b = sorted((a, b))
    p = Pairing(
        batch_number=1,
        user_a_id=user_a,
        user_b_id=user_b,
        provenance=provenance,
        sender_id=sender,
        score=75.0,
        status=status,
        is_test=is_test,
        revealed_at=utcnow() if revealed else None,
    )
    db.add(p)
    db.flush()
    return p


def test_algorithm_pairing_reads_the_same_from_both_sides(db, batch):
    p = _pairing(db, "u1", "u2")
    views = directional_views(p)
    assert [v["user_id"] for v in views] == ["u1", "u2"]
    assert [v["target_user_id"] for v in views] == ["u2", "u1"]
    assert {v["match_type"] for v in views} == {"algorithm"}
    assert all(v["pairing_id"] == p.id for v in views)


def test_cupid_pairing_is_sent_and_received(db, batch):
    p = _pairing(db, "u2", "u1", provenance="cupid", sender="u2", status="pending")
    by_user = {v["user_id"]: v for v in directional_views(p)}
    assert by_user["u2"]["match_type"] == "cupid_sent"
    assert by_user["u1"]["match_type"] == "cupid_received"


def test_find_pairing_ignores_argument_order(db, batch):
    p = _pairing(db, "u1", "u2")
    assert find_pairing(db, 1, "u2", "u1").id == p.id
    assert find_pairing(db, 1, "u1", "u3") is None


def test_list_match_rows_has_two_rows_per_pairing(db, batch):
    _pairing(db, "u1", "u2")
    _pairing(db, "u3", "u4", is_test=False)
    assert len(list_match_rows(db, 1)) == 4
    assert len(list_match_rows(db, 1, is_test=True)) == 2


def test_user_only_sees_revealed_matches(db, batch):
    _pairing(db, "u1", "u2", revealed=False)
    _pairing(db, "u1", "u3", provenance="cupid", sender="u3", status="pending")
    rows = list_matches_for_user(db, 1, "u1")
    assert [r["target_user_id"] for r in rows] == ["u3"]
    assert rows[0]["match_type"] == "cupid_received"
    assert len(list_matches_for_user(db, 1, "u1", revealed_only=False)) == 2


def test_receiver_accepts_cupid_match(db, batch):
    p = _pairing(db, "u1", "u2", provenance="cupid", sender="u1", status="pending")
    out = respond_to_match(db, p.id, "u2", "accepted")
    assert out["match"]["status"] == "accepted"
    assert p.responded_at is not None
    # Same answer twice is harmless.
    assert respond_to_match(db, p.id, "u2", "accepted")["success"] is True
    with pytest.raises(PreconditionFailedError):
        respond_to_match(db, p.id, "u2", "declined")


def test_receiver_declines_cupid_match(db, batch):
    p = _pairing(db, "u1", "u2", provenance="cupid", sender="u1", status="pending")
    respond_to_match(db, p.id, "u2", "declined")
    assert p.status == "declined"


def test_respond_guards(db, batch):
    cupid_p = _pairing(db, "u1", "u2", provenance="cupid", sender="u1", status="pending")
    algo_p = _pairing(db, "u3", "u4")
    hidden = _pairing(db, "u5", "u6", provenance="cupid", sender="u5", status="pending", revealed=False)

    with pytest.raises(NotFoundError):
        respond_to_match(db, "missing", "u2", "accepted")
    with pytest.raises(ForbiddenError):
        respond_to_match(db, cupid_p.id, "u9", "accepted")
    with pytest.raises(ValidationFailedError):
        respond_to_match(db, cupid_p.id, "u1", "accepted")
    with pytest.raises(ValidationFailedError):
        respond_to_match(db, algo_p.id, "u3", "declined")
    with pytest.raises(PreconditionFailedError):
        respond_to_match(db, hidden.id, "u6", "accepted")
    with pytest.raises(ValidationFailedError):
        respond_to_match(db, cupid_p.id, "u2", "maybe")
