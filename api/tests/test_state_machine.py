from cupid_match.services.state_machine import transition_batch_status, transition_pairing_status


def test_batch_transitions_move_forward_only():
    assert transition_batch_status("pending", "start_scoring") == "scoring"
    assert transition_batch_status("scoring", "complete_matching") == "matched"
    assert transition_batch_status("pending", "complete_matching") == "matched"
    assert transition_batch_status("matched", "reveal") == "revealed"

    assert transition_batch_status("matched", "start_scoring") == "matched"
    assert transition_batch_status("revealed", "complete_matching") == "revealed"
    assert transition_batch_status("scoring", "reveal") == "scoring"
    assert transition_batch_status("revealed", "unknown") == "revealed"


def test_reset_returns_any_status_to_pending():
    for status in ("pending", "scoring", "matched", "revealed"):
        assert transition_batch_status(status, "reset") == "pending"


def test_pairing_transitions():
    assert transition_pairing_status("pending", "accept") == "accepted"
    assert transition_pairing_status("pending", "decline") == "declined"
    assert transition_pairing_status("accepted", "decline") == "accepted"
    assert transition_pairing_status("declined", "accept") == "declined"
    assert transition_pairing_status("accepted", "promote") == "pending"
    assert transition_pairing_status("pending", "promote") == "pending"
