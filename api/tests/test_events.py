from cupid_match.models import PipelineEvent
from cupid_match.services.events import log_pipeline_event


class FakeDB:
    def __init__(self):
        self.added = []

    def add(self, obj):
        self.added.append(obj)


def test_log_pipeline_event_adds_expected_row():
    db = FakeDB()
    payload = {"scores_written": 12}
    event = log_pipeline_event(
        db=db,
        batch_number=3,
        event_type="scoring_completed",
        payload=payload,
        user_id="00000000-0000-0000-0000-000000000123",
        is_test=True,
    )
    assert db.added == [event]
    assert isinstance(event, PipelineEvent)
    assert event.batch_number == 3
    assert event.event_type == "scoring_completed"
    assert event.user_id == "00000000-0000-0000-0000-000000000123"
    assert event.is_test is True
    assert event.payload == {"scores_written": 12}
    payload["scores_written"] = 0
    assert event.payload["scores_written"] == 12


def test_log_pipeline_event_defaults_to_empty_payload():
    db = FakeDB()
    event = log_pipeline_event(db, None, "batch_created")
    assert event.payload == {}
    assert event.user_id is None
    assert event.is_test is False
