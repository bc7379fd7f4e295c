from typing import Any

from ..models import PipelineEvent


def log_pipeline_event(
    db,
    batch_number: int | None,
    event_type: str,
    payload: dict[str, Any] | None = None,
    user_id: str | None = None,
    is_test: bool = False,
) -> PipelineEvent:
    event = PipelineEvent(
        batch_number=batch_number,
        user_id=user_id,
        event_type=event_type,
        is_test=is_test,
        payload=dict(payload or {}),
    )
    db.add(event)
    return event
