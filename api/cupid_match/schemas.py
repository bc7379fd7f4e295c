from typing import Any

from pydantic import BaseModel


class CreateBatchRequest(BaseModel):
    batch_number: int | None = None


class ResetBatchRequest(BaseModel):
    confirm: bool = False


# Identifier fields stay optional so a missing value reaches the service
# layer and is reported as a validation failure with a clear message.
class RejectCandidateRequest(BaseModel):
    rejected_user_id: str | None = None


class RevealedCountRequest(BaseModel):
    count: Any = None


class SelectMatchRequest(BaseModel):
    selected_user_id: str | None = None
    reason: str | None = None


class RespondToMatchRequest(BaseModel):
    decision: str | None = None
