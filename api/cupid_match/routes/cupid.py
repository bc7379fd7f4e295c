from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from ..auth.deps import require_approved_cupid
from ..schemas import RejectCandidateRequest, RevealedCountRequest, SelectMatchRequest

router = APIRouter()


@router.get("/cupid/dashboard")
def get_dashboard(
    batch_number: int,
    current_user: dict[str, Any] = Depends(require_approved_cupid),
) -> dict[str, Any]:
    from .. import main as m

    return jsonable_encoder(m.repo_cupid_dashboard(batch_number, str(current_user["id"])))


@router.post("/cupid/assignments/{assignment_id}/reject")
def reject_match(
    assignment_id: str,
    payload: RejectCandidateRequest,
    current_user: dict[str, Any] = Depends(require_approved_cupid),
) -> dict[str, Any]:
    from .. import main as m

    return m.repo_reject_candidate(assignment_id, str(current_user["id"]), payload.rejected_user_id)


@router.post("/cupid/assignments/{assignment_id}/revealed-count")
def update_revealed_count(
    assignment_id: str,
    payload: RevealedCountRequest,
    current_user: dict[str, Any] = Depends(require_approved_cupid),
) -> dict[str, Any]:
    from .. import main as m

    return m.repo_set_revealed_count(assignment_id, str(current_user["id"]), payload.count)


@router.post("/cupid/assignments/{assignment_id}/select")
def select_match(
    assignment_id: str,
    payload: SelectMatchRequest,
    current_user: dict[str, Any] = Depends(require_approved_cupid),
) -> dict[str, Any]:
    from .. import main as m

    return m.repo_select_match(assignment_id, str(current_user["id"]), payload.selected_user_id, payload.reason)
