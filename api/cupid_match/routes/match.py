from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from ..auth.deps import get_current_user
from ..schemas import RespondToMatchRequest

router = APIRouter()


@router.get("/matches")
def get_my_matches(
    batch_number: int,
    current_user: dict[str, Any] = Depends(get_current_user),
) -> dict[str, Any]:
    from .. import main as m

    rows = m.repo_list_user_matches(batch_number, str(current_user["id"]))
    if not rows:
        return {"batch_number": batch_number, "matches": [], "message": "No matches have been revealed yet"}
    return jsonable_encoder({"batch_number": batch_number, "matches": rows})


@router.post("/matches/{pairing_id}/respond")
def respond(
    pairing_id: str,
    payload: RespondToMatchRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
) -> dict[str, Any]:
    from .. import main as m

    return jsonable_encoder(m.repo_respond_to_match(pairing_id, str(current_user["id"]), payload.decision))
