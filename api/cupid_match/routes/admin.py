from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from ..auth.deps import require_admin_role
from ..errors import NotFoundError, ValidationFailedError
from ..schemas import CreateBatchRequest, ResetBatchRequest

router = APIRouter()


def _json(data: Any) -> Any:
    return jsonable_encoder(data)


@router.post("/admin/batches")
def create_next_batch(
    payload: CreateBatchRequest | None = None,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> dict[str, Any]:
    from .. import main as m

    return _json(m.repo_create_batch((payload or CreateBatchRequest()).batch_number))


@router.get("/admin/batches/current")
def get_current_batch(admin_user: dict[str, Any] = Depends(require_admin_role("viewer"))) -> dict[str, Any]:
    from .. import main as m

    batch = m.repo_get_current_batch()
    if batch is None:
        raise NotFoundError("No matching batch exists yet", hint="create batch 1 first")
    return _json(batch)


@router.get("/admin/batches/{batch_number}")
def get_batch_status(
    batch_number: int,
    admin_user: dict[str, Any] = Depends(require_admin_role("viewer")),
) -> dict[str, Any]:
    from .. import main as m

    return _json(m.repo_batch_status(batch_number))


@router.post("/admin/batches/{batch_number}/scoring")
def run_scoring(
    batch_number: int,
    partition: str,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> dict[str, Any]:
    from .. import main as m

    return _json(m.repo_run_scoring(batch_number, partition))


@router.post("/admin/batches/{batch_number}/matching")
def run_matching(
    batch_number: int,
    partition: str,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> dict[str, Any]:
    from .. import main as m

    return _json(m.repo_run_matching(batch_number, partition))


@router.post("/admin/batches/{batch_number}/cupids/assign")
def assign_cupids(
    batch_number: int,
    partition: str,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> dict[str, Any]:
    from .. import main as m

    return _json(m.repo_assign_cupids(batch_number, partition))


@router.post("/admin/batches/{batch_number}/cupids/refresh")
def refresh_shortlists(
    batch_number: int,
    partition: str,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> dict[str, Any]:
    from .. import main as m

    return _json(m.repo_refresh_shortlists(batch_number, partition))


@router.post("/admin/batches/{batch_number}/promote")
def promote_selections(
    batch_number: int,
    partition: str | None = None,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> dict[str, Any]:
    from .. import main as m

    return _json(m.repo_promote_selections(batch_number, partition))


@router.post("/admin/batches/{batch_number}/reveal")
def reveal_matches(
    batch_number: int,
    partition: str,
    skip_curation: bool = False,
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
) -> dict[str, Any]:
    from .. import main as m

    return _json(m.repo_reveal_matches(batch_number, partition, skip_curation=skip_curation))


@router.post("/admin/batches/{batch_number}/reset")
def reset_batch(
    batch_number: int,
    payload: ResetBatchRequest | None = None,
    admin_user: dict[str, Any] = Depends(require_admin_role("admin")),
) -> dict[str, Any]:
    from .. import main as m

    if not (payload and payload.confirm):
        raise ValidationFailedError(
            f"Reset of batch {batch_number} must be confirmed",
            hint="send {\"confirm\": true}; this deletes scores, matches and assignments",
        )
    return _json(m.repo_reset_batch(batch_number))


@router.get("/admin/batches/{batch_number}/matches")
def list_matches(
    batch_number: int,
    partition: str | None = None,
    admin_user: dict[str, Any] = Depends(require_admin_role("viewer")),
) -> dict[str, Any]:
    from .. import main as m

    rows = m.repo_list_match_rows(batch_number, partition)
    return _json({"batch_number": batch_number, "matches": rows, "count": len(rows)})
