import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from . import models  # noqa: F401  registers tables on Base.metadata
from .database import Base, SessionLocal, engine
from .errors import ConcurrentModificationError, PipelineError, pipeline_error_handler
from .routes import include_modular_routers
from .services.batches import batch_status, create_batch, get_current_batch, reset_batch, serialize_batch
from .services.cupid_assignment import assign_cupids, refresh_shortlists
from .services.curation import cupid_dashboard, promote_selections, reject_candidate, select_match, set_revealed_count
from .services.match_ledger import list_match_rows, list_matches_for_user, respond_to_match
from .services.matching import partition_matching_lock, run_matching
from .services.partitions import resolve_partition
from .services.reveal import reveal_matches
from .services.scoring import run_scoring
from .auth.deps import get_current_user, require_admin_role, require_approved_cupid

logger = logging.getLogger(__name__)

app = FastAPI(title="Cupid Match API")
app.add_exception_handler(PipelineError, pipeline_error_handler)
include_modular_routers(app)


def run_migrations(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


@app.on_event("startup")
def on_startup() -> None:
    wait_for_db()
    run_migrations()


@contextmanager
def unit_of_work() -> Iterator[Any]:
    """Commit on success, roll back on any failure, always close."""
    with SessionLocal() as db:
        try:
            yield db
            db.commit()
        except StaleDataError as exc:
            db.rollback()
            logger.warning(f"Concurrent modification detected: {exc}")
            raise ConcurrentModificationError(
                "Record was modified by another request",
                hint="reload the assignment and retry",
            ) from exc
        except Exception:
            db.rollback()
            raise


def repo_create_batch(batch_number: int | None = None) -> dict[str, Any]:
    with unit_of_work() as db:
        return serialize_batch(create_batch(db, batch_number))


def repo_get_current_batch() -> dict[str, Any] | None:
    with unit_of_work() as db:
        batch = get_current_batch(db)
        return serialize_batch(batch) if batch else None


def repo_batch_status(batch_number: int) -> dict[str, Any]:
    with unit_of_work() as db:
        return batch_status(db, batch_number)


def repo_run_scoring(batch_number: int, partition: str) -> dict[str, Any]:
    with unit_of_work() as db:
        return run_scoring(db, batch_number, partition)


def repo_run_matching(batch_number: int, partition: str) -> dict[str, Any]:
    # Held across the commit so a second run cannot read the partition before the first one lands.
    with partition_matching_lock(batch_number, resolve_partition(partition)):
        with unit_of_work() as db:
            return run_matching(db, batch_number, partition)


def repo_assign_cupids(batch_number: int, partition: str) -> dict[str, Any]:
    with unit_of_work() as db:
        return assign_cupids(db, batch_number, partition)


def repo_refresh_shortlists(batch_number: int, partition: str) -> dict[str, Any]:
    with unit_of_work() as db:
        return refresh_shortlists(db, batch_number, partition)


def repo_promote_selections(batch_number: int, partition: str | None = None) -> dict[str, Any]:
    with unit_of_work() as db:
        return promote_selections(db, batch_number, partition)


def repo_reveal_matches(batch_number: int, partition: str, skip_curation: bool = False) -> dict[str, Any]:
    with unit_of_work() as db:
        return reveal_matches(db, batch_number, partition, skip_curation=skip_curation)


def repo_reset_batch(batch_number: int) -> dict[str, Any]:
    with unit_of_work() as db:
        return reset_batch(db, batch_number)


def repo_list_match_rows(batch_number: int, partition: str | None = None) -> list[dict[str, Any]]:
    is_test = resolve_partition(partition) if partition else None
    with unit_of_work() as db:
        return list_match_rows(db, batch_number, is_test)


def repo_cupid_dashboard(batch_number: int, cupid_id: str) -> dict[str, Any]:
    with unit_of_work() as db:
        return cupid_dashboard(db, batch_number, cupid_id)


def repo_reject_candidate(assignment_id: str, cupid_id: str, rejected_user_id: str | None) -> dict[str, Any]:
    with unit_of_work() as db:
        return reject_candidate(db, assignment_id, cupid_id, rejected_user_id)


def repo_set_revealed_count(assignment_id: str, cupid_id: str, count: Any) -> dict[str, Any]:
    with unit_of_work() as db:
        return set_revealed_count(db, assignment_id, cupid_id, count)


def repo_select_match(
    assignment_id: str,
    cupid_id: str,
    selected_user_id: str | None,
    reason: str | None = None,
) -> dict[str, Any]:
    with unit_of_work() as db:
        return select_match(db, assignment_id, cupid_id, selected_user_id, reason)


def repo_list_user_matches(batch_number: int, user_id: str) -> list[dict[str, Any]]:
    with unit_of_work() as db:
        return list_matches_for_user(db, batch_number, user_id)


def repo_respond_to_match(pairing_id: str, user_id: str, decision: str | None) -> dict[str, Any]:
    with unit_of_work() as db:
        return respond_to_match(db, pairing_id, user_id, decision or "")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


__all__ = ["app", "get_current_user", "require_admin_role", "require_approved_cupid"]
