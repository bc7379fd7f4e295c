from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select

from ..errors import PreconditionFailedError, ValidationFailedError
from ..models import Pairing
from .batches import advance_batch_status, count_pairings, get_batch, utcnow
from .curation import auto_select_for_test, promote_selections, unpromoted_selections
from .events import log_pipeline_event
from .partitions import partition_label, resolve_partition

logger = logging.getLogger(__name__)


def reveal_matches(
    db,
    batch_number: int,
    partition: str,
    *,
    skip_curation: bool = False,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Stamp ``revealed_at`` on every unrevealed pairing of the partition.

    Cupid selections must have been promoted first. ``skip_curation`` is the
    test-only path: unselected test assignments get a random pick, which is
    promoted before revealing.
    """
    is_test = resolve_partition(partition)
    label = partition_label(is_test)
    batch = get_batch(db, batch_number)
    now = now or utcnow()

    if skip_curation and not is_test:
        raise ValidationFailedError("Reveal without curation is only allowed for the test partition")
    if count_pairings(db, batch_number, is_test) == 0:
        raise PreconditionFailedError(
            f"No matches to reveal for the {label} partition of batch {batch_number}",
            hint=f"run matching for batch {batch_number} ({label}) first",
        )

    auto_selected = 0
    if skip_curation:
        auto_selected = auto_select_for_test(db, batch_number, now=now)
        promote_selections(db, batch_number, label, now=now)
    else:
        pending = unpromoted_selections(db, batch_number, is_test)
        if pending:
            raise PreconditionFailedError(
                f"{len(pending)} cupid selections in batch {batch_number} ({label}) have not been promoted",
                hint=f"run promote for batch {batch_number} ({label}) before revealing",
            )

    pairings = db.scalars(
        select(Pairing).where(
            Pairing.batch_number == batch_number,
            Pairing.is_test == is_test,
            Pairing.revealed_at.is_(None),
        )
    ).all()
    for pairing in pairings:
        pairing.revealed_at = now
    db.flush()

    report: dict[str, Any] = {
        "batch_number": batch_number,
        "partition": label,
        "matches_revealed": len(pairings),
        "auto_selected": auto_selected,
    }
    if not pairings:
        report["message"] = f"All matches in the {label} partition of batch {batch_number} are already revealed"
        return report

    advance_batch_status(batch, "reveal")
    if batch.status == "revealed" and batch.revealed_at is None:
        batch.revealed_at = now

    log_pipeline_event(
        db,
        batch_number,
        "matches_revealed",
        {"matches_revealed": len(pairings), "auto_selected": auto_selected},
        is_test=is_test,
    )
    logger.info(f"Revealed {len(pairings)} matches for batch {batch_number} ({label})")
    return report
