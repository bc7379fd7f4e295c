"""
Directional reads over the pairing table.

A pairing is stored once. Each participant sees it as a row of their own:
``algorithm`` for algorithmic pairings, and ``cupid_sent`` / ``cupid_received``
for cupid pairings depending on which side sent it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select

from ..errors import ForbiddenError, NotFoundError, PreconditionFailedError, ValidationFailedError
from ..models import Pairing
from .batches import utcnow
from .events import log_pipeline_event
from .state_machine import transition_pairing_status

logger = logging.getLogger(__name__)

MATCH_TYPES = ("algorithm", "cupid_sent", "cupid_received")
_DECISIONS = {"accepted": "accept", "declined": "decline"}


def match_type_for(pairing: Pairing, user_id: str) -> str:
    if pairing.provenance == "algorithm":
        return "algorithm"
    return "cupid_sent" if pairing.sender_id == user_id else "cupid_received"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def directional_view(pairing: Pairing, user_id: str) -> dict[str, Any]:
    if user_id not in (pairing.user_a_id, pairing.user_b_id):
        raise ValueError(f"user {user_id} is not part of pairing {pairing.id}")
    target = pairing.user_b_id if user_id == pairing.user_a_id else pairing.user_a_id
    return {
        "pairing_id": pairing.id,
        "batch_number": pairing.batch_number,
        "user_id": user_id,
        "target_user_id": target,
        "match_type": match_type_for(pairing, user_id),
        "status": pairing.status,
        "score": pairing.score,
        "cupid_user_id": pairing.cupid_user_id,
        "revealed_at": _iso(pairing.revealed_at),
        "responded_at": _iso(pairing.responded_at),
    }


def directional_views(pairing: Pairing) -> list[dict[str, Any]]:
    return [directional_view(pairing, pairing.user_a_id), directional_view(pairing, pairing.user_b_id)]


def find_pairing(db, batch_number: int, user_a: str, user_b: str) -> Pairing | None:
    a, b = sorted((user_a, user_b))
    return db.scalars(
        select(Pairing).where(Pairing.batch_number == batch_number, Pairing.user_a_id == a, Pairing.user_b_id == b)
    ).first()


def list_match_rows(db, batch_number: int, is_test: bool | None = None) -> list[dict[str, Any]]:
    stmt = select(Pairing).where(Pairing.batch_number == batch_number)
    if is_test is not None:
        stmt = stmt.where(Pairing.is_test == is_test)
    rows: list[dict[str, Any]] = []
    for pairing in db.scalars(stmt.order_by(Pairing.user_a_id, Pairing.user_b_id)):
        rows.extend(directional_views(pairing))
    return rows


def list_matches_for_user(db, batch_number: int, user_id: str, revealed_only: bool = True) -> list[dict[str, Any]]:
    stmt = select(Pairing).where(
        Pairing.batch_number == batch_number,
        or_(Pairing.user_a_id == user_id, Pairing.user_b_id == user_id),
    )
    if revealed_only:
        stmt = stmt.where(Pairing.revealed_at.is_not(None))
    pairings = db.scalars(stmt.order_by(Pairing.created_at, Pairing.id)).all()
    return [directional_view(p, user_id) for p in pairings]


def respond_to_match(
    db,
    pairing_id: str,
    user_id: str,
    decision: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Receiver's answer to a revealed cupid match."""
    if decision not in _DECISIONS:
        raise ValidationFailedError(f"Unknown decision {decision!r}", hint="decision must be 'accepted' or 'declined'")
    pairing = db.get(Pairing, pairing_id)
    if pairing is None:
        raise NotFoundError(f"Match {pairing_id} not found")
    if user_id not in (pairing.user_a_id, pairing.user_b_id):
        raise ForbiddenError("You are not part of this match")
    if match_type_for(pairing, user_id) != "cupid_received":
        raise ValidationFailedError("Only received cupid matches can be accepted or declined")
    if pairing.revealed_at is None:
        raise PreconditionFailedError("Match has not been revealed yet")

    if pairing.status == decision:
        return {"success": True, "match": directional_view(pairing, user_id)}
    next_status = transition_pairing_status(pairing.status, _DECISIONS[decision])
    if next_status != decision:
        raise PreconditionFailedError(f"Match already {pairing.status}")

    pairing.status = next_status
    pairing.responded_at = now or utcnow()
    log_pipeline_event(
        db,
        pairing.batch_number,
        "match_responded",
        {"pairing_id": pairing.id, "decision": decision},
        user_id=user_id,
        is_test=pairing.is_test,
    )
    logger.info(f"User {user_id} {decision} match {pairing.id}")
    return {"success": True, "match": directional_view(pairing, user_id)}
