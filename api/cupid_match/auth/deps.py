"""
Authentication dependencies for FastAPI.

Callers present a Bearer access token; the user row behind it decides what
they may do. Cupid routes need an approved cupid, admin routes an
``admin_role`` of at least the required rank.
"""

import logging
import uuid
from typing import Any, Callable

from fastapi import Depends, Header

from cupid_match import repo
from cupid_match.auth.security import decode_access_token
from cupid_match.errors import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)

ROLE_ORDER = {"viewer": 1, "operator": 2, "admin": 3}


def _log_auth_failure(reason: str, user_id: str | None = None) -> str:
    trace_id = str(uuid.uuid4())
    log_data = {"trace_id": trace_id, "reason": reason, "user_id": user_id}
    logger.warning(f"[AUTH_FAILURE] {log_data}")
    return trace_id


def _extract_bearer(authorization: str | None) -> str:
    if not authorization:
        raise UnauthorizedError("Missing Authorization header")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise UnauthorizedError("Invalid Authorization header")
    return parts[1].strip()


def get_current_user(authorization: str | None = Header(default=None, alias="Authorization")) -> dict[str, Any]:
    token = _extract_bearer(authorization)
    payload = decode_access_token(token)
    user_id = str(payload.get("sub") or "")
    if not user_id:
        trace_id = _log_auth_failure("token_missing_subject")
        raise UnauthorizedError("unauthorized", hint=f"trace_id={trace_id}")
    user = repo.get_user_by_id(user_id)
    if not user:
        trace_id = _log_auth_failure("token_user_not_found", user_id)
        raise UnauthorizedError("unauthorized", hint=f"trace_id={trace_id}")
    return user


def require_approved_cupid(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    if not (current_user.get("is_cupid") and current_user.get("cupid_approved")):
        raise ForbiddenError("Not an approved cupid")
    return current_user


def require_admin_role(min_role: str) -> Callable[..., dict[str, Any]]:
    required = ROLE_ORDER[min_role]

    def _dep(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
        role = str(current_user.get("admin_role") or "").strip().lower()
        if ROLE_ORDER.get(role, 0) < required:
            raise ForbiddenError(f"Requires admin role '{min_role}'")
        return current_user

    return _dep
