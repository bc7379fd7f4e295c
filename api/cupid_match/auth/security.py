from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from cupid_match import config
from cupid_match.errors import PipelineError, UnauthorizedError

ALGORITHM = "HS256"


def _secret() -> str:
    if not config.JWT_SECRET:
        raise PipelineError("JWT secret not configured")
    return config.JWT_SECRET


def create_access_token(user_id: str, email: str, ttl_minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=ttl_minutes or config.ACCESS_TOKEN_TTL_MINUTES)
    payload: dict[str, Any] = {
        "sub": user_id,
        "email": email,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    secret = _secret()
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise UnauthorizedError("Token expired") from exc
    except jwt.PyJWTError as exc:
        raise UnauthorizedError("Invalid token") from exc
    if not isinstance(payload, dict):
        raise UnauthorizedError("Invalid token")
    return payload
