from typing import Any

from .database import SessionLocal
from .models import User


def user_to_dict(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "is_test_user": bool(user.is_test_user),
        "is_cupid": bool(user.is_cupid),
        "cupid_approved": bool(user.cupid_approved),
        "is_email_verified": bool(user.is_email_verified),
        "admin_role": user.admin_role,
    }


def get_user_by_id(user_id: str) -> dict[str, Any] | None:
    with SessionLocal() as db:
        user = db.get(User, user_id)
        return user_to_dict(user) if user else None
