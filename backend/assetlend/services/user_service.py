# backend/assetlend/services/user_service.py
"""
User directory for the lending core.

Authentication happens upstream; users here carry identity and role only.
"""
from __future__ import annotations

from ..errors import DuplicateRequest, NotFound, ValidationError
from ..extensions import db
from ..models import Store, User
from ..permissions import ROLE_EMPLOYEE, ROLES
from . import audit_service


def create_user(
    *,
    username: str,
    email: str,
    role: str = ROLE_EMPLOYEE,
    full_name: str | None = None,
    store_id: int | None = None,
    actor_id: int | None = None,
) -> User:
    username = (username or "").strip()
    email = (email or "").strip().lower()

    if not username:
        raise ValidationError("username is required")
    if "@" not in email:
        raise ValidationError("email must be a valid address")
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
    if store_id is not None and db.session.get(Store, store_id) is None:
        raise NotFound(f"Store {store_id} not found")

    if db.session.query(User).filter_by(username=username).first():
        raise DuplicateRequest(f"Username '{username}' already exists")
    if db.session.query(User).filter_by(email=email).first():
        raise DuplicateRequest(f"Email '{email}' already exists")

    user = User(
        username=username,
        email=email,
        full_name=full_name,
        role=role,
        store_id=store_id,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()

    audit_service.record(actor_id, "users", user.id, audit_service.ACTION_INSERT, None, user.to_dict())
    return user


def list_users(*, role: str | None = None, include_inactive: bool = False) -> list[User]:
    q = db.session.query(User)
    if role:
        q = q.filter(User.role == role)
    if not include_inactive:
        q = q.filter(User.is_active.is_(True))
    return q.order_by(User.username.asc()).all()


def get_active_user(user_id: int) -> User | None:
    """Resolve an actor id to an active user, or None."""
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user
