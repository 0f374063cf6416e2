from __future__ import annotations

from typing import TYPE_CHECKING

from flask import g, session
from sqlalchemy import select

from app.irl.audit import record_event
from app.irl.auth import MASQUERADE_KEYS, clear_masquerade
from app.irl.errors import Forbidden, NotFound, Unauthorized, ValidationError
from app.irl.models import User

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def real_user() -> User:
    """The authenticated account behind the request, ignoring any masquerade."""
    user: User | None = getattr(g, "original_user", None) or getattr(g, "current_user", None)
    if not user or not user.is_active:
        raise Unauthorized("Authentication required")
    return user


def start(s: "Session", payload: dict) -> User:
    admin = real_user()
    if not admin.is_system_admin:
        raise Forbidden("Forbidden: Only system administrators can access this resource")
    email = payload.get("email")
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("Email is required")
    target = s.execute(
        select(User).where(User.email == email.strip().lower(), User.deleted.is_(False))
    ).scalar_one_or_none()
    if target is None:
        raise NotFound("User not found")
    if target.id == admin.id:
        raise ValidationError("Cannot masquerade as yourself")

    original_key, target_key = MASQUERADE_KEYS
    session[original_key] = admin.id
    session[target_key] = target.id
    g.original_user = admin
    g.current_user = target
    record_event(
        s,
        actor=admin,
        action="masquerade.start",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"target_email": target.email},
    )
    return target


def stop(s: "Session") -> User:
    """End any active masquerade. Exiting when not masquerading is a no-op."""
    original: User | None = getattr(g, "original_user", None)
    if original is None:
        clear_masquerade()
        return real_user()
    target: User = g.current_user
    clear_masquerade()
    g.original_user = None
    g.current_user = original
    record_event(
        s,
        actor=original,
        action="masquerade.stop",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"target_email": target.email},
    )
    return original


def status() -> dict:
    real_user()
    original: User | None = getattr(g, "original_user", None)
    if original is None:
        return {"isMasquerading": False, "masqueradeInfo": None}
    return {
        "isMasquerading": True,
        "masqueradeInfo": {
            "originalUserEmail": original.email,
            "masqueradeUserEmail": g.current_user.email,
        },
    }
