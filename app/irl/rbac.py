from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any

from flask import g

from app.irl.errors import Forbidden, Unauthorized
from app.irl.models import User


@dataclass(frozen=True)
class ActingIdentity:
    """Who is acting on this request, after masquerade substitution."""

    user_id: int
    is_system_admin: bool
    owned_person_ids: frozenset[int] = field(default_factory=frozenset)

    def owns(self, person_id: int | None) -> bool:
        return person_id is not None and person_id in self.owned_person_ids


def identity_for_user(user: User) -> ActingIdentity:
    return ActingIdentity(
        user_id=user.id,
        is_system_admin=bool(user.is_system_admin),
        owned_person_ids=frozenset(p.id for p in (user.people or []) if not p.deleted),
    )


def current_identity() -> ActingIdentity | None:
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        return None
    return identity_for_user(user)


def require_auth(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            raise Unauthorized("Authentication required")
        return fn(*args, **kwargs)

    return wrapped


def require_system_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            raise Unauthorized("Authentication required")
        if not user.is_system_admin:
            raise Forbidden("Forbidden: Only system administrators can access this resource")
        return fn(*args, **kwargs)

    return wrapped
