from __future__ import annotations

import logging
import secrets
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request, session
from sqlalchemy import select
from werkzeug.security import check_password_hash

from app.irl.audit import client_ip, record_event
from app.irl.db import db_session
from app.irl.errors import ApiError, Unauthorized, ValidationError
from app.irl.models import User
from app.irl.modules.persons.models import Person
from app.irl.modules.persons.service import person_to_dict
from app.irl.modules.users.service import user_to_dict
from app.irl.security import ensure_csrf_token
from app.irl.utils import json_payload, ok

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds

MASQUERADE_KEYS = ("original_user_id", "masquerade_user_id")


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    recent = [t for t in _login_attempts.get(ip, ()) if t > cutoff]
    if not recent:
        _login_attempts.pop(ip, None)
        return False
    _login_attempts[ip] = recent
    return len(recent) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def reset_login_attempts() -> None:
    _login_attempts.clear()


def clear_masquerade() -> None:
    for key in MASQUERADE_KEYS:
        session.pop(key, None)


def _apply_masquerade(s, user: User) -> User:
    """Swap in the masqueraded user when the session carries a valid masquerade."""
    original_id = session.get("original_user_id")
    target_id = session.get("masquerade_user_id")
    if not original_id or not target_id:
        return user
    if int(original_id) != user.id or not user.is_system_admin:
        clear_masquerade()
        return user
    target = s.get(User, int(target_id))
    if not target or not target.is_active:
        clear_masquerade()
        return user
    g.original_user = user
    return target


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie, applying masquerade.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.original_user = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            clear_masquerade()
            g.current_user = None
            return
        g.current_user = _apply_masquerade(s, user)
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        clear_masquerade()
        g.current_user = None


def first_person(s, user: User) -> Person | None:
    return s.execute(
        select(Person)
        .where(Person.user_id == user.id, Person.deleted.is_(False))
        .order_by(Person.created_at.asc(), Person.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def _session_body(s, user: User) -> dict:
    person = first_person(s, user)
    body = {"user": user_to_dict(user)}
    if person is not None:
        body["person"] = person_to_dict(person)
    return body


@bp.post("/login")
def login():
    payload = json_payload()
    email = payload.get("email")
    password = payload.get("password")
    email = email.strip().lower() if isinstance(email, str) else ""
    password = password if isinstance(password, str) else ""
    if not email or not password:
        raise ValidationError("Email and password are required")
    ip = client_ip() or "unknown"

    if _check_rate_limit(ip):
        raise ApiError("Too many login attempts. Please wait 5 minutes.", 429)

    _record_attempt(ip)

    s = db_session()
    user = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        logger.warning("Login failed (email=%s ip=%s request_id=%s)", email, ip, g.request_id)
        raise Unauthorized("Invalid credentials")

    if user.verification_token:
        raise ApiError("Please verify your email before logging in", 403)

    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    _login_attempts.pop(ip, None)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return ok(_session_body(s, user), "Login successful")


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "original_user", None) or getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return ok(message="Logout successful")


@bp.get("/session")
def current_session():
    user: User | None = getattr(g, "current_user", None)
    if not user:
        raise Unauthorized("Not authenticated")
    s = db_session()
    body = _session_body(s, user)
    original: User | None = getattr(g, "original_user", None)
    body["isMasquerading"] = original is not None
    return ok(body)


@bp.get("/csrf")
def csrf():
    return ok({"csrfToken": ensure_csrf_token()})


@bp.post("/resend-verification")
def resend_verification():
    payload = json_payload()
    email = payload.get("email")
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("Email is required")
    s = db_session()
    user = s.execute(
        select(User).where(User.email == email.strip().lower(), User.deleted.is_(False))
    ).scalar_one_or_none()
    if user is not None and user.verification_token:
        user.verification_token = secrets.token_urlsafe(32)
        user.updated_at = datetime.utcnow()
        s.commit()
        logger.info("Verification token reissued (user_id=%s token=%s)", user.id, user.verification_token)
    return ok(message="If the account exists and is unverified, a new verification email has been sent")
