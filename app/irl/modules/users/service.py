from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select
from werkzeug.security import check_password_hash, generate_password_hash

from app.irl.audit import record_event
from app.irl.errors import Conflict, Forbidden, NotFound, Unauthorized, ValidationError
from app.irl.models import User
from app.irl.modules.system.service import registration_open
from app.irl.modules.users.models import EmailChangeRequest
from app.irl.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8
EMAIL_CHANGE_TTL = timedelta(hours=24)


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "isSystemAdmin": bool(user.is_system_admin),
        "createdAt": iso(user.created_at),
        "updatedAt": iso(user.updated_at),
    }


def validate_user_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate user registration/update payload. Returns list of errors."""
    errors = []
    email = payload.get("email")
    if email is not None or not partial:
        if not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
            errors.append("Invalid email format")
    password = payload.get("password")
    if password is not None or not partial:
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if "isSystemAdmin" in payload and not isinstance(payload["isSystemAdmin"], bool):
        errors.append("isSystemAdmin must be a boolean")
    return errors


def _new_verification_token() -> str:
    return secrets.token_urlsafe(32)


def _log_verification_token(user: User) -> None:
    # No mail integration: operators hand out the link from logs.
    logger.info("Verification token issued (user_id=%s email=%s token=%s)", user.id, user.email, user.verification_token)


def get_active_user(s: "Session", user_id: int) -> User:
    user = s.get(User, user_id)
    if user is None or user.deleted:
        raise NotFound("User not found")
    return user


def _email_taken(s: "Session", email: str, exclude_id: int | None = None) -> bool:
    q = select(User.id).where(func.lower(User.email) == email)
    if exclude_id is not None:
        q = q.where(User.id != exclude_id)
    return s.execute(q.limit(1)).first() is not None


def register_user(s: "Session", payload: dict, actor: User | None) -> tuple[User, bool]:
    """
    Create a user account. The very first account becomes a pre-verified
    system admin; later accounts need email verification and only get the
    admin flag when a system admin asks for it. While registration is
    closed only a system admin can add accounts.
    """
    errors = validate_user_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors))

    is_first_user = (s.scalar(select(func.count(User.id))) or 0) == 0
    requested_admin = bool(payload.get("isSystemAdmin"))
    actor_is_admin = bool(actor and actor.is_system_admin)
    if not is_first_user and not actor_is_admin and not registration_open(s):
        raise Forbidden("Registration is currently closed")

    email = payload["email"].strip().lower()
    if _email_taken(s, email):
        raise Conflict("Email address is already in use")

    now = datetime.utcnow()
    user = User(
        email=email,
        password_hash=generate_password_hash(payload["password"]),
        verification_token=None if is_first_user else _new_verification_token(),
        is_system_admin=is_first_user or (requested_admin and actor_is_admin),
        created_at=now,
        updated_at=now,
        deleted=False,
    )
    s.add(user)
    s.flush()

    record_event(
        s,
        actor=actor or user,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email, "is_system_admin": user.is_system_admin},
    )
    if user.verification_token:
        _log_verification_token(user)
    return user, is_first_user


def verify_email(s: "Session", token: str | None) -> User:
    if not token:
        raise ValidationError("Verification token is required")
    user = s.execute(
        select(User).where(User.verification_token == token, User.deleted.is_(False))
    ).scalar_one_or_none()
    if user is None:
        raise NotFound("Verification token invalid or expired")
    user.verification_token = None
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="user.verify", entity_type="User", entity_id=str(user.id))
    return user


def change_password(s: "Session", user: User, payload: dict) -> None:
    current = payload.get("currentPassword")
    new = payload.get("newPassword")
    if not isinstance(current, str) or not current:
        raise ValidationError("Current password is required")
    if not isinstance(new, str) or len(new) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not check_password_hash(user.password_hash, current):
        raise Unauthorized("Current password is incorrect")
    user.password_hash = generate_password_hash(new)
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="user.password_change", entity_type="User", entity_id=str(user.id))


def request_email_change(s: "Session", user: User, payload: dict) -> EmailChangeRequest:
    """
    Start moving the account to a new address. The address only changes
    once the token sent to it comes back; earlier pending requests are dropped.
    """
    current = payload.get("currentPassword")
    new_email = payload.get("newEmail")
    if not isinstance(current, str) or not current:
        raise ValidationError("Current password is required")
    if not isinstance(new_email, str) or not EMAIL_RE.match(new_email.strip()):
        raise ValidationError("Invalid email format")
    if not check_password_hash(user.password_hash, current):
        raise Unauthorized("Current password is incorrect")

    new_email = new_email.strip().lower()
    if new_email == user.email:
        raise ValidationError("New email must be different from current email")
    if _email_taken(s, new_email, exclude_id=user.id):
        raise ValidationError("Email address is already in use")

    s.execute(delete(EmailChangeRequest).where(EmailChangeRequest.user_id == user.id))
    now = datetime.utcnow()
    req = EmailChangeRequest(
        user_id=user.id,
        new_email=new_email,
        verification_token=_new_verification_token(),
        expires_at=now + EMAIL_CHANGE_TTL,
        created_at=now,
    )
    s.add(req)
    s.flush()

    record_event(
        s,
        actor=user,
        action="user.email_change_request",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"new_email": new_email},
    )
    logger.info(
        "Email change token issued (user_id=%s new_email=%s token=%s)", user.id, new_email, req.verification_token
    )
    return req


def confirm_email_change(s: "Session", token: str | None) -> User:
    if not token:
        raise ValidationError("Verification token is required")
    req = s.execute(
        select(EmailChangeRequest).where(EmailChangeRequest.verification_token == token)
    ).scalar_one_or_none()
    if req is None:
        raise NotFound("Verification token invalid or expired")
    if req.expires_at < datetime.utcnow():
        raise ValidationError("Verification token has expired")

    user = s.get(User, req.user_id)
    if user is None or user.deleted:
        raise NotFound("Verification token invalid or expired")
    if _email_taken(s, req.new_email, exclude_id=user.id):
        raise ValidationError("Email address is no longer available")

    old_email = user.email
    user.email = req.new_email
    user.updated_at = datetime.utcnow()
    s.delete(req)
    record_event(
        s,
        actor=user,
        action="user.email_change",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"old": old_email, "new": user.email},
    )
    return user


def list_users(s: "Session", page: int, limit: int) -> tuple[list[User], int]:
    base = select(User).where(User.deleted.is_(False))
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    items = s.execute(
        base.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return list(items), total


def update_user(s: "Session", user: User, payload: dict, actor: User) -> User:
    """Admin update. Changing the email requires re-verification."""
    errors = validate_user_payload(payload, partial=True)
    if errors:
        raise ValidationError("; ".join(errors))

    changes: dict = {}
    email = payload.get("email")
    if email is not None:
        email = email.strip().lower()
        if email != user.email:
            if _email_taken(s, email, exclude_id=user.id):
                raise Conflict("Email address is already in use")
            changes["email"] = {"old": user.email, "new": email}
            user.email = email
            user.verification_token = _new_verification_token()

    if payload.get("password"):
        changes["password"] = "changed"
        user.password_hash = generate_password_hash(payload["password"])

    if "isSystemAdmin" in payload and payload["isSystemAdmin"] != user.is_system_admin:
        changes["is_system_admin"] = {"old": user.is_system_admin, "new": payload["isSystemAdmin"]}
        user.is_system_admin = payload["isSystemAdmin"]

    if changes:
        user.updated_at = datetime.utcnow()
        record_event(s, actor=actor, action="user.update", entity_type="User", entity_id=str(user.id), metadata=changes)
        if "email" in changes:
            _log_verification_token(user)
    return user


def delete_user(s: "Session", user: User, actor: User) -> None:
    user.deleted = True
    user.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="user.delete", entity_type="User", entity_id=str(user.id))
