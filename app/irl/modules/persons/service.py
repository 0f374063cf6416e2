from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from app.irl.audit import record_event
from app.irl.authorization import can_modify_person
from app.irl.errors import Conflict, Forbidden, NotFound, ValidationError
from app.irl.models import User
from app.irl.modules.persons.models import Person
from app.irl.utils import iso, optional_str

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.irl.rbac import ActingIdentity

DISPLAY_ID_RE = re.compile(r"^[a-z0-9_-]{1,100}$")
REQUIRED_FIELDS = (("firstName", "First name"), ("lastName", "Last name"), ("displayId", "Display ID"))


def person_to_dict(person: Person) -> dict:
    return {
        "id": person.id,
        "userId": person.user_id,
        "displayId": person.display_id,
        "firstName": person.first_name,
        "lastName": person.last_name,
        "pronouns": person.pronouns,
        "imageURL": person.image_url,
        "createdAt": iso(person.created_at),
        "updatedAt": iso(person.updated_at),
    }


def person_summary(person: Person) -> dict:
    return {
        "id": person.id,
        "displayId": person.display_id,
        "firstName": person.first_name,
        "lastName": person.last_name,
        "userId": person.user_id,
    }


def normalize_display_id(raw) -> str:
    if not isinstance(raw, str):
        raise ValidationError("Display ID is required")
    value = raw.strip().lower()
    if not DISPLAY_ID_RE.match(value):
        raise ValidationError("Display ID may only contain letters, numbers, hyphens and underscores")
    return value


def validate_person_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate person creation/update payload. Returns list of errors."""
    errors = []
    for key, label in REQUIRED_FIELDS:
        if key not in payload and partial:
            continue
        value = payload.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{label} is required")
    image_url = payload.get("imageURL")
    if image_url is not None:
        if not isinstance(image_url, str) or not image_url.startswith(("http://", "https://")):
            errors.append("URL must use HTTP or HTTPS protocol")
    if payload.get("userId") is not None and (isinstance(payload["userId"], bool) or not isinstance(payload["userId"], int)):
        errors.append("User ID must be an integer")
    return errors


def resolve_person(s: "Session", ref: str) -> Person:
    """Look a live person up by display id, falling back to numeric id."""
    person = s.execute(
        select(Person).where(Person.display_id == ref.lower(), Person.deleted.is_(False))
    ).scalar_one_or_none()
    if person is None and ref.isdigit():
        person = s.get(Person, int(ref))
    if person is None or person.deleted:
        raise NotFound("Person not found")
    return person


def get_live_person(s: "Session", person_id: int) -> Person | None:
    person = s.get(Person, person_id)
    if person is None or person.deleted:
        return None
    return person


def list_persons(s: "Session", page: int, limit: int, search: str | None = None) -> tuple[list[Person], int]:
    base = select(Person).where(Person.deleted.is_(False))
    if search:
        like = f"%{search.lower()}%"
        base = base.where(
            or_(
                func.lower(Person.first_name).like(like),
                func.lower(Person.last_name).like(like),
                func.lower(Person.display_id).like(like),
            )
        )
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    items = s.execute(
        base.order_by(Person.created_at.desc(), Person.id.desc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return list(items), total


def _ensure_display_id_free(s: "Session", display_id: str, exclude_id: int | None = None) -> None:
    q = select(Person.id).where(Person.display_id == display_id)
    if exclude_id is not None:
        q = q.where(Person.id != exclude_id)
    if s.execute(q.limit(1)).first() is not None:
        raise Conflict("A person with this display ID already exists")


def _ensure_user_exists(s: "Session", user_id: int) -> None:
    user = s.get(User, user_id)
    if user is None or user.deleted:
        raise ValidationError("Referenced user does not exist")


def create_person(s: "Session", payload: dict, identity: "ActingIdentity", actor: User) -> Person:
    """Create a person. Non-admins can only create persons they own."""
    errors = validate_person_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors))

    user_id = payload.get("userId")
    if not identity.is_system_admin:
        if user_id is not None and user_id != identity.user_id:
            raise Forbidden("Forbidden: You can only create persons for yourself")
        user_id = identity.user_id
    elif user_id is None:
        user_id = identity.user_id
    _ensure_user_exists(s, user_id)

    display_id = normalize_display_id(payload["displayId"])
    _ensure_display_id_free(s, display_id)

    now = datetime.utcnow()
    person = Person(
        user_id=user_id,
        display_id=display_id,
        first_name=payload["firstName"].strip(),
        last_name=payload["lastName"].strip(),
        pronouns=optional_str(payload, "pronouns", 64),
        image_url=optional_str(payload, "imageURL", 1024),
        created_at=now,
        updated_at=now,
    )
    s.add(person)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="person.create",
        entity_type="Person",
        entity_id=str(person.id),
        metadata={"display_id": person.display_id, "user_id": person.user_id},
    )
    return person


def update_person(
    s: "Session", person: Person, payload: dict, identity: "ActingIdentity", actor: User, *, partial: bool
) -> Person:
    """PUT replaces every editable field; PATCH only touches the keys present."""
    if not can_modify_person(identity, person):
        raise Forbidden("Forbidden: You do not have permission to modify this person")
    errors = validate_person_payload(payload, partial=partial)
    if errors:
        raise ValidationError("; ".join(errors))

    changes: dict = {}

    def _set(attr: str, new) -> None:
        old = getattr(person, attr)
        if old != new:
            changes[attr] = {"old": old, "new": new}
            setattr(person, attr, new)

    if "displayId" in payload:
        display_id = normalize_display_id(payload["displayId"])
        if display_id != person.display_id:
            _ensure_display_id_free(s, display_id, exclude_id=person.id)
        _set("display_id", display_id)
    if "firstName" in payload:
        _set("first_name", payload["firstName"].strip())
    if "lastName" in payload:
        _set("last_name", payload["lastName"].strip())
    if "pronouns" in payload or not partial:
        _set("pronouns", optional_str(payload, "pronouns", 64))
    if "imageURL" in payload or not partial:
        _set("image_url", optional_str(payload, "imageURL", 1024))
    if payload.get("userId") is not None and payload["userId"] != person.user_id:
        if not identity.is_system_admin:
            raise Forbidden("Forbidden: Only system administrators can reassign a person")
        _ensure_user_exists(s, payload["userId"])
        _set("user_id", payload["userId"])

    if changes:
        person.updated_at = datetime.utcnow()
        record_event(s, actor=actor, action="person.update", entity_type="Person", entity_id=str(person.id), metadata=changes)
    return person


def delete_person(s: "Session", person: Person, identity: "ActingIdentity", actor: User) -> None:
    if not can_modify_person(identity, person):
        raise Forbidden("Forbidden: You do not have permission to modify this person")
    now = datetime.utcnow()
    person.deleted = True
    person.deleted_at = now
    person.updated_at = now
    record_event(s, actor=actor, action="person.delete", entity_type="Person", entity_id=str(person.id))
