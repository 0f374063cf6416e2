from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from app.irl.audit import record_event
from app.irl.authorization import (
    administered_group_ids,
    can_create_subgroup,
    can_modify_group,
    can_view_group,
)
from app.irl.errors import Conflict, Forbidden, NotFound, ValidationError
from app.irl.modules.groups.models import Group
from app.irl.modules.memberships.models import PersonGroup
from app.irl.modules.persons.models import Person
from app.irl.modules.persons.service import normalize_display_id
from app.irl.utils import iso, optional_str

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.irl.models import User
    from app.irl.rbac import ActingIdentity


BOOL_FIELDS = (
    ("allowsAnyUserToCreateSubgroup", "allows_any_user_to_create_subgroup"),
    ("publiclyVisible", "publicly_visible"),
)


def group_to_dict(group: Group) -> dict:
    return {
        "id": group.id,
        "displayId": group.display_id,
        "name": group.name,
        "description": group.description,
        "parentGroupId": group.parent_group_id,
        "allowsAnyUserToCreateSubgroup": bool(group.allows_any_user_to_create_subgroup),
        "publiclyVisible": bool(group.publicly_visible),
        "createdAt": iso(group.created_at),
        "updatedAt": iso(group.updated_at),
    }


def group_summary(group: Group) -> dict:
    return {
        "id": group.id,
        "displayId": group.display_id,
        "name": group.name,
        "publiclyVisible": bool(group.publicly_visible),
    }


def validate_group_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate group creation/update payload. Returns list of errors."""
    errors = []
    for key, label in (("displayId", "Display ID"), ("name", "Name")):
        if key not in payload and partial:
            continue
        value = payload.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{label} is required")
    parent = payload.get("parentGroupId")
    if parent is not None and (isinstance(parent, bool) or not isinstance(parent, int)):
        errors.append("Parent Group ID must be an integer")
    for key, _attr in BOOL_FIELDS:
        if key in payload and not isinstance(payload[key], bool):
            errors.append(f"{key} must be a boolean")
    admin_person = payload.get("adminPersonId")
    if admin_person is not None and (isinstance(admin_person, bool) or not isinstance(admin_person, int)):
        errors.append("adminPersonId must be an integer")
    return errors


def resolve_group(s: "Session", ref: str) -> Group:
    """Look a live group up by display id, falling back to numeric id."""
    group = s.execute(
        select(Group).where(Group.display_id == ref.lower(), Group.deleted.is_(False))
    ).scalar_one_or_none()
    if group is None and ref.isdigit():
        group = s.get(Group, int(ref))
    if group is None or group.deleted:
        raise NotFound("Group not found")
    return group


def get_live_group(s: "Session", group_id: int) -> Group | None:
    group = s.get(Group, group_id)
    if group is None or group.deleted:
        return None
    return group


def ensure_can_view(s: "Session", identity: "ActingIdentity", group: Group) -> None:
    if not can_view_group(s, identity, group):
        raise Forbidden("Forbidden: You do not have permission to view this group")


def list_groups(
    s: "Session", identity: "ActingIdentity", page: int, limit: int, search: str | None = None
) -> tuple[list[Group], int]:
    base = select(Group).where(Group.deleted.is_(False))
    if not identity.is_system_admin:
        admin_ids = administered_group_ids(s, identity)
        base = base.where(or_(Group.publicly_visible.is_(True), Group.id.in_(list(admin_ids))))
    if search:
        like = f"%{search.lower()}%"
        base = base.where(or_(func.lower(Group.name).like(like), func.lower(Group.display_id).like(like)))
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    items = s.execute(
        base.order_by(Group.created_at.desc(), Group.id.desc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return list(items), total


def _ensure_display_id_free(s: "Session", display_id: str, exclude_id: int | None = None) -> None:
    q = select(Group.id).where(Group.display_id == display_id)
    if exclude_id is not None:
        q = q.where(Group.id != exclude_id)
    if s.execute(q.limit(1)).first() is not None:
        raise Conflict("A group with this display ID already exists")


def _load_parent(s: "Session", identity: "ActingIdentity", parent_id: int) -> Group:
    parent = get_live_group(s, parent_id)
    if parent is None:
        raise ValidationError("Referenced parent group does not exist")
    if not can_create_subgroup(s, identity, parent):
        raise Forbidden("Forbidden: You do not have permission to create a subgroup under this parent")
    return parent


def _creator_person(s: "Session", identity: "ActingIdentity", payload: dict) -> Person | None:
    """The person that becomes the first admin of a new group."""
    admin_person_id = payload.get("adminPersonId")
    if admin_person_id is not None:
        person = s.get(Person, admin_person_id)
        if person is None or person.deleted:
            raise ValidationError("Referenced person does not exist")
        if not identity.is_system_admin and not identity.owns(person.id):
            raise Forbidden("Forbidden: You can only make your own person the group administrator")
        return person
    if not identity.owned_person_ids:
        if identity.is_system_admin:
            return None
        raise ValidationError("You need a person profile before creating a group")
    return s.execute(
        select(Person)
        .where(Person.id.in_(identity.owned_person_ids), Person.deleted.is_(False))
        .order_by(Person.created_at.asc(), Person.id.asc())
        .limit(1)
    ).scalar_one()


def create_group(s: "Session", payload: dict, identity: "ActingIdentity", actor: "User") -> Group:
    """Create a group; the creator's person becomes its first administrator."""
    errors = validate_group_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors))

    parent_id = payload.get("parentGroupId")
    if parent_id is not None:
        _load_parent(s, identity, parent_id)
    creator = _creator_person(s, identity, payload)

    display_id = normalize_display_id(payload["displayId"])
    _ensure_display_id_free(s, display_id)

    now = datetime.utcnow()
    group = Group(
        display_id=display_id,
        name=payload["name"].strip(),
        description=optional_str(payload, "description"),
        parent_group_id=parent_id,
        allows_any_user_to_create_subgroup=payload.get("allowsAnyUserToCreateSubgroup", False),
        publicly_visible=payload.get("publiclyVisible", True),
        created_at=now,
        updated_at=now,
    )
    s.add(group)
    s.flush()

    if creator is not None:
        s.add(PersonGroup(person_id=creator.id, group_id=group.id, is_admin=True, created_at=now, updated_at=now))
        s.flush()

    record_event(
        s,
        actor=actor,
        action="group.create",
        entity_type="Group",
        entity_id=str(group.id),
        metadata={
            "display_id": group.display_id,
            "parent_group_id": group.parent_group_id,
            "admin_person_id": creator.id if creator else None,
        },
    )
    return group


def _would_create_cycle(s: "Session", group_id: int, new_parent_id: int) -> bool:
    seen: set[int] = set()
    current: int | None = new_parent_id
    while current is not None:
        if current == group_id:
            return True
        if current in seen:
            return True
        seen.add(current)
        current = s.scalar(select(Group.parent_group_id).where(Group.id == current))
    return False


def update_group(
    s: "Session", group: Group, payload: dict, identity: "ActingIdentity", actor: "User", *, partial: bool
) -> Group:
    """PUT replaces every editable field; PATCH only touches the keys present."""
    if not can_modify_group(s, identity, group.id):
        raise Forbidden("Forbidden: You do not have permission to modify this group")
    errors = validate_group_payload(payload, partial=partial)
    if errors:
        raise ValidationError("; ".join(errors))

    changes: dict = {}

    def _set(attr: str, new) -> None:
        old = getattr(group, attr)
        if old != new:
            changes[attr] = {"old": old, "new": new}
            setattr(group, attr, new)

    if "displayId" in payload:
        display_id = normalize_display_id(payload["displayId"])
        if display_id != group.display_id:
            _ensure_display_id_free(s, display_id, exclude_id=group.id)
        _set("display_id", display_id)
    if "name" in payload:
        _set("name", payload["name"].strip())
    if "description" in payload or not partial:
        _set("description", optional_str(payload, "description"))
    if "parentGroupId" in payload or not partial:
        parent_id = payload.get("parentGroupId")
        if parent_id is not None and parent_id != group.parent_group_id:
            _load_parent(s, identity, parent_id)
            if _would_create_cycle(s, group.id, parent_id):
                raise ValidationError("A group cannot be its own ancestor")
        _set("parent_group_id", parent_id)
    for key, attr in BOOL_FIELDS:
        if key in payload:
            _set(attr, payload[key])

    if changes:
        group.updated_at = datetime.utcnow()
        record_event(s, actor=actor, action="group.update", entity_type="Group", entity_id=str(group.id), metadata=changes)
    return group


def delete_group(s: "Session", group: Group, identity: "ActingIdentity", actor: "User") -> None:
    if not can_modify_group(s, identity, group.id):
        raise Forbidden("Forbidden: You do not have permission to modify this group")
    now = datetime.utcnow()
    group.deleted = True
    group.deleted_at = now
    group.updated_at = now
    record_event(s, actor=actor, action="group.delete", entity_type="Group", entity_id=str(group.id))
