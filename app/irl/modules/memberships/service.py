"""
Membership (person x group) operations.

Every mutation checks, in order: input validation (400), existence (404),
authorization (403), then the last-admin invariant (400). The invariant is
evaluated after taking a row lock on the group, inside the same transaction
as the mutation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select

from app.irl.audit import record_event
from app.irl.authorization import (
    ONLY_GROUP_ADMINS,
    OWN_ADMIN_STATUS,
    administered_group_ids,
    assert_admin_removal_allowed,
    can_change_own_admin_status,
    can_modify_group_membership,
    can_view_group,
)
from app.irl.db import lock_for_update
from app.irl.errors import Conflict, Forbidden, NotFound, ValidationError
from app.irl.modules.groups.models import Group
from app.irl.modules.groups.service import group_summary
from app.irl.modules.memberships.models import PersonGroup
from app.irl.modules.persons.models import Person
from app.irl.modules.persons.service import person_summary
from app.irl.utils import iso, parse_bool, parse_id

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.irl.models import User
    from app.irl.rbac import ActingIdentity

logger = logging.getLogger(__name__)

NOT_FOUND = "Person-group relationship not found"


def membership_to_dict(m: PersonGroup, *, include_relations: bool = False) -> dict:
    data: dict[str, Any] = {
        "id": m.id,
        "personId": m.person_id,
        "groupId": m.group_id,
        "isAdmin": bool(m.is_admin),
        "createdAt": iso(m.created_at),
        "updatedAt": iso(m.updated_at),
    }
    if include_relations:
        data["person"] = person_summary(m.person) if m.person else None
        data["group"] = group_summary(m.group) if m.group else None
    return data


# --- reads -----------------------------------------------------------------


def get_membership(s: "Session", membership_id: int) -> PersonGroup:
    m = s.get(PersonGroup, membership_id)
    if m is None or m.deleted:
        raise NotFound(NOT_FOUND)
    return m


def active_memberships_for_person(s: "Session", person_id: int) -> list[PersonGroup]:
    rows = s.execute(
        select(PersonGroup)
        .join(Group, Group.id == PersonGroup.group_id)
        .where(PersonGroup.person_id == person_id, PersonGroup.deleted.is_(False), Group.deleted.is_(False))
        .order_by(PersonGroup.id.asc())
    ).scalars()
    return list(rows)


def active_members_of_group(s: "Session", group_id: int) -> list[PersonGroup]:
    rows = s.execute(
        select(PersonGroup)
        .join(Person, Person.id == PersonGroup.person_id)
        .where(PersonGroup.group_id == group_id, PersonGroup.deleted.is_(False), Person.deleted.is_(False))
        .order_by(PersonGroup.is_admin.desc(), PersonGroup.id.asc())
    ).scalars()
    return list(rows)


def list_memberships(
    s: "Session",
    identity: "ActingIdentity",
    page: int,
    limit: int,
    *,
    group_id: int | None = None,
    person_id: int | None = None,
) -> tuple[list[PersonGroup], int]:
    base = (
        select(PersonGroup)
        .join(Group, Group.id == PersonGroup.group_id)
        .where(PersonGroup.deleted.is_(False), Group.deleted.is_(False))
    )
    if group_id is not None:
        base = base.where(PersonGroup.group_id == group_id)
    if person_id is not None:
        base = base.where(PersonGroup.person_id == person_id)
    if not identity.is_system_admin:
        admin_ids = administered_group_ids(s, identity)
        base = base.where(or_(Group.publicly_visible.is_(True), Group.id.in_(list(admin_ids))))
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    items = s.execute(base.order_by(PersonGroup.id.desc()).offset((page - 1) * limit).limit(limit)).scalars().all()
    return list(items), total


def ensure_can_view_membership(s: "Session", identity: "ActingIdentity", m: PersonGroup) -> None:
    if not can_view_group(s, identity, m.group):
        raise Forbidden("Forbidden: You do not have permission to view this group")


# --- helpers ---------------------------------------------------------------


def _required_id(payload: dict, key: str, label: str) -> int:
    if payload.get(key) is None:
        raise ValidationError(f"{label} is required")
    return parse_id(payload[key], key)


def _require_person(s: "Session", person_id: int) -> Person:
    person = s.get(Person, person_id)
    if person is None or person.deleted:
        raise NotFound("Referenced person does not exist")
    return person


def _require_group(s: "Session", group_id: int) -> Group:
    group = s.get(Group, group_id)
    if group is None or group.deleted:
        raise NotFound("Referenced group does not exist")
    return group


def _forbid(message: str, identity: "ActingIdentity", action: str, group_id: int) -> Forbidden:
    logger.warning(
        "Membership %s rejected (user_id=%s group_id=%s): %s", action, identity.user_id, group_id, message
    )
    return Forbidden(message)


def _lock_groups(s: "Session", *group_ids: int) -> None:
    # Always lock in ascending id order.
    for gid in sorted(set(group_ids)):
        lock_for_update(s, Group, gid)


def _pair_row(s: "Session", person_id: int, group_id: int) -> PersonGroup | None:
    return s.execute(
        select(PersonGroup).where(PersonGroup.person_id == person_id, PersonGroup.group_id == group_id)
    ).scalar_one_or_none()


# --- mutations -------------------------------------------------------------


def create_membership(s: "Session", payload: dict, identity: "ActingIdentity", actor: "User") -> PersonGroup:
    """Add a person to a group. A soft-deleted row for the same pair is reactivated."""
    person_id = _required_id(payload, "personId", "Person ID")
    group_id = _required_id(payload, "groupId", "Group ID")
    is_admin = parse_bool(payload["isAdmin"], "isAdmin") if payload.get("isAdmin") is not None else False

    _require_person(s, person_id)
    _require_group(s, group_id)

    if not can_modify_group_membership(s, identity, group_id):
        raise _forbid(ONLY_GROUP_ADMINS, identity, "create", group_id)
    if is_admin and not can_change_own_admin_status(identity, person_id):
        raise _forbid(OWN_ADMIN_STATUS, identity, "create", group_id)

    _lock_groups(s, group_id)
    now = datetime.utcnow()
    m = _pair_row(s, person_id, group_id)
    if m is not None and not m.deleted:
        raise Conflict("Person is already a member of this group")
    if m is not None:
        m.deleted = False
        m.deleted_at = None
        m.is_admin = is_admin
        m.updated_at = now
        reactivated = True
    else:
        m = PersonGroup(person_id=person_id, group_id=group_id, is_admin=is_admin, created_at=now, updated_at=now)
        s.add(m)
        reactivated = False
    s.flush()

    record_event(
        s,
        actor=actor,
        action="membership.create",
        entity_type="PersonGroup",
        entity_id=str(m.id),
        metadata={"person_id": person_id, "group_id": group_id, "is_admin": is_admin, "reactivated": reactivated},
    )
    return m


def update_membership(
    s: "Session",
    membership_id: int,
    payload: dict,
    identity: "ActingIdentity",
    actor: "User",
    *,
    replace: bool,
) -> PersonGroup:
    """
    PATCH (replace=False) changes only the keys present; PUT (replace=True)
    requires personId and groupId and treats a missing isAdmin as false.
    """
    if replace:
        new_person_id = _required_id(payload, "personId", "Person ID")
        new_group_id = _required_id(payload, "groupId", "Group ID")
        new_is_admin = parse_bool(payload["isAdmin"], "isAdmin") if payload.get("isAdmin") is not None else False
    else:
        new_person_id = parse_id(payload["personId"], "personId") if payload.get("personId") is not None else None
        new_group_id = parse_id(payload["groupId"], "groupId") if payload.get("groupId") is not None else None
        new_is_admin = parse_bool(payload["isAdmin"], "isAdmin") if payload.get("isAdmin") is not None else None

    m = get_membership(s, membership_id)
    if new_person_id is None:
        new_person_id = m.person_id
    if new_group_id is None:
        new_group_id = m.group_id
    if new_is_admin is None:
        new_is_admin = m.is_admin
    if new_person_id != m.person_id:
        _require_person(s, new_person_id)
    if new_group_id != m.group_id:
        _require_group(s, new_group_id)

    old_group_id = m.group_id
    if not can_modify_group_membership(s, identity, old_group_id):
        raise _forbid(ONLY_GROUP_ADMINS, identity, "update", old_group_id)
    if new_group_id != old_group_id and not can_modify_group_membership(s, identity, new_group_id):
        raise _forbid(ONLY_GROUP_ADMINS, identity, "update", new_group_id)
    if new_is_admin != m.is_admin and not can_change_own_admin_status(identity, m.person_id):
        raise _forbid(OWN_ADMIN_STATUS, identity, "update", old_group_id)
    if new_person_id != m.person_id and new_is_admin and not can_change_own_admin_status(identity, new_person_id):
        raise _forbid(OWN_ADMIN_STATUS, identity, "update", new_group_id)

    _lock_groups(s, old_group_id, new_group_id)
    s.refresh(m)
    if m.deleted:
        raise NotFound(NOT_FOUND)

    loses_admin = m.is_admin and (not new_is_admin or new_group_id != m.group_id)
    if loses_admin:
        assert_admin_removal_allowed(s, m.group_id, m.id)

    if (new_person_id, new_group_id) != (m.person_id, m.group_id):
        other = _pair_row(s, new_person_id, new_group_id)
        if other is not None and not other.deleted:
            raise Conflict("Person is already a member of this group")
        if other is not None:
            # A soft-deleted row for the target pair would violate the unique constraint.
            s.delete(other)
            s.flush()

    changes: dict[str, Any] = {}
    for attr, new in (("person_id", new_person_id), ("group_id", new_group_id), ("is_admin", new_is_admin)):
        old = getattr(m, attr)
        if old != new:
            changes[attr] = {"old": old, "new": new}
            setattr(m, attr, new)

    if changes:
        m.updated_at = datetime.utcnow()
        s.flush()
        record_event(
            s,
            actor=actor,
            action="membership.update",
            entity_type="PersonGroup",
            entity_id=str(m.id),
            metadata=changes,
        )
    return m


def delete_membership(s: "Session", membership_id: int, identity: "ActingIdentity", actor: "User") -> None:
    m = get_membership(s, membership_id)
    if not can_modify_group_membership(s, identity, m.group_id):
        raise _forbid(ONLY_GROUP_ADMINS, identity, "delete", m.group_id)

    _lock_groups(s, m.group_id)
    s.refresh(m)
    if m.deleted:
        raise NotFound(NOT_FOUND)
    if m.is_admin:
        assert_admin_removal_allowed(s, m.group_id, m.id)

    now = datetime.utcnow()
    m.deleted = True
    m.deleted_at = now
    m.updated_at = now
    record_event(
        s,
        actor=actor,
        action="membership.delete",
        entity_type="PersonGroup",
        entity_id=str(m.id),
        metadata={"person_id": m.person_id, "group_id": m.group_id, "was_admin": m.is_admin},
    )
