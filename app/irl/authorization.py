"""
Authorization predicates shared by the feature modules.

Group membership rules:
1. System admins can modify any membership.
2. Otherwise the acting user must own a live person holding an active admin
   membership in the group.
3. Non-system-admins can never change the admin flag of a membership whose
   person they own (self-escalation and self-demotion are both blocked).
4. A group that has memberships must keep at least one admin.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.irl.errors import InvariantViolation
from app.irl.modules.groups.models import Group
from app.irl.modules.memberships.models import PersonGroup
from app.irl.modules.persons.models import Person
from app.irl.rbac import ActingIdentity

logger = logging.getLogger(__name__)

ONLY_GROUP_ADMINS = "Forbidden: Only group administrators can modify group memberships"
OWN_ADMIN_STATUS = "Forbidden: You cannot modify your own admin status"
LAST_ADMIN = "Cannot remove the last administrator of a group"


def _admin_membership_query(identity: ActingIdentity, group_id: int):
    return (
        select(PersonGroup.id)
        .join(Person, Person.id == PersonGroup.person_id)
        .where(
            PersonGroup.group_id == group_id,
            PersonGroup.is_admin.is_(True),
            PersonGroup.deleted.is_(False),
            Person.user_id == identity.user_id,
            Person.deleted.is_(False),
        )
        .limit(1)
    )


def is_group_admin(s: Session, identity: ActingIdentity, group_id: int) -> bool:
    return s.execute(_admin_membership_query(identity, group_id)).first() is not None


def is_group_member(s: Session, identity: ActingIdentity, group_id: int) -> bool:
    row = s.execute(
        select(PersonGroup.id)
        .join(Person, Person.id == PersonGroup.person_id)
        .where(
            PersonGroup.group_id == group_id,
            PersonGroup.deleted.is_(False),
            Person.user_id == identity.user_id,
            Person.deleted.is_(False),
        )
        .limit(1)
    ).first()
    return row is not None


def can_modify_group_membership(s: Session, identity: ActingIdentity, group_id: int) -> bool:
    if identity.is_system_admin:
        return True
    return is_group_admin(s, identity, group_id)


# Group edits follow the same rule as membership edits.
can_modify_group = can_modify_group_membership


def can_change_own_admin_status(identity: ActingIdentity, target_person_id: int) -> bool:
    """Only call when the admin flag actually changes."""
    if identity.is_system_admin:
        return True
    return not identity.owns(target_person_id)


def count_active_admins(s: Session, group_id: int) -> int:
    return s.scalar(
        select(func.count(PersonGroup.id)).where(
            PersonGroup.group_id == group_id,
            PersonGroup.is_admin.is_(True),
            PersonGroup.deleted.is_(False),
        )
    ) or 0


def assert_admin_removal_allowed(s: Session, group_id: int, membership_id: int) -> None:
    """
    Raise InvariantViolation if losing this membership's admin status would
    leave the group without administrators.

    The caller must hold the group row lock so the count cannot go stale
    before the mutation is flushed.
    """
    membership = s.get(PersonGroup, membership_id)
    if membership is None or membership.deleted or not membership.is_admin or membership.group_id != group_id:
        return
    remaining = count_active_admins(s, group_id) - 1
    if remaining < 1:
        logger.warning("Last-admin guard rejected change (group_id=%s membership_id=%s)", group_id, membership_id)
        raise InvariantViolation(LAST_ADMIN)


def can_view_group(s: Session, identity: ActingIdentity, group: Group) -> bool:
    if identity.is_system_admin or group.publicly_visible:
        return True
    return is_group_admin(s, identity, group.id)


def can_view_group_private_contacts(s: Session, identity: ActingIdentity, group_id: int) -> bool:
    if identity.is_system_admin:
        return True
    return is_group_member(s, identity, group_id)


def can_modify_person(identity: ActingIdentity, person: Person) -> bool:
    if identity.is_system_admin:
        return True
    return person.user_id is not None and person.user_id == identity.user_id


def can_create_subgroup(s: Session, identity: ActingIdentity, parent: Group) -> bool:
    if identity.is_system_admin or parent.allows_any_user_to_create_subgroup:
        return True
    return is_group_admin(s, identity, parent.id)


def administered_group_ids(s: Session, identity: ActingIdentity) -> set[int]:
    rows = s.execute(
        select(PersonGroup.group_id)
        .join(Person, Person.id == PersonGroup.person_id)
        .where(
            PersonGroup.is_admin.is_(True),
            PersonGroup.deleted.is_(False),
            Person.user_id == identity.user_id,
            Person.deleted.is_(False),
        )
    ).scalars()
    return set(rows)


@dataclass
class PersonGroupsViewAccess:
    can_view_all: bool
    admin_group_ids: set[int] = field(default_factory=set)

    def can_view(self, group: Group) -> bool:
        return self.can_view_all or group.publicly_visible or group.id in self.admin_group_ids


def person_groups_view_access(s: Session, identity: ActingIdentity, person: Person) -> PersonGroupsViewAccess:
    """Owners and system admins see every membership of a person; others see public or administered groups."""
    if identity.is_system_admin or identity.owns(person.id):
        return PersonGroupsViewAccess(can_view_all=True)
    return PersonGroupsViewAccess(can_view_all=False, admin_group_ids=administered_group_ids(s, identity))
