from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select

from app.irl.audit import record_event
from app.irl.authorization import (
    can_modify_group,
    can_modify_person,
    can_view_group_private_contacts,
)
from app.irl.errors import Forbidden, NotFound, ValidationError
from app.irl.modules.contact_information.models import (
    ContactInformation,
    GroupContactInformation,
    PersonContactInformation,
    SystemContactInformation,
)
from app.irl.modules.groups.models import Group
from app.irl.modules.persons.models import Person
from app.irl.modules.system.models import System
from app.irl.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.irl.models import User
    from app.irl.rbac import ActingIdentity


VALID_TYPES = ("EMAIL", "PHONE", "ADDRESS", "URL")
VALID_PRIVACY = ("PRIVATE", "PUBLIC")

PERSON_FORBIDDEN = "Forbidden: You do not have permission to modify this person"
GROUP_FORBIDDEN = "Forbidden: You do not have permission to modify this group"
SYSTEM_FORBIDDEN = "Forbidden: Only system administrators can modify system contact information"


def contact_to_dict(c: ContactInformation) -> dict:
    return {
        "id": c.id,
        "type": c.type,
        "label": c.label,
        "value": c.value,
        "privacy": c.privacy,
        "createdAt": iso(c.created_at),
        "updatedAt": iso(c.updated_at),
    }


def validate_contact_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate contact information payload. Returns list of errors."""
    errors = []
    ctype = payload.get("type")
    if ctype is not None or not partial:
        if ctype not in VALID_TYPES:
            errors.append(f"Invalid type. Must be one of: {', '.join(VALID_TYPES)}")
    for key, label in (("label", "Label"), ("value", "Value")):
        if key not in payload and partial:
            continue
        value = payload.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{label} is required")
    privacy = payload.get("privacy")
    if privacy is not None or not partial:
        if privacy not in VALID_PRIVACY:
            errors.append(f"Invalid privacy. Must be one of: {', '.join(VALID_PRIVACY)}")
    return errors


def _visible(contacts: list[ContactInformation], can_view_private: bool) -> list[ContactInformation]:
    return [c for c in contacts if can_view_private or c.privacy == "PUBLIC"]


def list_for_person(s: "Session", identity: "ActingIdentity", person: Person) -> list[ContactInformation]:
    rows = s.execute(
        select(ContactInformation)
        .join(PersonContactInformation, PersonContactInformation.contact_information_id == ContactInformation.id)
        .where(PersonContactInformation.person_id == person.id, ContactInformation.deleted.is_(False))
        .order_by(ContactInformation.id.asc())
    ).scalars()
    return _visible(list(rows), can_modify_person(identity, person))


def list_for_group(s: "Session", identity: "ActingIdentity", group: Group) -> list[ContactInformation]:
    rows = s.execute(
        select(ContactInformation)
        .join(GroupContactInformation, GroupContactInformation.contact_information_id == ContactInformation.id)
        .where(GroupContactInformation.group_id == group.id, ContactInformation.deleted.is_(False))
        .order_by(ContactInformation.id.asc())
    ).scalars()
    return _visible(list(rows), can_view_group_private_contacts(s, identity, group.id))


def list_for_system(s: "Session", identity: "ActingIdentity", system: System) -> list[ContactInformation]:
    rows = s.execute(
        select(ContactInformation)
        .join(SystemContactInformation, SystemContactInformation.contact_information_id == ContactInformation.id)
        .where(SystemContactInformation.system_id == system.id, ContactInformation.deleted.is_(False))
        .order_by(ContactInformation.id.asc())
    ).scalars()
    return _visible(list(rows), identity.is_system_admin)


def _new_contact(payload: dict) -> ContactInformation:
    now = datetime.utcnow()
    return ContactInformation(
        type=payload["type"],
        label=payload["label"].strip(),
        value=payload["value"].strip(),
        privacy=payload["privacy"],
        created_at=now,
        updated_at=now,
    )


def create_for_person(
    s: "Session", person: Person, payload: dict, identity: "ActingIdentity", actor: "User"
) -> ContactInformation:
    errors = validate_contact_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors))
    if not can_modify_person(identity, person):
        raise Forbidden(PERSON_FORBIDDEN)

    contact = _new_contact(payload)
    s.add(contact)
    s.flush()
    s.add(PersonContactInformation(person_id=person.id, contact_information_id=contact.id))
    record_event(
        s,
        actor=actor,
        action="contact_information.create",
        entity_type="ContactInformation",
        entity_id=str(contact.id),
        metadata={"person_id": person.id, "type": contact.type, "privacy": contact.privacy},
    )
    return contact


def create_for_group(
    s: "Session", group: Group, payload: dict, identity: "ActingIdentity", actor: "User"
) -> ContactInformation:
    errors = validate_contact_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors))
    if not can_modify_group(s, identity, group.id):
        raise Forbidden(GROUP_FORBIDDEN)

    contact = _new_contact(payload)
    s.add(contact)
    s.flush()
    s.add(GroupContactInformation(group_id=group.id, contact_information_id=contact.id))
    record_event(
        s,
        actor=actor,
        action="contact_information.create",
        entity_type="ContactInformation",
        entity_id=str(contact.id),
        metadata={"group_id": group.id, "type": contact.type, "privacy": contact.privacy},
    )
    return contact


def create_for_system(
    s: "Session", system: System, payload: dict, identity: "ActingIdentity", actor: "User"
) -> ContactInformation:
    errors = validate_contact_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors))
    if not identity.is_system_admin:
        raise Forbidden(SYSTEM_FORBIDDEN)

    contact = _new_contact(payload)
    s.add(contact)
    s.flush()
    s.add(SystemContactInformation(system_id=system.id, contact_information_id=contact.id))
    record_event(
        s,
        actor=actor,
        action="contact_information.create",
        entity_type="ContactInformation",
        entity_id=str(contact.id),
        metadata={"system_id": system.id, "type": contact.type, "privacy": contact.privacy},
    )
    return contact


def get_contact(s: "Session", contact_id: int) -> ContactInformation:
    contact = s.get(ContactInformation, contact_id)
    if contact is None or contact.deleted:
        raise NotFound("Contact information not found")
    return contact


def ensure_can_modify(s: "Session", identity: "ActingIdentity", contact: ContactInformation) -> None:
    """Whoever may modify the linked person or group may modify the entry."""
    person = s.execute(
        select(Person)
        .join(PersonContactInformation, PersonContactInformation.person_id == Person.id)
        .where(PersonContactInformation.contact_information_id == contact.id)
    ).scalars().first()
    if person is not None:
        if not can_modify_person(identity, person):
            raise Forbidden(PERSON_FORBIDDEN)
        return
    group_id = s.scalar(
        select(GroupContactInformation.group_id).where(GroupContactInformation.contact_information_id == contact.id)
    )
    if group_id is not None:
        if not can_modify_group(s, identity, group_id):
            raise Forbidden(GROUP_FORBIDDEN)
        return
    system_id = s.scalar(
        select(SystemContactInformation.system_id).where(
            SystemContactInformation.contact_information_id == contact.id
        )
    )
    if system_id is not None:
        if not identity.is_system_admin:
            raise Forbidden(SYSTEM_FORBIDDEN)
        return
    if not identity.is_system_admin:
        raise Forbidden("Forbidden: Only system administrators can modify unlinked contact information")


def update_contact(
    s: "Session", contact: ContactInformation, payload: dict, identity: "ActingIdentity", actor: "User"
) -> ContactInformation:
    errors = validate_contact_payload(payload, partial=True)
    if errors:
        raise ValidationError("; ".join(errors))
    ensure_can_modify(s, identity, contact)

    changes: dict = {}
    for key in ("type", "label", "value", "privacy"):
        if key not in payload:
            continue
        new = payload[key].strip() if key in ("label", "value") else payload[key]
        old = getattr(contact, key)
        if old != new:
            changes[key] = {"old": old, "new": new}
            setattr(contact, key, new)

    if changes:
        contact.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=actor,
            action="contact_information.update",
            entity_type="ContactInformation",
            entity_id=str(contact.id),
            metadata=changes,
        )
    return contact


def delete_contact(s: "Session", contact: ContactInformation, identity: "ActingIdentity", actor: "User") -> None:
    ensure_can_modify(s, identity, contact)
    now = datetime.utcnow()
    contact.deleted = True
    contact.deleted_at = now
    contact.updated_at = now
    record_event(
        s,
        actor=actor,
        action="contact_information.delete",
        entity_type="ContactInformation",
        entity_id=str(contact.id),
    )
