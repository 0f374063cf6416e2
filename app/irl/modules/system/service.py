"""
Directory-wide settings.

There is at most one settings row (id 1). Reads are public; every write is
reserved for system administrators and checked at the route.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.irl.audit import record_event
from app.irl.errors import Conflict, NotFound, ValidationError
from app.irl.modules.system.models import SINGLE_SYSTEM_ID, System
from app.irl.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.irl.models import User

logger = logging.getLogger(__name__)

NOT_FOUND = "System not found"


def system_to_dict(system: System) -> dict:
    return {
        "id": system.id,
        "name": system.name,
        "description": system.description,
        "registrationOpen": bool(system.registration_open),
        "createdAt": iso(system.created_at),
        "updatedAt": iso(system.updated_at),
    }


def validate_system_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate system settings payload. Returns list of errors."""
    errors = []
    name = payload.get("name")
    if name is not None or not partial:
        if not isinstance(name, str) or not name.strip():
            errors.append("Name is required")
        elif len(name.strip()) > 255:
            errors.append("Name must be at most 255 characters")
    description = payload.get("description")
    if description is not None and not isinstance(description, str):
        errors.append("description must be a string")
    registration = payload.get("registrationOpen")
    if registration is not None and not isinstance(registration, bool):
        errors.append("registrationOpen must be a boolean")
    return errors


def _raise_if_invalid(payload: dict, *, partial: bool) -> None:
    errors = validate_system_payload(payload, partial=partial)
    if errors:
        raise ValidationError("; ".join(errors))


def find_system(s: "Session") -> System | None:
    system = s.get(System, SINGLE_SYSTEM_ID)
    if system is None or system.deleted:
        return None
    return system


def get_system(s: "Session") -> System:
    system = find_system(s)
    if system is None:
        raise NotFound(NOT_FOUND)
    return system


def get_system_by_id(s: "Session", system_id: int) -> System:
    if system_id != SINGLE_SYSTEM_ID:
        raise NotFound(NOT_FOUND)
    return get_system(s)


def list_systems(s: "Session", page: int, limit: int) -> tuple[list[System], int]:
    base = select(System).where(System.deleted.is_(False))
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    items = s.execute(base.order_by(System.id.asc()).offset((page - 1) * limit).limit(limit)).scalars().all()
    return list(items), total


def registration_open(s: "Session") -> bool:
    system = find_system(s)
    return True if system is None else bool(system.registration_open)


def _description(payload: dict) -> str | None:
    value = payload.get("description")
    if not isinstance(value, str):
        return None
    return value.strip() or None


def create_system(s: "Session", payload: dict, actor: "User") -> System:
    """Create the settings row; a soft-deleted row is brought back instead."""
    _raise_if_invalid(payload, partial=False)
    now = datetime.utcnow()
    system = s.get(System, SINGLE_SYSTEM_ID)
    if system is not None and not system.deleted:
        raise Conflict("System already exists")
    if system is None:
        system = System(id=SINGLE_SYSTEM_ID, created_at=now)
        s.add(system)
    system.name = payload["name"].strip()
    system.description = _description(payload)
    system.registration_open = payload.get("registrationOpen", True) is not False
    system.deleted = False
    system.deleted_at = None
    system.updated_at = now
    s.flush()

    record_event(
        s,
        actor=actor,
        action="system.create",
        entity_type="System",
        entity_id=str(system.id),
        metadata={"name": system.name, "registration_open": system.registration_open},
    )
    logger.info("System settings created (name=%s)", system.name)
    return system


def update_system(s: "Session", system: System, payload: dict, actor: "User", *, replace: bool) -> System:
    """
    PATCH (replace=False) changes only the keys present; PUT (replace=True)
    requires a name, clears a missing description and reopens registration
    when registrationOpen is omitted.
    """
    _raise_if_invalid(payload, partial=not replace)

    if replace:
        new: dict[str, Any] = {
            "name": payload["name"].strip(),
            "description": _description(payload),
            "registration_open": payload.get("registrationOpen", True) is not False,
        }
    else:
        new = {}
        if payload.get("name") is not None:
            new["name"] = payload["name"].strip()
        if "description" in payload:
            new["description"] = _description(payload)
        if payload.get("registrationOpen") is not None:
            new["registration_open"] = payload["registrationOpen"]

    changes: dict[str, Any] = {}
    for attr, value in new.items():
        old = getattr(system, attr)
        if old != value:
            changes[attr] = {"old": old, "new": value}
            setattr(system, attr, value)

    if changes:
        system.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=actor,
            action="system.update",
            entity_type="System",
            entity_id=str(system.id),
            metadata=changes,
        )
    return system


def upsert_system(s: "Session", payload: dict, actor: "User") -> tuple[System, bool]:
    system = find_system(s)
    if system is None:
        return create_system(s, payload, actor), True
    return update_system(s, system, payload, actor, replace=True), False


def delete_system(s: "Session", system: System, actor: "User") -> None:
    now = datetime.utcnow()
    system.deleted = True
    system.deleted_at = now
    system.updated_at = now
    record_event(s, actor=actor, action="system.delete", entity_type="System", entity_id=str(system.id))
