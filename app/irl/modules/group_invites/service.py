"""
Invitations of an email address into a group.

Group admins (and system admins) manage a group's invites. The invited
address may read its own invites and mark them accepted, nothing more.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select

from app.irl.audit import record_event
from app.irl.authorization import administered_group_ids, can_modify_group
from app.irl.errors import Conflict, Forbidden, NotFound, ValidationError
from app.irl.modules.group_invites.models import GroupInvite
from app.irl.modules.groups.models import Group
from app.irl.modules.groups.service import group_summary
from app.irl.modules.users.service import EMAIL_RE
from app.irl.utils import iso, parse_bool, parse_datetime, parse_id

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.irl.models import User
    from app.irl.rbac import ActingIdentity

logger = logging.getLogger(__name__)

NOT_FOUND = "Group invite not found"
ONLY_GROUP_ADMINS = "Forbidden: Only group administrators can manage group invites"
INVITEE_FIELDS = frozenset({"accepted", "acceptedAt"})


def invite_to_dict(invite: GroupInvite) -> dict:
    return {
        "id": invite.id,
        "groupId": invite.group_id,
        "email": invite.email,
        "accepted": bool(invite.accepted),
        "acceptedAt": iso(invite.accepted_at),
        "createdAt": iso(invite.created_at),
        "updatedAt": iso(invite.updated_at),
        "group": group_summary(invite.group) if invite.group else None,
    }


def _parse_email(raw: Any) -> str:
    if not isinstance(raw, str) or not EMAIL_RE.match(raw.strip()):
        raise ValidationError("Invalid email format")
    return raw.strip().lower()


def _parse_group_id(payload: dict) -> int:
    if payload.get("groupId") is None:
        raise ValidationError("Group ID is required")
    return parse_id(payload["groupId"], "groupId")


def _require_group(s: "Session", group_id: int) -> Group:
    group = s.get(Group, group_id)
    if group is None or group.deleted:
        raise ValidationError("Referenced group does not exist")
    return group


def _is_invitee(invite: GroupInvite, actor: "User") -> bool:
    return invite.email == (actor.email or "").lower()


def _pending_duplicate(s: "Session", group_id: int, email: str, exclude_id: int | None = None) -> bool:
    q = select(GroupInvite.id).where(
        GroupInvite.group_id == group_id,
        GroupInvite.email == email,
        GroupInvite.accepted.is_(False),
        GroupInvite.deleted.is_(False),
    )
    if exclude_id is not None:
        q = q.where(GroupInvite.id != exclude_id)
    return s.execute(q.limit(1)).first() is not None


def get_invite(s: "Session", invite_id: int) -> GroupInvite:
    invite = s.get(GroupInvite, invite_id)
    if invite is None or invite.deleted:
        raise NotFound(NOT_FOUND)
    return invite


def ensure_can_view(s: "Session", identity: "ActingIdentity", actor: "User", invite: GroupInvite) -> None:
    if can_modify_group(s, identity, invite.group_id) or _is_invitee(invite, actor):
        return
    raise Forbidden("Forbidden: You do not have permission to view this group invite")


def list_invites(
    s: "Session",
    identity: "ActingIdentity",
    actor: "User",
    page: int,
    limit: int,
    *,
    group_id: int | None = None,
) -> tuple[list[GroupInvite], int]:
    base = (
        select(GroupInvite)
        .join(Group, Group.id == GroupInvite.group_id)
        .where(GroupInvite.deleted.is_(False), Group.deleted.is_(False))
    )
    if group_id is not None:
        base = base.where(GroupInvite.group_id == group_id)
    if not identity.is_system_admin:
        admin_ids = administered_group_ids(s, identity)
        base = base.where(
            or_(GroupInvite.group_id.in_(list(admin_ids)), GroupInvite.email == (actor.email or "").lower())
        )
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    items = s.execute(base.order_by(GroupInvite.id.desc()).offset((page - 1) * limit).limit(limit)).scalars().all()
    return list(items), total


def create_invite(s: "Session", payload: dict, identity: "ActingIdentity", actor: "User") -> GroupInvite:
    group_id = _parse_group_id(payload)
    email = _parse_email(payload.get("email"))
    _require_group(s, group_id)
    if not can_modify_group(s, identity, group_id):
        logger.warning("Group invite create rejected (user_id=%s group_id=%s)", identity.user_id, group_id)
        raise Forbidden(ONLY_GROUP_ADMINS)
    if _pending_duplicate(s, group_id, email):
        raise Conflict("An invite for this email already exists for this group")

    now = datetime.utcnow()
    invite = GroupInvite(group_id=group_id, email=email, accepted=False, created_at=now, updated_at=now)
    s.add(invite)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="group_invite.create",
        entity_type="GroupInvite",
        entity_id=str(invite.id),
        metadata={"group_id": group_id, "email": email},
    )
    logger.info("Group invite issued (invite_id=%s group_id=%s email=%s)", invite.id, group_id, email)
    return invite


def _loggable(value: Any) -> Any:
    return iso(value) if isinstance(value, datetime) else value


def _parse_acceptance(payload: dict, *, replace: bool) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if payload.get("accepted") is not None:
        out["accepted"] = parse_bool(payload["accepted"], "accepted")
    elif replace:
        out["accepted"] = False
    if payload.get("acceptedAt") is not None:
        out["accepted_at"] = parse_datetime(payload["acceptedAt"], "acceptedAt")
    elif "accepted" in out:
        out["accepted_at"] = datetime.utcnow() if out["accepted"] else None
    return out


def update_invite(
    s: "Session",
    invite_id: int,
    payload: dict,
    identity: "ActingIdentity",
    actor: "User",
    *,
    replace: bool,
) -> GroupInvite:
    """
    PATCH (replace=False) changes only the keys present; PUT (replace=True)
    requires groupId and email and resets acceptance unless given.
    The invitee may only touch acceptance.
    """
    new: dict[str, Any] = {}
    if replace:
        new["group_id"] = _parse_group_id(payload)
        new["email"] = _parse_email(payload.get("email"))
    else:
        if payload.get("groupId") is not None:
            new["group_id"] = parse_id(payload["groupId"], "groupId")
        if payload.get("email") is not None:
            new["email"] = _parse_email(payload["email"])
    new.update(_parse_acceptance(payload, replace=replace))

    invite = get_invite(s, invite_id)
    if payload.get("acceptedAt") is None and new.get("accepted") == invite.accepted:
        # Re-sending the current acceptance keeps the original timestamp.
        new.pop("accepted_at", None)
    target_group_id = new.get("group_id", invite.group_id)
    if target_group_id != invite.group_id:
        _require_group(s, target_group_id)

    is_manager = can_modify_group(s, identity, invite.group_id)
    if not is_manager:
        touches_only_acceptance = not replace and set(payload) <= INVITEE_FIELDS
        if not (_is_invitee(invite, actor) and touches_only_acceptance):
            raise Forbidden(ONLY_GROUP_ADMINS)
    if target_group_id != invite.group_id and not can_modify_group(s, identity, target_group_id):
        raise Forbidden(ONLY_GROUP_ADMINS)

    target_email = new.get("email", invite.email)
    target_accepted = new.get("accepted", invite.accepted)
    if not target_accepted and _pending_duplicate(s, target_group_id, target_email, exclude_id=invite.id):
        raise Conflict("An invite for this email already exists for this group")

    changes: dict[str, Any] = {}
    for attr, value in new.items():
        old = getattr(invite, attr)
        if old != value:
            changes[attr] = {"old": _loggable(old), "new": _loggable(value)}
            setattr(invite, attr, value)

    if changes:
        invite.updated_at = datetime.utcnow()
        s.flush()
        record_event(
            s,
            actor=actor,
            action="group_invite.update",
            entity_type="GroupInvite",
            entity_id=str(invite.id),
            metadata=changes,
        )
    return invite


def delete_invite(s: "Session", invite_id: int, identity: "ActingIdentity", actor: "User") -> None:
    invite = get_invite(s, invite_id)
    if not can_modify_group(s, identity, invite.group_id):
        raise Forbidden(ONLY_GROUP_ADMINS)
    now = datetime.utcnow()
    invite.deleted = True
    invite.deleted_at = now
    invite.updated_at = now
    record_event(
        s,
        actor=actor,
        action="group_invite.delete",
        entity_type="GroupInvite",
        entity_id=str(invite.id),
        metadata={"group_id": invite.group_id, "email": invite.email},
    )
