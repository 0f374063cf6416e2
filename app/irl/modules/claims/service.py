from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from app.irl.audit import record_event
from app.irl.errors import Conflict, Forbidden, NotFound, ValidationError
from app.irl.models import User
from app.irl.modules.claims.models import Claim
from app.irl.modules.persons.models import Person
from app.irl.utils import iso, parse_datetime

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.irl.rbac import ActingIdentity


def claim_to_dict(c: Claim) -> dict:
    return {
        "id": c.id,
        "personId": c.person_id,
        "requestingUser": c.requesting_user_id,
        "claimCode": c.claim_code,
        "claimed": bool(c.claimed),
        "claimedAt": iso(c.claimed_at),
        "expiresAt": iso(c.expires_at),
        "createdAt": iso(c.created_at),
        "updatedAt": iso(c.updated_at),
    }


def _int_field(payload: dict, key: str, label: str) -> int | None:
    raw = payload.get(key)
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValidationError(f"{label} must be an integer")
    return raw


def _ensure_person(s: "Session", person_id: int) -> None:
    person = s.get(Person, person_id)
    if person is None or person.deleted:
        raise ValidationError("Referenced person does not exist")


def _ensure_user(s: "Session", user_id: int) -> None:
    user = s.get(User, user_id)
    if user is None or user.deleted:
        raise ValidationError("Referenced requesting user does not exist")


def _ensure_code_free(s: "Session", code: str, exclude_id: int | None = None) -> None:
    q = select(Claim.id).where(Claim.claim_code == code)
    if exclude_id is not None:
        q = q.where(Claim.id != exclude_id)
    if s.execute(q.limit(1)).first() is not None:
        raise Conflict("A claim with this code already exists")


def list_claims(s: "Session", identity: "ActingIdentity", page: int, limit: int) -> tuple[list[Claim], int]:
    base = select(Claim).where(Claim.deleted.is_(False))
    if not identity.is_system_admin:
        base = base.where(Claim.requesting_user_id == identity.user_id)
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    items = s.execute(base.order_by(Claim.id.desc()).offset((page - 1) * limit).limit(limit)).scalars().all()
    return list(items), total


def get_claim(s: "Session", identity: "ActingIdentity", claim_id: int) -> Claim:
    claim = s.get(Claim, claim_id)
    if claim is None or claim.deleted:
        raise NotFound("Claim not found")
    if not identity.is_system_admin and claim.requesting_user_id != identity.user_id:
        raise Forbidden("Forbidden: You do not have permission to access this claim")
    return claim


def create_claim(s: "Session", payload: dict, identity: "ActingIdentity", actor: User) -> Claim:
    person_id = _int_field(payload, "personId", "Person ID")
    if person_id is None:
        raise ValidationError("Person ID is required")
    code = payload.get("claimCode")
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("Claim code is required")
    expires_at = parse_datetime(payload.get("expiresAt"), "expiresAt")
    requesting_user = _int_field(payload, "requestingUser", "Requesting User") or identity.user_id

    if requesting_user != identity.user_id and not identity.is_system_admin:
        raise Forbidden("Forbidden: You can only request claims for yourself")
    _ensure_person(s, person_id)
    _ensure_user(s, requesting_user)
    _ensure_code_free(s, code.strip())

    now = datetime.utcnow()
    claim = Claim(
        person_id=person_id,
        requesting_user_id=requesting_user,
        claim_code=code.strip(),
        claimed=False,
        expires_at=expires_at,
        created_at=now,
        updated_at=now,
    )
    s.add(claim)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="claim.create",
        entity_type="Claim",
        entity_id=str(claim.id),
        metadata={"person_id": person_id, "requesting_user_id": requesting_user},
    )
    return claim


def update_claim(s: "Session", claim: Claim, payload: dict, identity: "ActingIdentity", actor: User) -> Claim:
    changes: dict = {}

    def _set(attr: str, new) -> None:
        old = getattr(claim, attr)
        if old != new:
            changes[attr] = {"old": old, "new": new}
            setattr(claim, attr, new)

    person_id = _int_field(payload, "personId", "Person ID")
    if person_id is not None:
        _ensure_person(s, person_id)
        _set("person_id", person_id)
    requesting_user = _int_field(payload, "requestingUser", "Requesting User")
    if requesting_user is not None:
        if requesting_user != identity.user_id and not identity.is_system_admin:
            raise Forbidden("Forbidden: You can only request claims for yourself")
        _ensure_user(s, requesting_user)
        _set("requesting_user_id", requesting_user)
    if "claimCode" in payload:
        code = payload["claimCode"]
        if not isinstance(code, str) or not code.strip():
            raise ValidationError("Claim code is required")
        _ensure_code_free(s, code.strip(), exclude_id=claim.id)
        _set("claim_code", code.strip())
    if "expiresAt" in payload:
        _set("expires_at", parse_datetime(payload["expiresAt"], "expiresAt"))
    if "claimed" in payload:
        if not isinstance(payload["claimed"], bool):
            raise ValidationError("claimed must be a boolean")
        _set("claimed", payload["claimed"])
        if payload["claimed"] and claim.claimed_at is None and payload.get("claimedAt") is None:
            _set("claimed_at", datetime.utcnow())
    if payload.get("claimedAt") is not None:
        _set("claimed_at", parse_datetime(payload["claimedAt"], "claimedAt"))
    elif "claimedAt" in payload:
        _set("claimed_at", None)

    if changes:
        claim.updated_at = datetime.utcnow()
        record_event(s, actor=actor, action="claim.update", entity_type="Claim", entity_id=str(claim.id), metadata=changes)
    return claim


def delete_claim(s: "Session", claim: Claim, actor: User) -> None:
    now = datetime.utcnow()
    claim.deleted = True
    claim.deleted_at = now
    claim.updated_at = now
    record_event(s, actor=actor, action="claim.delete", entity_type="Claim", entity_id=str(claim.id))
