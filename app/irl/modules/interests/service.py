from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select

from app.irl.audit import record_event
from app.irl.authorization import can_modify_person
from app.irl.errors import Forbidden, NotFound, ValidationError
from app.irl.modules.interests import vectors
from app.irl.modules.interests.models import Interest, PersonInterest
from app.irl.modules.persons.models import Person
from app.irl.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.irl.models import User
    from app.irl.rbac import ActingIdentity


DUPLICATE = "An interest with this name and category already exists"


def interest_to_dict(i: Interest) -> dict:
    return {
        "id": i.id,
        "name": i.name,
        "category": i.category,
        "createdAt": iso(i.created_at),
        "updatedAt": iso(i.updated_at),
    }


def person_interest_to_dict(pi: PersonInterest) -> dict:
    return {
        "id": pi.id,
        "personId": pi.person_id,
        "interestId": pi.interest_id,
        "level": float(pi.level),
        "createdAt": iso(pi.created_at),
        "updatedAt": iso(pi.updated_at),
        "interest": interest_to_dict(pi.interest) if pi.interest else None,
    }


def validate_interest_payload(payload: dict) -> list[str]:
    """Validate interest creation/update payload. Returns list of errors."""
    errors = []
    for key, label in (("name", "Name"), ("category", "Category")):
        value = payload.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{label} is required")
        elif len(value.strip()) > 128:
            errors.append(f"{label} must be at most 128 characters")
    return errors


def _duplicate_exists(s: "Session", name: str, category: str, exclude_id: int | None = None) -> bool:
    q = select(Interest.id).where(
        func.lower(Interest.name) == name.lower(),
        func.lower(Interest.category) == category.lower(),
        Interest.deleted.is_(False),
    )
    if exclude_id is not None:
        q = q.where(Interest.id != exclude_id)
    return s.execute(q.limit(1)).first() is not None


def list_interests(s: "Session", page: int, limit: int, category: str | None = None) -> tuple[list[Interest], int]:
    base = select(Interest).where(Interest.deleted.is_(False))
    if category:
        base = base.where(Interest.category == category)
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    items = s.execute(
        base.order_by(Interest.category.asc(), Interest.name.asc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return list(items), total


def get_interest(s: "Session", interest_id: int) -> Interest:
    interest = s.get(Interest, interest_id)
    if interest is None:
        raise NotFound("Interest not found")
    return interest


def create_interest(s: "Session", payload: dict, actor: "User") -> Interest:
    errors = validate_interest_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors))
    name, category = payload["name"].strip(), payload["category"].strip()
    if _duplicate_exists(s, name, category):
        raise ValidationError(DUPLICATE)

    now = datetime.utcnow()
    interest = Interest(name=name, category=category, created_at=now, updated_at=now)
    s.add(interest)
    s.flush()
    vectors.rebuild_all_vectors(s)
    record_event(
        s,
        actor=actor,
        action="interest.create",
        entity_type="Interest",
        entity_id=str(interest.id),
        metadata={"name": name, "category": category},
    )
    return interest


def update_interest(s: "Session", interest: Interest, payload: dict, actor: "User") -> Interest:
    if interest.deleted:
        raise ValidationError("Cannot update a deleted interest")
    errors = validate_interest_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors))
    name, category = payload["name"].strip(), payload["category"].strip()
    if _duplicate_exists(s, name, category, exclude_id=interest.id):
        raise ValidationError(DUPLICATE)

    changes = {}
    if name != interest.name:
        changes["name"] = {"old": interest.name, "new": name}
        interest.name = name
    if category != interest.category:
        changes["category"] = {"old": interest.category, "new": category}
        interest.category = category
    if changes:
        interest.updated_at = datetime.utcnow()
        record_event(s, actor=actor, action="interest.update", entity_type="Interest", entity_id=str(interest.id), metadata=changes)
    return interest


def delete_interest(s: "Session", interest: Interest, actor: "User") -> None:
    if interest.deleted:
        raise ValidationError("Interest is already deleted")
    interest.deleted = True
    interest.updated_at = datetime.utcnow()
    s.flush()
    vectors.rebuild_all_vectors(s)
    record_event(s, actor=actor, action="interest.delete", entity_type="Interest", entity_id=str(interest.id))


def list_categories(s: "Session") -> list[str]:
    rows = s.execute(
        select(Interest.category).where(Interest.deleted.is_(False)).distinct().order_by(Interest.category.asc())
    ).scalars()
    return list(rows)


def _category_interests(s: "Session", name: str) -> list[Interest]:
    rows = s.execute(select(Interest).where(Interest.category == name, Interest.deleted.is_(False))).scalars()
    return list(rows)


def rename_category(s: "Session", old_name: str, payload: dict, actor: "User") -> int:
    new_name = payload.get("newName")
    if not isinstance(new_name, str) or not new_name.strip():
        raise ValidationError("New category name is required")
    new_name = new_name.strip()
    interests = _category_interests(s, old_name)
    if not interests:
        raise NotFound("Category not found")
    if new_name != old_name and _category_interests(s, new_name):
        raise ValidationError("A category with the new name already exists")

    now = datetime.utcnow()
    for interest in interests:
        interest.category = new_name
        interest.updated_at = now
    record_event(
        s,
        actor=actor,
        action="interest_category.rename",
        entity_type="InterestCategory",
        entity_id=old_name,
        metadata={"new_name": new_name, "count": len(interests)},
    )
    return len(interests)


def delete_category(s: "Session", name: str, actor: "User") -> int:
    interests = _category_interests(s, name)
    if not interests:
        raise NotFound("Category not found")
    now = datetime.utcnow()
    for interest in interests:
        interest.deleted = True
        interest.updated_at = now
    s.flush()
    vectors.rebuild_all_vectors(s)
    record_event(
        s,
        actor=actor,
        action="interest_category.delete",
        entity_type="InterestCategory",
        entity_id=name,
        metadata={"count": len(interests)},
    )
    return len(interests)


# --- person interests ------------------------------------------------------


def ensure_can_access(identity: "ActingIdentity", person: Person, *, modify: bool) -> None:
    if not can_modify_person(identity, person):
        verb = "modify" if modify else "view"
        raise Forbidden(f"Forbidden: You do not have permission to {verb} this person's interests")


def person_interests(s: "Session", person: Person) -> list[PersonInterest]:
    rows = s.execute(
        select(PersonInterest)
        .join(Interest, Interest.id == PersonInterest.interest_id)
        .where(PersonInterest.person_id == person.id)
        .order_by(Interest.name.asc())
    ).scalars()
    return list(rows)


def _parse_level(raw) -> Decimal:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValidationError("Interest level must be a number between 0 and 1")
    if raw < 0 or raw > 1:
        raise ValidationError("Interest level must be a number between 0 and 1")
    return Decimal(str(raw)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def set_person_interests(s: "Session", person: Person, payload: dict, actor: "User") -> list[PersonInterest]:
    """Replace a person's interests wholesale and refresh their vector."""
    items = payload.get("interests")
    if not isinstance(items, list):
        raise ValidationError("interests must be a list")
    parsed: dict[int, Decimal] = {}
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Each interest must be an object with interestId and level")
        iid = item.get("interestId")
        if isinstance(iid, bool) or not isinstance(iid, int):
            raise ValidationError("Interest ID must be an integer")
        if iid in parsed:
            raise ValidationError(f"Duplicate interest ID: {iid}")
        parsed[iid] = _parse_level(item.get("level"))

    if parsed:
        valid = set(
            s.execute(
                select(Interest.id).where(Interest.id.in_(list(parsed)), Interest.deleted.is_(False))
            ).scalars()
        )
        invalid = sorted(i for i in parsed if i not in valid)
        if invalid:
            raise ValidationError(f"Invalid interest IDs: {', '.join(str(i) for i in invalid)}")

    s.execute(delete(PersonInterest).where(PersonInterest.person_id == person.id))
    now = datetime.utcnow()
    for iid, level in parsed.items():
        s.add(PersonInterest(person_id=person.id, interest_id=iid, level=level, created_at=now, updated_at=now))
    s.flush()
    vectors.update_person_vector(s, person)
    person.updated_at = now
    record_event(
        s,
        actor=actor,
        action="person_interests.update",
        entity_type="Person",
        entity_id=str(person.id),
        metadata={"interests": {str(k): str(v) for k, v in parsed.items()}},
    )
    return person_interests(s, person)


def recommendations(s: "Session", person: Person, limit: int) -> list[tuple[Person, float]]:
    if not person.interest_vector:
        raise ValidationError("Person has no interests defined")
    others = s.execute(
        select(Person).where(
            Person.id != person.id,
            Person.deleted.is_(False),
            Person.interest_vector.is_not(None),
        )
    ).scalars().all()
    return vectors.rank_by_similarity(person.interest_vector, [(p, p.interest_vector) for p in others], limit)
