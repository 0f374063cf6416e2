from __future__ import annotations

from flask import Blueprint, g, request

from app.irl.authorization import person_groups_view_access
from app.irl.db import db_session
from app.irl.rbac import current_identity, require_auth
from app.irl.utils import json_payload, ok, paginated, parse_pagination
from app.irl.modules.memberships import service as memberships_service
from app.irl.modules.persons import service as persons_service

bp = Blueprint("persons", __name__)


@bp.get("")
@require_auth
def list_persons():
    s = db_session()
    page, limit = parse_pagination()
    search = (request.args.get("search") or "").strip() or None
    items, total = persons_service.list_persons(s, page, limit, search)
    return paginated([persons_service.person_to_dict(p) for p in items], total, page, limit)


@bp.get("/<ref>")
@require_auth
def get_person(ref: str):
    s = db_session()
    person = persons_service.resolve_person(s, ref)
    return ok(persons_service.person_to_dict(person))


@bp.post("")
@require_auth
def create_person():
    s = db_session()
    person = persons_service.create_person(s, json_payload(), current_identity(), g.current_user)
    s.commit()
    return ok(persons_service.person_to_dict(person), "Person created successfully", status=201)


@bp.put("/<ref>")
@require_auth
def replace_person(ref: str):
    return _update(ref, partial=False)


@bp.patch("/<ref>")
@require_auth
def patch_person(ref: str):
    return _update(ref, partial=True)


def _update(ref: str, *, partial: bool):
    s = db_session()
    person = persons_service.resolve_person(s, ref)
    persons_service.update_person(s, person, json_payload(), current_identity(), g.current_user, partial=partial)
    s.commit()
    return ok(persons_service.person_to_dict(person), "Person updated successfully")


@bp.delete("/<ref>")
@require_auth
def delete_person(ref: str):
    s = db_session()
    person = persons_service.resolve_person(s, ref)
    persons_service.delete_person(s, person, current_identity(), g.current_user)
    s.commit()
    return ok(message="Person deleted successfully")


@bp.get("/<ref>/groups")
@require_auth
def person_groups(ref: str):
    s = db_session()
    person = persons_service.resolve_person(s, ref)
    access = person_groups_view_access(s, current_identity(), person)
    memberships = memberships_service.active_memberships_for_person(s, person.id)
    visible = [m for m in memberships if access.can_view(m.group)]
    return ok([memberships_service.membership_to_dict(m, include_relations=True) for m in visible])
