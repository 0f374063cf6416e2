from __future__ import annotations

from flask import Blueprint, g, request

from app.irl.db import db_session
from app.irl.errors import Forbidden
from app.irl.rbac import current_identity, require_auth
from app.irl.utils import json_payload, ok, paginated, parse_id, parse_pagination
from app.irl.modules.interests import service as interests_service
from app.irl.modules.persons import service as persons_service

bp = Blueprint("interests", __name__)
person_bp = Blueprint("person_interests", __name__)


def _require_interest_admin() -> None:
    if not g.current_user.is_system_admin:
        raise Forbidden("Forbidden: Only system administrators can manage interests")


@bp.get("")
@require_auth
def list_interests():
    s = db_session()
    page, limit = parse_pagination(default_limit=100, max_limit=1000)
    category = (request.args.get("category") or "").strip() or None
    items, total = interests_service.list_interests(s, page, limit, category)
    return paginated([interests_service.interest_to_dict(i) for i in items], total, page, limit)


@bp.post("")
@require_auth
def create_interest():
    _require_interest_admin()
    s = db_session()
    interest = interests_service.create_interest(s, json_payload(), g.current_user)
    s.commit()
    return ok(interests_service.interest_to_dict(interest), "Interest created successfully", status=201)


@bp.get("/categories")
@require_auth
def list_categories():
    _require_interest_admin()
    return ok(interests_service.list_categories(db_session()))


@bp.put("/categories/<path:name>")
@require_auth
def rename_category(name: str):
    _require_interest_admin()
    s = db_session()
    interests_service.rename_category(s, name, json_payload(), g.current_user)
    s.commit()
    return ok(message="Category renamed successfully")


@bp.delete("/categories/<path:name>")
@require_auth
def delete_category(name: str):
    _require_interest_admin()
    s = db_session()
    interests_service.delete_category(s, name, g.current_user)
    s.commit()
    return ok(message="Category and all its interests deleted successfully")


@bp.put("/<interest_id>")
@require_auth
def update_interest(interest_id: str):
    _require_interest_admin()
    iid = parse_id(interest_id, "id")
    payload = json_payload()
    s = db_session()
    interest = interests_service.get_interest(s, iid)
    interests_service.update_interest(s, interest, payload, g.current_user)
    s.commit()
    return ok(interests_service.interest_to_dict(interest), "Interest updated successfully")


@bp.delete("/<interest_id>")
@require_auth
def delete_interest(interest_id: str):
    _require_interest_admin()
    s = db_session()
    interest = interests_service.get_interest(s, parse_id(interest_id, "id"))
    interests_service.delete_interest(s, interest, g.current_user)
    s.commit()
    return ok(message="Interest deleted successfully")


@person_bp.get("/<ref>/interests")
@require_auth
def get_person_interests(ref: str):
    s = db_session()
    person = persons_service.resolve_person(s, ref)
    interests_service.ensure_can_access(current_identity(), person, modify=False)
    items = interests_service.person_interests(s, person)
    return ok([interests_service.person_interest_to_dict(pi) for pi in items])


@person_bp.put("/<ref>/interests")
@require_auth
def put_person_interests(ref: str):
    s = db_session()
    person = persons_service.resolve_person(s, ref)
    interests_service.ensure_can_access(current_identity(), person, modify=True)
    items = interests_service.set_person_interests(s, person, json_payload(), g.current_user)
    s.commit()
    return ok(
        [interests_service.person_interest_to_dict(pi) for pi in items],
        "Person interests updated successfully",
    )


@person_bp.get("/<ref>/recommendations")
@require_auth
def person_recommendations(ref: str):
    s = db_session()
    person = persons_service.resolve_person(s, ref)
    interests_service.ensure_can_access(current_identity(), person, modify=False)
    _page, limit = parse_pagination(default_limit=10, max_limit=100)
    ranked = interests_service.recommendations(s, person, limit)
    data = [dict(persons_service.person_to_dict(p), similarity=sim) for p, sim in ranked]
    return ok(data)
